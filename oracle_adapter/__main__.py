# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import asyncio
import sys

from .cli import main


def run():
    asyncio.run(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
