# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification for outbound requests.

Every call the transport makes carries an ``x-oracle-adapter-client`` header
naming this package and its installed version, so upstream providers can tell
adapter traffic apart in their logs.
"""

import importlib.metadata as metadata

# Package name constant for metadata lookup
PACKAGE_NAME = "oracle-adapter"


class Metadata:
    """Header constants and values identifying the adapter to providers."""

    CLIENT_HEADER = "x-oracle-adapter-client"

    @staticmethod
    def get_client_header_val() -> str:
        """Return the header value, ``oracle-adapter/{version}``.

        Falls back to ``0.0.0`` when the package metadata is unavailable,
        e.g. when running from a source checkout that was never installed.
        """
        try:
            version = metadata.version(PACKAGE_NAME)
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        return f"oracle-adapter/{version}"
