# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line interface for the oracle adapter.

Runs a registered source locally, the same way a node would run it for an
on-chain request, and decodes wire results. Configuration is read from the
environment (see :mod:`oracle_adapter.config`).

Supported Commands:
- run: execute a source and print the wire hex string
- decode: decode a wire hex string for a return type
- sources: list the registered sources
- check-config: validate a request configuration file

Examples:
    Multi-source price feed::

        COINMARKETCAP_API_KEY=... python -m oracle_adapter.cli run \
            --source price-feed \
            --arg 1 --arg bitcoin --arg btc-bitcoin \
            --request-id 0x1234

    Named parameters and credentials::

        python -m oracle_adapter.cli run \
            --source ticker-coin \
            --param market=EUR --param id=btc-bitcoin \
            --secret apiKey=...

    Request built from a configuration file::

        python -m oracle_adapter.cli run --config request.json

    Decoding a result::

        python -m oracle_adapter.cli decode 0x...0d2f --return-type uint256

Errors from the pipeline are printed on stderr and the process exits with 1.
"""

import argparse
import asyncio
import contextlib
import io
import json
import logging
import sys
import unittest
from typing import Any, Dict, List, Optional, Tuple

from .adapter import Adapter, AdapterResponse
from .config import AdapterConfig
from .encoder import ReturnType, decode_result
from .exceptions import TypeMismatch
from .log import LOGGER_NAME, configure_logging
from .request_config import build_request, validate_request_config
from .sources import default_sources


def key_value(indata: str) -> Tuple[str, str]:
    """Parse ``name=value`` into its two parts."""
    name, sep, value = indata.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(
            f"Invalid value {indata!r}, expected name=value"
        )
    return (name, value)


def load_config_file(path: str) -> Dict[str, Any]:
    with open(path) as f:
        config = json.load(f)
    validate_request_config(config)
    return config


def build_raw_request(parsed_args: argparse.Namespace) -> Dict[str, Any]:
    """Assemble the inbound request from a configuration file and flags.

    Flags take precedence over the file.
    """
    raw: Dict[str, Any] = {}
    if parsed_args.config is not None:
        config = load_config_file(parsed_args.config)
        raw.update(build_request(config))
        for key in ("secrets", "numAllowedQueries", "maxResponseBytes"):
            if config.get(key) is not None:
                raw[key] = config[key]
    if parsed_args.source is not None:
        raw["source"] = parsed_args.source
    if parsed_args.arg:
        raw["args"] = list(parsed_args.arg)
    if parsed_args.secret:
        raw["secrets"] = {**raw.get("secrets", {}), **dict(parsed_args.secret)}
    raw.update(dict(parsed_args.param))
    if parsed_args.request_id is not None:
        raw["requestId"] = parsed_args.request_id
    if parsed_args.num_allowed_queries is not None:
        raw["numAllowedQueries"] = parsed_args.num_allowed_queries
    if parsed_args.max_response_bytes is not None:
        raw["maxResponseBytes"] = parsed_args.max_response_bytes
    return raw


async def run(config: AdapterConfig, raw: Dict[str, Any]) -> AdapterResponse:
    async with Adapter(config) as adapter:
        return await adapter.handle(raw)


async def main(args: List[str], config: Optional[AdapterConfig] = None):
    """Main entry point for the oracle adapter CLI.

    :param args: Command-line arguments, typically ``sys.argv[1:]``.
    :param config: Configuration to use instead of the environment.
    """
    parser = argparse.ArgumentParser(description="Oracle adapter CLI")
    parser.add_argument(
        "command",
        type=str,
        help="The command to execute",
        choices=["run", "decode", "sources", "check-config"],
    )
    parser.add_argument("value", nargs="?", help="Wire hex string to decode")
    parser.add_argument("--source", help="Registered source to run", type=str)
    parser.add_argument(
        "--arg", help="Positional argument (repeatable)", action="append", default=[]
    )
    parser.add_argument(
        "--secret",
        help="Secret in format 'name=value' (repeatable)",
        action="append",
        type=key_value,
        default=[],
    )
    parser.add_argument(
        "--param",
        help="Named source parameter in format 'name=value' (repeatable)",
        action="append",
        type=key_value,
        default=[],
    )
    parser.add_argument("--request-id", help="Correlation id", type=str)
    parser.add_argument("--num-allowed-queries", type=int)
    parser.add_argument("--max-response-bytes", type=int)
    parser.add_argument("--config", help="Path to a request configuration file")
    parser.add_argument(
        "--return-type",
        help="Return type used by decode",
        choices=[return_type.value for return_type in ReturnType],
    )
    parsed_args = parser.parse_args(args)

    if config is None:
        config = AdapterConfig.from_env()
    configure_logging(config.log_level)

    if parsed_args.command == "sources":
        for name, source in sorted(default_sources().items()):
            print(f"{name}\t{source.return_type.value}\t{source.description}")

    elif parsed_args.command == "decode":
        if parsed_args.value is None:
            parser.error("Missing hex value to decode")
        if parsed_args.return_type is None:
            parser.error("Missing required argument '--return-type'")
        try:
            value = decode_result(parsed_args.value, parsed_args.return_type)
        except ValueError as e:
            parser.error(f"Cannot decode {parsed_args.value}: {e}")
        print(value.hex() if isinstance(value, bytes) else value)

    elif parsed_args.command == "check-config":
        if parsed_args.config is None:
            parser.error("Missing required argument '--config'")
        try:
            load_config_file(parsed_args.config)
        except FileNotFoundError:
            parser.error(f"Request configuration not found: {parsed_args.config}")
        except (json.JSONDecodeError, TypeMismatch) as e:
            print(e, file=sys.stderr)
            sys.exit(1)
        print(f"{parsed_args.config} is valid")

    elif parsed_args.command == "run":
        if parsed_args.source is None and parsed_args.config is None:
            parser.error("Missing required argument '--source' or '--config'")
        try:
            raw = build_raw_request(parsed_args)
        except FileNotFoundError:
            parser.error(f"Request configuration not found: {parsed_args.config}")
        except (json.JSONDecodeError, TypeMismatch) as e:
            parser.error(f"Invalid request configuration: {e}")

        response = await run(config, raw)
        if not response.ok:
            print(response.error, file=sys.stderr)
            sys.exit(1)
        print(response.result)


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = AdapterConfig(log_level="CRITICAL")

    def tearDown(self):
        logger = logging.getLogger(LOGGER_NAME)
        logger.handlers = []
        logger.propagate = True
        logger.setLevel(logging.NOTSET)

    async def invoke(self, *args: str) -> Tuple[str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            await main(list(args), self.config)
        return stdout.getvalue(), stderr.getvalue()

    def test_key_value(self):
        self.assertEqual(key_value("apiKey=a=b"), ("apiKey", "a=b"))
        with self.assertRaises(argparse.ArgumentTypeError):
            key_value("apiKey")

    async def test_run_sum(self):
        out, _ = await self.invoke("run", "--source", "sum", "--arg", "2", "--arg", "3")
        self.assertEqual(out.strip(), "0x" + "00" * 31 + "05")

    async def test_run_error_exits(self):
        with self.assertRaises(SystemExit) as cm:
            await self.invoke("run", "--source", "sum", "--arg", "two")
        self.assertEqual(cm.exception.code, 1)

    async def test_decode(self):
        out, _ = await self.invoke(
            "decode", "0x" + "00" * 29 + "12d687", "--return-type", "uint256"
        )
        self.assertEqual(out.strip(), "1234567")

    async def test_decode_partial_word(self):
        with self.assertRaises(SystemExit) as cm:
            await self.invoke("decode", "0x01", "--return-type", "uint256")
        self.assertEqual(cm.exception.code, 2)

    async def test_sources(self):
        out, _ = await self.invoke("sources")
        names = [line.split("\t")[0] for line in out.splitlines()]
        self.assertIn("price-feed", names)
        self.assertIn("ticker-coin", names)

    def test_build_raw_request(self):
        parsed = argparse.Namespace(
            config=None,
            source="ticker-coin",
            arg=[],
            secret=[("apiKey", "k")],
            param=[("market", "EUR"), ("id", "btc-bitcoin")],
            request_id="r-1",
            num_allowed_queries=None,
            max_response_bytes=64,
        )
        self.assertEqual(
            build_raw_request(parsed),
            {
                "source": "ticker-coin",
                "secrets": {"apiKey": "k"},
                "market": "EUR",
                "id": "btc-bitcoin",
                "requestId": "r-1",
                "maxResponseBytes": 64,
            },
        )


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
