# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Process-wide configuration for the oracle adapter.

All environment lookups happen here, once, when :meth:`AdapterConfig.from_env`
runs at process start. The resulting object is passed explicitly to the
validator, fetcher, transport and encoder so no other module reads the
environment.

Environment Variables:
    - **DEFAULT_MAX_HTTP_QUERIES**: queries allowed when a request sets none
    - **MAX_HTTP_QUERIES**: ceiling a request may ask for
    - **DEFAULT_MAX_RESPONSE_BYTES**: response size when a request sets none
    - **MAX_RESPONSE_BYTES**: ceiling a request may ask for
    - **QUERY_TIMEOUT**: per-call timeout in seconds
    - **REQUEST_TIMEOUT**: overall per-request timeout in seconds
    - **HTTP2**: ``false`` disables HTTP/2
    - **COINMARKETCAP_API_KEY**, **COINPAPRIKA_API_KEY**: provider credentials
    - **COINMARKETCAP_URL**, **COINGECKO_URL**, **COINPAPRIKA_URL**,
      **COINPAPRIKA_PRO_URL**, **COUNTRIES_URL**: provider base URLs
    - **RPC_URL**, **FUNCTIONS_ROUTER**, **CHAIN_SELECTOR**: network configuration
    - **LOG_LEVEL**: logging level name, e.g. ``info`` or ``debug``

Examples:
    Configuration from the environment::

        config = AdapterConfig.from_env()
        adapter = Adapter(config)

    Explicit configuration for tests::

        config = AdapterConfig(default_max_http_queries=3, request_timeout=1.0)
"""

import os
import unittest
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

COINMARKETCAP_URL = "https://pro-api.coinmarketcap.com"
COINGECKO_URL = "https://api.coingecko.com"
COINPAPRIKA_URL = "https://api.coinpaprika.com"
COINPAPRIKA_PRO_URL = "https://api-pro.coinpaprika.com"
COUNTRIES_URL = "https://countries.trevorblades.com/"


@dataclass
class AdapterConfig:
    """Limits, timeouts and provider settings shared by every pipeline stage.

    Request Limits:
        default_max_http_queries: Queries allowed when a request sets none (default: 5)
        max_http_queries: Largest ``numAllowedQueries`` a request may ask for (default: 20)
        default_max_response_bytes: Response size when a request sets none (default: 256)
        max_response_bytes: Largest ``maxResponseBytes`` a request may ask for (default: 2048)

    Transport Limits:
        query_timeout: Per-call timeout in seconds (default: 5)
        max_query_timeout: Largest per-call timeout a provider may set (default: 9)
        request_timeout: Deadline for the whole fan-out in seconds (default: 10)
        max_url_length: Longest URL the transport will request (default: 2048)
        max_content_length: Largest upstream body accepted in bytes (default: 2 MB)
        http2: Enable HTTP/2 (default: True)

    Providers:
        coinmarketcap_api_key / coinpaprika_api_key: Credentials merged under
            request secrets; never logged
        *_url: Base URLs for the shipped providers
        rpc_url: JSON-RPC endpoint for read-only chain calls

    Network:
        router_address, chain_selector: Carried for the on-chain caller; the
            adapter itself does not use them
    """

    default_max_http_queries: int = 5
    max_http_queries: int = 20
    default_max_response_bytes: int = 256
    max_response_bytes: int = 2048
    query_timeout: float = 5.0
    max_query_timeout: float = 9.0
    request_timeout: float = 10.0
    max_url_length: int = 2048
    max_content_length: int = 2_000_000
    http2: bool = True
    coinmarketcap_api_key: Optional[str] = None
    coinpaprika_api_key: Optional[str] = None
    coinmarketcap_url: str = COINMARKETCAP_URL
    coingecko_url: str = COINGECKO_URL
    coinpaprika_url: str = COINPAPRIKA_URL
    coinpaprika_pro_url: str = COINPAPRIKA_PRO_URL
    countries_url: str = COUNTRIES_URL
    rpc_url: Optional[str] = None
    router_address: Optional[str] = None
    chain_selector: Optional[int] = None
    log_level: str = "WARNING"

    def __post_init__(self):
        if self.default_max_http_queries > self.max_http_queries:
            raise ValueError("default_max_http_queries exceeds max_http_queries")
        if self.default_max_response_bytes > self.max_response_bytes:
            raise ValueError("default_max_response_bytes exceeds max_response_bytes")
        if self.query_timeout > self.max_query_timeout:
            raise ValueError("query_timeout exceeds max_query_timeout")

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "AdapterConfig":
        """Build the configuration from environment variables.

        :param environ: Mapping to read instead of ``os.environ``.
        :return: A fully populated configuration.
        :raises ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        defaults = AdapterConfig()

        def integer(name: str, default: int) -> int:
            value = env.get(name)
            return default if value in (None, "") else int(value)

        def number(name: str, default: float) -> float:
            value = env.get(name)
            return default if value in (None, "") else float(value)

        chain_selector = env.get("CHAIN_SELECTOR")
        return AdapterConfig(
            default_max_http_queries=integer(
                "DEFAULT_MAX_HTTP_QUERIES", defaults.default_max_http_queries
            ),
            max_http_queries=integer("MAX_HTTP_QUERIES", defaults.max_http_queries),
            default_max_response_bytes=integer(
                "DEFAULT_MAX_RESPONSE_BYTES", defaults.default_max_response_bytes
            ),
            max_response_bytes=integer(
                "MAX_RESPONSE_BYTES", defaults.max_response_bytes
            ),
            query_timeout=number("QUERY_TIMEOUT", defaults.query_timeout),
            request_timeout=number("REQUEST_TIMEOUT", defaults.request_timeout),
            http2=env.get("HTTP2", "true").lower() != "false",
            coinmarketcap_api_key=env.get("COINMARKETCAP_API_KEY") or None,
            coinpaprika_api_key=env.get("COINPAPRIKA_API_KEY") or None,
            coinmarketcap_url=env.get("COINMARKETCAP_URL", COINMARKETCAP_URL),
            coingecko_url=env.get("COINGECKO_URL", COINGECKO_URL),
            coinpaprika_url=env.get("COINPAPRIKA_URL", COINPAPRIKA_URL),
            coinpaprika_pro_url=env.get("COINPAPRIKA_PRO_URL", COINPAPRIKA_PRO_URL),
            countries_url=env.get("COUNTRIES_URL", COUNTRIES_URL),
            rpc_url=env.get("RPC_URL") or None,
            router_address=env.get("FUNCTIONS_ROUTER") or None,
            chain_selector=int(chain_selector) if chain_selector else None,
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
        )

    def secret_values(self) -> Tuple[str, ...]:
        """Configured credentials, for redaction."""
        keys = (self.coinmarketcap_api_key, self.coinpaprika_api_key)
        return tuple(key for key in keys if key)

    def __repr__(self) -> str:
        # API keys stay out of tracebacks and log lines.
        hidden = {"coinmarketcap_api_key", "coinpaprika_api_key"}
        fields = ", ".join(
            f"{name}={'***' if name in hidden and value else repr(value)}"
            for name, value in self.__dict__.items()
        )
        return f"AdapterConfig({fields})"


class Test(unittest.TestCase):
    def test_defaults(self):
        config = AdapterConfig.from_env({})
        self.assertEqual(config.default_max_http_queries, 5)
        self.assertEqual(config.default_max_response_bytes, 256)
        self.assertTrue(config.http2)
        self.assertIsNone(config.rpc_url)
        self.assertEqual(config.log_level, "WARNING")

    def test_from_env(self):
        config = AdapterConfig.from_env(
            {
                "DEFAULT_MAX_HTTP_QUERIES": "3",
                "MAX_RESPONSE_BYTES": "4096",
                "REQUEST_TIMEOUT": "2.5",
                "HTTP2": "false",
                "COINMARKETCAP_API_KEY": "cmc-key",
                "RPC_URL": "https://ethereum.publicnode.com",
                "CHAIN_SELECTOR": "16015286601757825753",
                "LOG_LEVEL": "debug",
            }
        )
        self.assertEqual(config.default_max_http_queries, 3)
        self.assertEqual(config.max_response_bytes, 4096)
        self.assertEqual(config.request_timeout, 2.5)
        self.assertFalse(config.http2)
        self.assertEqual(config.coinmarketcap_api_key, "cmc-key")
        self.assertEqual(config.chain_selector, 16015286601757825753)
        self.assertEqual(config.log_level, "DEBUG")

    def test_default_above_ceiling(self):
        with self.assertRaises(ValueError):
            AdapterConfig(default_max_http_queries=30, max_http_queries=20)

    def test_repr_hides_keys(self):
        config = AdapterConfig(coinmarketcap_api_key="super-secret")
        self.assertNotIn("super-secret", repr(config))
        self.assertIn("coinmarketcap_api_key=***", repr(config))
        self.assertEqual(config.secret_values(), ("super-secret",))


if __name__ == "__main__":
    unittest.main()
