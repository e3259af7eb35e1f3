# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Upstream data providers.

A :class:`Provider` bundles one outbound call with the knowledge needed to
read its answer: the :class:`~oracle_adapter.async_client.HttpQuery` to issue,
the result path locating the value in the payload, an optional check that
flags payloads the provider returns with a success status but which are
actually errors, and an optional transform applied to the extracted value.

Factories build providers for the shipped upstreams:

- :func:`coinmarketcap`: CoinMarketCap quotes (requires an API key)
- :func:`coingecko`: CoinGecko simple price
- :func:`coinpaprika`: CoinPaprika tickers (pro endpoint when keyed)
- :func:`graphql`: any GraphQL endpoint
- :func:`json_rpc_call`: a read-only ``eth_call`` against a chain node

Examples:
    Three price providers for a multi-source feed::

        providers = [
            coinmarketcap("1", "USD", api_key),
            coingecko("bitcoin", "USD"),
            coinpaprika("btc-bitcoin", "USD"),
        ]
"""

import math
import unittest
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from . import abi
from . import result_path as paths
from .async_client import HttpQuery
from .config import (
    COINGECKO_URL,
    COINMARKETCAP_URL,
    COINPAPRIKA_PRO_URL,
    COINPAPRIKA_URL,
)
from .exceptions import UpstreamError

# Chainlink aggregator view functions
LATEST_ROUND_DATA = "0xfeaf968c"
DECIMALS = "0x313ce567"
DESCRIPTION = "0x7284e416"

ROUND_DATA_TYPES = ["uint80", "int256", "uint256", "uint256", "uint80"]


def price(value: Any) -> Union[int, float]:
    """Accept a finite JSON number as a price."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{value!r} is not a number")
    if not math.isfinite(value):
        raise ValueError(f"{value!r} is not finite")
    return value


@dataclass(frozen=True)
class ProviderResponse:
    """The outcome of one provider call: a value or an error, never both."""

    provider: str
    value: Any = None
    error: Optional[UpstreamError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Provider:
    name: str
    query: HttpQuery
    result_path: str = ""
    is_error: Optional[Callable[[Any], bool]] = None
    transform: Optional[Callable[[Any], Any]] = None

    def extract(self, payload: Any) -> Any:
        """Select and transform the value of interest from ``payload``.

        :raises UpstreamError: If the payload is flagged as an error, the
            result path does not resolve, or the transform fails.
        """
        if self.is_error is not None and self.is_error(payload):
            raise UpstreamError("provider reported an error", 502, self.name)
        try:
            value = paths.get(payload, self.result_path)
        except paths.ResultPathError as e:
            raise UpstreamError(str(e), 502, self.name) from None
        if self.transform is None:
            return value
        try:
            return self.transform(value)
        except Exception as e:
            raise UpstreamError(f"unexpected result: {e}", 502, self.name) from None


def coinmarketcap(
    coin_id: str,
    currency: str,
    api_key: str,
    base_url: str = COINMARKETCAP_URL,
) -> Provider:
    return Provider(
        name="CoinMarketCap",
        query=HttpQuery(
            url=f"{base_url}/v1/cryptocurrency/quotes/latest",
            headers={"X-CMC_PRO_API_KEY": api_key},
            params={"convert": currency, "id": coin_id},
        ),
        result_path=f"data.{coin_id}.quote.{currency}.price",
        transform=price,
    )


def coingecko(
    coin_id: str, currency: str, base_url: str = COINGECKO_URL
) -> Provider:
    return Provider(
        name="CoinGecko",
        query=HttpQuery(
            url=f"{base_url}/api/v3/simple/price",
            params={"ids": coin_id, "vs_currencies": currency.lower()},
        ),
        result_path=f"{coin_id}.{currency.lower()}",
        transform=price,
    )


def coinpaprika(
    coin_id: str,
    quote: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> Provider:
    """CoinPaprika ticker for ``coin_id``, priced in ``quote``.

    Keyed requests go to the pro endpoint with an ``Authorization`` header.
    A payload for a different coin than requested is treated as an error.
    """
    coin_id = coin_id.lower()
    if base_url is None:
        base_url = COINPAPRIKA_PRO_URL if api_key else COINPAPRIKA_URL
    headers = {"Authorization": api_key} if api_key else {}
    return Provider(
        name="CoinPaprika",
        query=HttpQuery(
            url=f"{base_url}/v1/tickers/{coin_id}",
            headers=headers,
            params={"quotes": quote.upper()},
        ),
        result_path=f"quotes.{quote.upper()}.price",
        is_error=lambda payload: not isinstance(payload, dict)
        or str(payload.get("id", "")).lower() != coin_id,
        transform=price,
    )


def graphql(
    url: str, query: str, variables: Optional[dict] = None, name: str = "GraphQL"
) -> Provider:
    return Provider(
        name=name,
        query=HttpQuery(
            url=url,
            method="POST",
            headers={"Content-Type": "application/json"},
            data={"query": query, "variables": variables or {}},
        ),
        result_path="data",
        is_error=lambda payload: not isinstance(payload, dict)
        or bool(payload.get("errors")),
    )


def json_rpc_call(
    rpc_url: str, to: str, data: str, output_types: List[str], name: str
) -> Provider:
    """A read-only contract call, decoded into ``output_types``."""
    return Provider(
        name=name,
        query=HttpQuery(
            url=rpc_url,
            method="POST",
            headers={"Content-Type": "application/json"},
            data={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_call",
                "params": [{"to": to, "data": data}, "latest"],
            },
        ),
        result_path="result",
        is_error=lambda payload: not isinstance(payload, dict) or "error" in payload,
        transform=lambda value: abi.decode(output_types, abi.decode_hex(value)),
    )


class Test(unittest.TestCase):
    def test_coinmarketcap(self):
        provider = coinmarketcap("1", "USD", "cmc-key")
        self.assertEqual(provider.query.headers["X-CMC_PRO_API_KEY"], "cmc-key")
        self.assertEqual(provider.query.params, {"convert": "USD", "id": "1"})
        payload = {"data": {"1": {"quote": {"USD": {"price": 34567.891}}}}}
        self.assertEqual(provider.extract(payload), 34567.891)

    def test_coingecko(self):
        provider = coingecko("bitcoin", "USD")
        self.assertEqual(provider.query.params["vs_currencies"], "usd")
        self.assertEqual(provider.extract({"bitcoin": {"usd": 34560}}), 34560)

    def test_non_numeric_price(self):
        provider = coingecko("bitcoin", "USD")
        for value in (None, "n/a", "34560", True, float("nan"), float("inf")):
            with self.assertRaises(UpstreamError) as cm:
                provider.extract({"bitcoin": {"usd": value}})
            self.assertEqual(cm.exception.provider, "CoinGecko")
        self.assertEqual(price(34567.891), 34567.891)

    def test_coinpaprika_endpoints(self):
        public = coinpaprika("BTC-Bitcoin", "eur")
        expected = f"{COINPAPRIKA_URL}/v1/tickers/btc-bitcoin"
        self.assertEqual(public.query.url, expected)
        self.assertEqual(public.query.headers, {})
        self.assertEqual(public.result_path, "quotes.EUR.price")

        pro = coinpaprika("btc-bitcoin", "USD", api_key="paprika-key")
        self.assertTrue(pro.query.url.startswith(COINPAPRIKA_PRO_URL))
        self.assertEqual(pro.query.headers["Authorization"], "paprika-key")

    def test_coinpaprika_wrong_coin(self):
        provider = coinpaprika("btc-bitcoin", "USD")
        payload = {"id": "eth-ethereum", "quotes": {"USD": {"price": 1800.0}}}
        with self.assertRaises(UpstreamError) as cm:
            provider.extract(payload)
        self.assertEqual(cm.exception.provider, "CoinPaprika")

    def test_missing_result_path(self):
        provider = coingecko("bitcoin", "USD")
        with self.assertRaises(UpstreamError) as cm:
            provider.extract({"ethereum": {"usd": 1800}})
        self.assertIn("bitcoin", str(cm.exception))

    def test_graphql_errors(self):
        provider = graphql("https://countries.example/", "{ country(code: \"XX\") }")
        self.assertEqual(provider.query.method, "POST")
        with self.assertRaises(UpstreamError):
            provider.extract({"errors": [{"message": "bad"}]})
        self.assertEqual(
            provider.extract({"data": {"country": None}}), {"country": None}
        )

    def test_json_rpc_call(self):
        provider = json_rpc_call(
            "https://rpc.example", "0xF403", DECIMALS, ["uint8"], "decimals"
        )
        self.assertEqual(provider.query.data["params"][0]["data"], DECIMALS)
        result = abi.encode_hex(abi.encode(["uint8"], [8]))
        self.assertEqual(provider.extract({"jsonrpc": "2.0", "result": result}), [8])

        with self.assertRaises(UpstreamError):
            provider.extract({"error": {"code": -32000, "message": "reverted"}})
        with self.assertRaises(UpstreamError):
            provider.extract({"result": "0x0"})


if __name__ == "__main__":
    unittest.main()
