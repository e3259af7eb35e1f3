# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
The adapter pipeline: validate, fetch, compute, encode.

:class:`Adapter` is the entry point a bridge, CLI or test hands raw requests
to. It looks up the requested source, validates the request against the
source's parameters, calls the source's providers concurrently, computes the
result and encodes it. The first fatal error stops the pipeline; no partial
output is ever returned.

Two calling styles:

- :meth:`Adapter.execute` returns an :class:`~oracle_adapter.encoder.EncodedResult`
  and raises :class:`~oracle_adapter.exceptions.AdapterError` on failure.
- :meth:`Adapter.handle` never raises for adapter errors. It returns an
  :class:`AdapterResponse` holding either the wire hex string or the error
  message, ready to be handed back to the requester.

Examples:
    Serving one request::

        async with Adapter(AdapterConfig.from_env()) as adapter:
            response = await adapter.handle(
                {
                    "source": "price-feed",
                    "args": ["1", "bitcoin", "btc-bitcoin"],
                    "secrets": {"apiKey": "..."},
                    "requestId": "0x1234",
                }
            )
            response.result  # '0x0000...34bf44'
"""

import json
import unittest
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from . import abi
from .async_client import QueryClient
from .config import AdapterConfig
from .encoder import EncodedResult, ResponseEncoder, decode_result
from .exceptions import (
    AdapterError,
    MissingParameter,
    QueryLimitExceeded,
    QuorumNotMet,
    ResponseTooLarge,
    TypeMismatch,
    UnknownSource,
)
from .fetcher import Fetcher
from .log import request_logger
from .sources import Source, default_sources
from .validator import REQUEST_SCHEMA, Validator


@dataclass(frozen=True)
class AdapterResponse:
    """Result envelope returned by :meth:`Adapter.handle`."""

    request_id: Optional[str]
    result: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "result": self.result,
            "error": self.error,
            "statusCode": self.status_code,
        }


class Adapter:
    """Runs registered sources against raw requests.

    Attributes:
        config: Limits and provider settings
        sources: Registered sources keyed by name
        client: Shared HTTP transport
    """

    config: AdapterConfig
    sources: Dict[str, Source]
    client: QueryClient

    def __init__(
        self,
        config: AdapterConfig,
        sources: Optional[Mapping[str, Source]] = None,
        client: Optional[QueryClient] = None,
    ):
        """
        :param config: Adapter configuration.
        :param sources: Sources to serve; the shipped sources by default.
        :param client: Transport to use. An adapter closes only a client it
            created itself.
        """
        self.config = config
        self.sources = dict(default_sources() if sources is None else sources)
        self._owns_client = client is None
        self.client = QueryClient(config) if client is None else client
        self.validator = Validator(config)
        self.fetcher = Fetcher(config, self.client)
        self.encoder = ResponseEncoder(config)

    async def close(self):
        if self._owns_client:
            await self.client.close()

    async def __aenter__(self) -> "Adapter":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def source(self, raw: Mapping[str, Any]) -> Source:
        """The registered source ``raw`` asks for.

        :raises MissingParameter: If ``source`` is absent.
        :raises TypeMismatch: If ``raw`` is not a mapping or ``source`` is not
            a string.
        :raises UnknownSource: If no source of that name is registered.
        """
        if not isinstance(raw, Mapping):
            raise TypeMismatch("request", "an object")
        name = raw.get("source")
        if name is None:
            raise MissingParameter("source")
        if not isinstance(name, str):
            raise TypeMismatch("source", "a string")
        if name not in self.sources:
            raise UnknownSource(name, sorted(self.sources))
        return self.sources[name]

    async def execute(self, raw: Mapping[str, Any]) -> EncodedResult:
        """Run the pipeline for one raw request.

        :raises AdapterError: On the first fatal error.
        """
        log = request_logger(_request_id(raw))
        name = raw.get("source") if isinstance(raw, Mapping) else None
        try:
            source = self.source(raw)
            request = self.validator.validate(
                raw, REQUEST_SCHEMA.extend(source.parameters)
            )
            providers = source.providers(request, self.config)
            responses = await self.fetcher.fetch(request, providers, source.quorum)
            value = source.compute(
                request, [response.value for response in responses if response.ok]
            )
            result = self.encoder.encode(
                value, source.return_type, source.decimals, request.max_response_bytes
            )
        except AdapterError as e:
            log.info(f"{name} failed ({e.status_code}): {e}")
            raise
        log.info(f"{name} succeeded with {len(result)} bytes")
        return result

    async def handle(self, raw: Mapping[str, Any]) -> AdapterResponse:
        """Run the pipeline and wrap the outcome in an :class:`AdapterResponse`."""
        request_id = _request_id(raw)
        try:
            result = await self.execute(raw)
        except AdapterError as e:
            return AdapterResponse(
                request_id, error=str(e), status_code=e.status_code
            )
        return AdapterResponse(request_id, result=result.hex())


def _request_id(raw: Any) -> Optional[str]:
    if isinstance(raw, Mapping) and isinstance(raw.get("requestId"), str):
        return raw["requestId"]
    return None


class Test(unittest.IsolatedAsyncioTestCase):
    API_KEY = "cmc-secret-key"

    async def asyncSetUp(self):
        self.calls = []
        self.failing = set()
        self.gecko_price: Any = 34560
        self.paprika_price: Any = 34570.12
        self.config = AdapterConfig(request_timeout=1.0)
        transport = httpx.MockTransport(self.route)
        self.client = QueryClient(self.config, transport=transport)
        self.adapter = Adapter(self.config, client=self.client)

    async def asyncTearDown(self):
        await self.adapter.close()
        await self.client.close()

    def route(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        host = request.url.host
        if host in self.failing:
            return httpx.Response(503, text="unavailable")
        if host == "pro-api.coinmarketcap.com":
            price = {"USD": {"price": 34567.891}}
            return httpx.Response(200, json={"data": {"1": {"quote": price}}})
        if host == "api.coingecko.com":
            return httpx.Response(200, json={"bitcoin": {"usd": self.gecko_price}})
        if host == "api.coinpaprika.com":
            coin = request.url.path.rsplit("/", 1)[-1]
            quote = request.url.params["quotes"]
            body = {"id": coin, "quotes": {quote: {"price": self.paprika_price}}}
            return httpx.Response(200, json=body)
        if host == "countries.trevorblades.com":
            country = {"name": "Japan", "capital": "Tokyo", "currency": "JPY"}
            return httpx.Response(200, json={"data": {"country": country}})
        if host == "ethereum.publicnode.com":
            return httpx.Response(200, json=self.eth_call(json.loads(request.content)))
        return httpx.Response(404)

    @staticmethod
    def eth_call(payload: Dict[str, Any]) -> Dict[str, Any]:
        selector = payload["params"][0]["data"]
        if selector == "0xfeaf968c":
            types = ["uint80", "int256", "uint256", "uint256", "uint80"]
            data = abi.encode(types, [7, 3456789000000, 1700000000, 1700000060, 7])
        elif selector == "0x313ce567":
            data = abi.encode(["uint8"], [8])
        else:
            data = abi.encode(["string"], ["BTC / USD"])
        return {"jsonrpc": "2.0", "id": payload["id"], "result": abi.encode_hex(data)}

    def price_feed(self, **overrides) -> Dict[str, Any]:
        raw: Dict[str, Any] = {
            "source": "price-feed",
            "args": ["1", "bitcoin", "btc-bitcoin"],
            "secrets": {"apiKey": self.API_KEY},
            "requestId": "req-1",
        }
        raw.update(overrides)
        return raw

    async def test_price_feed(self):
        response = await self.adapter.handle(self.price_feed())
        self.assertTrue(response.ok, response.error)
        self.assertEqual(response.request_id, "req-1")
        # [34560, 34567.891, 34570.12] picks index round(3 / 2) = 2
        self.assertEqual(decode_result(response.result, "uint256"), 3457012)
        self.assertEqual(len(self.calls), 3)

    async def test_price_feed_one_provider_down(self):
        self.failing = {"api.coinpaprika.com"}
        result = await self.adapter.execute(self.price_feed())
        self.assertEqual(decode_result(result.hex(), "uint256"), 3456789)

    async def test_price_feed_two_providers_down(self):
        self.failing = {"api.coinpaprika.com", "api.coingecko.com"}
        with self.assertRaises(QuorumNotMet):
            await self.adapter.execute(self.price_feed())

        response = await self.adapter.handle(self.price_feed())
        self.assertFalse(response.ok)
        self.assertIsNone(response.result)
        self.assertEqual(response.status_code, 502)

    async def test_price_feed_one_non_numeric_price(self):
        for bad in ("n/a", None):
            self.gecko_price = bad
            response = await self.adapter.handle(self.price_feed())
            self.assertTrue(response.ok, response.error)
            # [34567.891, 34570.12] picks index 1
            self.assertEqual(decode_result(response.result, "uint256"), 3457012)

    async def test_price_feed_two_non_numeric_prices(self):
        self.gecko_price = None
        self.paprika_price = "34570.12"
        with self.assertRaises(QuorumNotMet) as cm:
            await self.adapter.execute(self.price_feed())
        self.assertEqual(cm.exception.successes, 1)

        response = await self.adapter.handle(self.price_feed())
        self.assertEqual(response.status_code, 502)

    async def test_missing_source_makes_no_calls(self):
        with self.assertRaises(MissingParameter) as cm:
            await self.adapter.execute({"args": ["1"]})
        self.assertEqual(cm.exception.parameter, "source")
        self.assertEqual(self.calls, [])

    async def test_missing_api_key_makes_no_calls(self):
        with self.assertRaises(MissingParameter) as cm:
            await self.adapter.execute(self.price_feed(secrets={}))
        self.assertEqual(cm.exception.parameter, "secrets.apiKey")
        self.assertEqual(self.calls, [])

    async def test_query_limit(self):
        with self.assertRaises(QueryLimitExceeded):
            await self.adapter.execute(self.price_feed(numAllowedQueries=2))
        self.assertEqual(self.calls, [])

        await self.adapter.execute(self.price_feed(numAllowedQueries=3))
        self.assertEqual(len(self.calls), 3)

    async def test_unknown_source(self):
        response = await self.adapter.handle({"source": "weather"})
        self.assertEqual(response.status_code, 404)
        self.assertIn("weather", response.error)
        self.assertIn("price-feed", response.error)

    async def test_invalid_request_type(self):
        response = await self.adapter.handle({"source": "sum", "requestId": 42})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.error, "requestId param is not a string")
        self.assertIsNone(response.request_id)

    async def test_sum(self):
        args = [str(i) for i in range(1, 10)]
        response = await self.adapter.handle({"source": "sum", "args": args})
        self.assertEqual(decode_result(response.result, "int256"), 45)
        self.assertEqual(self.calls, [])

    async def test_geometric_mean(self):
        result = await self.adapter.execute(
            {"source": "geometric-mean", "args": ["1", "2", "3", "4", "5"]}
        )
        # 120 ** (1 / 5) = 2.605...
        self.assertEqual(decode_result(result.hex(), "uint256"), 261)

    async def test_ticker_coin_aliases(self):
        result = await self.adapter.execute(
            {"source": "ticker-coin", "market": "EUR", "id": "btc-bitcoin"}
        )
        self.assertEqual(decode_result(result.hex(), "uint256"), 3457012)
        self.assertEqual(self.calls[0].url.params["quotes"], "EUR")

    async def test_country_info(self):
        result = await self.adapter.execute({"source": "country-info", "args": ["JP"]})
        self.assertEqual(
            json.loads(decode_result(result.hex(), "string")),
            {"name": "Japan", "capital": "Tokyo", "currency": "JPY"},
        )

    async def test_country_info_too_large(self):
        with self.assertRaises(ResponseTooLarge):
            await self.adapter.execute(
                {"source": "country-info", "args": ["JP"], "maxResponseBytes": 16}
            )

    async def test_data_feed(self):
        result = await self.adapter.execute({"source": "data-feed"})
        self.assertEqual(
            abi.decode(["uint256", "uint256", "uint8", "string"], result.data),
            [3456789000000, 1700000060, 8, "BTC / USD"],
        )
        self.assertEqual(len(self.calls), 3)

    async def test_logs_outcome_without_secrets(self):
        self.failing = {"pro-api.coinmarketcap.com"}
        with self.assertLogs("oracle_adapter", "INFO") as logs:
            await self.adapter.handle(self.price_feed())
        outcome = [record for record in logs.records if record.levelname == "INFO"]
        self.assertEqual(len(outcome), 1)
        self.assertEqual(outcome[0].request_id, "req-1")
        self.assertIn("price-feed succeeded", outcome[0].getMessage())
        self.assertNotIn(self.API_KEY, "".join(logs.output))

    async def test_response_dict(self):
        response = await self.adapter.handle({"source": "sum", "args": ["1"]})
        self.assertEqual(
            response.to_dict(),
            {
                "requestId": None,
                "result": "0x" + "00" * 31 + "01",
                "error": None,
                "statusCode": 200,
            },
        )


if __name__ == "__main__":
    unittest.main()
