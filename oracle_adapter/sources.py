# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Registered request programs.

A source is what a request names in its ``source`` field. It declares the
extra parameters it accepts, the providers to call for a validated request,
how the provider values are combined and how the result is encoded. The
adapter runs a source as validate, fetch, compute, encode.

Shipped sources:

===============  ==============================================  ===========
name             upstream                                        result
===============  ==============================================  ===========
price-feed       CoinMarketCap, CoinGecko, CoinPaprika (2 of 3)  uint256 x100
coin-price       CoinMarketCap                                   uint256 x100
ticker-coin      CoinPaprika                                     uint256 x100
country-info     countries GraphQL API                           JSON string
data-feed        Chainlink aggregator contract via ``eth_call``  ABI tuple
geometric-mean   none                                            uint256 x100
sum              none                                            int256
===============  ==============================================  ===========

Credentials come from ``secrets.apiKey`` on the request. When a request
carries none, the API key configured for the provider is used instead.
"""

import json
import math
import re
import unittest
from typing import Any, Dict, Iterable, List, Optional, Sequence

from typing_extensions import Protocol

from . import abi, providers
from .aggregation import AggregationPolicy, aggregate
from .config import AdapterConfig
from .encoder import ReturnType
from .exceptions import MissingParameter, TypeMismatch, UpstreamError
from .providers import Provider
from .validator import Parameter, ParameterSchema, ParameterType, Request

ETHEREUM_RPC_URL = "https://ethereum.publicnode.com"
# BTC / USD on Ethereum mainnet
BTC_USD_FEED = "0xF4030086522a5bEEa4988F8cA5B36dbC97BeE88c"

COUNTRY_QUERY = """
query Country($code: ID!) {
  country(code: $code) {
    name
    capital
    currency
  }
}
"""

_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


class Source(Protocol):
    """What the adapter needs from a registered request program."""

    name: str
    description: str
    parameters: ParameterSchema
    return_type: ReturnType
    decimals: int
    quorum: Optional[int]

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        ...

    def compute(self, request: Request, values: List[Any]) -> Any:
        ...


class BaseSource:
    """Defaults shared by the shipped sources.

    Subclasses override ``providers`` to call upstreams and ``compute`` to
    derive the result. By default the successful provider values are
    reduced with ``aggregation``.
    """

    name: str = ""
    description: str = ""
    parameters: ParameterSchema = ParameterSchema()
    return_type: ReturnType = ReturnType.UINT256
    decimals: int = 0
    quorum: Optional[int] = None
    aggregation: AggregationPolicy = AggregationPolicy.MEDIAN

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        return []

    def compute(self, request: Request, values: List[Any]) -> Any:
        return aggregate(values, self.aggregation)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"


def argument(request: Request, index: int) -> str:
    """Positional argument ``index``.

    :raises MissingParameter: If it was not supplied or is empty.
    """
    if index >= len(request.args) or not request.args[index]:
        raise MissingParameter(f"args[{index}]")
    return request.args[index]


def api_key(request: Request, configured: Optional[str]) -> Optional[str]:
    """The request's ``secrets.apiKey``, else the configured key."""
    return request.secrets.get("apiKey") or configured


def required_api_key(request: Request, configured: Optional[str]) -> str:
    key = api_key(request, configured)
    if not key:
        raise MissingParameter("secrets.apiKey")
    return key


def integers(args: Iterable[str]) -> List[int]:
    """Parse every argument as an integer.

    :raises MissingParameter: If there are no arguments.
    :raises TypeMismatch: If an argument is not an integer.
    """
    values = []
    for arg in args:
        try:
            values.append(int(arg))
        except ValueError:
            raise TypeMismatch("args", "integers", f"{arg} is not a number") from None
    if not values:
        raise MissingParameter("args", "input not provided")
    return values


class PriceFeed(BaseSource):
    """Median price of a coin in USD across three APIs; two must answer.

    ``args``: CoinMarketCap id, CoinGecko id, CoinPaprika id.
    ``secrets.apiKey`` is the CoinMarketCap key; the CoinPaprika key comes
    from configuration only.
    """

    name = "price-feed"
    description = "USD price from CoinMarketCap, CoinGecko and CoinPaprika"
    decimals = 2
    quorum = 2
    aggregation = AggregationPolicy.ROUNDED_INDEX_MEDIAN

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        cmc_id, gecko_id, paprika_id = (argument(request, i) for i in range(3))
        paprika_key = config.coinpaprika_api_key
        return [
            providers.coinmarketcap(
                cmc_id,
                "USD",
                required_api_key(request, config.coinmarketcap_api_key),
                config.coinmarketcap_url,
            ),
            providers.coingecko(gecko_id, "USD", config.coingecko_url),
            providers.coinpaprika(
                paprika_id,
                "USD",
                paprika_key,
                config.coinpaprika_pro_url if paprika_key else config.coinpaprika_url,
            ),
        ]


class CoinPrice(BaseSource):
    """CoinMarketCap price. ``args``: coin id, currency code."""

    name = "coin-price"
    description = "CoinMarketCap price of a coin (requires secrets.apiKey)"
    decimals = 2

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        return [
            providers.coinmarketcap(
                argument(request, 0),
                argument(request, 1),
                required_api_key(request, config.coinmarketcap_api_key),
                config.coinmarketcap_url,
            )
        ]


class TickerCoin(BaseSource):
    name = "ticker-coin"
    description = "CoinPaprika ticker price of a coin in the quote currency"
    decimals = 2
    parameters = ParameterSchema(
        Parameter(
            "quote",
            ParameterType.STRING,
            required=True,
            aliases=("to", "market"),
            description="The symbol of the currency to convert to",
        ),
        Parameter(
            "coinid",
            ParameterType.STRING,
            required=True,
            aliases=("id", "name"),
            description="The coin ID",
        ),
    )

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        key = api_key(request, config.coinpaprika_api_key)
        return [
            providers.coinpaprika(
                request.data["coinid"],
                request.data["quote"],
                key,
                config.coinpaprika_pro_url if key else config.coinpaprika_url,
            )
        ]


class CountryInfo(BaseSource):
    """Name, capital and currency of a country, as a JSON string.

    ``args``: ISO 3166 country code.
    """

    name = "country-info"
    description = "Country name, capital and currency from a GraphQL API"
    return_type = ReturnType.STRING

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        code = argument(request, 0)
        return [
            providers.graphql(
                config.countries_url, COUNTRY_QUERY, {"code": code}, name="Countries"
            )
        ]

    def compute(self, request: Request, values: List[Any]) -> Any:
        data = values[0] or {}
        country = data.get("country") if isinstance(data, dict) else None
        if not country:
            raise UpstreamError(
                f'Make sure the country code "{request.args[0]}" exists',
                404,
                "Countries",
            )
        result = {
            "name": country.get("name"),
            "capital": country.get("capital"),
            "currency": country.get("currency"),
        }
        return json.dumps(result, separators=(",", ":"), ensure_ascii=False)


class DataFeed(BaseSource):
    """Latest answer of a Chainlink data feed, ABI-encoded.

    ``args``: optional aggregator address, BTC / USD on mainnet by default.
    The result is ``(uint256 answer, uint256 updatedAt, uint8 decimals,
    string description)``.
    """

    name = "data-feed"
    description = "Latest round of a Chainlink data feed as an ABI-encoded tuple"
    return_type = ReturnType.BYTES
    output_types = ["uint256", "uint256", "uint8", "string"]

    def providers(self, request: Request, config: AdapterConfig) -> List[Provider]:
        address = request.args[0] if request.args else BTC_USD_FEED
        if not _ADDRESS.match(address):
            raise TypeMismatch("args[0]", "a contract address")
        rpc_url = config.rpc_url or ETHEREUM_RPC_URL
        return [
            providers.json_rpc_call(
                rpc_url,
                address,
                providers.LATEST_ROUND_DATA,
                providers.ROUND_DATA_TYPES,
                "latestRoundData",
            ),
            providers.json_rpc_call(
                rpc_url, address, providers.DECIMALS, ["uint8"], "decimals"
            ),
            providers.json_rpc_call(
                rpc_url, address, providers.DESCRIPTION, ["string"], "description"
            ),
        ]

    def compute(self, request: Request, values: List[Any]) -> Any:
        round_data, (decimals,), (description,) = values
        _, answer, _, updated_at, _ = round_data
        if answer < 0:
            raise TypeMismatch("answer", "a uint256")
        return abi.encode(
            self.output_types, [answer, updated_at, decimals, description]
        )


class GeometricMean(BaseSource):
    """Geometric mean of integer ``args``, with two decimals."""

    name = "geometric-mean"
    description = "Geometric mean of the integer arguments"
    decimals = 2

    def compute(self, request: Request, values: List[Any]) -> Any:
        numbers = integers(request.args)
        product = math.prod(numbers)
        if product < 0:
            raise TypeMismatch("args", "non-negative integers")
        try:
            return math.pow(product, 1 / len(numbers))
        except OverflowError:
            raise TypeMismatch("args", "integers with a product below 1e308") from None


class Sum(BaseSource):
    """Sum of integer ``args``."""

    name = "sum"
    description = "Sum of the integer arguments"
    return_type = ReturnType.INT256

    def compute(self, request: Request, values: List[Any]) -> Any:
        return sum(integers(request.args))


def default_sources() -> Dict[str, Source]:
    """The shipped sources keyed by name."""
    sources: Sequence[Source] = (
        PriceFeed(),
        CoinPrice(),
        TickerCoin(),
        CountryInfo(),
        DataFeed(),
        GeometricMean(),
        Sum(),
    )
    return {source.name: source for source in sources}


class Test(unittest.TestCase):
    def setUp(self):
        self.config = AdapterConfig()

    def request(self, *args: str, **kwargs) -> Request:
        return Request(
            source="test",
            num_allowed_queries=5,
            max_response_bytes=256,
            args=args,
            **kwargs,
        )

    def test_registry(self):
        sources = default_sources()
        self.assertEqual(
            sorted(sources),
            [
                "coin-price",
                "country-info",
                "data-feed",
                "geometric-mean",
                "price-feed",
                "sum",
                "ticker-coin",
            ],
        )

    def test_price_feed_providers(self):
        request = self.request(
            "1", "bitcoin", "btc-bitcoin", secrets={"apiKey": "cmc-key"}
        )
        calls = PriceFeed().providers(request, self.config)
        self.assertEqual(
            [provider.name for provider in calls],
            ["CoinMarketCap", "CoinGecko", "CoinPaprika"],
        )
        self.assertEqual(calls[0].query.headers["X-CMC_PRO_API_KEY"], "cmc-key")

    def test_price_feed_requires_api_key(self):
        with self.assertRaises(MissingParameter) as cm:
            PriceFeed().providers(
                self.request("1", "bitcoin", "btc-bitcoin"), self.config
            )
        self.assertEqual(cm.exception.parameter, "secrets.apiKey")

        config = AdapterConfig(coinmarketcap_api_key="configured")
        calls = PriceFeed().providers(
            self.request("1", "bitcoin", "btc-bitcoin"), config
        )
        self.assertEqual(calls[0].query.headers["X-CMC_PRO_API_KEY"], "configured")

    def test_price_feed_paprika_key_from_config(self):
        request = self.request(
            "1", "bitcoin", "btc-bitcoin", secrets={"apiKey": "cmc-key"}
        )
        paprika = PriceFeed().providers(request, self.config)[2]
        self.assertEqual(paprika.query.headers, {})

        config = AdapterConfig(coinpaprika_api_key="paprika-key")
        paprika = PriceFeed().providers(request, config)[2]
        self.assertEqual(paprika.query.headers["Authorization"], "paprika-key")

    def test_price_feed_median(self):
        request = self.request("1", "bitcoin", "btc-bitcoin")
        self.assertEqual(PriceFeed().compute(request, [300, 100, 200]), 300)
        self.assertEqual(PriceFeed().compute(request, [100, 200]), 200)

    def test_missing_argument(self):
        with self.assertRaises(MissingParameter) as cm:
            CoinPrice().providers(
                self.request("1", secrets={"apiKey": "k"}), self.config
            )
        self.assertEqual(cm.exception.parameter, "args[1]")

    def test_ticker_coin(self):
        request = self.request(data={"quote": "EUR", "coinid": "BTC-Bitcoin"})
        (call,) = TickerCoin().providers(request, self.config)
        self.assertTrue(call.query.url.endswith("/v1/tickers/btc-bitcoin"))
        self.assertEqual(call.result_path, "quotes.EUR.price")
        self.assertIn("quote", TickerCoin.parameters)

    def test_country_info(self):
        source = CountryInfo()
        request = self.request("JP")
        (call,) = source.providers(request, self.config)
        self.assertEqual(call.query.data["variables"], {"code": "JP"})

        values = [{"country": {"name": "Japan", "capital": "Tokyo", "currency": "JPY"}}]
        self.assertEqual(
            source.compute(request, values),
            '{"name":"Japan","capital":"Tokyo","currency":"JPY"}',
        )
        with self.assertRaises(UpstreamError):
            source.compute(self.request("XX"), [{"country": None}])

    def test_data_feed(self):
        source = DataFeed()
        calls = source.providers(self.request(), self.config)
        self.assertEqual(len(calls), 3)
        self.assertEqual(calls[0].query.url, ETHEREUM_RPC_URL)
        self.assertEqual(calls[0].query.data["params"][0]["to"], BTC_USD_FEED)
        with self.assertRaises(TypeMismatch):
            source.providers(self.request("0x1234"), self.config)

        round_data = [110680464442257320000, 3456789000000, 1700000000, 1700000000, 1]
        data = source.compute(self.request(), [round_data, [8], ["BTC / USD"]])
        self.assertEqual(
            abi.decode(source.output_types, data),
            [3456789000000, 1700000000, 8, "BTC / USD"],
        )

    def test_geometric_mean(self):
        source = GeometricMean()
        self.assertAlmostEqual(source.compute(self.request("1", "2", "4"), []), 2.0)
        with self.assertRaises(TypeMismatch):
            source.compute(self.request("1", "two"), [])
        with self.assertRaises(MissingParameter):
            source.compute(self.request(), [])

    def test_sum(self):
        args = [str(i) for i in range(1, 10)]
        self.assertEqual(Sum().compute(self.request(*args), []), 45)
        self.assertEqual(Sum().compute(self.request("-5", "2"), []), -3)


if __name__ == "__main__":
    unittest.main()
