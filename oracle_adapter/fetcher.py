# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Concurrent fan-out to upstream providers with a quorum policy.

:class:`Fetcher` launches one task per provider, waits until every task has
settled or the request deadline passes, and only then applies the quorum:

- Each call is independent. A failed provider becomes a
  :class:`~oracle_adapter.providers.ProviderResponse` carrying its
  :class:`~oracle_adapter.exceptions.UpstreamError`; its siblings carry on.
- If fewer providers succeed than the quorum requires, the whole fetch fails
  with :class:`~oracle_adapter.exceptions.QuorumNotMet`.
- If the deadline passes, outstanding calls are cancelled and the fetch fails
  with :class:`~oracle_adapter.exceptions.Timeout`, even if enough providers
  had already answered.
- Asking for more providers than ``numAllowedQueries`` fails with
  :class:`~oracle_adapter.exceptions.QueryLimitExceeded` before any call is
  issued.

Examples:
    Median-of-quorum price::

        fetcher = Fetcher(config, client)
        responses = await fetcher.fetch(request, providers, quorum=2)
        prices = [response.value for response in responses if response.ok]
"""

import asyncio
import unittest
from typing import Any, List, Optional, Sequence

import httpx

from .async_client import HttpQuery, QueryBudget, QueryClient
from .config import AdapterConfig
from .exceptions import QueryLimitExceeded, QuorumNotMet, Timeout, UpstreamError
from .log import request_logger
from .providers import Provider, ProviderResponse, coingecko
from .validator import Request


class Fetcher:
    """Issues provider calls for a validated request."""

    config: AdapterConfig
    client: QueryClient

    def __init__(self, config: AdapterConfig, client: QueryClient):
        self.config = config
        self.client = client

    async def fetch(
        self,
        request: Request,
        providers: Sequence[Provider],
        quorum: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[ProviderResponse]:
        """Call every provider concurrently and collect the responses.

        :param request: The validated request; supplies the query allowance,
            the secrets to keep out of logs and the correlation id.
        :param providers: The calls to make.
        :param quorum: Minimum number of successful providers. Defaults to all.
        :param timeout: Overall deadline in seconds; defaults to
            ``config.request_timeout``.
        :return: One response per provider, in provider order.
        :raises QueryLimitExceeded: More providers than ``numAllowedQueries``.
        :raises QuorumNotMet: Too few providers succeeded.
        :raises Timeout: The deadline passed first.
        """
        log = request_logger(request.request_id)
        if len(providers) > request.num_allowed_queries:
            raise QueryLimitExceeded(request.num_allowed_queries, len(providers))
        if quorum is None:
            quorum = len(providers)
        if quorum > len(providers):
            raise ValueError(f"quorum {quorum} exceeds {len(providers)} providers")
        if not providers:
            return []

        timeout = self.config.request_timeout if timeout is None else timeout
        budget = QueryBudget(request.num_allowed_queries)
        secrets = request.secret_values() + self.config.secret_values()
        calls = [self._call(provider, budget, secrets) for provider in providers]
        try:
            outputs = await asyncio.wait_for(
                asyncio.gather(*calls, return_exceptions=True), timeout
            )
        except asyncio.TimeoutError:
            log.error(f"{len(providers)} provider calls timed out after {timeout:g}s")
            raise Timeout(timeout) from None

        responses = []
        for provider, output in zip(providers, outputs):
            if isinstance(output, UpstreamError):
                log.warning(str(output))
                responses.append(ProviderResponse(provider.name, error=output))
            elif isinstance(output, BaseException):
                raise output
            else:
                log.debug(f"{provider.name} responded")
                responses.append(ProviderResponse(provider.name, value=output))

        errors = [response.error for response in responses if response.error]
        successes = len(responses) - len(errors)
        if successes < quorum:
            raise QuorumNotMet(successes, quorum, errors)
        return responses

    async def _call(
        self, provider: Provider, budget: QueryBudget, secrets: Sequence[str]
    ) -> Any:
        try:
            payload = await self.client.query(provider.query, budget, secrets)
        except UpstreamError as e:
            e.provider = provider.name
            raise
        return provider.extract(payload)


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = AdapterConfig(request_timeout=0.5)
        self.calls = []
        self.failing = set()

    async def asyncTearDown(self):
        await self.client.close()

    def fetcher(self, handler=None) -> Fetcher:
        def respond(request: httpx.Request) -> httpx.Response:
            self.calls.append(request)
            coin = request.url.params["ids"]
            if coin in self.failing:
                return httpx.Response(500, text=f"{coin} unavailable")
            return httpx.Response(200, json={coin: {"usd": len(self.calls) * 100}})

        transport = httpx.MockTransport(handler or respond)
        self.client = QueryClient(self.config, transport=transport)
        return Fetcher(self.config, self.client)

    def request(self, **overrides) -> Request:
        values = dict(
            source="price-feed", num_allowed_queries=5, max_response_bytes=256
        )
        values.update(overrides)
        return Request(**values)

    def providers(self) -> List[Provider]:
        return [coingecko(coin, "USD") for coin in ("bitcoin", "ether", "dogecoin")]

    async def test_all_succeed(self):
        responses = await self.fetcher().fetch(self.request(), self.providers())
        self.assertEqual(len(self.calls), 3)
        self.assertTrue(all(response.ok for response in responses))
        self.assertEqual(
            sorted(response.value for response in responses), [100, 200, 300]
        )

    async def test_one_failure_meets_quorum(self):
        self.failing = {"ether"}
        fetcher = self.fetcher()
        with self.assertLogs("oracle_adapter", "WARNING") as logs:
            responses = await fetcher.fetch(
                self.request(), self.providers(), quorum=2
            )
        self.assertEqual([response.ok for response in responses], [True, False, True])
        self.assertEqual(responses[1].error.provider, "CoinGecko")
        self.assertEqual(responses[1].error.status_code, 500)
        self.assertIn("ether unavailable", logs.output[0])

    async def test_two_failures_miss_quorum(self):
        self.failing = {"ether", "dogecoin"}
        with self.assertRaises(QuorumNotMet) as cm:
            await self.fetcher().fetch(self.request(), self.providers(), quorum=2)
        self.assertEqual(cm.exception.successes, 1)
        self.assertEqual(cm.exception.quorum, 2)
        self.assertEqual(len(cm.exception.errors), 2)
        self.assertEqual(len(self.calls), 3)

    async def test_default_quorum_is_all(self):
        self.failing = {"dogecoin"}
        with self.assertRaises(QuorumNotMet):
            await self.fetcher().fetch(self.request(), self.providers())

    async def test_query_limit_checked_before_io(self):
        fetcher = self.fetcher()
        with self.assertRaises(QueryLimitExceeded):
            await fetcher.fetch(self.request(num_allowed_queries=2), self.providers())
        self.assertEqual(self.calls, [])

    async def test_timeout_discards_partial_results(self):
        async def slow(request: httpx.Request) -> httpx.Response:
            self.calls.append(request)
            coin = request.url.params["ids"]
            if coin == "dogecoin":
                await asyncio.sleep(5)
            return httpx.Response(200, json={coin: {"usd": 1}})

        fetcher = self.fetcher(slow)
        with self.assertRaises(Timeout):
            await fetcher.fetch(self.request(), self.providers(), quorum=2, timeout=0.1)

    async def test_secrets_stay_out_of_logs(self):
        def reject(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, text=f"invalid key {request.headers['X-Key']}")

        fetcher = self.fetcher(reject)
        keyed = Provider(
            name="Keyed",
            query=HttpQuery(
                url="https://api.example.com/", headers={"X-Key": "sekrit"}
            ),
        )
        request = self.request(secrets={"apiKey": "sekrit"})
        with self.assertLogs("oracle_adapter", "WARNING") as logs:
            with self.assertRaises(QuorumNotMet):
                await fetcher.fetch(request, [keyed])
        self.assertNotIn("sekrit", "".join(logs.output))

    async def test_no_providers(self):
        self.assertEqual(await self.fetcher().fetch(self.request(), []), [])


if __name__ == "__main__":
    unittest.main()
