# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous HTTP transport for upstream data providers.

:class:`QueryClient` owns one pooled ``httpx.AsyncClient`` shared by every
request the adapter serves. Each adapter request gets its own
:class:`QueryBudget`, which enforces ``numAllowedQueries``: the budget refuses
a call before it is issued, never after.

Limits:
    - Per-call timeout defaults to ``config.query_timeout`` and may not exceed
      ``config.max_query_timeout``
    - URLs longer than ``config.max_url_length`` are refused
    - Response bodies larger than ``config.max_content_length`` are refused

Errors:
    Any failure of a single call (HTTP status >= 400, transport error, timeout,
    oversized body, limit violation) raises :class:`UpstreamError`. The caller
    decides whether that failure is fatal. The transport never retries.

Secrets:
    Log lines show the method and the URL without its query string. Error
    messages have every secret value replaced with ``***``.

Examples:
    Issue one JSON query::

        async with QueryClient(config) as client:
            budget = QueryBudget(request.num_allowed_queries)
            payload = await client.query(
                HttpQuery(
                    url="https://api.coingecko.com/api/v3/simple/price",
                    params={"ids": "bitcoin", "vs_currencies": "usd"},
                ),
                budget,
            )
"""

import json
import logging
import unittest
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import httpx

from .config import AdapterConfig
from .exceptions import QueryLimitExceeded, UpstreamError
from .log import LOGGER_NAME
from .metadata import Metadata

logger = logging.getLogger(LOGGER_NAME)

REDACTED = "***"


@dataclass(frozen=True)
class HttpQuery:
    """The shape of one outbound call.

    Headers and query parameters are excluded from ``repr`` since they
    commonly carry API keys.
    """

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict, repr=False)
    params: Mapping[str, Any] = field(default_factory=dict, repr=False)
    data: Any = None
    timeout: Optional[float] = None

    def redacted_url(self) -> str:
        """The URL with its query string removed, safe to log."""
        return self.url.split("?", 1)[0]


class QueryBudget:
    """Counts outbound calls for one adapter request."""

    limit: int
    used: int

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def take(self):
        """Reserve one call.

        :raises QueryLimitExceeded: If the budget is spent; nothing is issued.
        """
        if self.used >= self.limit:
            raise QueryLimitExceeded(self.limit)
        self.used += 1

    @property
    def remaining(self) -> int:
        return self.limit - self.used


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value occurring in ``text``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class QueryClient:
    """Pooled async HTTP client for provider calls.

    Attributes:
        client: Underlying HTTP client with connection pooling
        config: Adapter configuration carrying the transport limits
    """

    client: httpx.AsyncClient
    config: AdapterConfig

    def __init__(
        self,
        config: AdapterConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        :param config: Adapter configuration.
        :param transport: Optional httpx transport, e.g. ``httpx.MockTransport``
            in tests.
        """
        self.config = config
        # Default limits
        limits = httpx.Limits()
        # Per-call timeouts come from each query; do not set a pool timeout so
        # calls wait for a connection as long as the overall deadline allows.
        timeout = httpx.Timeout(config.query_timeout, pool=None)
        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        self.client = httpx.AsyncClient(
            http2=config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self):
        """Close the underlying HTTP client connection."""
        await self.client.aclose()

    async def __aenter__(self) -> "QueryClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def query(
        self,
        query: HttpQuery,
        budget: Optional[QueryBudget] = None,
        secrets: Iterable[str] = (),
    ) -> Any:
        """Issue one call and return its decoded body.

        :param query: The call to make.
        :param budget: The request's query budget; one unit is taken before
            anything else happens.
        :param secrets: Secret values to scrub from error messages.
        :return: The JSON-decoded body, or the text body if it is not JSON.
        :raises QueryLimitExceeded: If the budget is spent.
        :raises UpstreamError: If the call fails for any reason.
        """
        if budget is not None:
            budget.take()

        secrets = tuple(secrets)
        timeout = query.timeout or self.config.query_timeout
        if timeout > self.config.max_query_timeout:
            raise UpstreamError(
                f"HTTP request timeout >{self.config.max_query_timeout:g} seconds", 400
            )
        if len(query.url) > self.config.max_url_length:
            raise UpstreamError(
                f"HTTP request URL length >{self.config.max_url_length}", 400
            )

        method = query.method.upper()
        logger.debug(f"{method} {query.redacted_url()}")
        body_args: dict = {}
        if isinstance(query.data, (str, bytes)):
            body_args["content"] = query.data
        elif query.data is not None:
            body_args["json"] = query.data

        try:
            async with self.client.stream(
                method,
                query.url,
                params=self._params(query.params),
                headers=dict(query.headers),
                timeout=timeout,
                **body_args,
            ) as response:
                body = await self._read(response)
                if response.status_code >= 400:
                    text = body.decode(errors="replace")[:256]
                    raise UpstreamError(
                        redact(f"{text} - {query.redacted_url()}", secrets),
                        response.status_code,
                    )
        except httpx.TimeoutException:
            raise UpstreamError(
                f"{method} {query.redacted_url()} timed out after {timeout:g} seconds",
                504,
            ) from None
        except httpx.HTTPError as e:
            raise UpstreamError(
                redact(f"{method} {query.redacted_url()} failed: {e}", secrets), 502
            ) from None

        return self._decode(body)

    async def _read(self, response: httpx.Response) -> bytes:
        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            size += len(chunk)
            if size > self.config.max_content_length:
                raise UpstreamError(
                    f"response body >{self.config.max_content_length} bytes", 502
                )
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _params(params: Mapping[str, Any]) -> Mapping[str, Any]:
        return {key: val for key, val in params.items() if val is not None}

    @staticmethod
    def _decode(body: bytes) -> Any:
        text = body.decode(errors="replace")
        try:
            return json.loads(text)
        except ValueError:
            return text


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = AdapterConfig(max_content_length=1024)
        self.requests = []

    def client(self, handler) -> QueryClient:
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        return QueryClient(self.config, transport=httpx.MockTransport(recording))

    async def test_json_query(self):
        client = self.client(lambda request: httpx.Response(200, json={"usd": 1.5}))
        payload = await client.query(
            HttpQuery(
                url="https://api.example.com/price",
                params={"ids": "bitcoin", "skip": None},
                headers={"X-Key": "k"},
            )
        )
        await client.close()

        self.assertEqual(payload, {"usd": 1.5})
        request = self.requests[0]
        self.assertEqual(request.url.params["ids"], "bitcoin")
        self.assertNotIn("skip", request.url.params)
        self.assertEqual(request.headers["X-Key"], "k")
        self.assertTrue(
            request.headers[Metadata.CLIENT_HEADER].startswith("oracle-adapter/")
        )

    async def test_post_json_body(self):
        client = self.client(lambda request: httpx.Response(200, text="plain"))
        payload = await client.query(
            HttpQuery(url="https://api.example.com/", method="post", data={"q": 1})
        )
        await client.close()

        self.assertEqual(payload, "plain")
        self.assertEqual(self.requests[0].method, "POST")
        self.assertEqual(json.loads(self.requests[0].content), {"q": 1})

    async def test_error_status_is_redacted(self):
        client = self.client(
            lambda request: httpx.Response(401, text="bad key sekrit-123")
        )
        with self.assertRaises(UpstreamError) as cm:
            await client.query(
                HttpQuery(url="https://api.example.com/?APIkey=sekrit-123"),
                secrets=["sekrit-123"],
            )
        await client.close()

        self.assertEqual(cm.exception.status_code, 401)
        self.assertNotIn("sekrit-123", str(cm.exception))
        self.assertIn(REDACTED, str(cm.exception))

    async def test_budget(self):
        client = self.client(lambda request: httpx.Response(200, json={}))
        budget = QueryBudget(1)
        await client.query(HttpQuery(url="https://api.example.com/"), budget)
        with self.assertRaises(QueryLimitExceeded):
            await client.query(HttpQuery(url="https://api.example.com/"), budget)
        await client.close()

        self.assertEqual(len(self.requests), 1)
        self.assertEqual(budget.remaining, 0)

    async def test_limits(self):
        client = self.client(lambda request: httpx.Response(200, content=b"x" * 2048))
        with self.assertRaises(UpstreamError):
            await client.query(HttpQuery(url="https://api.example.com/", timeout=10))
        with self.assertRaises(UpstreamError):
            await client.query(HttpQuery(url="https://api.example.com/" + "a" * 2048))
        self.assertEqual(self.requests, [])

        with self.assertRaises(UpstreamError) as cm:
            await client.query(HttpQuery(url="https://api.example.com/"))
        await client.close()
        self.assertIn("response body", str(cm.exception))

    async def test_transport_errors(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        def stall(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client = self.client(refuse)
        with self.assertRaises(UpstreamError) as cm:
            await client.query(HttpQuery(url="https://api.example.com/"))
        self.assertEqual(cm.exception.status_code, 502)
        await client.close()

        client = self.client(stall)
        with self.assertRaises(UpstreamError) as cm:
            await client.query(HttpQuery(url="https://api.example.com/"))
        self.assertEqual(cm.exception.status_code, 504)
        await client.close()

    def test_redacted_url(self):
        query = HttpQuery(url="https://api.example.com/football/?APIkey=s&met=Teams")
        self.assertEqual(query.redacted_url(), "https://api.example.com/football/")


if __name__ == "__main__":
    unittest.main()
