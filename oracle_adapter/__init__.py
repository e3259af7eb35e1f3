# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Oracle Adapter - external-adapter pipeline for bringing off-chain data on-chain.

An oracle node receives a request from a contract, runs it against one or
more off-chain APIs and hands a compact, fixed-format result back to the
contract. This package implements that request/response contract as three
composable stages:

- **Input Validator** (:mod:`oracle_adapter.validator`): checks the raw
  request against a declared parameter schema and produces an immutable
  request. No I/O.
- **Upstream Fetcher** (:mod:`oracle_adapter.fetcher`,
  :mod:`oracle_adapter.async_client`, :mod:`oracle_adapter.providers`): calls
  the providers concurrently, collects a result or an error per provider and
  applies the quorum.
- **Response Encoder** (:mod:`oracle_adapter.encoder`,
  :mod:`oracle_adapter.abi`): scales, rounds and encodes the result into the
  wire format, enforcing the response size limit.

:class:`~oracle_adapter.adapter.Adapter` wires the stages together for the
registered request programs in :mod:`oracle_adapter.sources`.

Quick Start:
    Running the multi-source price feed::

        import asyncio
        from oracle_adapter.adapter import Adapter
        from oracle_adapter.config import AdapterConfig
        from oracle_adapter.encoder import decode_result

        async def main():
            async with Adapter(AdapterConfig.from_env()) as adapter:
                response = await adapter.handle(
                    {
                        "source": "price-feed",
                        "args": ["1", "bitcoin", "btc-bitcoin"],
                        "secrets": {"apiKey": "..."},
                    }
                )
                if response.ok:
                    print(decode_result(response.result, "uint256") / 100)
                else:
                    print(response.error)

        asyncio.run(main())

    From the command line::

        python -m oracle_adapter sources
        python -m oracle_adapter run --source sum --arg 1 --arg 2

Limits:
    - ``numAllowedQueries``: outbound calls per request, checked before any
      call is issued
    - ``maxResponseBytes``: size of the encoded result, checked after encoding
    - Per-call timeout, URL length and response body size on every call
    - One overall deadline for all calls of a request

Errors:
    Every failure is an :class:`~oracle_adapter.exceptions.AdapterError` with a
    human-readable message and an HTTP-like status code. A single provider
    failing is not fatal as long as the quorum is met.

Security Considerations:
    - **Secrets**: Request secrets and configured API keys never appear in log
      lines or error messages
    - **No code execution**: Requests name registered sources; they never carry
      code to run

Requirements:
    - Python 3.9 or higher
    - httpx (with HTTP/2 support) for outbound calls

License:
    Apache License 2.0
"""
