# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy for the oracle adapter.

Every error the pipeline can surface derives from :class:`AdapterError`, which
carries a human-readable message and an HTTP-like status code. The message is
what the on-chain bridge hands back to the original requester, so it must be
self-explanatory and must never contain secret material.

Fatal errors terminate the pipeline with no partial output:

- MissingParameter: a required request field is absent
- TypeMismatch: a request field has the wrong primitive type
- UnknownSource: the requested source is not registered
- QueryLimitExceeded: more outbound calls than ``numAllowedQueries``
- QuorumNotMet: too few providers answered successfully
- ResponseTooLarge: the encoded result exceeds ``maxResponseBytes``
- Timeout: the overall request deadline passed

UpstreamError wraps a single provider failure. The fetcher recovers from it
locally and only escalates to QuorumNotMet when too many providers fail.
"""

from typing import List, Optional, Sequence


class AdapterError(Exception):
    """Base exception for every error raised by the adapter pipeline."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class MissingParameter(AdapterError):
    """A required parameter was not supplied under its name or any alias."""

    status_code = 400

    def __init__(self, parameter: str, message: Optional[str] = None):
        self.parameter = parameter
        super().__init__(message or f"{parameter} param is missing")


class TypeMismatch(AdapterError):
    """A parameter was supplied with the wrong primitive type."""

    status_code = 400

    def __init__(self, parameter: str, expected: str, message: Optional[str] = None):
        self.parameter = parameter
        self.expected = expected
        super().__init__(message or f"{parameter} param is not {expected}")


class UnknownSource(AdapterError):
    """The request names a source that is not registered with the adapter."""

    status_code = 404

    def __init__(self, source: str, supported: Sequence[str]):
        self.source = source
        self.supported = list(supported)
        super().__init__(
            f"source '{source}' is not supported. Supported sources: "
            f"{', '.join(self.supported)}"
        )


class QueryLimitExceeded(AdapterError):
    """An outbound call would exceed the request's query allowance."""

    status_code = 429

    def __init__(self, limit: int, requested: Optional[int] = None):
        self.limit = limit
        self.requested = requested
        if requested is None:
            message = f"exceeded numAllowedQueries ({limit})"
        else:
            message = f"{requested} queries requested, numAllowedQueries is {limit}"
        super().__init__(message)


class UpstreamError(AdapterError):
    """A single provider call failed.

    Non-fatal on its own; the fetcher records it and excludes the provider
    from aggregation.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        self.provider = provider
        super().__init__(message, status_code)

    def __str__(self) -> str:
        if self.provider:
            return f"{self.provider} error ({self.status_code}): {self.message}"
        return f"upstream error ({self.status_code}): {self.message}"


class QuorumNotMet(AdapterError):
    """Fewer providers succeeded than the quorum requires."""

    status_code = 502

    def __init__(
        self,
        successes: int,
        quorum: int,
        errors: Optional[List[UpstreamError]] = None,
    ):
        self.successes = successes
        self.quorum = quorum
        self.errors = list(errors or [])
        failed = len(self.errors)
        super().__init__(
            f"quorum not met: {successes} of {successes + failed} providers "
            f"succeeded, {quorum} required"
        )


class ResponseTooLarge(AdapterError):
    """The encoded response is larger than the request allows."""

    status_code = 413

    def __init__(self, size: int, limit: int, message: Optional[str] = None):
        self.size = size
        self.limit = limit
        super().__init__(message or f"returned result {size} bytes >{limit} bytes")


class Timeout(AdapterError):
    """The request did not complete before its deadline."""

    status_code = 504

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"request timed out after {seconds:g} seconds")
