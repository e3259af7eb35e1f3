# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Validation of request configurations before they are sent on-chain.

A request configuration is what a consumer prepares off-chain to describe the
request its contract will send: the source to run, its arguments and
credentials, the limits, and the return type the contract expects. Checking
it locally catches mistakes before any transaction is paid for.

Example configuration::

    {
        "codeLocation": "inline",
        "codeLanguage": "python",
        "source": "price-feed",
        "args": ["1", "bitcoin", "btc-bitcoin"],
        "secrets": {"apiKey": "..."},
        "expectedReturnType": "uint256"
    }

``"Buffer"`` is accepted as a synonym of ``"bytes"`` for configurations
written for the JavaScript toolkit.
"""

import unittest
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from .encoder import ReturnType
from .exceptions import TypeMismatch
from .validator import ParameterType

_RETURN_TYPES = {"Buffer": ReturnType.BYTES}
_RETURN_TYPES.update({return_type.value: return_type for return_type in ReturnType})


@dataclass(frozen=True)
class RequestConfig:
    source: str
    args: Tuple[str, ...] = ()
    secrets: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), repr=False
    )
    secrets_urls: Tuple[str, ...] = ()
    num_allowed_queries: Optional[int] = None
    max_response_bytes: Optional[int] = None
    expected_return_type: Optional[ReturnType] = None


def is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL:
        return False
    return url.scheme in ("http", "https") and bool(url.host)


def _check(config: Mapping[str, Any], key: str, expected: ParameterType):
    value = config.get(key)
    if value is not None and not expected.accepts(value):
        message = f"{key} is not correctly specified in config"
        raise TypeMismatch(key, expected.value, message)


def validate_request_config(config: Mapping[str, Any]) -> RequestConfig:
    """Check a request configuration.

    :raises TypeMismatch: Naming the first field that is not correctly
        specified.
    """
    if not isinstance(config, Mapping):
        raise TypeMismatch("config", "an object")
    if config.get("codeLocation", "inline") != "inline":
        raise TypeMismatch(
            "codeLocation",
            "inline",
            "codeLocation is not correctly specified in config",
        )
    if config.get("codeLanguage", "python") != "python":
        raise TypeMismatch(
            "codeLanguage",
            "python",
            "codeLanguage is not correctly specified in config",
        )
    if not isinstance(config.get("source"), str):
        raise TypeMismatch(
            "source", "a string", "source is not correctly specified in config"
        )
    _check(config, "args", ParameterType.STRING_ARRAY)
    _check(config, "secrets", ParameterType.STRING_MAP)
    _check(config, "numAllowedQueries", ParameterType.INTEGER)
    _check(config, "maxResponseBytes", ParameterType.INTEGER)

    secrets_urls = config.get("secretsURLs") or []
    if not isinstance(secrets_urls, list):
        raise TypeMismatch(
            "secretsURLs",
            "a list",
            "secretsURLs array is not correctly specified in config",
        )
    for url in secrets_urls:
        if not is_http_url(url):
            raise TypeMismatch(
                "secretsURLs",
                "HTTP or HTTPS URLs",
                f"invalid HTTP or HTTPs URL {url} in secretsURLs specified in config",
            )

    return_type = config.get("expectedReturnType")
    if return_type is not None:
        if not isinstance(return_type, str) or return_type not in _RETURN_TYPES:
            raise TypeMismatch(
                "expectedReturnType",
                ", ".join(_RETURN_TYPES),
                "expectedReturnType is not correctly specified in config",
            )
        return_type = _RETURN_TYPES[return_type]

    return RequestConfig(
        source=config["source"],
        args=tuple(config.get("args") or ()),
        secrets=MappingProxyType(dict(config.get("secrets") or {})),
        secrets_urls=tuple(secrets_urls),
        num_allowed_queries=config.get("numAllowedQueries"),
        max_response_bytes=config.get("maxResponseBytes"),
        expected_return_type=return_type,
    )


def build_request(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate ``config`` and return the inbound request it produces."""
    validated = validate_request_config(config)
    request: Dict[str, Any] = {"source": validated.source}
    if validated.args:
        request["args"] = list(validated.args)
    return request


class Test(unittest.TestCase):
    def config(self, **overrides) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "codeLocation": "inline",
            "codeLanguage": "python",
            "source": "price-feed",
            "args": ["1", "bitcoin", "btc-bitcoin"],
            "secrets": {"apiKey": "k"},
            "expectedReturnType": "uint256",
        }
        config.update(overrides)
        return config

    def test_valid(self):
        validated = validate_request_config(self.config(numAllowedQueries=3))
        self.assertEqual(validated.source, "price-feed")
        self.assertEqual(validated.args, ("1", "bitcoin", "btc-bitcoin"))
        self.assertEqual(validated.num_allowed_queries, 3)
        self.assertIs(validated.expected_return_type, ReturnType.UINT256)
        self.assertNotIn("'k'", repr(validated))

    def test_buffer_alias(self):
        validated = validate_request_config(self.config(expectedReturnType="Buffer"))
        self.assertIs(validated.expected_return_type, ReturnType.BYTES)

    def test_invalid_fields(self):
        cases = {
            "codeLocation": "remote",
            "codeLanguage": "javascript",
            "source": 1,
            "args": ["1", 2],
            "secrets": {"apiKey": 1},
            "numAllowedQueries": 1.5,
            "maxResponseBytes": "256",
            "expectedReturnType": "uint8",
            "secretsURLs": ["ftp://example.com/secrets"],
        }
        for key, value in cases.items():
            with self.assertRaises(TypeMismatch) as cm:
                validate_request_config(self.config(**{key: value}))
            self.assertEqual(cm.exception.parameter, key)
            self.assertIn(key, str(cm.exception))

    def test_secrets_urls(self):
        urls = ["https://gist.example.com/raw/secrets.json", "http://localhost:8080/s"]
        validated = validate_request_config(self.config(secretsURLs=urls))
        self.assertEqual(validated.secrets_urls, tuple(urls))

    def test_build_request(self):
        self.assertEqual(
            build_request(self.config()),
            {"source": "price-feed", "args": ["1", "bitcoin", "btc-bitcoin"]},
        )
        self.assertEqual(build_request({"source": "sum"}), {"source": "sum"})


if __name__ == "__main__":
    unittest.main()
