# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Input validation for adapter requests.

Inbound requests arrive as loosely typed JSON objects. This module checks them
once, at the boundary, against a :class:`ParameterSchema` and produces an
immutable :class:`Request`. Later stages never re-validate.

Every request shares :data:`REQUEST_SCHEMA`::

    {
        source: string,
        args?: string[],
        secrets?: {string: string},
        requestId?: string,
        numAllowedQueries?: integer,
        maxResponseBytes?: integer,
    }

Sources declare extra named parameters (with aliases) and extend the schema::

    schema = REQUEST_SCHEMA.extend(
        ParameterSchema(
            Parameter("quote", ParameterType.STRING, aliases=("to", "market")),
            Parameter("coinid", ParameterType.STRING, aliases=("id", "name")),
        )
    )
    request = Validator(config).validate(raw, schema)
    request.data["quote"]

Validation performs no I/O and never logs secret values.
"""

import unittest
from dataclasses import FrozenInstanceError, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from .config import AdapterConfig
from .exceptions import (
    MissingParameter,
    QueryLimitExceeded,
    ResponseTooLarge,
    TypeMismatch,
)


class ParameterType(str, Enum):
    STRING = "a string"
    INTEGER = "an integer"
    NUMBER = "a number"
    BOOLEAN = "a boolean"
    STRING_ARRAY = "a string array"
    STRING_MAP = "a string map"

    def accepts(self, value: Any) -> bool:
        if self is ParameterType.STRING:
            return isinstance(value, str)
        if self is ParameterType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if self is ParameterType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self is ParameterType.BOOLEAN:
            return isinstance(value, bool)
        if self is ParameterType.STRING_ARRAY:
            return isinstance(value, (list, tuple)) and all(
                isinstance(item, str) for item in value
            )
        return isinstance(value, Mapping) and all(
            isinstance(key, str) and isinstance(item, str)
            for key, item in value.items()
        )


@dataclass(frozen=True)
class Parameter:
    """One declared request parameter."""

    name: str
    type: ParameterType
    required: bool = False
    aliases: Tuple[str, ...] = ()
    default: Any = None
    description: str = ""

    @property
    def keys(self) -> Tuple[str, ...]:
        return (self.name,) + tuple(self.aliases)


class ParameterSchema:
    """An ordered, immutable set of parameters."""

    _parameters: Tuple[Parameter, ...]

    def __init__(self, *parameters: Parameter):
        names = [parameter.name for parameter in parameters]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate parameter names in {names}")
        self._parameters = tuple(parameters)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __contains__(self, name: object) -> bool:
        return any(parameter.name == name for parameter in self._parameters)

    def extend(self, other: "ParameterSchema") -> "ParameterSchema":
        """Return a new schema with ``other``'s parameters appended."""
        return ParameterSchema(*self._parameters, *other._parameters)


REQUEST_SCHEMA = ParameterSchema(
    Parameter(
        "source",
        ParameterType.STRING,
        required=True,
        description="Name of the registered source to run",
    ),
    Parameter("args", ParameterType.STRING_ARRAY, description="Positional arguments"),
    Parameter(
        "secrets", ParameterType.STRING_MAP, description="Provider credentials"
    ),
    Parameter("requestId", ParameterType.STRING, description="Correlation id"),
    Parameter(
        "numAllowedQueries",
        ParameterType.INTEGER,
        description="Maximum number of outbound calls",
    ),
    Parameter(
        "maxResponseBytes",
        ParameterType.INTEGER,
        description="Maximum size of the encoded result",
    ),
)

_STANDARD = {parameter.name for parameter in REQUEST_SCHEMA}


@dataclass(frozen=True)
class Request:
    """A validated request. Immutable for the rest of the pipeline."""

    source: str
    num_allowed_queries: int
    max_response_bytes: int
    args: Tuple[str, ...] = ()
    secrets: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), repr=False
    )
    request_id: Optional[str] = None
    data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def secret_values(self) -> Tuple[str, ...]:
        return tuple(value for value in self.secrets.values() if value)


class Validator:
    """Checks raw requests against a schema.

    Unset ``numAllowedQueries`` and ``maxResponseBytes`` fall back to the
    configured defaults. Values above the configured ceilings are refused.
    """

    def __init__(self, config: AdapterConfig):
        self.config = config

    def validate(
        self, raw: Mapping[str, Any], schema: ParameterSchema = REQUEST_SCHEMA
    ) -> Request:
        """Validate ``raw`` and return an immutable :class:`Request`.

        :raises MissingParameter: A required parameter is absent.
        :raises TypeMismatch: A parameter has the wrong type.
        :raises QueryLimitExceeded: ``numAllowedQueries`` is above the ceiling.
        :raises ResponseTooLarge: ``maxResponseBytes`` is above the ceiling.
        """
        if not isinstance(raw, Mapping):
            raise TypeMismatch("request", "an object")

        values: Dict[str, Any] = {}
        for parameter in schema:
            value = self._lookup(raw, parameter)
            if value is None:
                if parameter.required:
                    raise MissingParameter(parameter.name)
                value = parameter.default
            elif not parameter.type.accepts(value):
                raise TypeMismatch(parameter.name, parameter.type.value)
            values[parameter.name] = value

        num_allowed_queries = self._limit(
            values.get("numAllowedQueries"),
            "numAllowedQueries",
            self.config.default_max_http_queries,
        )
        if num_allowed_queries > self.config.max_http_queries:
            raise QueryLimitExceeded(self.config.max_http_queries, num_allowed_queries)

        max_response_bytes = self._limit(
            values.get("maxResponseBytes"),
            "maxResponseBytes",
            self.config.default_max_response_bytes,
        )
        if max_response_bytes > self.config.max_response_bytes:
            raise ResponseTooLarge(
                max_response_bytes,
                self.config.max_response_bytes,
                f"maxResponseBytes {max_response_bytes} exceeds the "
                f"{self.config.max_response_bytes} byte ceiling",
            )

        data = {
            name: value for name, value in values.items() if name not in _STANDARD
        }
        return Request(
            source=values["source"],
            num_allowed_queries=num_allowed_queries,
            max_response_bytes=max_response_bytes,
            args=tuple(values.get("args") or ()),
            secrets=MappingProxyType(dict(values.get("secrets") or {})),
            request_id=values.get("requestId"),
            data=MappingProxyType(data),
        )

    @staticmethod
    def _lookup(raw: Mapping[str, Any], parameter: Parameter) -> Any:
        for key in parameter.keys:
            if raw.get(key) is not None:
                return raw[key]
        return None

    @staticmethod
    def _limit(value: Optional[int], name: str, default: int) -> int:
        # Zero means unset.
        if not value:
            return default
        if value < 0:
            raise TypeMismatch(name, "a positive integer")
        return value


class Test(unittest.TestCase):
    def setUp(self):
        self.config = AdapterConfig(
            default_max_http_queries=5,
            max_http_queries=10,
            default_max_response_bytes=256,
            max_response_bytes=1024,
        )
        self.validator = Validator(self.config)

    def test_minimal_request(self):
        request = self.validator.validate({"source": "price-feed"})
        self.assertEqual(request.source, "price-feed")
        self.assertEqual(request.args, ())
        self.assertEqual(dict(request.secrets), {})
        self.assertIsNone(request.request_id)
        self.assertEqual(request.num_allowed_queries, 5)
        self.assertEqual(request.max_response_bytes, 256)

    def test_full_request(self):
        request = self.validator.validate(
            {
                "source": "price-feed",
                "args": ["1", "bitcoin", "btc-bitcoin"],
                "secrets": {"apiKey": "k"},
                "requestId": "0xabc",
                "numAllowedQueries": 3,
                "maxResponseBytes": 512,
            }
        )
        self.assertEqual(request.args, ("1", "bitcoin", "btc-bitcoin"))
        self.assertEqual(request.secrets["apiKey"], "k")
        self.assertEqual(request.request_id, "0xabc")
        self.assertEqual(request.num_allowed_queries, 3)
        self.assertEqual(request.max_response_bytes, 512)

    def test_missing_source(self):
        with self.assertRaises(MissingParameter) as cm:
            self.validator.validate({"args": ["1"]})
        self.assertEqual(cm.exception.parameter, "source")
        self.assertEqual(str(cm.exception), "source param is missing")

    def test_source_not_string(self):
        with self.assertRaises(TypeMismatch) as cm:
            self.validator.validate({"source": 42})
        self.assertEqual(cm.exception.parameter, "source")

    def test_request_id_not_string(self):
        with self.assertRaises(TypeMismatch) as cm:
            self.validator.validate({"source": "sum", "requestId": 7})
        self.assertEqual(cm.exception.parameter, "requestId")

    def test_num_allowed_queries_not_integer(self):
        for value in (2.5, "3", True):
            with self.assertRaises(TypeMismatch) as cm:
                self.validator.validate({"source": "sum", "numAllowedQueries": value})
            self.assertEqual(cm.exception.parameter, "numAllowedQueries")

    def test_negative_limit(self):
        with self.assertRaises(TypeMismatch):
            self.validator.validate({"source": "sum", "maxResponseBytes": -1})

    def test_zero_limit_uses_default(self):
        request = self.validator.validate({"source": "sum", "numAllowedQueries": 0})
        self.assertEqual(request.num_allowed_queries, 5)

    def test_args_not_string_array(self):
        for value in ("1,2", ["1", 2], {"a": "b"}):
            with self.assertRaises(TypeMismatch) as cm:
                self.validator.validate({"source": "sum", "args": value})
            self.assertEqual(cm.exception.parameter, "args")

    def test_secrets_not_string_map(self):
        for value in (["k"], {"apiKey": 1}, "k"):
            with self.assertRaises(TypeMismatch) as cm:
                self.validator.validate({"source": "sum", "secrets": value})
            self.assertEqual(cm.exception.parameter, "secrets")

    def test_ceilings(self):
        with self.assertRaises(QueryLimitExceeded):
            self.validator.validate({"source": "sum", "numAllowedQueries": 11})
        with self.assertRaises(ResponseTooLarge):
            self.validator.validate({"source": "sum", "maxResponseBytes": 2048})

    def test_not_a_mapping(self):
        with self.assertRaises(TypeMismatch):
            self.validator.validate(["source"])  # type: ignore[arg-type]

    def test_aliases_and_defaults(self):
        schema = REQUEST_SCHEMA.extend(
            ParameterSchema(
                Parameter("quote", ParameterType.STRING, True, ("to", "market")),
                Parameter("coinid", ParameterType.STRING, True, ("id", "name")),
                Parameter("decimals", ParameterType.INTEGER, default=2),
            )
        )
        request = self.validator.validate(
            {"source": "ticker-coin", "market": "EUR", "id": "btc-bitcoin"}, schema
        )
        self.assertEqual(request.data["quote"], "EUR")
        self.assertEqual(request.data["coinid"], "btc-bitcoin")
        self.assertEqual(request.data["decimals"], 2)

        with self.assertRaises(MissingParameter) as cm:
            self.validator.validate({"source": "ticker-coin", "to": "EUR"}, schema)
        self.assertEqual(cm.exception.parameter, "coinid")

    def test_duplicate_parameter(self):
        with self.assertRaises(ValueError):
            REQUEST_SCHEMA.extend(
                ParameterSchema(Parameter("args", ParameterType.STRING))
            )

    def test_immutable(self):
        request = self.validator.validate(
            {"source": "sum", "secrets": {"apiKey": "k"}, "args": ["1"]}
        )
        with self.assertRaises(FrozenInstanceError):
            request.source = "other"  # type: ignore[misc]
        with self.assertRaises(TypeError):
            request.secrets["apiKey"] = "x"  # type: ignore[index]
        with self.assertRaises(TypeError):
            request.data["x"] = 1  # type: ignore[index]

    def test_repr_hides_secrets(self):
        request = self.validator.validate(
            {"source": "sum", "secrets": {"apiKey": "super-secret"}}
        )
        self.assertNotIn("super-secret", repr(request))


if __name__ == "__main__":
    unittest.main()
