# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Normalization and encoding of computed results into the on-chain wire format.

The encoder is the last stage of the pipeline and the only place where the
response size limit is checked. It is synchronous and performs no I/O.

Return types:
    - ``uint256``: the value scaled by ``10**decimals``, rounded half up, as one
      32-byte big-endian word
    - ``int256``: as above, two's complement
    - ``string``: raw UTF-8 bytes, no length prefix
    - ``bytes``: passed through unchanged

Rounding follows JavaScript's ``Math.round`` (``floor(x + 0.5)``) so that
``-1.5`` becomes ``-1``, not ``-2``, and ``2.5`` becomes ``3``, not ``2``.
Scaling is done on :class:`~decimal.Decimal` built from ``str(value)``, so
``12345.67`` at two decimals is exactly ``1234567``.

Examples:
    Encoding a price::

        encoder = ResponseEncoder(config)
        result = encoder.encode(12345.67, ReturnType.UINT256, decimals=2)
        result.hex()  # '0x00...12d687'
        decode_result(result.hex(), ReturnType.UINT256)  # 1234567
"""

import unittest
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Any, Optional, Union

from . import abi
from .config import AdapterConfig
from .exceptions import ResponseTooLarge, TypeMismatch


class ReturnType(str, Enum):
    UINT256 = "uint256"
    INT256 = "int256"
    STRING = "string"
    BYTES = "bytes"

    @property
    def numeric(self) -> bool:
        return self in (ReturnType.UINT256, ReturnType.INT256)


@dataclass(frozen=True)
class EncodedResult:
    """The encoded bytes of a response."""

    data: bytes

    def __len__(self) -> int:
        return len(self.data)

    def hex(self) -> str:
        return abi.encode_hex(self.data)


def to_integer(value: Any, decimals: int = 0) -> int:
    """Scale ``value`` by ``10**decimals`` and round half up.

    :raises TypeMismatch: If ``value`` is not a finite number.
    """
    if isinstance(value, bool):
        raise TypeMismatch("result", "a number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise TypeMismatch("result", "a number") from None
    if not number.is_finite():
        raise TypeMismatch("result", "a finite number")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = number.scaleb(decimals) + Decimal("0.5")
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


class ResponseEncoder:
    """Turns computed values into :class:`EncodedResult` objects."""

    def __init__(self, config: AdapterConfig):
        self.config = config

    def encode(
        self,
        value: Any,
        return_type: Union[ReturnType, str],
        decimals: int = 0,
        max_response_bytes: Optional[int] = None,
    ) -> EncodedResult:
        """Encode ``value`` as ``return_type``.

        :param value: The computed result.
        :param return_type: How to lay the value out on the wire.
        :param decimals: Decimal places kept for numeric return types.
        :param max_response_bytes: Size limit for the encoded bytes; defaults to
            ``config.default_max_response_bytes``.
        :raises TypeMismatch: If the value does not fit ``return_type``.
        :raises ResponseTooLarge: If the encoded bytes exceed the limit.
        """
        return_type = ReturnType(return_type)
        if max_response_bytes is None:
            max_response_bytes = self.config.default_max_response_bytes

        if return_type is ReturnType.UINT256:
            number = to_integer(value, decimals)
            if not 0 <= number <= abi.MAX_U256:
                raise TypeMismatch("result", "a uint256")
            data = abi.encoder(number, abi.Serializer.uint256)
        elif return_type is ReturnType.INT256:
            number = to_integer(value, decimals)
            if not abi.MIN_I256 <= number <= abi.MAX_I256:
                raise TypeMismatch("result", "an int256")
            data = abi.encoder(number, abi.Serializer.int256)
        elif return_type is ReturnType.STRING:
            if not isinstance(value, str):
                raise TypeMismatch("result", "a string")
            data = value.encode("utf-8")
        else:
            if not isinstance(value, (bytes, bytearray)):
                raise TypeMismatch("result", "bytes")
            data = bytes(value)

        if len(data) > max_response_bytes:
            raise ResponseTooLarge(len(data), max_response_bytes)
        return EncodedResult(data)


def decode_result(value: str, return_type: Union[ReturnType, str]) -> Any:
    """Decode a wire hex string produced by :meth:`ResponseEncoder.encode`.

    The empty sentinel decodes to ``0``, ``""`` or ``b""``.
    """
    return_type = ReturnType(return_type)
    data = abi.decode_hex(value)
    if return_type.numeric:
        if not data:
            return 0
        if len(data) != abi.WORD:
            raise ValueError(
                f"expected {abi.WORD} bytes for {return_type.value}, found {len(data)}"
            )
        der = abi.Deserializer(data)
        if return_type is ReturnType.UINT256:
            return der.uint256()
        return der.int256()
    if return_type is ReturnType.STRING:
        return data.decode("utf-8")
    return data


class Test(unittest.TestCase):
    def setUp(self):
        self.encoder = ResponseEncoder(AdapterConfig())

    def test_price_with_decimals(self):
        result = self.encoder.encode(12345.67, ReturnType.UINT256, decimals=2)
        self.assertEqual(len(result), 32)
        self.assertEqual(int.from_bytes(result.data, "big"), 1234567)
        self.assertEqual(decode_result(result.hex(), ReturnType.UINT256), 1234567)

    def test_float_artifacts(self):
        # 1.005 * 100 is 100.49999999999999 in binary floating point.
        result = self.encoder.encode(1.005, "uint256", decimals=2)
        self.assertEqual(decode_result(result.hex(), "uint256"), 101)

    def test_half_up_rounding(self):
        self.assertEqual(to_integer(2.5), 3)
        self.assertEqual(to_integer(-1.5), -1)
        self.assertEqual(to_integer(-2.6), -3)
        self.assertEqual(to_integer("34567.891", 2), 3456789)

    def test_int256(self):
        result = self.encoder.encode(-42, ReturnType.INT256)
        self.assertEqual(result.data, b"\xff" * 31 + b"\xd6")
        self.assertEqual(decode_result(result.hex(), ReturnType.INT256), -42)

    def test_uint256_rejects_negative(self):
        with self.assertRaises(TypeMismatch):
            self.encoder.encode(-0.01, ReturnType.UINT256, decimals=2)
        with self.assertRaises(TypeMismatch):
            self.encoder.encode(2**256, ReturnType.UINT256)

    def test_not_a_number(self):
        for value in ("abc", None, True, float("nan"), float("inf")):
            with self.assertRaises(TypeMismatch):
                self.encoder.encode(value, ReturnType.UINT256)

    def test_string(self):
        result = self.encoder.encode("München", ReturnType.STRING)
        self.assertEqual(result.data, "München".encode())
        self.assertEqual(decode_result(result.hex(), ReturnType.STRING), "München")
        with self.assertRaises(TypeMismatch):
            self.encoder.encode(12, ReturnType.STRING)

    def test_empty_result(self):
        result = self.encoder.encode("", ReturnType.STRING)
        self.assertEqual(result.hex(), "0x0")
        self.assertEqual(self.encoder.encode(b"", ReturnType.BYTES).hex(), "0x0")
        self.assertEqual(decode_result("0x0", ReturnType.BYTES), b"")
        self.assertEqual(decode_result("0x0", ReturnType.UINT256), 0)

    def test_decode_partial_word(self):
        for value in ("0x01", "0x" + "00" * 33):
            with self.assertRaises(ValueError):
                decode_result(value, ReturnType.UINT256)

    def test_zero_is_not_empty(self):
        result = self.encoder.encode(0, ReturnType.UINT256)
        self.assertEqual(result.hex(), "0x" + "00" * 32)

    def test_response_too_large(self):
        with self.assertRaises(ResponseTooLarge) as cm:
            self.encoder.encode("x" * 257, ReturnType.STRING)
        self.assertEqual(cm.exception.size, 257)
        self.assertEqual(cm.exception.limit, 256)

        self.encoder.encode(b"x" * 300, ReturnType.BYTES, max_response_bytes=300)
        with self.assertRaises(ResponseTooLarge):
            self.encoder.encode(1, ReturnType.UINT256, max_response_bytes=31)

    def test_unknown_return_type(self):
        with self.assertRaises(ValueError):
            self.encoder.encode(1, "uint8")


if __name__ == "__main__":
    unittest.main()
