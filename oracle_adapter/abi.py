# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Fixed-width big-endian value codec used for on-chain responses.

Consumers of adapter responses are EVM contracts, so numbers are encoded the
way the Solidity ABI lays them out: one 32-byte big-endian word per value,
two's complement for signed integers. Dynamic values (``string``, ``bytes``)
are length-prefixed with a 32-byte word and right-padded to a word boundary.

The module contains:
- Serializer and Deserializer classes for single values
- ``encode``/``decode`` for ABI tuples with head/tail layout
- ``encode_hex``/``decode_hex`` for the textual wire format

Examples:
    Encoding a price with two decimals of precision::

        from oracle_adapter.abi import Serializer, encode_hex

        ser = Serializer()
        ser.uint256(1234567)
        encode_hex(ser.output())  # '0x00...12d687'

    Encoding a tuple the way ``abi.decode`` expects it on-chain::

        data = encode(["uint256", "string"], [42, "BTC / USD"])
        decode(["uint256", "string"], data)  # [42, 'BTC / USD']

Wire Format:
    An empty byte sequence is rendered as the reserved sentinel ``"0x0"``;
    anything else is ``"0x"`` followed by lowercase hex. The sentinel keeps
    "no data" distinguishable from a zero value, which is always a full
    32-byte word.
"""

from __future__ import annotations

import io
import re
import typing
import unittest
from typing import List

WORD = 32

MAX_U256 = 2**256 - 1
MAX_I256 = 2**255 - 1
MIN_I256 = -(2**255)

EMPTY_RESULT = "0x0"

_INT_TYPE = re.compile(r"^(u?)int(\d*)$")


class Deserializer:
    """Reads ABI words from a byte stream.

    Attributes:
        _input: Internal BytesIO stream for reading data.
        _length: Total length of the input data.
    """

    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        """Return the number of bytes left to read."""
        return self._length - self._input.tell()

    def bool(self) -> bool:
        value = self.uint256()
        if value == 0:
            return False
        elif value == 1:
            return True
        else:
            raise Exception("Unexpected boolean value: ", value)

    def fixed_bytes(self, length: int) -> bytes:
        return self._read(length)

    def to_bytes(self) -> bytes:
        """Read a length-prefixed byte string and skip its padding."""
        length = self.uint256()
        value = self._read(length)
        padding = -length % WORD
        if padding:
            self._read(padding)
        return value

    def str(self) -> str:
        return self.to_bytes().decode()

    def uint(self, bits: int = 256) -> int:
        value = self._read_word(signed=False)
        if value >= 2**bits:
            raise Exception(f"Value {value} does not fit uint{bits}")
        return value

    def int(self, bits: int = 256) -> int:
        value = self._read_word(signed=True)
        if not -(2 ** (bits - 1)) <= value < 2 ** (bits - 1):
            raise Exception(f"Value {value} does not fit int{bits}")
        return value

    def uint8(self) -> int:
        return self.uint(8)

    def uint256(self) -> int:
        return self.uint(256)

    def int256(self) -> int:
        return self.int(256)

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            error = (
                f"Unexpected end of input. Requested: {length}, found: {actual_length}"
            )
            raise Exception(error)
        return value

    def _read_word(self, signed: bool) -> int:
        return int.from_bytes(self._read(WORD), byteorder="big", signed=signed)


class Serializer:
    """Writes ABI words to a byte stream.

    Examples:
        Basic usage::

            ser = Serializer()
            ser.uint256(100)
            ser.int256(-1)
            data = ser.output()  # 64 bytes
    """

    _output: io.BytesIO

    def __init__(self):
        self._output = io.BytesIO()

    def output(self) -> bytes:
        return self._output.getvalue()

    def bool(self, value: bool):
        self._write_int(int(value), signed=False)

    def fixed_bytes(self, value: bytes):
        """Write raw bytes with no length prefix and no padding."""
        self._output.write(value)

    def to_bytes(self, value: bytes):
        """Write a 32-byte length word, the bytes, then zero padding."""
        self._write_int(len(value), signed=False)
        self._output.write(value)
        self._output.write(b"\x00" * (-len(value) % WORD))

    def str(self, value: str):
        self.to_bytes(value.encode())

    def uint(self, value: int, bits: int = 256):
        if value < 0 or value >= 2**bits:
            raise Exception(f"Cannot encode {value} into uint{bits}")
        self._write_int(value, signed=False)

    def int(self, value: int, bits: int = 256):
        if not -(2 ** (bits - 1)) <= value < 2 ** (bits - 1):
            raise Exception(f"Cannot encode {value} into int{bits}")
        self._write_int(value, signed=True)

    def uint8(self, value: int):
        self.uint(value, 8)

    def uint256(self, value: int):
        self.uint(value, 256)

    def int256(self, value: int):
        self.int(value, 256)

    def _write_int(self, value: int, signed: bool):
        self._output.write(value.to_bytes(WORD, "big", signed=signed))


def encoder(
    value: typing.Any, encoder: typing.Callable[[Serializer, typing.Any], typing.Any]
) -> bytes:
    """Encode a single value with the given Serializer method."""
    ser = Serializer()
    encoder(ser, value)
    return ser.output()


def is_dynamic(abi_type: str) -> bool:
    return abi_type in ("string", "bytes")


def _encode_static(ser: Serializer, abi_type: str, value: typing.Any):
    if abi_type == "bool":
        ser.bool(value)
        return
    match = _INT_TYPE.match(abi_type)
    if match is None:
        raise Exception(f"Unsupported ABI type: {abi_type}")
    bits = int(match.group(2) or 256)
    if match.group(1):
        ser.uint(int(value), bits)
    else:
        ser.int(int(value), bits)


def _decode_static(der: Deserializer, abi_type: str) -> typing.Any:
    if abi_type == "bool":
        return der.bool()
    match = _INT_TYPE.match(abi_type)
    if match is None:
        raise Exception(f"Unsupported ABI type: {abi_type}")
    bits = int(match.group(2) or 256)
    return der.uint(bits) if match.group(1) else der.int(bits)


def encode(types: List[str], values: List[typing.Any]) -> bytes:
    """ABI-encode a tuple of values.

    Static values sit in the head. Each dynamic value gets an offset word in
    the head and its length-prefixed content in the tail.
    """
    if len(types) != len(values):
        raise Exception(f"Expected {len(types)} values, got {len(values)}")

    head = Serializer()
    tail = Serializer()
    head_size = WORD * len(types)
    for abi_type, value in zip(types, values):
        if is_dynamic(abi_type):
            head.uint256(head_size + len(tail.output()))
            if abi_type == "string":
                tail.str(value)
            else:
                tail.to_bytes(value)
        else:
            _encode_static(head, abi_type, value)
    return head.output() + tail.output()


def decode(types: List[str], data: bytes) -> List[typing.Any]:
    """Decode an ABI tuple produced by :func:`encode` or an ``eth_call``."""
    der = Deserializer(data)
    values: List[typing.Any] = []
    for abi_type in types:
        if is_dynamic(abi_type):
            offset = der.uint256()
            tail = Deserializer(data[offset:])
            values.append(tail.str() if abi_type == "string" else tail.to_bytes())
        else:
            values.append(_decode_static(der, abi_type))
    return values


def encode_hex(data: bytes) -> str:
    """Render bytes in the wire format, using the sentinel for empty data."""
    if len(data) == 0:
        return EMPTY_RESULT
    return "0x" + data.hex()


def decode_hex(value: str) -> bytes:
    """Parse a wire hex string back into bytes."""
    if value in (EMPTY_RESULT, "0x", ""):
        return b""
    return bytes.fromhex(value.removeprefix("0x"))


class Test(unittest.TestCase):
    def test_uint256_is_big_endian_word(self):
        data = encoder(1234567, Serializer.uint256)
        self.assertEqual(len(data), WORD)
        self.assertEqual(data.hex(), "12d687".rjust(64, "0"))

    def test_uint256_rejects_negative(self):
        with self.assertRaises(Exception):
            encoder(-1, Serializer.uint256)

    def test_uint256_rejects_overflow(self):
        with self.assertRaises(Exception):
            encoder(MAX_U256 + 1, Serializer.uint256)

    def test_int256_twos_complement(self):
        data = encoder(-1, Serializer.int256)
        self.assertEqual(data, b"\xff" * WORD)
        self.assertEqual(Deserializer(data).int256(), -1)

    def test_int256_bounds(self):
        data = encoder(MIN_I256, Serializer.int256)
        self.assertEqual(Deserializer(data).int256(), MIN_I256)
        with self.assertRaises(Exception):
            encoder(MAX_I256 + 1, Serializer.int256)

    def test_str_is_length_prefixed_and_padded(self):
        data = encoder("hi", Serializer.str)
        self.assertEqual(len(data), 2 * WORD)
        self.assertEqual(data[:WORD], (2).to_bytes(WORD, "big"))
        self.assertEqual(data[WORD : WORD + 2], b"hi")
        self.assertEqual(Deserializer(data).str(), "hi")

    def test_tuple_layout(self):
        data = encode(["uint256", "string"], [1, "hi"])
        der = Deserializer(data)
        self.assertEqual(der.uint256(), 1)
        self.assertEqual(der.uint256(), 2 * WORD)
        self.assertEqual(der.str(), "hi")
        self.assertEqual(der.remaining(), 0)

    def test_tuple_decode(self):
        types = ["uint80", "int256", "uint256", "uint256", "uint80", "uint8", "string"]
        round_id = 18446744073709552000
        values = [round_id, -5, 1700000000, 1700000001, round_id, 8, "BTC / USD"]
        self.assertEqual(decode(types, encode(types, values)), values)

    def test_uint8_range(self):
        with self.assertRaises(Exception):
            encode(["uint8"], [256])

    def test_truncated_input(self):
        with self.assertRaises(Exception):
            Deserializer(b"\x00" * 31).uint256()

    def test_empty_sentinel(self):
        self.assertEqual(encode_hex(b""), "0x0")
        self.assertEqual(decode_hex("0x0"), b"")
        self.assertEqual(encode_hex(b"\x01\xff"), "0x01ff")
        self.assertEqual(decode_hex("0x01ff"), b"\x01\xff")


if __name__ == "__main__":
    unittest.main()
