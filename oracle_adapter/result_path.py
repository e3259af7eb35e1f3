# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Result paths: locating the value of interest inside a provider payload.

A path is a dotted locator with optional bracketed list indexes::

    quotes.USD.price
    data.1.quote.USD.price      # "1" is a dict key here
    result[0].players[2].name

A segment is looked up as a key on mappings and as an integer index on lists,
so numeric segments work for both.
"""

import re
import unittest
from typing import Any, List, Mapping, Sequence, Union

_SEGMENT = re.compile(r"^([^\[\]]*)((?:\[-?\d+\])*)$")
_INDEX = re.compile(r"\[(-?\d+)\]")


class ResultPathError(LookupError):
    """The path does not resolve against the payload."""

    def __init__(self, path: str, segment: Union[str, int]):
        super().__init__(f"result path '{path}' not found at '{segment}'")
        self.path = path
        self.segment = segment


def parse(path: str) -> List[Union[str, int]]:
    """Split a path into key and index segments."""
    if not path:
        return []
    segments: List[Union[str, int]] = []
    for part in path.split("."):
        match = _SEGMENT.match(part)
        if match is None:
            raise ValueError(f"Invalid result path: {path}")
        key, indexes = match.groups()
        if key:
            segments.append(key)
        segments.extend(int(index) for index in _INDEX.findall(indexes))
    return segments


def get(payload: Any, path: str) -> Any:
    """Resolve ``path`` against ``payload``.

    :raises ResultPathError: If any segment is missing.
    """
    value = payload
    for segment in parse(path):
        if isinstance(value, Mapping):
            key = str(segment)
            if key not in value:
                raise ResultPathError(path, segment)
            value = value[key]
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            try:
                value = value[int(segment)]
            except (ValueError, IndexError):
                raise ResultPathError(path, segment) from None
        else:
            raise ResultPathError(path, segment)
    return value


class Test(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse("quotes.USD.price"), ["quotes", "USD", "price"])
        self.assertEqual(parse("result[0].players[2]"), ["result", 0, "players", 2])
        self.assertEqual(parse(""), [])

    def test_numeric_key_on_mapping(self):
        payload = {"data": {"1": {"quote": {"USD": {"price": 34567.89}}}}}
        self.assertEqual(get(payload, "data.1.quote.USD.price"), 34567.89)

    def test_numeric_segment_on_list(self):
        payload = {"result": [{"price": 1}, {"price": 2}]}
        self.assertEqual(get(payload, "result.1.price"), 2)
        self.assertEqual(get(payload, "result[0].price"), 1)

    def test_missing(self):
        with self.assertRaises(ResultPathError):
            get({"quotes": {"USD": {}}}, "quotes.USD.price")
        with self.assertRaises(ResultPathError):
            get({"result": []}, "result[0]")
        with self.assertRaises(ResultPathError):
            get({"price": "1"}, "price.value")

    def test_empty_path_returns_payload(self):
        self.assertEqual(get("0x1234", ""), "0x1234")


if __name__ == "__main__":
    unittest.main()
