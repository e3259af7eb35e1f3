import typing

from behave import given, then, use_step_matcher

from oracle_adapter import abi
from oracle_adapter.encoder import decode_result

# Use regular expressions
use_step_matcher("re")


@given(r"number (?P<input_value>\S+)")
def given_number(context: typing.Any, input_value: str):
    context.input = parse_number(input_value)


@given(r'string "(?P<input_value>.*)"')
def given_string(context: typing.Any, input_value: str):
    context.input = input_value


@given(r"wire value (?P<input_value>0x[0-9a-fA-F]*)")
def given_wire_value(context: typing.Any, input_value: str):
    context.input = input_value


@given(r"tuple \((?P<types>[^)]*)\) of \[(?P<values>.*)\]")
def given_tuple(context: typing.Any, types: str, values: str):
    context.types = types.split(",")
    context.input = [
        parse_value(abi_type, value)
        for abi_type, value in zip(context.types, values.split(","))
    ]


@then(r"the result should be (?P<length>\d+) bytes long")
def then_length(context: typing.Any, length: str):
    assert len(context.output) == int(length), (
        "Expected " + length + " bytes but got " + str(len(context.output))
    )


@then(r"the result should be hex (?P<expected_value>0x[0-9a-fA-F]*)")
def then_hex(context: typing.Any, expected_value: str):
    actual = abi.encode_hex(context.output)
    assert actual == expected_value, (
        "Expected " + expected_value + " but got " + actual
    )


@then(r"the result should decode as (?P<return_type>\w+) (?P<expected_value>\S+)")
def then_decodes_as(context: typing.Any, return_type: str, expected_value: str):
    actual = decode_result(abi.encode_hex(context.output), return_type)
    assert actual == parse_number(expected_value), (
        "Expected " + expected_value + " but got " + str(actual)
    )


@then(r"the decoded value should be bytes (?P<expected_value>0x[0-9a-fA-F]*)")
def then_decoded_bytes(context: typing.Any, expected_value: str):
    expected = bytes.fromhex(expected_value.removeprefix("0x"))
    assert context.decoded == expected, (
        "Expected " + expected_value + " but got " + str(context.decoded)
    )


@then(r"encoding should fail with (?P<error>\w+)")
def then_error(context: typing.Any, error: str):
    assert context.error is not None, "Expected " + error + " but encoding succeeded"
    assert type(context.error).__name__ == error, (
        "Expected " + error + " but got " + type(context.error).__name__
    )


def parse_number(input_value: str) -> typing.Union[int, float]:
    if "." in input_value:
        return float(input_value)
    return int(input_value)


def parse_value(abi_type: str, input_value: str) -> typing.Any:
    if abi_type == "string":
        return input_value
    if abi_type == "bool":
        return input_value == "true"
    return int(input_value)
