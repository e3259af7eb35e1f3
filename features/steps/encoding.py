import typing

from behave import then, use_step_matcher, when

from oracle_adapter import abi
from oracle_adapter.config import AdapterConfig
from oracle_adapter.encoder import ResponseEncoder, decode_result
from oracle_adapter.exceptions import AdapterError

# Use regular expressions
use_step_matcher("re")


@when(
    r"I encode as (?P<return_type>\w+)"
    r"(?: with (?P<decimals>\d+) decimals)?"
    r"(?: within (?P<limit>\d+) bytes)?"
)
def when_encode(
    context: typing.Any,
    return_type: str,
    decimals: typing.Optional[str],
    limit: typing.Optional[str],
):
    encoder = ResponseEncoder(AdapterConfig())
    context.output = None
    context.error = None
    try:
        result = encoder.encode(
            context.input,
            return_type,
            int(decimals or 0),
            int(limit) if limit else None,
        )
        context.output = result.data
    except AdapterError as e:
        context.error = e


@when(r"I decode as (?P<return_type>\w+)")
def when_decode(context: typing.Any, return_type: str):
    context.decoded = decode_result(context.input, return_type)


@when(r"I ABI-encode the tuple")
def when_abi_encode(context: typing.Any):
    context.output = abi.encode(context.types, context.input)


@then(r"decoding the tuple should give back the input")
def then_tuple_round_trip(context: typing.Any):
    decoded = abi.decode(context.types, context.output)
    assert decoded == context.input, (
        "Expected " + str(context.input) + " but got " + str(decoded)
    )
