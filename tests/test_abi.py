import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fake_node import abi_string, bytes32_string, word_address, word_uint

from connectors.abi import (
    BALANCE_OF,
    balance_of_call,
    decode_address,
    decode_quantity,
    decode_sqrt_price,
    decode_string,
    decode_uint,
    encode_call,
    get_pool_call,
)
from core.models import FailureReason


def test_balance_of_calldata_layout():
    owner = "0xAbCdEf0000000000000000000000000000000001"
    data = balance_of_call(owner)
    assert data.startswith(BALANCE_OF)
    assert len(data) == 10 + 64
    assert data.endswith("abcdef0000000000000000000000000000000001")


def test_get_pool_calldata_has_three_words():
    data = get_pool_call("0x" + "11" * 20, "0x" + "22" * 20, 3000)
    assert len(data) == 10 + 3 * 64
    assert data.endswith(format(3000, "064x"))


def test_encode_call_without_args_is_the_selector():
    assert encode_call("0x313ce567") == "0x313ce567"


def test_decode_quantity():
    assert decode_quantity("0x1bc16d674ec80000").value == 2 * 10**18
    assert decode_quantity("0x").value == 0
    assert decode_quantity(7).value == 7
    assert decode_quantity("12").failure.reason is FailureReason.MALFORMED
    assert decode_quantity(None).failure.reason is FailureReason.MALFORMED


def test_decode_uint_and_address():
    assert decode_uint(word_uint(1500)).value == 1500
    assert decode_uint("0x").failure.reason is FailureReason.MALFORMED
    address = "0x" + "ab" * 20
    assert decode_address(word_address(address)).value == address


def test_decode_string_handles_abi_and_bytes32():
    assert decode_string(abi_string("USDC")).value == "USDC"
    assert decode_string(bytes32_string("MKR")).value == "MKR"
    assert decode_string(bytes32_string("")).failure.reason is FailureReason.MISSING_FIELD
    assert decode_string("0x").failure.reason is FailureReason.MALFORMED
    assert decode_string("0x1234").failure.reason is FailureReason.MALFORMED


def test_decode_sqrt_price_reads_first_word():
    sqrt_price = 2**96
    data = word_uint(sqrt_price) + "00" * 32
    assert decode_sqrt_price(data).value == sqrt_price
    assert decode_sqrt_price("0x00").failure.reason is FailureReason.MALFORMED
