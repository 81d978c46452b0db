"""Minimal ABI helpers for the handful of calls the engine makes.

Only the ERC-20 metadata/balance views and the Uniswap V3 factory and pool
views are needed, so calldata is assembled from fixed selectors and
``eth_abi`` instead of a full contract object.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from core.models import FailureReason, Result

LOGGER = logging.getLogger(__name__)

BALANCE_OF = "0x70a08231"
SYMBOL = "0x95d89b41"
NAME = "0x06fdde03"
DECIMALS = "0x313ce567"
GET_POOL = "0x1698ee82"  # getPool(address,address,uint24)
SLOT0 = "0x3850c7bd"
TOKEN0 = "0x0dfe1681"
TOKEN1 = "0xd21220a7"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _normalise(types: Sequence[str], args: Sequence[Any]) -> list:
    # eth_abi rejects mixed-case addresses with a bad checksum; lowercase is always valid.
    return [arg.lower() if kind == "address" and isinstance(arg, str) else arg for kind, arg in zip(types, args)]


def encode_call(selector: str, types: Sequence[str] = (), args: Sequence[Any] = ()) -> str:
    """Hex calldata for ``selector`` followed by ABI-encoded ``args``."""

    if not types:
        return selector
    return selector + encode(list(types), _normalise(types, args)).hex()


def balance_of_call(owner: str) -> str:
    return encode_call(BALANCE_OF, ["address"], [owner])


def get_pool_call(token_a: str, token_b: str, fee: int) -> str:
    return encode_call(GET_POOL, ["address", "address", "uint24"], [token_a, token_b, fee])


def eth_call_params(to: str, data: str, block: str = "latest") -> list:
    return [{"to": to, "data": data}, block]


def _hex_bytes(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError(f"expected hex string, got {type(value).__name__}")
    text = value[2:] if value.startswith(("0x", "0X")) else value
    if len(text) % 2:
        text = "0" + text
    return bytes.fromhex(text)


def decode_quantity(value: Any) -> Result:
    """Decode a JSON-RPC QUANTITY (``"0x1bc16d674ec80000"``) to int."""

    if isinstance(value, int):
        return Result.success(value)
    if not isinstance(value, str) or not value.startswith(("0x", "0X")):
        return Result.fail(FailureReason.MALFORMED, f"not a hex quantity: {value!r}")
    try:
        return Result.success(int(value, 16) if len(value) > 2 else 0)
    except ValueError:
        return Result.fail(FailureReason.MALFORMED, f"not a hex quantity: {value!r}")


def decode_uint(value: Any) -> Result:
    """Decode the first 32-byte word of ``eth_call`` output as uint256."""

    try:
        data = _hex_bytes(value)
        (number,) = decode(["uint256"], data[:32])
    except (ValueError, DecodingError) as exc:
        return Result.fail(FailureReason.MALFORMED, f"uint256: {exc}")
    return Result.success(int(number))


def decode_address(value: Any) -> Result:
    try:
        (address,) = decode(["address"], _hex_bytes(value)[:32])
    except (ValueError, DecodingError) as exc:
        return Result.fail(FailureReason.MALFORMED, f"address: {exc}")
    return Result.success(str(address).lower())


def decode_string(value: Any) -> Result:
    """Decode an ABI string, falling back to a null-padded bytes32 value."""

    try:
        data = _hex_bytes(value)
    except ValueError as exc:
        return Result.fail(FailureReason.MALFORMED, f"string: {exc}")
    if not data:
        return Result.fail(FailureReason.MALFORMED, "empty return data")
    try:
        (text,) = decode(["string"], data)
    except (DecodingError, UnicodeDecodeError, OverflowError):
        if len(data) != 32:
            return Result.fail(FailureReason.MALFORMED, "neither string nor bytes32")
        text = data.rstrip(b"\x00").decode("utf-8", errors="ignore")
        LOGGER.debug("Decoded bytes32 string %r", text)
    text = text.strip("\x00").strip()
    if not text:
        return Result.fail(FailureReason.MISSING_FIELD, "empty string")
    return Result.success(text)


def decode_sqrt_price(value: Any) -> Result:
    """``sqrtPriceX96`` from ``slot0()``; only the first word is read."""

    try:
        data = _hex_bytes(value)
        if len(data) < 32:
            raise ValueError("slot0 output shorter than one word")
        (sqrt_price,) = decode(["uint160"], data[:32])
    except (ValueError, DecodingError) as exc:
        return Result.fail(FailureReason.MALFORMED, f"slot0: {exc}")
    return Result.success(int(sqrt_price))


__all__ = [
    "BALANCE_OF",
    "DECIMALS",
    "GET_POOL",
    "NAME",
    "SLOT0",
    "SYMBOL",
    "TOKEN0",
    "TOKEN1",
    "ZERO_ADDRESS",
    "balance_of_call",
    "decode_address",
    "decode_quantity",
    "decode_sqrt_price",
    "decode_string",
    "decode_uint",
    "encode_call",
    "eth_call_params",
    "get_pool_call",
]
