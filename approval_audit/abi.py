"""Hand-rolled ABI helpers.

Selectors are precomputed so no Keccak implementation is needed. See
https://docs.soliditylang.org/en/latest/abi-spec.html#function-selector
"""

from __future__ import annotations

import re
from typing import List

from approval_audit.errors import MalformedCallData

APPROVE_SELECTOR = "0x095ea7b3"    # keccak("approve(address,uint256)")[:4]
ALLOWANCE_SELECTOR = "0xdd62ed3e"  # keccak("allowance(address,address)")[:4]
DECIMALS_SELECTOR = "0x313ce567"   # keccak("decimals()")[:4]
NAME_SELECTOR = "0x06fdde03"       # keccak("name()")[:4]

WORD_HEX_LENGTH = 64
SELECTOR_HEX_LENGTH = 8

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def strip_prefix(value: str) -> str:
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def pad_hex(value: str, length: int = WORD_HEX_LENGTH) -> str:
    """Left pad a hex string (without 0x) with zeros to the specified length."""
    return value.rjust(length, "0")


def build_call_data(function_selector: str, *args: str) -> str:
    """Construct call data for a function selector and address arguments.

    Arguments are hex strings with or without the `0x` prefix. Each one is
    left padded to 32 bytes (64 hex chars) as required by the ABI.
    """
    encoded = strip_prefix(function_selector)
    for arg in args:
        encoded += pad_hex(strip_prefix(arg).lower())
    return "0x" + encoded


def decode_arguments(call_data: str) -> List[str]:
    """Split method call data into its 32-byte argument words.

    The first 4 bytes are the method selector and are skipped. The remainder
    must be a positive multiple of 64 hex characters.
    """
    body = strip_prefix(call_data)
    if not _HEX_RE.match(body):
        raise MalformedCallData(call_data, "not a hex string")
    arguments = body[SELECTOR_HEX_LENGTH:]
    if len(arguments) < WORD_HEX_LENGTH:
        raise MalformedCallData(call_data, "shorter than one 32-byte argument")
    if len(arguments) % WORD_HEX_LENGTH:
        raise MalformedCallData(call_data, "arguments are not 32-byte aligned")
    return [
        arguments[i:i + WORD_HEX_LENGTH].lower()
        for i in range(0, len(arguments), WORD_HEX_LENGTH)
    ]


def encode_address(address: str) -> str:
    """Left-pad an address into one ABI word (no 0x prefix)."""
    return pad_hex(strip_prefix(address).lower())


def spender_from_word(word: str) -> str:
    """Take the low-order 20 bytes of an address word."""
    return "0x" + word[WORD_HEX_LENGTH - 40:].lower()


def parse_uint256(data: str) -> int:
    """Decode the first 32-byte word of eth_call return data as an integer."""
    body = strip_prefix(data)
    if len(body) < WORD_HEX_LENGTH:
        raise ValueError(f"return data too short for uint256: {data!r}")
    return int(body[:WORD_HEX_LENGTH], 16)


def parse_uint8(data: str) -> int:
    value = parse_uint256(data)
    if value > 0xFF:
        raise ValueError(f"value does not fit in uint8: {value}")
    return value


def decode_string(data: str) -> str:
    """Decode an ABI-encoded dynamic string returned from eth_call.

    Layout is offset word, length word, then the UTF-8 bytes padded to a
    word boundary.
    """
    body = strip_prefix(data)
    if len(body) < 2 * WORD_HEX_LENGTH:
        raise ValueError(f"return data too short for string: {data!r}")
    offset = int(body[:WORD_HEX_LENGTH], 16) * 2
    length = int(body[offset:offset + WORD_HEX_LENGTH], 16) * 2
    start = offset + WORD_HEX_LENGTH
    raw = body[start:start + length]
    if len(raw) != length:
        raise ValueError("string data truncated")
    return bytes.fromhex(raw).decode("utf-8", errors="replace")
