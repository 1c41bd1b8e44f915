"""Address syntax checks and the EOA gate for the audited owner."""

from __future__ import annotations

import re

from approval_audit.errors import InvalidAddressFormat, NonEOAOwner

_ADDRESS_RE = re.compile(r"^(0x)?[0-9a-f]{40}$")


def validate_format(address: str) -> bool:
    """Return True if ``address`` is 40 hex digits, optionally 0x-prefixed.

    The check ignores case, so checksummed and lower-case forms agree.
    """
    return bool(_ADDRESS_RE.match(address.strip().lower()))


def normalize_address(address: str) -> str:
    """Return the canonical lower-case ``0x`` form of an address.

    Every address used as a dictionary key goes through here so that the
    same account in different cases never produces two entries.
    """
    if not validate_format(address):
        raise InvalidAddressFormat(address)
    address = address.strip().lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return address


async def is_externally_owned(rpc, address: str) -> bool:
    """Return True if no code is deployed at ``address``."""
    code = await rpc.get_code(normalize_address(address))
    return not code or code in ("0x", "0x0")


async def require_eoa(rpc, address: str) -> str:
    """Validate ``address`` as an audit owner and return its canonical form."""
    owner = normalize_address(address)
    if not await is_externally_owned(rpc, owner):
        raise NonEOAOwner(owner)
    return owner
