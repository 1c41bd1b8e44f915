from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Union

from approval_audit.errors import QueryFailed


@dataclass(frozen=True)
class Transaction:
    """One normal transaction as listed by the block explorer."""

    from_address: str
    to_address: str
    is_error: bool
    input: str
    hash: str = ""

    @classmethod
    def from_explorer(cls, item: Dict) -> "Transaction":
        return cls(
            from_address=item.get("from") or "",
            to_address=item.get("to") or "",
            is_error=str(item.get("isError") or "0") == "1",
            input=item.get("input") or "0x",
            hash=item.get("hash") or "",
        )


@dataclass(frozen=True)
class TokenMeta:
    name: str
    decimals: int


@dataclass
class ContractAllowances:
    """Current allowances of one token contract, keyed by spender."""

    address: str
    name: str
    decimals: int
    spender_allowances: Dict[str, float] = field(default_factory=dict)
    raw_allowances: Dict[str, int] = field(default_factory=dict)

    def as_records(self) -> list:
        """Return one dict per spender for export/serialization."""
        return [
            {
                "token": self.address,
                "token_name": self.name,
                "decimals": self.decimals,
                "spender": spender,
                "allowance": str(self.raw_allowances[spender]),
                "allowance_readable": self.spender_allowances[spender],
                "error": "",
            }
            for spender in self.spender_allowances
        ]


@dataclass
class ContractFailure:
    address: str
    error: QueryFailed

    @property
    def message(self) -> str:
        return str(self.error)

    def as_records(self) -> list:
        return [
            {
                "token": self.address,
                "token_name": "",
                "decimals": "",
                "spender": "",
                "allowance": "",
                "allowance_readable": "",
                "error": self.message,
            }
        ]


AllowanceReport = Union[ContractAllowances, ContractFailure]
