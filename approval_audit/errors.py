"""Error types raised while auditing approvals.

Validation and history failures are fatal for the whole run. Query failures
are attached to the contract they belong to and reported inline.
"""

from __future__ import annotations

from typing import Optional


class AuditError(Exception):
    """Base class for every error the auditor raises on purpose."""


class ConfigError(AuditError):
    pass


class InvalidAddressFormat(AuditError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"address is not in the correct format: {address!r}")


class NonEOAOwner(AuditError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"address is a contract, not an EOA: {address}")


class MalformedCallData(AuditError):
    def __init__(self, call_data: str, reason: str) -> None:
        self.call_data = call_data
        self.reason = reason
        super().__init__(f"malformed call data ({reason}): {call_data[:74]}")


class TransactionHistoryFetchFailed(AuditError):
    def __init__(self, address: str, cause: Exception) -> None:
        self.address = address
        self.cause = cause
        super().__init__(f"failed to fetch transactions for {address}: {cause}")


class QueryFailed(AuditError):
    """A read against one token contract failed."""

    def __init__(self, contract: str, cause: Exception, message: Optional[str] = None) -> None:
        self.contract = contract
        self.cause = cause
        super().__init__(message or f"query failed for {contract}: {cause}")


class MetadataQueryFailed(QueryFailed):
    def __init__(self, contract: str, field: str, cause: Exception) -> None:
        self.field = field
        super().__init__(
            contract, cause, f"error querying {field} for contract-addr={contract}; err={cause}"
        )


class AllowanceQueryFailed(QueryFailed):
    def __init__(self, contract: str, spender: str, cause: Exception) -> None:
        self.spender = spender
        super().__init__(
            contract,
            cause,
            f"error querying allowance for contract-addr={contract}, "
            f"spender-addr={spender}; err={cause}",
        )


class RPCError(RuntimeError):
    """JSON-RPC transport or protocol failure."""


class ExplorerError(RuntimeError):
    """Block explorer API failure."""
