"""Reduce a transaction history to the (contract, spender) pairs it approved."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Set

from approval_audit.abi import APPROVE_SELECTOR, decode_arguments, spender_from_word
from approval_audit.addresses import normalize_address, validate_format
from approval_audit.errors import MalformedCallData

logger = logging.getLogger("approval_audit")

Relationships = Dict[str, Set[str]]


def is_approve_call(call_data: str) -> bool:
    return call_data[:10].lower() == APPROVE_SELECTOR


def extract(owner: str, transactions: Iterable, skip_malformed: bool = False) -> Relationships:
    """Map each token contract the owner called approve() on to its spenders.

    Only successful transactions sent by ``owner`` count. The approved amount
    is ignored: the live allowance is queried later. With ``skip_malformed``
    a transaction whose call data cannot be decoded is logged and skipped;
    otherwise :class:`MalformedCallData` propagates and ends the run.
    """
    owner = normalize_address(owner)
    relationships: Relationships = {}
    for tx in transactions:
        if tx.is_error or not is_approve_call(tx.input):
            continue
        if not validate_format(tx.from_address) or normalize_address(tx.from_address) != owner:
            continue
        if not validate_format(tx.to_address):
            logger.warning(f"Skipping approve() without a valid target: {tx.hash or tx.input[:10]}")
            continue

        try:
            arguments = decode_arguments(tx.input)
            if len(arguments) < 2:
                raise MalformedCallData(tx.input, "approve() needs spender and amount")
        except MalformedCallData as e:
            if not skip_malformed:
                raise
            logger.warning(f"Skipping transaction {tx.hash}: {e}")
            continue

        contract = normalize_address(tx.to_address)
        relationships.setdefault(contract, set()).add(spender_from_word(arguments[0]))

    pairs = sum(len(spenders) for spenders in relationships.values())
    logger.info(f"Found {pairs} unique token/spender pairs across {len(relationships)} contracts")
    return relationships
