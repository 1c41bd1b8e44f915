#!/usr/bin/env python3
"""
approval_audit.py
=================

Report the live ERC-20 allowances a wallet has granted.

The wallet's normal-transaction history is read from an Etherscan-style
explorer and every successful ``approve(address,uint256)`` call it sent is
decoded to find the (token contract, spender) pairs. The current allowance
for each pair is then read from a JSON-RPC node, scaled by the token's
decimals and printed per contract::

    [Token Name] 0x<contract>
      * 0x<spender> - 1.5

Contracts whose reads fail are reported inline as ``[Error] ...`` without
affecting the others. Nothing is ever signed or sent.

The explorer API key is read from ``ETHERSCAN_API_KEY``; the Etherscan V2
endpoint serves every supported ``--chain`` with that one key.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from typing import List, Optional

from approval_audit.addresses import normalize_address, require_eoa
from approval_audit.clients import ERC20Reader, EthereumRPC, ExplorerClient
from approval_audit.config import CHAIN_CONFIGS, DEFAULT_CHAIN, DEFAULT_CHUNK_SIZE, AuditConfig
from approval_audit.errors import (
    AuditError,
    ExplorerError,
    RPCError,
    TransactionHistoryFetchFailed,
)
from approval_audit.extractor import extract
from approval_audit.models import AllowanceReport
from approval_audit.querier import AllowanceQuerier, make_limiter
from approval_audit.report import export_report, render_report

logger = logging.getLogger("approval_audit")


async def run_audit(
    config: AuditConfig,
    owner: str,
    explorer: ExplorerClient,
    rpc: EthereumRPC,
) -> List[AllowanceReport]:
    """Run the whole pipeline for ``owner`` and return the per-contract report.

    Raises the fatal :class:`AuditError` subclasses; per-contract query
    failures are returned as report entries instead.
    """
    owner = await require_eoa(rpc, owner)

    logger.info(f"Fetching transaction history for {owner} on {config.chain.name}")
    try:
        transactions = await asyncio.to_thread(explorer.list_transactions, owner)
    except ExplorerError as e:
        raise TransactionHistoryFetchFailed(owner, e) from e
    logger.info(f"Fetched {len(transactions)} transactions")

    relationships = extract(owner, transactions, skip_malformed=config.skip_malformed)
    querier = AllowanceQuerier(
        ERC20Reader(rpc),
        owner,
        make_limiter(config.chunk_size, config.max_concurrency),
    )
    return await querier.query_all(relationships)


async def _audit(config: AuditConfig, owner: str) -> List[AllowanceReport]:
    explorer = ExplorerClient(
        config.chain.explorer_api,
        config.api_key,
        config.chain.chain_id,
        timeout=config.timeout,
    )
    async with EthereumRPC(config.rpc_url, timeout=config.timeout) as rpc:
        return await run_audit(config, owner, explorer, rpc)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="approval-audit",
        description="Check the approvals and live allowances a wallet has granted to token spenders.",
    )
    parser.add_argument(
        "-a",
        "--wallet-address",
        dest="address",
        required=True,
        help="Wallet address to audit (0x...).",
    )
    parser.add_argument(
        "--chain",
        choices=sorted(CHAIN_CONFIGS),
        default=DEFAULT_CHAIN,
        help=f"Chain to audit (default: {DEFAULT_CHAIN}).",
    )
    parser.add_argument(
        "--rpc",
        default=None,
        help="Override the chain's default JSON-RPC endpoint.",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help=f"Contracts queried concurrently per batch (default: {DEFAULT_CHUNK_SIZE}).",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        help="Use a sliding window of at most N contracts in flight instead of batches.",
    )
    parser.add_argument(
        "--skip-malformed",
        action="store_true",
        help="Skip approve() transactions with undecodable call data instead of aborting.",
    )
    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Export results to a file (.json or .csv).",
    )
    parser.add_argument(
        "--timing",
        action="store_true",
        help="Print elapsed wall-clock time after the report.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    start = time.perf_counter()
    try:
        owner = normalize_address(args.address)
        config = AuditConfig.from_env(
            args.chain,
            rpc_url=args.rpc,
            chunk_size=args.chunk_size,
            max_concurrency=args.max_concurrency,
            skip_malformed=args.skip_malformed,
        )
        reports = asyncio.run(_audit(config, owner))
    except (AuditError, RPCError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    render_report(reports)
    if args.export:
        try:
            export_report(reports, args.export)
        except (OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    if args.timing:
        print(f"(elapsed = {time.perf_counter() - start:.2f} secs)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
