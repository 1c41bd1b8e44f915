"""Text report and file export."""

from __future__ import annotations

import csv
import json
import logging
import sys
from decimal import Decimal
from typing import List, Optional, TextIO

from approval_audit.models import AllowanceReport, ContractFailure

logger = logging.getLogger("approval_audit")

EXPORT_FIELDS = [
    "token",
    "token_name",
    "decimals",
    "spender",
    "allowance",
    "allowance_readable",
    "error",
]


def format_amount(value: float) -> str:
    """Render a float in positional notation without a trailing ``.0``."""
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def render_report(reports: List[AllowanceReport], stream: Optional[TextIO] = None) -> None:
    """Write one header line per contract and one line per spender."""
    stream = stream or sys.stdout
    for entry in reports:
        if isinstance(entry, ContractFailure):
            print(f"[Error] {entry.address} - {entry.message}", file=stream)
            continue
        print(f"[{entry.name}] {entry.address}", file=stream)
        for spender, amount in entry.spender_allowances.items():
            print(f"  * {spender} - {format_amount(amount)}", file=stream)


def export_report(reports: List[AllowanceReport], outfile: str) -> None:
    """Export the report to JSON or CSV based on file extension."""
    lower = outfile.lower()
    if lower.endswith(".json"):
        fmt = "json"
    elif lower.endswith(".csv"):
        fmt = "csv"
    else:
        raise ValueError("Unknown export format; use .json or .csv extension.")
    records = [record for entry in reports for record in entry.as_records()]
    if fmt == "json":
        with open(outfile, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
    else:
        with open(outfile, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=EXPORT_FIELDS)
            writer.writeheader()
            writer.writerows(records)
    logger.info(f"Exported {len(records)} records to {outfile}")
