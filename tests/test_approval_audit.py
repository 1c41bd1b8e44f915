"""End-to-end tests of the audit pipeline with fake collaborators."""

import io
import os
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

from approval_audit import approval_audit
from approval_audit.abi import APPROVE_SELECTOR, encode_address
from approval_audit.approval_audit import main, run_audit
from approval_audit.config import AuditConfig
from approval_audit.errors import (
    ConfigError,
    ExplorerError,
    MalformedCallData,
    NonEOAOwner,
    RPCError,
    TransactionHistoryFetchFailed,
)
from approval_audit.models import ContractAllowances, ContractFailure, Transaction
from approval_audit.report import render_report

OWNER = "0x" + "a" * 40
TOKEN = "0x" + "c" * 40
BROKEN = "0x" + "b" * 40
SPENDER = "0x" + "d" * 40


def word(value):
    return format(value, "064x")


def string_result(text):
    raw = text.encode().hex()
    return "0x" + word(32) + word(len(text)) + raw.ljust(64, "0")


def approve_tx(to, spender=SPENDER, amount=1000):
    return Transaction(
        from_address=OWNER,
        to_address=to,
        is_error=False,
        input=APPROVE_SELECTOR + encode_address(spender) + word(amount),
    )


class FakeExplorer:
    def __init__(self, transactions=None, error=None):
        self.transactions = transactions or []
        self.error = error

    def list_transactions(self, address):
        if self.error:
            raise self.error
        return self.transactions


class FakeChain:
    """Answers eth_getCode and eth_call like a node holding a few tokens."""

    def __init__(self, code="0x", tokens=None, allowances=None, reverting=()):
        self.code = code
        self.tokens = tokens or {}
        self.allowances = allowances or {}
        self.reverting = set(reverting)

    async def get_code(self, address):
        return self.code

    async def eth_call(self, to, data):
        if to in self.reverting:
            raise RPCError("RPC error -32000: execution reverted")
        selector = data[:10]
        name, decimals = self.tokens[to]
        if selector == "0x06fdde03":
            return string_result(name)
        if selector == "0x313ce567":
            return "0x" + word(decimals)
        spender = "0x" + data[-40:]
        return "0x" + word(self.allowances.get((to, spender), 0))


def config(**kwargs):
    return AuditConfig.from_env(
        "bsc", environ={"ETHERSCAN_API_KEY": "test-key"}, **kwargs
    )


class TestRunAudit(unittest.IsolatedAsyncioTestCase):
    async def test_single_approval_scenario(self):
        chain = FakeChain(tokens={TOKEN: ("TOK", 2)}, allowances={(TOKEN, SPENDER): 500})
        reports = await run_audit(config(), OWNER, FakeExplorer([approve_tx(TOKEN)]), chain)

        out = io.StringIO()
        render_report(reports, out)
        self.assertEqual(out.getvalue(), f"[TOK] {TOKEN}\n  * {SPENDER} - 5\n")

    async def test_failing_contract_does_not_affect_others(self):
        chain = FakeChain(
            tokens={TOKEN: ("TOK", 0), BROKEN: ("X", 0)},
            allowances={(TOKEN, SPENDER): 3},
            reverting=[BROKEN],
        )
        explorer = FakeExplorer([approve_tx(BROKEN), approve_tx(TOKEN)])
        reports = await run_audit(config(chunk_size=1), OWNER, explorer, chain)

        self.assertIsInstance(reports[0], ContractFailure)
        self.assertEqual(reports[0].address, BROKEN)
        self.assertIsInstance(reports[1], ContractAllowances)
        self.assertEqual(reports[1].spender_allowances, {SPENDER: 3.0})

    async def test_contract_owner_rejected(self):
        with self.assertRaises(NonEOAOwner):
            await run_audit(config(), OWNER, FakeExplorer(), FakeChain(code="0x6080"))

    async def test_history_failure_is_fatal(self):
        explorer = FakeExplorer(error=ExplorerError("Explorer error: NOTOK"))
        with self.assertRaises(TransactionHistoryFetchFailed) as ctx:
            await run_audit(config(), OWNER, explorer, FakeChain())
        self.assertEqual(ctx.exception.address, OWNER)

    async def test_malformed_call_data_policy(self):
        bad = Transaction(OWNER, TOKEN, False, APPROVE_SELECTOR + encode_address(SPENDER))
        chain = FakeChain(tokens={TOKEN: ("TOK", 0)})
        with self.assertRaises(MalformedCallData):
            await run_audit(config(), OWNER, FakeExplorer([bad]), chain)
        reports = await run_audit(config(skip_malformed=True), OWNER, FakeExplorer([bad]), chain)
        self.assertEqual(reports, [])


class TestConfig(unittest.TestCase):
    def test_missing_api_key(self):
        with self.assertRaises(ConfigError):
            AuditConfig.from_env("ethereum", environ={})

    def test_unknown_chain(self):
        with self.assertRaises(ConfigError):
            AuditConfig.from_env("solana", environ={"ETHERSCAN_API_KEY": "k"})

    def test_rpc_override(self):
        cfg = AuditConfig.from_env(
            "polygon", rpc_url="http://localhost:8545", environ={"ETHERSCAN_API_KEY": "k"}
        )
        self.assertEqual(cfg.rpc_url, "http://localhost:8545")
        self.assertEqual(cfg.chain.explorer_api, "https://api.etherscan.io/v2/api")
        self.assertEqual(cfg.chain.chain_id, 137)

    def test_invalid_chunk_size(self):
        with self.assertRaises(ConfigError):
            config(chunk_size=0)


class TestMain(unittest.TestCase):
    def run_main(self, argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(argv)
        return code, out.getvalue(), err.getvalue()

    def test_bad_address_exits_non_zero(self):
        code, out, err = self.run_main(["-a", "0x1234"])
        self.assertEqual(code, 1)
        self.assertIn("not in the correct format", err)
        self.assertEqual(out, "")

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_missing_credential_exits_non_zero(self):
        code, _, err = self.run_main(["-a", OWNER, "--chain", "ethereum"])
        self.assertEqual(code, 1)
        self.assertIn("ETHERSCAN_API_KEY", err)

    @mock.patch.dict(os.environ, {"ETHERSCAN_API_KEY": "k"}, clear=True)
    def test_prints_report(self):
        reports = [
            ContractAllowances(TOKEN, "TOK", 2, {SPENDER: 5.0}, {SPENDER: 500}),
        ]

        async def fake_audit(cfg, owner):
            self.assertEqual(owner, OWNER)
            self.assertEqual(cfg.chunk_size, 10)
            return reports

        with mock.patch.object(approval_audit, "_audit", fake_audit):
            code, out, _ = self.run_main(["-a", OWNER.upper().replace("0X", "0x"), "--chunk-size", "10"])
        self.assertEqual(code, 0)
        self.assertEqual(out, f"[TOK] {TOKEN}\n  * {SPENDER} - 5\n")


if __name__ == "__main__":
    unittest.main()
