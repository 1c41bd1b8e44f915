"""Network collaborators: the chain JSON-RPC node and the block explorer."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
import requests

from approval_audit.abi import (
    ALLOWANCE_SELECTOR,
    DECIMALS_SELECTOR,
    NAME_SELECTOR,
    build_call_data,
    decode_string,
    parse_uint8,
    parse_uint256,
)
from approval_audit.config import DEFAULT_TIMEOUT
from approval_audit.errors import ExplorerError, RPCError
from approval_audit.models import Transaction

logger = logging.getLogger("approval_audit")


class EthereumRPC:
    """A minimal asynchronous JSON-RPC client for EVM nodes.

    Only the read-only methods the auditor needs are exposed. See
    https://ethereum.org/en/developers/docs/apis/json-rpc/ for the protocol.
    Pass ``client`` to reuse or mock the underlying ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._id_counter = 0

    async def __aenter__(self) -> "EthereumRPC":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _rpc(self, method: str, params: list) -> Any:
        self._id_counter += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._id_counter,
            "method": method,
            "params": params,
        }
        logger.debug(f"RPC {method} {params}")
        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise RPCError(f"RPC connection error: {e}") from e
        if response.status_code != 200:
            raise RPCError(
                f"RPC HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise RPCError(f"RPC returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise RPCError(f"RPC returned unexpected payload: {str(data)[:200]}")
        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCError(f"RPC error {error.get('code')}: {error.get('message')}")
            raise RPCError(f"RPC error: {error}")
        result = data.get("result")
        if result is None:
            raise RPCError(f"RPC response to {method} has no result")
        return result

    async def get_code(self, address: str) -> str:
        """Return deployed bytecode as a hex string ("0x" for plain accounts)."""
        return await self._rpc("eth_getCode", [address, "latest"])

    async def eth_call(self, to: str, data: str) -> str:
        """Perform a call without creating a transaction and return raw hex data."""
        call_obj = {"to": to, "data": data}
        return await self._rpc("eth_call", [call_obj, "latest"])


# function name -> (selector, return decoder)
ERC20_FUNCTIONS: Dict[str, tuple] = {
    "name": (NAME_SELECTOR, decode_string),
    "decimals": (DECIMALS_SELECTOR, parse_uint8),
    "allowance": (ALLOWANCE_SELECTOR, parse_uint256),
}


class ERC20Reader:
    """Read-only ERC-20 calls on top of :class:`EthereumRPC`."""

    def __init__(self, rpc: EthereumRPC) -> None:
        self.rpc = rpc

    async def read_contract(self, contract: str, function_name: str, *args: str) -> Any:
        try:
            selector, decoder = ERC20_FUNCTIONS[function_name]
        except KeyError:
            raise ValueError(f"Unsupported ERC-20 function: {function_name}") from None
        data = await self.rpc.eth_call(contract, build_call_data(selector, *args))
        return decoder(data)

    async def name(self, contract: str) -> str:
        return await self.read_contract(contract, "name")

    async def decimals(self, contract: str) -> int:
        return await self.read_contract(contract, "decimals")

    async def allowance(self, contract: str, owner: str, spender: str) -> int:
        return await self.read_contract(contract, "allowance", owner, spender)


class ExplorerClient:
    """Etherscan V2 multichain explorer API client.

    One endpoint serves every supported chain; ``chain_id`` selects which.
    """

    NO_TRANSACTIONS = "No transactions found"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        chain_id: int,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.chain_id = chain_id
        self.timeout = timeout
        self.session = session or requests.Session()

    def list_transactions(self, address: str) -> List[Transaction]:
        """Return the full normal-transaction history of ``address``."""
        params = {
            "chainid": self.chain_id,
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "sort": "asc",
            "apikey": self.api_key,
        }
        try:
            response = self.session.get(self.api_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExplorerError(f"Explorer connection error: {e}") from e
        if response.status_code != 200:
            raise ExplorerError(
                f"Explorer HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ExplorerError(f"Explorer returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ExplorerError(f"Explorer returned unexpected payload: {str(data)[:200]}")

        result = data.get("result")
        if data.get("status") != "1":
            if data.get("message") == self.NO_TRANSACTIONS:
                return []
            raise ExplorerError(f"Explorer error: {data.get('message')}: {result}")
        if not isinstance(result, list):
            raise ExplorerError(f"Unexpected explorer result: {result!r}")
        return [Transaction.from_explorer(item) for item in result]
