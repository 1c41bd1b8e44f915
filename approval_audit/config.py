"""Chain selection and run configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from approval_audit.errors import ConfigError

DEFAULT_CHAIN = "bsc"
DEFAULT_CHUNK_SIZE = 2000
DEFAULT_TIMEOUT = 30.0

# Etherscan V2 serves every chain from one host, selected by ``chainid``,
# with a single API key.
EXPLORER_API = "https://api.etherscan.io/v2/api"
API_KEY_ENV = "ETHERSCAN_API_KEY"


@dataclass(frozen=True)
class ChainConfig:
    name: str
    chain_id: int
    rpc_url: str
    explorer_api: str = EXPLORER_API


CHAIN_CONFIGS: Dict[str, ChainConfig] = {
    "bsc": ChainConfig(
        name="bsc",
        chain_id=56,
        rpc_url="https://bsc-dataseed.binance.org/",
    ),
    "ethereum": ChainConfig(
        name="ethereum",
        chain_id=1,
        rpc_url="https://rpc.ankr.com/eth",
    ),
    "polygon": ChainConfig(
        name="polygon",
        chain_id=137,
        rpc_url="https://polygon-rpc.com/",
    ),
}


def get_chain(name: str) -> ChainConfig:
    try:
        return CHAIN_CONFIGS[name.lower()]
    except KeyError:
        raise ConfigError(
            f"Unsupported chain: {name}; choose one of {', '.join(CHAIN_CONFIGS)}"
        ) from None


@dataclass(frozen=True)
class AuditConfig:
    """Everything a run needs, passed explicitly to clients and the querier."""

    chain: ChainConfig
    api_key: str
    rpc_url: str
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_concurrency: Optional[int] = None
    skip_malformed: bool = False
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ConfigError(f"chunk size must be positive, got {self.chunk_size}")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ConfigError(
                f"max concurrency must be positive, got {self.max_concurrency}"
            )

    @classmethod
    def from_env(
        cls,
        chain: str = DEFAULT_CHAIN,
        rpc_url: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> "AuditConfig":
        """Build a config, reading the explorer API key from the environment."""
        environ = os.environ if environ is None else environ
        chain_config = get_chain(chain)
        api_key = environ.get(API_KEY_ENV, "")
        if not api_key:
            raise ConfigError(
                f"Required environment variable '{API_KEY_ENV}' to be defined"
            )
        return cls(
            chain=chain_config,
            api_key=api_key,
            rpc_url=rpc_url or chain_config.rpc_url,
            **kwargs,
        )
