"""Batched, rate-limit aware allowance queries.

Each contract runs its own pipeline: name and decimals are read
concurrently, then every spender's allowance is read concurrently and
scaled by the token decimals. A failure anywhere in one pipeline turns
that contract's entry into a :class:`ContractFailure`; sibling contracts
are unaffected.

How many pipelines run at once is decided by a limiter. The default
:class:`ChunkedLimiter` runs fixed-size chunks one after another;
:class:`BoundedLimiter` keeps a sliding window of in-flight pipelines.
Both issue the same requests and produce the same report.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Set, TypeVar

from approval_audit.config import DEFAULT_CHUNK_SIZE
from approval_audit.errors import AllowanceQueryFailed, MetadataQueryFailed, RPCError
from approval_audit.models import AllowanceReport, ContractAllowances, ContractFailure, TokenMeta

logger = logging.getLogger("approval_audit")

T = TypeVar("T")
Job = Callable[[], Awaitable[T]]

# Errors a single contract read may raise. ValueError covers undecodable
# return data (non ERC-20 contract, empty result from a self-destructed one).
QUERY_ERRORS = (RPCError, ValueError)


def iter_chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def scale_allowance(raw: int, decimals: int) -> float:
    """Convert a raw token amount to a float in whole-token units.

    This is an approximation: amounts above 2**53 lose precision. Exports
    keep the raw integer alongside.
    """
    return raw / 10 ** decimals


class ChunkedLimiter:
    """Run jobs in sequential chunks; every job inside a chunk runs at once."""

    def __init__(self, chunk_size: int) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.batches_run = 0

    async def run(self, jobs: Sequence[Job]) -> List:
        results: List = []
        total = -(-len(jobs) // self.chunk_size)
        for index, chunk in enumerate(iter_chunks(jobs, self.chunk_size), start=1):
            logger.info(f"Querying chunk {index}/{total} ({len(chunk)} contracts)")
            results.extend(await asyncio.gather(*(job() for job in chunk)))
            self.batches_run += 1
        return results


class BoundedLimiter:
    """Run all jobs with at most ``max_concurrency`` in flight at a time."""

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max concurrency must be positive, got {max_concurrency}")
        self.max_concurrency = max_concurrency

    async def run(self, jobs: Sequence[Job]) -> List:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(job: Job):
            async with semaphore:
                return await job()

        return list(await asyncio.gather(*(guarded(job) for job in jobs)))


class AllowanceQuerier:
    """Query current allowances for a contract -> spenders mapping.

    ``reader`` provides ``name(contract)``, ``decimals(contract)`` and
    ``allowance(contract, owner, spender)`` coroutines, normally an
    :class:`approval_audit.clients.ERC20Reader`.
    """

    def __init__(self, reader, owner: str, limiter=None) -> None:
        self.reader = reader
        self.owner = owner
        self.limiter = limiter or ChunkedLimiter(DEFAULT_CHUNK_SIZE)
        self._meta_cache: Dict[str, TokenMeta] = {}

    async def fetch_meta(self, contract: str) -> TokenMeta:
        """Read name and decimals once per contract."""
        if contract in self._meta_cache:
            return self._meta_cache[contract]
        name, decimals = await asyncio.gather(
            self.reader.name(contract),
            self.reader.decimals(contract),
            return_exceptions=True,
        )
        for field, value in (("name", name), ("decimals", decimals)):
            if isinstance(value, BaseException):
                if not isinstance(value, QUERY_ERRORS):
                    raise value
                raise MetadataQueryFailed(contract, field, value)
        meta = TokenMeta(name=name, decimals=decimals)
        self._meta_cache[contract] = meta
        return meta

    async def query_contract(self, contract: str, spenders: Set[str]) -> AllowanceReport:
        try:
            meta = await self.fetch_meta(contract)
        except MetadataQueryFailed as e:
            logger.warning(str(e))
            return ContractFailure(address=contract, error=e)

        ordered = sorted(spenders)
        values = await asyncio.gather(
            *(self.reader.allowance(contract, self.owner, spender) for spender in ordered),
            return_exceptions=True,
        )
        report = ContractAllowances(address=contract, name=meta.name, decimals=meta.decimals)
        for spender, value in zip(ordered, values):
            if isinstance(value, BaseException):
                if not isinstance(value, QUERY_ERRORS):
                    raise value
                error = AllowanceQueryFailed(contract, spender, value)
                logger.warning(str(error))
                return ContractFailure(address=contract, error=error)
            report.raw_allowances[spender] = value
            report.spender_allowances[spender] = scale_allowance(value, meta.decimals)
        return report

    async def query_all(self, relationships: Dict[str, Set[str]]) -> List[AllowanceReport]:
        """Return one report entry per contract, in the mapping's order."""
        jobs = [
            self._job(contract, spenders)
            for contract, spenders in relationships.items()
        ]
        return await self.limiter.run(jobs)

    def _job(self, contract: str, spenders: Set[str]) -> Job:
        return lambda: self.query_contract(contract, spenders)


def make_limiter(chunk_size: int, max_concurrency: Optional[int] = None):
    if max_concurrency:
        return BoundedLimiter(max_concurrency)
    return ChunkedLimiter(chunk_size)
