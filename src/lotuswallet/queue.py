"""
Single-consumer event queue for wallet state mutations.

Every operation that reads and then writes the UTXO cache or the balance
runs through here, one at a time, in enqueue order. When the queue runs dry
the mutable wallet state is flushed exactly once.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from lotuswallet.wallet.rank import RankVote


class ErrorKind(str, Enum):
    """How an operation failure should be treated by its caller."""

    FATAL = "fatal"  # the operation is aborted, caller must see it
    RECOVERABLE = "recoverable"  # expected failure, re-invoking may succeed
    BACKGROUND = "background"  # best effort, the next cycle self-corrects


@dataclass(frozen=True)
class Bootstrap:
    """Replace the cache with the indexer's full UTXO set for the script."""


@dataclass(frozen=True)
class ApplyOutput:
    txid: str
    out_idx: int
    value: int
    height: int = -1
    is_coinbase: bool = False


@dataclass(frozen=True)
class Reconcile:
    fetch_missing: bool = True


@dataclass(frozen=True)
class SendValue:
    out_address: str
    out_value: int
    subtract_fee_from_amount: bool = False


@dataclass(frozen=True)
class SubmitVote:
    votes: tuple[RankVote, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Consolidate:
    threshold: int | None = None


Operation = Bootstrap | ApplyOutput | Reconcile | SendValue | SubmitVote | Consolidate


@dataclass
class OperationResult:
    value: Any = None
    error: str | None = None
    kind: ErrorKind | None = None
    exception: Exception | None = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, re-raising the exception of a failed operation"""
        if self.exception is not None:
            raise self.exception
        return self.value


def default_classify(op: Operation, exc: Exception) -> ErrorKind:
    return ErrorKind.FATAL


class EventQueue:
    """
    FIFO of pending operations with a single busy flag.

    Args:
        dispatch: Coroutine executing one operation
        flush: Coroutine persisting mutable state once the queue empties
        classify: Maps a failed operation to its ErrorKind
    """

    def __init__(
        self,
        dispatch: Callable[[Operation], Awaitable[Any]],
        flush: Callable[[], Awaitable[None]] | None = None,
        classify: Callable[[Operation, Exception], ErrorKind] = default_classify,
    ):
        self._dispatch = dispatch
        self._flush = flush
        self._classify = classify
        self._pending: deque[tuple[Operation, asyncio.Future[OperationResult]]] = deque()
        self._busy = False
        self._drain_task: asyncio.Task[None] | None = None
        self._current: asyncio.Future[OperationResult] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def idle(self) -> bool:
        return not self._busy and not self._pending

    def enqueue(self, op: Operation, front: bool = False) -> asyncio.Future[OperationResult]:
        """
        Queue an operation; `front=True` runs it before everything pending.

        Returns:
            Future resolving to the OperationResult once the operation ran
        """
        future: asyncio.Future[OperationResult] = asyncio.get_running_loop().create_future()
        if front:
            self._pending.appendleft((op, future))
        else:
            self._pending.append((op, future))
        logger.debug(f"Queued {type(op).__name__} ({len(self._pending)} pending)")

        if not self._busy:
            self._busy = True
            self._idle.clear()
            self._drain_task = asyncio.create_task(self.drain())
        return future

    async def drain(self) -> None:
        """Run pending operations until none remain, then flush once."""
        try:
            while True:
                while self._pending:
                    op, future = self._pending.popleft()
                    self._current = future
                    result = await self._run(op)
                    self._current = None
                    if not future.done():
                        future.set_result(result)

                if self._flush is not None:
                    try:
                        await self._flush()
                    except Exception as e:
                        logger.error(f"Failed to persist wallet state: {e}")

                # something may have been queued during the flush
                if not self._pending:
                    break
        finally:
            self._busy = False
            self._idle.set()

    async def _run(self, op: Operation) -> OperationResult:
        try:
            value = await self._dispatch(op)
        except Exception as e:
            kind = self._classify(op, e)
            logger.error(f"{type(op).__name__} failed ({kind.value}): {e}")
            return OperationResult(error=str(e) or type(e).__name__, kind=kind, exception=e)
        return OperationResult(value=value)

    async def join(self) -> None:
        """Wait until the queue is idle."""
        await self._idle.wait()

    async def close(self) -> None:
        """Cancel the running drain and every pending operation."""
        while self._pending:
            _, future = self._pending.popleft()
            future.cancel()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        if self._current is not None:
            self._current.cancel()
            self._current = None
        self._busy = False
        self._idle.set()
