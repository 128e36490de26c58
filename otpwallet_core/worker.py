"""
Background tree builds.

Building a year-long tree takes long enough that callers run it off their
interactive thread.  Every submission gets a fresh salt; only the most recent
salt is current.  Progress and results tagged with an older salt are dropped
(the build itself is never interrupted, its output is simply ignored).

    worker = TreeBuildWorker(on_message=print)
    ticket = worker.submit(BuildRequest(seed, effective_time, duration))
    result = worker.result(ticket)     # StaleResultError if superseded
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from otpwallet_core.errors import StaleResultError
from otpwallet_core.merkle import BuildResult, compute_merkle_tree
from otpwallet_core.otp import DEFAULT_INTERVAL

log = logging.getLogger("otpwallet.worker")


@dataclass(frozen=True)
class BuildRequest:
    seed: bytes
    effective_time: int
    duration: int
    interval: int = DEFAULT_INTERVAL
    slot_size: int = 1
    seed2: Optional[bytes] = None
    hseed: Optional[bytes] = None
    randomness: Optional[int] = None
    multi_code: int = 0

    def build(self, progress_observer=None, report_interval=None) -> BuildResult:
        return compute_merkle_tree(
            self.seed,
            self.effective_time,
            self.duration,
            interval=self.interval,
            slot_size=self.slot_size,
            seed2=self.seed2,
            hseed=self.hseed,
            randomness=self.randomness,
            multi_code=self.multi_code,
            progress_observer=progress_observer,
            report_interval=report_interval,
        )


@dataclass
class WorkerMessage:
    status: str                 # "working" or "done"
    salt: str
    current: int = 0
    total: int = 0
    stage: int = 0
    result: Optional[BuildResult] = None


@dataclass(frozen=True)
class BuildTicket:
    salt: str
    future: Future


class TreeBuildWorker:
    """Runs builds on a thread pool and tracks the current generation."""

    def __init__(
        self,
        max_workers: int = 1,
        on_message: Optional[Callable[[WorkerMessage], None]] = None,
        report_interval: Optional[int] = None,
    ):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="otpwallet-build",
        )
        self._on_message = on_message
        self._report_interval = report_interval
        self._lock = threading.Lock()
        self._latest: Optional[str] = None

    @property
    def latest_salt(self) -> Optional[str]:
        with self._lock:
            return self._latest

    def is_current(self, salt: str) -> bool:
        return salt == self.latest_salt

    def submit(self, request: BuildRequest) -> BuildTicket:
        salt = uuid.uuid4().hex
        with self._lock:
            self._latest = salt
        log.info(f"Build {salt} submitted", extra={"salt": salt})
        future = self._executor.submit(self._run, request, salt)
        return BuildTicket(salt, future)

    def _run(self, request: BuildRequest, salt: str) -> BuildResult:
        def observer(current: int, total: int, stage: int) -> None:
            self._emit(WorkerMessage("working", salt, current, total, stage))

        result = request.build(observer, self._report_interval)
        self._emit(WorkerMessage("done", salt, result=result))
        return result

    def _emit(self, message: WorkerMessage) -> None:
        if not self.is_current(message.salt):
            log.debug(
                f"Dropping {message.status} message from stale build",
                extra={"salt": message.salt, "stage": message.stage},
            )
            return
        if self._on_message is not None:
            self._on_message(message)

    def result(self, ticket: BuildTicket, timeout: Optional[float] = None) -> BuildResult:
        result = ticket.future.result(timeout)
        latest = self.latest_salt
        if ticket.salt != latest:
            raise StaleResultError(ticket.salt, latest)
        return result

    async def build_async(self, request: BuildRequest) -> BuildResult:
        """Run one build on the pool without generation tracking."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, request.build)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
