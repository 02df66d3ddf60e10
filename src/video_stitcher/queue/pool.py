"""Bounded-concurrency FIFO task queue.

Admitted thunks run on their own worker threads; the heavy lifting happens in
ffmpeg child processes, so a thread per in-flight job is cheap. All queue
bookkeeping (pending deque, in-flight count, limit, paused flag) lives behind
one lock and is changed only in :meth:`TaskQueue._admit_locked` and
:meth:`TaskQueue._finish`.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, wait
from typing import Any, Callable, Deque, Iterable, List, Optional, Tuple

from .models import Job, JobStatus

logger = logging.getLogger(__name__)

_Item = Tuple[Callable[[], Any], Future, Optional[Job]]


class TaskQueue:
    """Runs at most ``concurrency`` thunks at a time, in submission order.

    A failing thunk only fails its own future: siblings keep running and the
    queue keeps admitting work.

    Example:
        >>> queue = TaskQueue(concurrency=2)
        >>> futures = [queue.push(lambda i=i: render(i)) for i in range(10)]
        >>> queue.join(futures)
    """

    def __init__(self, concurrency: int = 2, name: str = "ffmpeg"):
        self.name = name
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._concurrency = max(1, int(concurrency))
        self._pending: Deque[_Item] = deque()
        self._running = 0
        self._paused = False

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def running(self) -> int:
        """Number of thunks currently executing."""
        return self._running

    @property
    def pending(self) -> int:
        """Number of thunks waiting for a slot."""
        return len(self._pending)

    @property
    def paused(self) -> bool:
        return self._paused

    def set_concurrency(self, concurrency: int) -> None:
        """Change the limit (clamped to at least 1).

        Raising it admits queued work immediately; lowering it only throttles
        future admissions, running thunks are never interrupted.
        """
        with self._lock:
            self._concurrency = max(1, int(concurrency))
            ready = self._admit_locked()
        self._start(ready)

    def push(self, fn: Callable[[], Any], job: Optional[Job] = None) -> Future:
        """Queue ``fn`` and return a future that settles when it returns or raises.

        If ``job`` is given its status becomes ``waiting`` now and
        ``processing`` when a slot is granted.
        """
        future: Future = Future()
        if job is not None:
            job.status = JobStatus.WAITING
        with self._lock:
            self._pending.append((fn, future, job))
            ready = self._admit_locked()
        self._start(ready)
        return future

    def pause(self) -> None:
        """Stop admitting new work; running thunks finish normally."""
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False
            ready = self._admit_locked()
        self._start(ready)

    def join(self, futures: Optional[Iterable[Future]] = None, timeout: Optional[float] = None) -> bool:
        """Wait for ``futures`` (or the whole queue) to settle.

        Returns:
            True if everything settled within ``timeout``
        """
        if futures is not None:
            _, not_done = wait(list(futures), timeout=timeout)
            return not not_done
        with self._idle:
            return self._idle.wait_for(
                lambda: self._running == 0 and not self._pending, timeout=timeout
            )

    def _admit_locked(self) -> List[_Item]:
        ready = []
        while not self._paused and self._running < self._concurrency and self._pending:
            item = self._pending.popleft()
            self._running += 1
            job = item[2]
            if job is not None:
                job.status = JobStatus.PROCESSING
            ready.append(item)
        return ready

    def _start(self, items: List[_Item]) -> None:
        for fn, future, job in items:
            thread = threading.Thread(
                target=self._run,
                args=(fn, future, job),
                name=f"{self.name}-worker",
                daemon=True,
            )
            thread.start()

    def _run(self, fn: Callable[[], Any], future: Future, job: Optional[Job]) -> None:
        try:
            if not future.set_running_or_notify_cancel():
                if job is not None:
                    job.status = JobStatus.CANCELLED
                return
            try:
                result = fn()
            except BaseException as e:
                logger.debug("%s task failed: %r", self.name, e)
                future.set_exception(e)
                if isinstance(e, (KeyboardInterrupt, SystemExit)):
                    raise
            else:
                future.set_result(result)
        finally:
            self._finish()

    def _finish(self) -> None:
        with self._lock:
            self._running -= 1
            ready = self._admit_locked()
            self._idle.notify_all()
        self._start(ready)
