# Copyright (c) 2025 Jose Blanca
# Licensed under the MIT License. See LICENSE file for details.

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Sequence
import concurrent.futures
import functools
import logging
import queue
import threading
import time

from parallel_reduce.errors import (
    InvalidArgumentError,
    ReduceCancelledError,
    ReduceTimeoutError,
)
from parallel_reduce.partitioner import Partition

logger = logging.getLogger(__name__)

# how often a blocked wait wakes up to look at the cancel token
CANCEL_POLL_INTERVAL = 0.05


class TaskState(Enum):
    PENDING = 1
    RUNNING = 2
    COMPLETED = 3
    FAILED = 4
    CANCELLED = 5


@dataclass
class Task:
    partition: Partition
    state: TaskState = field(default=TaskState.PENDING)


@dataclass(frozen=True)
class Outcome:
    partition_index: int
    state: TaskState
    value: Any = None
    error: BaseException | None = None


class _WorkerError:
    def __init__(self, exc):
        self.exc = exc


class CancelToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _reduce_task(task: Task, items, local_reduce) -> Outcome:
    index = task.partition.index
    try:
        value = local_reduce(task.partition.take(items))
    except Exception as error:
        task.state = TaskState.FAILED
        return Outcome(index, TaskState.FAILED, error=error)
    except BaseException:
        task.state = TaskState.FAILED
        raise
    task.state = TaskState.COMPLETED
    return Outcome(index, TaskState.COMPLETED, value=value)


class WorkerExecutor:
    """Runs one local reduction per task on a bounded pool.

    Subclasses dispatch pending tasks in index order and implement
    ``_get_outcome``, which returns the next finished outcome or None if
    nothing finished within ``wait`` seconds.
    """

    def __init__(self, concurrency_limit: int):
        if not isinstance(concurrency_limit, int) or concurrency_limit < 1:
            raise InvalidArgumentError(
                f"concurrency_limit must be a positive integer, got {concurrency_limit!r}"
            )
        self.concurrency_limit = concurrency_limit
        self.tasks: list[Task] = []
        self._cancelled_outcomes = deque()
        self._num_reported = 0

    def start(self, tasks: Sequence[Task], items, local_reduce: Callable):
        self.tasks = list(tasks)
        self._num_reported = 0
        self._cancelled_outcomes.clear()
        logger.debug(
            "Starting %d tasks on %s with concurrency limit %d",
            len(self.tasks),
            type(self).__name__,
            self.concurrency_limit,
        )
        self._start(items, local_reduce)

    def _start(self, items, local_reduce):
        raise NotImplementedError

    def _get_outcome(self, wait):
        raise NotImplementedError

    def _take_pending(self) -> list[Task]:
        raise NotImplementedError

    def cancel_pending(self) -> int:
        cancelled_tasks = self._take_pending()
        for task in cancelled_tasks:
            task.state = TaskState.CANCELLED
            self._cancelled_outcomes.append(
                Outcome(task.partition.index, TaskState.CANCELLED)
            )
        if cancelled_tasks:
            logger.debug("Cancelled %d pending tasks", len(cancelled_tasks))
        return len(cancelled_tasks)

    def outcomes(
        self,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> Iterator[Outcome]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._num_reported < len(self.tasks):
            if cancel_token is not None and cancel_token.cancelled:
                raise ReduceCancelledError("Reduction cancelled by the caller")

            wait = CANCEL_POLL_INTERVAL if cancel_token is not None else None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ReduceTimeoutError(timeout)
                wait = remaining if wait is None else min(wait, remaining)

            if self._cancelled_outcomes:
                outcome = self._cancelled_outcomes.popleft()
            else:
                outcome = self._get_outcome(wait)
                if outcome is None:
                    continue
            self._num_reported += 1
            logger.debug(
                "Partition %d finished as %s",
                outcome.partition_index,
                outcome.state.name,
            )
            yield outcome

    def shutdown(self, wait=True):
        pass


class _TaskDispenser(Iterator):
    def __init__(self, tasks):
        self._tasks = deque(tasks)
        self._lock = threading.Lock()

    def __next__(self):
        # the state change has to happen under the lock, otherwise a task could
        # be handed to a thread and cancelled at the same time
        with self._lock:
            if not self._tasks:
                raise StopIteration
            task = self._tasks.popleft()
            task.state = TaskState.RUNNING
            return task

    def take_remaining(self):
        with self._lock:
            remaining = list(self._tasks)
            self._tasks.clear()
        return remaining


def _reduce_tasks_from_dispenser(task_dispenser, results_queue, items, local_reduce):
    put = results_queue.put
    try:
        for task in task_dispenser:
            put(_reduce_task(task, items, local_reduce))
    except BaseException as exception:
        # the thread dies here, the caller re-raises the error
        put(_WorkerError(exception))


class ThreadWorkerExecutor(WorkerExecutor):
    def __init__(self, concurrency_limit: int):
        super().__init__(concurrency_limit)
        self._task_dispenser = _TaskDispenser([])
        self._computing_threads = []

    def _start(self, items, local_reduce):
        self._task_dispenser = _TaskDispenser(self.tasks)
        self._results_queue = queue.Queue()

        reduce_tasks = functools.partial(
            _reduce_tasks_from_dispenser,
            task_dispenser=self._task_dispenser,
            results_queue=self._results_queue,
            items=items,
            local_reduce=local_reduce,
        )

        self._computing_threads = []
        num_threads = min(self.concurrency_limit, len(self.tasks))
        for idx in range(num_threads):
            thread = threading.Thread(
                target=reduce_tasks, name=f"comp_thread_{idx}", daemon=True
            )
            thread.start()
            self._computing_threads.append(thread)

    def _take_pending(self):
        return self._task_dispenser.take_remaining()

    def _get_outcome(self, wait):
        try:
            outcome = self._results_queue.get(timeout=wait)
        except queue.Empty:
            return None
        if isinstance(outcome, _WorkerError):
            raise outcome.exc
        return outcome

    def shutdown(self, wait=True):
        if wait:
            for thread in self._computing_threads:
                thread.join()


class ProcessWorkerExecutor(WorkerExecutor):
    def __init__(self, concurrency_limit: int, mp_context=None):
        super().__init__(concurrency_limit)
        self._mp_context = mp_context
        self._pool = None
        self._pending = deque()

    def _start(self, items, local_reduce):
        self._items = items
        self._local_reduce = local_reduce
        self._pending = deque(self.tasks)
        self._running = {}
        self._finished = deque()
        if self.tasks:
            self._pool = concurrent.futures.ProcessPoolExecutor(
                max_workers=self.concurrency_limit, mp_context=self._mp_context
            )

    def _dispatch(self):
        while self._pending and len(self._running) < self.concurrency_limit:
            task = self._pending.popleft()
            task.state = TaskState.RUNNING
            future = self._pool.submit(self._local_reduce, task.partition.take(self._items))
            self._running[future] = task

    def _take_pending(self):
        remaining = list(self._pending)
        self._pending.clear()
        return remaining

    def _get_outcome(self, wait):
        if self._finished:
            return self._finished.popleft()

        # dispatching here, and not when a task finishes, lets a cancellation
        # requested after an outcome is seen stop the next submission
        self._dispatch()
        if not self._running:
            return None
        done, _ = concurrent.futures.wait(
            self._running, timeout=wait, return_when=concurrent.futures.FIRST_COMPLETED
        )
        if not done:
            return None

        done = sorted(done, key=lambda future: self._running[future].partition.index)
        for future in done:
            task = self._running.pop(future)
            index = task.partition.index
            error = future.exception()
            if error is not None and not isinstance(error, Exception):
                task.state = TaskState.FAILED
                raise error
            if error is None:
                task.state = TaskState.COMPLETED
                self._finished.append(Outcome(index, TaskState.COMPLETED, value=future.result()))
            else:
                task.state = TaskState.FAILED
                self._finished.append(Outcome(index, TaskState.FAILED, error=error))
        return self._finished.popleft()

    def shutdown(self, wait=True):
        if self._pool is not None:
            self._pool.shutdown(wait=wait, cancel_futures=True)
            self._pool = None


class SerialWorkerExecutor(WorkerExecutor):
    """Runs the tasks one after another in the calling thread.

    A running local reduction cannot be interrupted, so timeouts and
    cancellation are only noticed between tasks.
    """

    def __init__(self, concurrency_limit: int):
        super().__init__(concurrency_limit)
        self._pending = deque()

    def _start(self, items, local_reduce):
        self._items = items
        self._local_reduce = local_reduce
        self._pending = deque(self.tasks)

    def _take_pending(self):
        remaining = list(self._pending)
        self._pending.clear()
        return remaining

    def _get_outcome(self, wait):
        if not self._pending:
            return None
        task = self._pending.popleft()
        task.state = TaskState.RUNNING
        return _reduce_task(task, self._items, self._local_reduce)


EXECUTORS = {
    "threads": ThreadWorkerExecutor,
    "processes": ProcessWorkerExecutor,
    "serial": SerialWorkerExecutor,
}


def create_executor(backend: str, concurrency_limit: int) -> WorkerExecutor:
    try:
        executor_class = EXECUTORS[backend]
    except KeyError:
        raise InvalidArgumentError(
            f"Unknown backend {backend!r}, choose one of {sorted(EXECUTORS)}"
        ) from None
    return executor_class(concurrency_limit)


def execute(
    tasks: Sequence[Task],
    items,
    local_reduce: Callable,
    concurrency_limit: int,
    backend: str = "threads",
) -> list[Outcome]:
    """
    Run every task to a terminal state and return the outcomes by partition index.

    Failures do not stop the other tasks; use ``parallel_reduce`` for the
    fail-fast behaviour.
    """
    executor = create_executor(backend, concurrency_limit)
    executor.start(tasks, items, local_reduce)
    try:
        outcomes = list(executor.outcomes())
    finally:
        executor.shutdown()
    return sorted(outcomes, key=lambda outcome: outcome.partition_index)
