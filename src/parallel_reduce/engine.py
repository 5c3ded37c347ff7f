# Copyright (c) 2025 Jose Blanca
# Licensed under the MIT License. See LICENSE file for details.

from functools import reduce, partial
from typing import Callable, Sequence, TypeVar
import logging

from parallel_reduce.combiner import PartialResult, combine
from parallel_reduce.errors import (
    InvalidArgumentError,
    ReduceCancelledError,
    ReduceTimeoutError,
    WorkerFailure,
)
from parallel_reduce.executor import CancelToken, Task, TaskState, create_executor
from parallel_reduce.partitioner import PartitionPolicy, partition

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _check_arguments(items, num_workers, timeout):
    if isinstance(num_workers, bool) or not isinstance(num_workers, int):
        raise InvalidArgumentError(
            f"num_workers must be an integer, got {num_workers!r}"
        )
    if num_workers < 1:
        raise InvalidArgumentError(f"num_workers must be at least 1, got {num_workers}")
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float))
    ):
        raise InvalidArgumentError(f"timeout must be a number of seconds, got {timeout!r}")
    if timeout is not None and timeout <= 0:
        raise InvalidArgumentError(f"timeout must be positive, got {timeout}")
    try:
        return len(items)
    except TypeError:
        raise InvalidArgumentError(
            f"items must be a sequence with a length, got {type(items).__name__}"
        ) from None


def parallel_reduce(
    items: Sequence[T],
    local_reduce: Callable[[Sequence[T]], R],
    combine_fn: Callable[[R, R], R],
    identity: R,
    num_workers: int,
    *,
    backend: str = "threads",
    timeout: float | None = None,
    partition_policy: PartitionPolicy | None = None,
    cancel_token: CancelToken | None = None,
) -> R:
    """
    Reduce a sequence by reducing contiguous partitions in parallel.

    The items are split into ``num_workers`` contiguous partitions,
    ``local_reduce`` is applied to every partition slice concurrently, and the
    partial results are folded with ``combine_fn`` starting from ``identity``
    in partition index order, whatever the order in which they finish.

    Parameters
    ----------
    items
        Random access sequence (list, tuple, range, numpy array...) with a
        known length. It is only read, never modified.
    local_reduce
        Callable receiving one partition slice and returning its partial
        value. It should be pure and must accept an empty slice, which happens
        when there are more workers than items.
    combine_fn
        Associative binary function merging two partial values.
    identity
        Neutral element of ``combine_fn``, e.g. 0 for addition.
    num_workers
        Number of partitions and maximum number of concurrent local
        reductions.
    backend
        ``"threads"`` (default), ``"processes"`` or ``"serial"``. With
        processes ``local_reduce`` and the slices must be picklable.
    timeout
        Seconds to wait for all the partitions. By default there is no limit.
    partition_policy
        Callable ``(num_items, num_partitions)`` returning the partitions.
        Defaults to an even split.
    cancel_token
        A :class:`CancelToken` that can be cancelled from another thread to
        stop the reduction.

    Returns
    -------
    R
        ``combine_fn`` folded over the partial results.

    Raises
    ------
    InvalidArgumentError
        Bad arguments, raised before any work is scheduled.
    WorkerFailure
        ``local_reduce`` raised for at least one partition. The error refers to
        the failed partition with the lowest index and is chained to the
        original exception. Pending partitions are not started once a
        failure has been seen.
    ReduceTimeoutError
        ``timeout`` elapsed before every partition finished.
    ReduceCancelledError
        ``cancel_token`` was cancelled before every partition finished.

    Errors raised by ``local_reduce`` that are not ``Exception`` subclasses,
    like ``SystemExit`` or ``KeyboardInterrupt``, are re-raised unchanged.

    Examples
    --------
    >>> from operator import add
    >>> parallel_reduce(range(1, 11), sum, add, 0, num_workers=3)
    55
    """
    num_items = _check_arguments(items, num_workers, timeout)
    partitions = partition(num_items, num_workers, policy=partition_policy)
    logger.debug(
        "Reducing %d items in partitions of lengths %s",
        num_items,
        [part.length for part in partitions],
    )

    tasks = [Task(part) for part in partitions]
    executor = create_executor(backend, concurrency_limit=num_workers)
    executor.start(tasks, items, local_reduce)

    partials = []
    failures = {}
    wait_for_workers = True
    try:
        for outcome in executor.outcomes(timeout=timeout, cancel_token=cancel_token):
            if outcome.state is TaskState.COMPLETED:
                partials.append(PartialResult(outcome.partition_index, outcome.value))
            elif outcome.state is TaskState.FAILED:
                if not failures:
                    logger.warning(
                        "Local reduction failed for partition %d: %r, cancelling pending partitions",
                        outcome.partition_index,
                        outcome.error,
                    )
                    executor.cancel_pending()
                failures[outcome.partition_index] = outcome.error
    except (ReduceTimeoutError, ReduceCancelledError) as error:
        logger.warning("Stopping reduction: %s", error)
        wait_for_workers = False
        executor.cancel_pending()
        raise
    except BaseException:
        logger.warning("Reduction aborted, cancelling pending partitions")
        wait_for_workers = False
        executor.cancel_pending()
        raise
    finally:
        executor.shutdown(wait=wait_for_workers)

    if failures:
        first_failed = min(failures)
        cause = failures[first_failed]
        raise WorkerFailure(partitions[first_failed], cause) from cause

    return combine(identity, partials, combine_fn, num_partitions=len(partitions))


def _map_reduce_chunk(chunk, map_fn, reduce_fn, initial_reduce_value):
    return reduce(reduce_fn, map(map_fn, chunk), initial_reduce_value)


def map_reduce(
    map_fn: Callable[[T], R],
    reduce_fn: Callable[[R, R], R],
    items: Sequence[T],
    num_workers: int,
    initial_reduce_value: R,
    **kwargs,
) -> R:
    """
    Map a function over the items and reduce the results in parallel.

    Every partition maps ``map_fn`` over its items and reduces the mapped
    values with ``reduce_fn`` starting from ``initial_reduce_value``. The
    partition results are then combined with ``reduce_fn`` too, so
    ``initial_reduce_value`` has to be its identity.

    Any other keyword argument is passed to :func:`parallel_reduce`.

    Examples
    --------
    Compute the sum of squares:

    >>> from operator import add
    >>> def square(x: int) -> int:
    ...     return x * x
    ...
    >>> map_reduce(square, add, range(6), num_workers=4, initial_reduce_value=0)
    55
    """
    map_reduce_chunk = partial(
        _map_reduce_chunk,
        map_fn=map_fn,
        reduce_fn=reduce_fn,
        initial_reduce_value=initial_reduce_value,
    )
    return parallel_reduce(
        items,
        map_reduce_chunk,
        reduce_fn,
        initial_reduce_value,
        num_workers,
        **kwargs,
    )
