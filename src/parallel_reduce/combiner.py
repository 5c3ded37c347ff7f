# Copyright (c) 2025 Jose Blanca
# Licensed under the MIT License. See LICENSE file for details.

from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar
import functools

from parallel_reduce.errors import CombineError

R = TypeVar("R")


@dataclass(frozen=True)
class PartialResult:
    partition_index: int
    value: Any


def combine(
    identity: R,
    partials: Sequence[PartialResult],
    combine_fn: Callable[[R, R], R],
    num_partitions: int | None = None,
) -> R:
    """
    Fold the partial results in partition index order.

    The fold is strictly left to right and starts from ``identity``::

        combine_fn(...combine_fn(combine_fn(identity, p0), p1)..., pk-1)

    The order does not depend on the order in which ``partials`` is given, so
    results are reproducible even for operations that are not associative in
    practice, like floating point addition.

    Parameters
    ----------
    identity
        Neutral element of ``combine_fn``.
    partials
        One partial result per partition, in any order.
    combine_fn
        Associative binary function merging two partial values.
    num_partitions
        Number of partitions the partials should cover. Defaults to
        ``len(partials)``.

    Raises
    ------
    CombineError
        If a partition index in ``range(num_partitions)`` has no partial
        result, or has more than one.
    """
    if num_partitions is None:
        num_partitions = len(partials)

    counts = Counter(partial.partition_index for partial in partials)
    expected = range(num_partitions)
    missing = [idx for idx in expected if idx not in counts]
    duplicated = [idx for idx, count in counts.items() if count > 1]
    unexpected = [idx for idx in counts if idx not in expected]
    if missing or duplicated or unexpected:
        raise CombineError(missing, unexpected=duplicated + unexpected)

    ordered = sorted(partials, key=lambda partial: partial.partition_index)
    return functools.reduce(
        combine_fn, (partial.value for partial in ordered), identity
    )
