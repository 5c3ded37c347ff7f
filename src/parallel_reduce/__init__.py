# Copyright (c) 2025 Jose Blanca
# Licensed under the MIT License. See LICENSE file for details.

from parallel_reduce.engine import parallel_reduce, map_reduce
from parallel_reduce.partitioner import (
    Partition,
    partition,
    even_partitions,
    cost_balanced_policy,
)
from parallel_reduce.combiner import PartialResult, combine
from parallel_reduce.executor import (
    CancelToken,
    Outcome,
    Task,
    TaskState,
    create_executor,
    execute,
)
from parallel_reduce.errors import (
    ParallelReduceError,
    InvalidArgumentError,
    WorkerFailure,
    CombineError,
    ReduceTimeoutError,
    ReduceCancelledError,
)
