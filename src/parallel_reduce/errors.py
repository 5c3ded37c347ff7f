# Copyright (c) 2025 Jose Blanca
# Licensed under the MIT License. See LICENSE file for details.


class ParallelReduceError(Exception):
    pass


class InvalidArgumentError(ParallelReduceError, ValueError):
    pass


class WorkerFailure(ParallelReduceError):
    def __init__(self, partition, cause):
        self.partition = partition
        self.cause = cause
        super().__init__(
            f"Local reduction failed for partition {partition.index} "
            f"(items {partition.start}:{partition.stop}): {cause!r}"
        )


class CombineError(ParallelReduceError):
    def __init__(self, missing, unexpected=()):
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        msg = f"Partial results missing for partitions {self.missing}"
        if self.unexpected:
            msg += f", duplicated or unexpected for partitions {self.unexpected}"
        super().__init__(msg)


class ReduceTimeoutError(ParallelReduceError, TimeoutError):
    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"Reduction did not finish in {timeout} seconds")


class ReduceCancelledError(ParallelReduceError):
    pass
