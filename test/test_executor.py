import threading

import pytest

from parallel_reduce import (
    CancelToken,
    InvalidArgumentError,
    ReduceCancelledError,
    ReduceTimeoutError,
    Partition,
    Task,
    TaskState,
    create_executor,
    execute,
    partition,
)
from parallel_reduce.executor import (
    ProcessWorkerExecutor,
    SerialWorkerExecutor,
    ThreadWorkerExecutor,
)


def _tasks(num_items, num_partitions):
    return [Task(part) for part in partition(num_items, num_partitions)]


def _fail_on_four(chunk):
    if 4 in chunk:
        raise RuntimeError("bad item")
    return sum(chunk)


def test_execute_with_threads():
    tasks = _tasks(10, 3)
    outcomes = execute(tasks, list(range(1, 11)), sum, concurrency_limit=3)
    assert [outcome.partition_index for outcome in outcomes] == [0, 1, 2]
    assert [outcome.value for outcome in outcomes] == [10, 18, 27]
    assert all(task.state is TaskState.COMPLETED for task in tasks)


def test_execute_with_less_threads_than_tasks():
    tasks = _tasks(100, 10)
    outcomes = execute(tasks, range(100), sum, concurrency_limit=2)
    assert sum(outcome.value for outcome in outcomes) == sum(range(100))


def test_execute_serial():
    outcomes = execute(_tasks(10, 3), range(1, 11), sum, 3, backend="serial")
    assert [outcome.value for outcome in outcomes] == [10, 18, 27]


def test_execute_with_processes():
    outcomes = execute(_tasks(10, 3), range(1, 11), sum, 2, backend="processes")
    assert [outcome.value for outcome in outcomes] == [10, 18, 27]


def test_failures_do_not_stop_execute():
    tasks = _tasks(8, 4)
    outcomes = execute(tasks, list(range(8)), _fail_on_four, 4)
    states = [outcome.state for outcome in outcomes]
    assert states == [
        TaskState.COMPLETED,
        TaskState.COMPLETED,
        TaskState.FAILED,
        TaskState.COMPLETED,
    ]
    assert isinstance(outcomes[2].error, RuntimeError)
    assert tasks[2].state is TaskState.FAILED


def test_cancel_pending():
    tasks = _tasks(8, 4)
    executor = ThreadWorkerExecutor(1)
    release = threading.Event()

    def wait_for_release(chunk):
        release.wait(timeout=5)
        return sum(chunk)

    executor.start(tasks, list(range(8)), wait_for_release)
    outcomes = executor.outcomes()
    cancelled = executor.cancel_pending()
    release.set()
    outcomes = list(outcomes)
    executor.shutdown()

    # the single thread may already be blocked in the first task
    assert cancelled in (3, 4)
    states = [outcome.state for outcome in outcomes]
    assert states.count(TaskState.CANCELLED) == cancelled
    assert states.count(TaskState.COMPLETED) == 4 - cancelled
    assert tasks[3].state is TaskState.CANCELLED


def test_outcomes_timeout():
    release = threading.Event()

    def blocked(chunk):
        release.wait(timeout=5)
        return sum(chunk)

    executor = create_executor("threads", 2)
    executor.start(_tasks(4, 2), range(4), blocked)
    with pytest.raises(ReduceTimeoutError):
        list(executor.outcomes(timeout=0.1))
    release.set()
    executor.shutdown()


def test_outcomes_cancel_token():
    token = CancelToken()
    token.cancel()
    executor = create_executor("serial", 1)
    executor.start(_tasks(4, 2), range(4), sum)
    with pytest.raises(ReduceCancelledError):
        list(executor.outcomes(cancel_token=token))


def test_bad_executor_arguments():
    with pytest.raises(InvalidArgumentError):
        create_executor("gpu", 2)
    with pytest.raises(InvalidArgumentError):
        create_executor("threads", 0)


def test_processes_stop_submitting_after_a_failure():
    # max of the empty first partition fails, the rest would succeed
    partitions = [Partition(index=0, start=0, length=0)] + [
        Partition(index=idx, start=idx - 1, length=1) for idx in range(1, 4)
    ]
    tasks = [Task(part) for part in partitions]
    executor = ProcessWorkerExecutor(1)
    executor.start(tasks, [1, 2, 3], max)
    states = {}
    try:
        for outcome in executor.outcomes():
            states[outcome.partition_index] = outcome.state
            if outcome.state is TaskState.FAILED:
                executor.cancel_pending()
    finally:
        executor.shutdown()

    assert states == {
        0: TaskState.FAILED,
        1: TaskState.CANCELLED,
        2: TaskState.CANCELLED,
        3: TaskState.CANCELLED,
    }
    assert [task.state for task in tasks[1:]] == [TaskState.CANCELLED] * 3


def test_threads_stop_dispensing_after_a_failure():
    tasks = _tasks(8, 4)
    reduced_chunks = []
    executor = ThreadWorkerExecutor(1)

    def fail_on_first(chunk):
        reduced_chunks.append(chunk)
        if 0 in chunk:
            raise RuntimeError("first partition")
        return sum(chunk)

    executor.start(tasks, list(range(8)), fail_on_first)
    cancelled = 0
    for outcome in executor.outcomes():
        if outcome.state is TaskState.FAILED:
            cancelled = executor.cancel_pending()
    executor.shutdown()
    assert len(reduced_chunks) == 4 - cancelled
    assert reduced_chunks[0] == [0, 1]


def test_cancel_pending_before_start():
    for executor in (
        ThreadWorkerExecutor(2),
        ProcessWorkerExecutor(2),
        SerialWorkerExecutor(2),
    ):
        assert executor.cancel_pending() == 0
        executor.shutdown()


def test_restarting_an_executor_forgets_cancelled_tasks():
    executor = SerialWorkerExecutor(1)
    executor.start(_tasks(4, 2), range(4), sum)
    assert executor.cancel_pending() == 2
    executor.start(_tasks(4, 2), range(4), sum)
    outcomes = list(executor.outcomes())
    assert [outcome.state for outcome in outcomes] == [TaskState.COMPLETED] * 2
