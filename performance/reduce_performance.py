from time import time
from functools import reduce, partial
from operator import add
from pathlib import Path
import sys

import numpy
import matplotlib.pyplot as plt

from parallel_reduce import map_reduce

CHARTS_DIR = Path(__file__).parent / "charts"
BACKEND_COLORS = {"threads": "tab:blue", "processes": "tab:green"}


def is_prime(n):
    if n == 2 or n == 3:
        return True
    if n < 2 or n % 2 == 0:
        return False
    if n < 9:
        return True
    if n % 3 == 0:
        return False
    r = int(n**0.5)
    # all primes > 3 are of the form 6n ± 1
    f = 5
    while f <= r:
        if n % f == 0:
            return False
        if n % (f + 2) == 0:
            return False
        f += 6
    return True


def get_python_version():
    version_info = sys.version_info
    version = f"{version_info.major}.{version_info.minor}.{version_info.micro}"
    if "free-threading" in sys.version:
        version += "t"
    return version


def count_primes_serial(num_numbers):
    numbers = range(1, num_numbers)
    start_time = time()
    total = reduce(add, map(is_prime, numbers), 0)
    return {"time_used": time() - start_time, "result": total}


def count_primes_in_parallel(num_numbers, num_workers, backend):
    numbers = range(1, num_numbers)
    start_time = time()
    total = map_reduce(
        is_prime,
        add,
        numbers,
        num_workers,
        initial_reduce_value=0,
        backend=backend,
    )
    return {"time_used": time() - start_time, "result": total}


def check_backend_performance(num_numbers, num_workerss, backend, expected_result):
    count_primes = partial(count_primes_in_parallel, num_numbers, backend=backend)
    times_used = []
    for num_workers in num_workerss:
        res = count_primes(num_workers)
        assert res["result"] == expected_result
        times_used.append(res["time_used"])
    return {"n_workers": numpy.array(num_workerss), "times": numpy.array(times_used)}


def plot_results(results, serial_time, charts_dir):
    base_fname = get_python_version()

    fig, axes = plt.subplots()
    for backend, result in results.items():
        axes.plot(
            result["n_workers"],
            result["times"],
            linestyle="-",
            marker="o",
            color=BACKEND_COLORS[backend],
            label=backend,
        )
    xmin, xmax = axes.get_xlim()
    axes.hlines(serial_time, xmin=xmin, xmax=xmax, color="tab:red", label="functools.reduce")
    axes.set_ylim(bottom=0, top=axes.get_ylim()[1])
    axes.set_ylabel("Time (s)")
    axes.set_xlabel("Num. workers")
    axes.legend()
    fig.savefig(charts_dir / f"{base_fname}.time.png")

    fig, axes = plt.subplots()
    for backend, result in results.items():
        speedup = serial_time / result["times"]
        axes.plot(
            result["n_workers"],
            speedup / result["n_workers"],
            linestyle="-",
            marker="o",
            color=BACKEND_COLORS[backend],
            label=backend,
        )
    axes.set_ylim(bottom=0, top=axes.get_ylim()[1])
    axes.set_ylabel("Efficiency")
    axes.set_xlabel("Num. workers")
    axes.legend()
    fig.savefig(charts_dir / f"{base_fname}.efficiency.png")


def check_performance_with_primes():
    num_numbers_to_check = 1000000
    num_workerss = list(range(1, 17))
    backends = ("threads", "processes")

    serial = count_primes_serial(num_numbers_to_check)
    results = {
        backend: check_backend_performance(
            num_numbers_to_check, num_workerss, backend, serial["result"]
        )
        for backend in backends
    }

    charts_dir = CHARTS_DIR / "primes" / f"num_numbers_{num_numbers_to_check}"
    charts_dir.mkdir(parents=True, exist_ok=True)
    plot_results(results, serial["time_used"], charts_dir)


if __name__ == "__main__":
    check_performance_with_primes()
