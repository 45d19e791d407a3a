from __future__ import annotations

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from dirindex.scanner import PathScanner, bounded_map


def test_flat_directory_of_100k_files_stays_under_the_cap(tmp_path: Path, fake_fs_factory) -> None:
    root = str(tmp_path)
    fs = fake_fs_factory.flat(root, 100_000)
    cap = 64

    result = PathScanner(fs, max_workers=96, max_inflight=cap).scan(root)

    assert len(result.files) == 100_000
    assert result.failures == []
    assert fs.peak["stat"] <= cap
    assert fs.peak["open"] <= cap
    assert fs.active == {"stat": 0, "open": 0}


def test_in_flight_limit_binds_below_worker_count(tmp_path: Path, fake_fs_factory) -> None:
    root = str(tmp_path)
    fs = fake_fs_factory.flat(root, 400, delay=0.002)

    result = PathScanner(fs, max_workers=32, max_inflight=4).scan(root)

    assert len(result.files) == 400
    assert 1 < fs.peak["stat"] <= 4
    assert fs.peak["open"] <= 4


def test_results_are_sorted_despite_completion_order(tmp_path: Path, fake_fs_factory) -> None:
    root = str(tmp_path)
    fs = fake_fs_factory.flat(root, 500, delay=0.0005)

    result = PathScanner(fs, max_workers=16, max_inflight=16).scan(root)
    paths = [f.path for f in result.files]

    assert paths == sorted(paths)
    assert paths[0] == os.path.join(root, "f000000.txt")


def test_bounded_map_never_exceeds_limit() -> None:
    lock = threading.Lock()
    running = 0
    peak = 0

    def work(n: int) -> int:
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.001)
        with lock:
            running -= 1
        return n * 2

    with ThreadPoolExecutor(max_workers=16) as executor:
        results = [(item, future.result()) for item, future in bounded_map(executor, work, range(100), 5)]

    assert sorted(results) == [(n, n * 2) for n in range(100)]
    assert 1 <= peak <= 5
