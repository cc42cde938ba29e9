"""Tests for the persistent download counter."""

import json
import threading
from pathlib import Path

from exam_generator.services.counter import DownloadCounter, get_counter


def test_starts_at_one(tmp_path: Path):
    counter = DownloadCounter(tmp_path / "counter.json")

    assert counter.current() == 0
    assert counter.next_value() == 1
    assert counter.next_value() == 2
    assert json.loads((tmp_path / "counter.json").read_text()) == {"count": 2}


def test_persists_across_instances(tmp_path: Path):
    path = tmp_path / "counter.json"
    path.write_text(json.dumps({"count": 41}))

    assert DownloadCounter(path).next_value() == 42
    assert DownloadCounter(path).current() == 42


def test_corrupt_file_restarts(tmp_path: Path):
    path = tmp_path / "counter.json"
    path.write_text("{not json")

    assert DownloadCounter(path).next_value() == 1


def test_invalid_count_restarts(tmp_path: Path):
    path = tmp_path / "counter.json"
    path.write_text(json.dumps({"count": "seven"}))

    assert DownloadCounter(path).next_value() == 1


def test_creates_parent_directory(tmp_path: Path):
    counter = DownloadCounter(tmp_path / "data" / "counter.json")

    assert counter.next_value() == 1


def test_no_temp_files_left(tmp_path: Path):
    counter = DownloadCounter(tmp_path / "counter.json")
    for _ in range(3):
        counter.next_value()

    assert sorted(p.name for p in tmp_path.iterdir()) == [".counter.json.lock", "counter.json"]


def test_concurrent_increments_are_distinct(tmp_path: Path):
    """Concurrent downloads never receive the same number."""
    path = tmp_path / "counter.json"
    results = []
    results_lock = threading.Lock()

    def worker(counter: DownloadCounter) -> None:
        for _ in range(10):
            value = counter.next_value()
            with results_lock:
                results.append(value)

    # Separate instances only share the file lock, not the in-process lock
    threads = [
        threading.Thread(target=worker, args=(get_counter(path) if i % 2 else DownloadCounter(path),))
        for i in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == list(range(1, 81))
    assert DownloadCounter(path).current() == 80


def test_get_counter_returns_shared_instance(tmp_path: Path):
    path = tmp_path / "counter.json"

    assert get_counter(path) is get_counter(tmp_path / "." / "counter.json")
