# test_utils.py
import logging
import threading

from pcaligner.utils import chunk_slices, map_chunks, time_function


def test_recursive_calls_are_timed_once(caplog):
    @time_function
    def countdown(n):
        return 0 if n == 0 else countdown(n - 1)

    with caplog.at_level(logging.DEBUG, logger='pcaligner'):
        countdown(5)

    assert sum('took' in record.getMessage() for record in caplog.records) == 1


def test_concurrent_calls_are_each_timed(caplog):
    barrier = threading.Barrier(2)

    @time_function
    def wait_for_other():
        # both threads are inside the decorated call at the same time
        barrier.wait(timeout=10)

    with caplog.at_level(logging.DEBUG, logger='pcaligner'):
        threads = [threading.Thread(target=wait_for_other) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    assert sum('took' in record.getMessage() for record in caplog.records) == 2


def test_chunks_cover_range_in_order():
    slices = chunk_slices(5000, 2048)
    assert [(s.start, s.stop) for s in slices] == [(0, 2048), (2048, 4096), (4096, 5000)]
    assert chunk_slices(0) == []


def test_map_chunks_keeps_chunk_order():
    sequential = map_chunks(lambda s: (s.start, s.stop), 5000, n_jobs=1, chunk_size=1000)
    parallel = map_chunks(lambda s: (s.start, s.stop), 5000, n_jobs=3, chunk_size=1000)
    assert sequential == parallel == [(i, i + 1000) for i in range(0, 5000, 1000)]
