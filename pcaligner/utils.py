"""General utility functions."""

import logging
import threading
import time
from functools import wraps

from joblib import Parallel, delayed

logger = logging.getLogger(__name__)

# Fixed block size so that chunking, and therefore the reduction order,
# does not depend on the number of workers.
CHUNK_SIZE = 2048


def time_function(func):
    """
    Decorator to time function execution.
    For recursive functions, only times the top-level call of each thread.
    """
    state = threading.local()

    @wraps(func)
    def wrapper(*args, **kwargs):
        if not getattr(state, 'in_call', False):
            state.in_call = True
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start_time
                logger.debug("%s took %.6f seconds", func.__qualname__, elapsed)
                state.in_call = False
        else:
            return func(*args, **kwargs)

    return wrapper


def chunk_slices(n_items, chunk_size=CHUNK_SIZE):
    """Split ``range(n_items)`` into consecutive slices of ``chunk_size``."""
    return [slice(start, min(start + chunk_size, n_items))
            for start in range(0, n_items, chunk_size)]


def map_chunks(func, n_items, n_jobs=1, chunk_size=CHUNK_SIZE):
    """
    Run ``func(slice)`` over fixed-size chunks and collect results in order.

    With ``n_jobs != 1`` the chunks are dispatched to a joblib thread pool;
    joblib returns results in submission order, so the caller always sees
    the same sequence regardless of scheduling.

    Args:
        func: Callable taking a ``slice`` of item positions
        n_items: Total number of items
        n_jobs: Number of workers (joblib semantics, -1 = all cores)
        chunk_size: Items per chunk

    Returns:
        List of per-chunk results, in chunk order
    """
    slices = chunk_slices(n_items, chunk_size)
    if n_jobs == 1 or len(slices) <= 1:
        return [func(s) for s in slices]
    return Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(func)(s) for s in slices
    )

