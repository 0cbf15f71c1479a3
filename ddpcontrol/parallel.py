"""
The `parallel` module contains the `ThreadPool` used by `DDPSolver` to
distribute line search rollouts and segments of the backward pass over a fixed
number of worker threads. Work is submitted in fork-join fashion: each call
blocks until all of its tasks have finished, and tasks only ever write into
result slots (or array slices) owned by a single task.
"""

import os
import warnings
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .utilities import check_int_input


class ThreadPool:
    """
    Fixed-size pool of worker threads, owned by one solver instance.

    Parameters
    ----------
    n_threads : int, default=1
        Number of worker threads. With `n_threads=1` all work runs inline in
        the calling thread.
    priority : int, optional
        Real-time (`SCHED_FIFO`) scheduling priority requested for each worker
        thread. If the platform or process permissions do not allow this, a
        `RuntimeWarning` is issued once and workers run at normal priority.
    """
    def __init__(self, n_threads=1, priority=None):
        self.n_threads = check_int_input(n_threads, 'n_threads', low=1)
        if priority is not None:
            priority = check_int_input(priority, 'priority', low=1)
        self.priority = priority

        self._warned = False
        self._executor = None
        if self.n_threads > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.n_threads, thread_name_prefix='ddp-worker',
                initializer=self._set_priority)
        elif self.priority is not None:
            warnings.warn("priority is ignored when n_threads=1",
                          RuntimeWarning)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown()

    def shutdown(self):
        """Stop the worker threads. Further calls run inline."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _set_priority(self):
        if self.priority is None:
            return
        try:
            os.sched_setscheduler(0, os.SCHED_FIFO,
                                  os.sched_param(self.priority))
        except (AttributeError, OSError) as e:
            if not self._warned:
                self._warned = True
                warnings.warn(f"Could not set worker thread priority to "
                              f"{self.priority}: {e}", RuntimeWarning)

    def map(self, fun, items):
        """
        Apply a function to each item, possibly concurrently.

        Parameters
        ----------
        fun : callable
            Function of a single item.
        items : iterable
            Items to evaluate `fun` on.

        Returns
        -------
        results : list
            `[fun(item) for item in items]`, in input order. Exceptions raised
            by `fun` propagate to the caller after all tasks have finished.
        """
        items = list(items)
        if self._executor is None or len(items) <= 1:
            return [fun(item) for item in items]

        futures = [self._executor.submit(fun, item) for item in items]
        # Join on every task before raising so no worker still writes
        errors = [future.exception() for future in futures]
        for e in errors:
            if e is not None:
                raise e
        return [future.result() for future in futures]

    def segments(self, n_items):
        """
        Split `range(n_items)` into at most `n_threads` contiguous segments of
        near-equal length.

        Parameters
        ----------
        n_items : int
            Number of items to split.

        Returns
        -------
        segments : list of tuples
            `(start, stop)` pairs covering `range(n_items)` in order.
        """
        n_items = check_int_input(n_items, 'n_items', low=0)
        n_segments = max(1, min(self.n_threads, n_items))
        bounds = np.linspace(0, n_items, n_segments + 1).round().astype(int)
        return [(int(start), int(stop))
                for start, stop in zip(bounds[:-1], bounds[1:]) if stop > start]

    def run_segments(self, fun, n_items):
        """
        Evaluate `fun(start, stop)` concurrently on contiguous segments of
        `range(n_items)`. `fun` is expected to write its results into slices
        `[start:stop]` of preallocated arrays.

        Parameters
        ----------
        fun : callable
            Function with signature `fun(start, stop)`.
        n_items : int
            Total number of items.

        Returns
        -------
        results : list
            Return values of `fun` for each segment, in segment order.
        """
        return self.map(lambda bounds: fun(*bounds), self.segments(n_items))
