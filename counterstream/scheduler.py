"""
Single-threaded cadence scheduler.

Owns every periodic job (render, channel fetch, stream fetch, encoder health)
and one-shot delayed calls. All callbacks run on the thread that calls run(),
so they never overlap. Blocking I/O goes to a small worker pool through
submit(); its result is posted back and handled on the scheduler thread.
"""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)

MAX_IDLE_WAIT = 0.5  # upper bound on a single wait when nothing is due


class Job:
    """A repeating callback."""

    def __init__(self, name, period, callback, next_due):
        self.name = name
        self.period = period
        self.callback = callback
        self.next_due = next_due
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def __repr__(self):
        return f"Job({self.name!r}, period={self.period})"


class Timer:
    """Handle for a call_later() callback."""

    def __init__(self, callback):
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class Scheduler:
    """Runs repeating jobs, delayed calls and worker completions on one thread."""

    def __init__(self, clock=time.monotonic, max_workers=2, on_fault=None):
        self.clock = clock
        self.on_fault = on_fault

        self._jobs = []
        self._timers = []  # heap of (due, seq, Timer)
        self._seq = itertools.count()
        self._posted = deque()
        self._posted_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stopped = threading.Event()

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fetch")
        self._in_flight = set()

    @property
    def running(self):
        return not self._stopped.is_set()

    # ---------- registration ---------------------------------------------------

    def every(self, name, period, callback, first_delay=0.0):
        """Run callback every period seconds, first after first_delay."""
        if period <= 0:
            raise ValueError(f"Job {name!r} needs a positive period, got {period}")
        job = Job(name, period, callback, self.clock() + first_delay)
        self._jobs.append(job)
        return job

    def call_later(self, delay, callback):
        timer = Timer(callback)
        heapq.heappush(self._timers, (self.clock() + delay, next(self._seq), timer))
        self._wakeup.set()
        return timer

    def post(self, callback):
        """Queue callback for the scheduler thread. Safe to call from any thread."""
        with self._posted_lock:
            self._posted.append(callback)
        self._wakeup.set()

    def submit(self, name, io_fn, on_done):
        """
        Run io_fn on a worker thread, then on_done(result, error) on the scheduler
        thread. Returns False (and does nothing) while an earlier submit under the
        same name is still in flight.
        """
        if not self.running:
            return False
        if self.in_flight(name):
            logger.debug("%s still in flight, skipping this turn", name)
            return False

        self._in_flight.add(name)

        def finish(future):
            if future.cancelled():
                return
            error = future.exception()
            result = None if error is not None else future.result()
            self.post(lambda: self._complete(name, on_done, result, error))

        self._executor.submit(io_fn).add_done_callback(finish)
        return True

    def in_flight(self, name):
        return name in self._in_flight

    def _complete(self, name, on_done, result, error):
        self._in_flight.discard(name)
        on_done(result, error)

    # ---------- execution ------------------------------------------------------

    def _invoke(self, label, callback):
        try:
            callback()
        except Exception as e:
            logger.exception("Unhandled error in scheduled callback %s", label)
            if self.on_fault is not None:
                self.on_fault(e)

    def run_pending(self):
        """Run everything that is due now. Returns the number of callbacks run."""
        ran = 0

        while self.running:
            with self._posted_lock:
                if not self._posted:
                    break
                callback = self._posted.popleft()
            self._invoke("posted", callback)
            ran += 1

        now = self.clock()
        while self.running and self._timers and self._timers[0][0] <= now:
            _, _, timer = heapq.heappop(self._timers)
            if not timer.cancelled:
                self._invoke("timer", timer.callback)
                ran += 1

        for job in list(self._jobs):
            if not self.running:
                break
            if job.cancelled or job.next_due > now:
                continue
            job.next_due += job.period
            # Fell behind: resume from now rather than firing a burst
            if job.next_due <= now:
                job.next_due = now + job.period
            self._invoke(job.name, job.callback)
            ran += 1

        self._jobs = [job for job in self._jobs if not job.cancelled]
        return ran

    def time_until_next(self):
        """Seconds until the earliest job or timer is due (0 if one is overdue)."""
        dues = [job.next_due for job in self._jobs if not job.cancelled]
        dues.extend(due for due, _, timer in self._timers if not timer.cancelled)
        if not dues:
            return MAX_IDLE_WAIT
        return min(max(min(dues) - self.clock(), 0.0), MAX_IDLE_WAIT)

    def run(self):
        """Loop until stop() is called."""
        logger.debug("Scheduler running with %d jobs", len(self._jobs))
        while self.running:
            self._wakeup.clear()
            self.run_pending()
            if not self.running:
                break
            self._wakeup.wait(self.time_until_next())
        logger.debug("Scheduler stopped")

    def stop(self):
        """
        Stop running callbacks. Only sets flags, so it is safe from signal
        handlers and other threads.
        """
        self._stopped.set()
        self._wakeup.set()

    def close(self):
        """Stop and release the worker pool. In-flight I/O finishes on its own; results are dropped."""
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
