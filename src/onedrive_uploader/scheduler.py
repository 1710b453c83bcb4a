# -*- coding: utf-8 -*-
"""
Bounded-concurrency job scheduler with retry and backoff.

The scheduler keeps four lists (waiting, active, finished, failed) and a
dispatch routine that moves jobs from waiting to active while fewer than
``max_concurrency`` jobs run. Workers run on a thread pool; every list
mutation happens under one lock inside the dispatch and completion routines.

Retried jobs go back to the front of the waiting list, so they run before
jobs that were never attempted. A retried attempt waits for the delay the
previous failure suggested plus up to three seconds of jitter.

Worker contract:
    worker(payload) -> JobResult

    Return Success(), RetryAfter(seconds), Failure(cause) or
    PermanentFailure(cause). Ordinary exceptions count as Failure.
    FatalError subclasses stop the run and are re-raised from wait().

    With ``pass_completion=True`` the worker is called as
    worker(payload, done) and must call done(result) exactly once. The
    legacy values are accepted: done() is success, done(<number>) a retry
    after that many seconds, done(<anything else>) an immediate retry.
"""

import itertools
import random
import threading
import time
from collections import deque, namedtuple
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from .errors import FatalError, InvalidPayload, InvariantViolation
from .utils import is_debug_enabled

# Upper bound (exclusive) of the random jitter added to retry delays, in seconds
MAX_RETRY_JITTER_SECONDS = 3


class JobState(Enum):
    WAITING = 'waiting'
    ACTIVE = 'active'
    FINISHED = 'finished'
    FAILED = 'failed'


Success = namedtuple('Success', [])
RetryAfter = namedtuple('RetryAfter', ['seconds'])
Failure = namedtuple('Failure', ['cause'])
PermanentFailure = namedtuple('PermanentFailure', ['cause'])

JOB_RESULT_TYPES = (Success, RetryAfter, Failure, PermanentFailure)


def normalize_result(value):
    """
    Convert a worker's completion value into a tagged result.

    Args:
        value: A JobResult, None (success), a number (retry after that many
            seconds) or any other value (immediate retry)

    Returns:
        One of Success, RetryAfter, Failure, PermanentFailure
    """
    if isinstance(value, JOB_RESULT_TYPES):
        return value
    if value is None:
        return Success()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return RetryAfter(max(0, value))
    return Failure(value)


class Job:
    """
    One unit of work owned by the scheduler.

    Attributes:
        id (int): Sequence number assigned on enqueue
        payload: The value handed to the worker
        retry_count (int): Number of retries already granted
        delay (float): Server-suggested delay recorded by the last failure
        state (JobState): Lifecycle state
        last_result: Result of the most recent attempt
    """

    def __init__(self, job_id, payload):
        self.id = job_id
        self.payload = payload
        self.retry_count = 0
        self.delay = 0
        self.state = JobState.WAITING
        self.last_result = None

    def __repr__(self):
        return f"Job(id={self.id}, state={self.state.value}, retries={self.retry_count}, payload={self.payload!r})"


class JobCompletion:
    """
    One-shot completion handle for a single dispatch of a job.

    Raises InvariantViolation if resolved twice.
    """

    def __init__(self, scheduler, job):
        self._scheduler = scheduler
        self._job = job
        self._lock = threading.Lock()
        self.called = False

    def __call__(self, result=None):
        with self._lock:
            if self.called:
                raise InvariantViolation(
                    f"Completion for job {self._job.id} can only be called once per dispatch"
                )
            self.called = True
        self._scheduler._complete(self._job, normalize_result(result))


class Scheduler:
    """
    Retrying job queue that runs at most ``max_concurrency`` jobs at once.

    Example:
        scheduler = Scheduler(worker).set_concurrency(4).set_retry_limit(3)
        scheduler.on_drain(lambda: print("done"))
        scheduler.pause()
        for entry in entries:
            scheduler.enqueue(entry)
        scheduler.resume()
        scheduler.wait()
    """

    def __init__(self, worker, max_concurrency=1, retry_limit=0, pass_completion=False,
                 sleep=time.sleep, jitter=None, on_saturation=None, on_retry=None):
        """
        Args:
            worker: Callable run for every dispatched job (see module docstring)
            max_concurrency (int): Maximum number of active jobs
            retry_limit (int): Retries granted per job before it fails
            pass_completion (bool): Call worker(payload, done) instead of worker(payload)
            sleep: Function used to wait before retried attempts
            jitter: Function returning the random extra delay for retries
            on_saturation: Called with True/False when saturation changes
            on_retry: Called with the job each time it is requeued
        """
        self._worker = worker
        self._pass_completion = pass_completion
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.random() * MAX_RETRY_JITTER_SECONDS)
        self._on_saturation = on_saturation
        self._on_retry = on_retry
        self._on_drain = None

        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._waiting = deque()
        self._active = []
        self._finished = []
        self._failed = []

        self._max_concurrency = 1
        self._buffer = 0
        self._retry_limit = 0
        self._paused = False
        self._saturated = False
        self._drain_fired = False
        self._drained = threading.Event()
        self._fatal = None
        self._executor = None
        self._executor_size = 0

        self.set_concurrency(max_concurrency)
        self.set_retry_limit(retry_limit)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_concurrency(self, max_concurrency):
        """Set the maximum number of simultaneously active jobs."""
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        with self._lock:
            self._max_concurrency = max_concurrency
            self._buffer = max_concurrency // 4
        return self

    def set_retry_limit(self, retry_limit):
        """Set how many times a failed job is requeued before it fails."""
        if retry_limit < 0:
            raise ValueError("retry_limit must be non-negative")
        with self._lock:
            self._retry_limit = retry_limit
        return self

    def on_drain(self, callback):
        """Register the callback fired once each time the queue becomes empty."""
        self._on_drain = callback
        return self

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def enqueue(self, payload):
        """
        Add a payload to the end of the waiting list.

        Returns:
            Job: The created job

        Raises:
            InvalidPayload: If payload is None or callable
        """
        if payload is None or callable(payload):
            raise InvalidPayload(f"Unable to add {type(payload).__name__} to queue")

        with self._lock:
            job = Job(next(self._ids), payload)
            self._waiting.append(job)
            self._drain_fired = False
            self._drained.clear()

        self._dispatch()
        return job

    def pause(self):
        """Stop dispatching new jobs. Active jobs keep running."""
        with self._lock:
            self._paused = True

    def resume(self):
        """Resume dispatching."""
        with self._lock:
            self._paused = False
        self._dispatch()

    def wait(self, timeout=None):
        """
        Block until the queue drains or a fatal error occurs.

        Args:
            timeout (float): Maximum seconds to wait (None waits forever)

        Returns:
            bool: True if drained, False on timeout

        Raises:
            FatalError: The fatal error raised on a worker thread
        """
        drained = self._drained.wait(timeout)
        if self._fatal is not None:
            raise self._fatal
        return drained

    def shutdown(self, wait=True):
        """Release the worker threads."""
        with self._lock:
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @property
    def finished(self):
        with self._lock:
            return list(self._finished)

    @property
    def failed(self):
        with self._lock:
            return list(self._failed)

    @property
    def active_count(self):
        with self._lock:
            return len(self._active)

    @property
    def waiting_count(self):
        with self._lock:
            return len(self._waiting)

    @property
    def saturated(self):
        with self._lock:
            return self._saturated

    @property
    def paused(self):
        with self._lock:
            return self._paused

    @property
    def fatal_error(self):
        return self._fatal

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_executor_locked(self):
        if self._executor is None or self._executor_size != self._max_concurrency:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_concurrency,
                thread_name_prefix="Upload"
            )
            self._executor_size = self._max_concurrency
        return self._executor

    def _update_saturation_locked(self):
        """Return the new saturation state when it changed, else None."""
        active = len(self._active)
        if not self._saturated and active >= self._max_concurrency:
            self._saturated = True
            return True
        if self._saturated and active <= self._max_concurrency - self._buffer:
            self._saturated = False
            return False
        return None

    def _notify_saturation(self, changes):
        for state in changes:
            if is_debug_enabled():
                print(f"[DEBUG] Scheduler {'saturated' if state else 'unsaturated'}")
            if self._on_saturation is not None:
                self._on_saturation(state)

    def _attempt_delay(self, job):
        if job.retry_count == 0:
            return 0
        return job.delay + self._jitter()

    def _dispatch(self):
        """Start waiting jobs while capacity allows, then check for drain."""
        launches = []
        saturation_changes = []
        fire_drain = False

        with self._lock:
            while (self._fatal is None and not self._paused
                   and len(self._active) < self._max_concurrency and self._waiting):
                job = self._waiting.popleft()
                job.state = JobState.ACTIVE
                self._active.append(job)
                change = self._update_saturation_locked()
                if change is not None:
                    saturation_changes.append(change)
                launches.append((job, self._attempt_delay(job), self._get_executor_locked()))

            if not self._waiting and not self._active and not self._drain_fired and self._fatal is None:
                self._drain_fired = True
                fire_drain = True

        self._notify_saturation(saturation_changes)

        for job, delay, executor in launches:
            if is_debug_enabled():
                print(f"[DEBUG] Dispatching job {job.id} (attempt {job.retry_count + 1}, delay {delay:.1f}s)")
            future = executor.submit(self._run, job, delay, JobCompletion(self, job))
            future.add_done_callback(self._on_future_done)

        if fire_drain:
            if self._on_drain is not None:
                self._on_drain()
            self._drained.set()

    def _run(self, job, delay, completion):
        """Worker-thread body for one dispatch."""
        if delay > 0:
            self._sleep(delay)

        if self._pass_completion:
            try:
                self._worker(job.payload, completion)
            except FatalError:
                raise
            except Exception as e:
                if completion.called:
                    print(f"[!] Worker raised after completing job {job.id}: {e}")
                else:
                    completion(Failure(e))
            return

        try:
            result = self._worker(job.payload)
        except FatalError:
            raise
        except Exception as e:
            print(f"[!] Worker raised for job {job.id}: {type(e).__name__}: {str(e)[:200]}")
            result = Failure(e)
        completion(result)

    def _on_future_done(self, future):
        error = future.exception()
        if error is None:
            return
        if not isinstance(error, FatalError):
            error = InvariantViolation(f"Unexpected scheduler error: {type(error).__name__}: {error}")
        with self._lock:
            if self._fatal is None:
                self._fatal = error
        print(f"[!] Fatal error, stopping dispatch: {error}")
        self._drained.set()

    def _complete(self, job, result):
        """Apply a job's result to the lists and continue dispatching."""
        requeued = False
        with self._lock:
            if job not in self._active:
                raise InvariantViolation(f"Job {job.id} completed while not active")
            self._active.remove(job)
            job.last_result = result

            if isinstance(result, Success):
                job.state = JobState.FINISHED
                self._finished.append(job)
            elif isinstance(result, PermanentFailure):
                job.state = JobState.FAILED
                self._failed.append(job)
            elif job.retry_count < self._retry_limit:
                job.retry_count += 1
                job.delay = result.seconds if isinstance(result, RetryAfter) else 0
                job.state = JobState.WAITING
                self._waiting.appendleft(job)
                requeued = True
            else:
                job.state = JobState.FAILED
                self._failed.append(job)

            change = self._update_saturation_locked()

        if change is not None:
            self._notify_saturation([change])

        if requeued and self._on_retry is not None:
            self._on_retry(job)

        if is_debug_enabled():
            if requeued:
                print(f"[DEBUG] Job {job.id} requeued (retry {job.retry_count}/{self._retry_limit}, "
                      f"suggested delay {job.delay}s)")
            else:
                print(f"[DEBUG] Job {job.id} {job.state.value}")

        self._dispatch()
