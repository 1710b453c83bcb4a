# -*- coding: utf-8 -*-
"""
Parallel upload orchestration for OneDrive.

ParallelUploader feeds walker entries into a Scheduler and runs each one
through the UploadSessionManager. Errors raised by the manager are mapped to
job results here, so recoverable failures never escape a worker.
"""

import time

from .errors import FatalError, FileSystemError, PermanentError, ProtocolError, TransportError
from .file_handler import WalkMode, walk
from .monitoring import rate_monitor, upload_stats
from .retry_policy import classify
from .scheduler import Failure, PermanentFailure, RetryAfter, Scheduler, Success
from .utils import is_debug_enabled


class ParallelUploader:
    """
    Parallel upload orchestrator.

    Example:
        uploader = ParallelUploader(manager, max_workers=4, max_retry=3)
        uploader.process(config.source_path, pattern, config.exclude_patterns_list)
        failed = uploader.wait()
    """

    def __init__(self, manager, max_workers=4, max_retry=3, sleep=time.sleep, jitter=None):
        """
        Initialize parallel uploader.

        Args:
            manager (UploadSessionManager): Performs the uploads
            max_workers (int): Maximum concurrent jobs
            max_retry (int): Retries granted per entry
            sleep: Function used for retry delays and throttling pauses
            jitter: Function returning the random part of retry delays
        """
        self.manager = manager
        self.max_workers = max_workers
        self._sleep = sleep
        self.total_entries = 0

        self.scheduler = Scheduler(
            self.upload_worker,
            max_concurrency=max_workers,
            retry_limit=max_retry,
            sleep=sleep,
            jitter=jitter,
            on_retry=self._count_retry
        )
        self.scheduler.on_drain(self._report_drain)

    def upload_worker(self, entry):
        """
        Worker function run by the scheduler for one walker entry.

        Args:
            entry (FileEntry): File or folder to process

        Returns:
            Success, RetryAfter, Failure or PermanentFailure
        """
        try:
            if entry.is_file:
                self.manager.upload_file(entry)
            else:
                self.manager.create_folder(entry)
        except FatalError:
            raise
        except TransportError as e:
            decision = classify(e.status_code, e.headers)
            if decision.abort:
                print(f"[!] {entry.rel_path}: {decision.reason} ({e.status_code}), not retrying")
                upload_stats.counter.increment('permanent_failures')
                return PermanentFailure(PermanentError(f"{entry.rel_path}: {e}"))
            print(f"[!] {entry.rel_path}: {str(e)[:200]} ({decision.reason}, suggested delay {decision.delay}s)")
            return RetryAfter(decision.delay)
        except ProtocolError as e:
            print(f"[!] {entry.rel_path}: {e}")
            return Failure(e)
        except (FileSystemError, OSError) as e:
            print(f"[!] Skipping {entry.rel_path}: {e}")
            upload_stats.counter.increment('permanent_failures')
            return PermanentFailure(e)

        # Brief pause if approaching limits
        if rate_monitor.should_slow_down():
            self._sleep(1)
        return Success()

    def _count_retry(self, job):
        upload_stats.counter.increment('retries_scheduled')

    def _report_drain(self):
        failed = self.scheduler.failed
        finished = self.scheduler.finished
        print(f"[✓] Upload queue drained: {len(finished)} succeeded, {len(failed)} failed")
        for job in failed:
            entry = job.payload
            cause = getattr(job.last_result, 'cause', None)
            kind = 'file' if entry.is_file else 'folder'
            reason = f": {str(cause)[:200]}" if cause is not None else ""
            print(f"[!] Failed {kind} after {job.retry_count} retries: {entry.rel_path}{reason}")
            upload_stats.counter.increment('failed_files' if entry.is_file else 'failed_folders')

    def process(self, base_dir, pattern=None, exclude_patterns=None):
        """
        Walk base_dir and enqueue every folder, then every file.

        Both passes are enqueued while the scheduler is paused so the queue
        cannot drain in between. Folder and file jobs still run concurrently.

        Args:
            base_dir (str): Local directory to upload
            pattern (re.Pattern): Optional name filter
            exclude_patterns (list): Glob-style exclusion patterns

        Returns:
            int: Number of entries enqueued
        """
        count = 0
        self.scheduler.pause()
        try:
            for entry in walk(base_dir, pattern, WalkMode.FOLDERS, exclude_patterns):
                self.scheduler.enqueue(entry)
                count += 1
            folders = count
            for entry in walk(base_dir, pattern, WalkMode.FILES, exclude_patterns, quiet=True):
                self.scheduler.enqueue(entry)
                count += 1
        finally:
            self.scheduler.resume()

        if is_debug_enabled():
            print(f"[DEBUG] Enqueued {folders} folders and {count - folders} files")
        self.total_entries += count
        return count

    def wait(self, timeout=None):
        """
        Wait for all jobs and release the worker threads.

        Returns:
            int: Number of failed jobs

        Raises:
            FatalError: Propagated from a worker (e.g. AuthenticationError)
        """
        try:
            self.scheduler.wait(timeout)
        finally:
            self.scheduler.shutdown(wait=self.scheduler.fatal_error is None)
        return len(self.scheduler.failed)
