# -*- coding: utf-8 -*-
"""
Throttling monitor and run statistics for OneDrive uploads.

Graph only sends the x-ms-throttle-limit-percentage header once an app has
used more than 80% of its limit, so a missing header means "well below".
Workers consult rate_monitor.should_slow_down() after each job and pause
briefly when the last response reported 90% or more.
"""

import threading

from .thread_utils import LockedCounter
from .utils import is_debug_enabled

THROTTLE_WARNING = 0.8
SLOW_DOWN_AT = 0.9

# Operation names passed by GraphClient, in summary order
OPERATIONS = (
    'small_upload',
    'session_create',
    'session_status',
    'fragment_upload',
    'folder_create',
    'metadata_get',
)


class RateLimitMonitor:
    """Collects throttling headers from every Graph response."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        with self._lock:
            self.requests = 0
            self.throttled = 0
            self.warnings = 0
            self.peak = 0.0
            self.last = 0.0
            self.resource_units = 0
            self.by_method = {}
            self.by_operation = dict.fromkeys(OPERATIONS, 0)

    def record_response(self, response, method, operation):
        """
        Record one Graph response.

        Args:
            response: requests.Response (only status_code and headers are read)
            method (str): HTTP method of the request
            operation (str): One of OPERATIONS
        """
        headers = response.headers
        percentage = _as_float(headers.get('x-ms-throttle-limit-percentage'))
        units = _as_float(headers.get('x-ms-resource-unit'))

        with self._lock:
            self.requests += 1
            self.by_method[method] = self.by_method.get(method, 0) + 1
            self.by_operation[operation] = self.by_operation.get(operation, 0) + 1
            self.last = percentage or 0.0
            if percentage:
                self.peak = max(self.peak, percentage)
                if percentage >= 1.0 or response.status_code == 429:
                    self.throttled += 1
                elif percentage >= THROTTLE_WARNING:
                    self.warnings += 1
            elif response.status_code == 429:
                self.throttled += 1
            if units:
                self.resource_units += int(units)

        if percentage and percentage >= 1.0:
            scope = headers.get('x-ms-throttle-scope')
            print(f"[!] THROTTLING DETECTED on {operation}: {percentage:.0%} of limit used"
                  + (f" (scope {scope})" if scope else ""))
        elif percentage and percentage >= THROTTLE_WARNING:
            print(f"[!] Rate limit warning: {percentage:.0%} of limit used")
        elif units and is_debug_enabled():
            print(f"[DEBUG] {operation} cost {int(units)} resource units")

    def should_slow_down(self):
        """True when the most recent response reported at least 90% utilization."""
        with self._lock:
            return self.last >= SLOW_DOWN_AT


def _as_float(value):
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


rate_monitor = RateLimitMonitor()


def print_rate_limiting_summary():
    """Print what the Graph throttling headers reported during the run."""
    monitor = rate_monitor
    with monitor._lock:
        requests = monitor.requests
        throttled = monitor.throttled
        warnings = monitor.warnings
        peak = monitor.peak
        units = monitor.resource_units
        by_method = dict(monitor.by_method)
        by_operation = dict(monitor.by_operation)

    print("\n" + "="*60)
    print("GRAPH API RATE LIMITING SUMMARY")
    print("="*60)
    print(f"   - Requests sent:            {requests:>6}")
    print(f"   - Throttled responses:      {throttled:>6}")
    print(f"   - Warnings (>80%):          {warnings:>6}")
    print(f"   - Peak utilization:         {peak:>6.0%}")
    if units:
        print(f"   - Resource units:           {units:>6}")

    if requests:
        print("\n[API] Requests by method: " +
              ", ".join(f"{method} {count}" for method, count in sorted(by_method.items())))
        print("[OPS] Requests by operation:")
        for operation, count in by_operation.items():
            if count:
                label = operation.replace('_', ' ') + ':'
                print(f"   - {label:<26}{count:>6}")

    if peak >= 1.0 or throttled:
        print("\n[!] Hit throttling limits during this run")
    elif peak >= THROTTLE_WARNING:
        print("\n[!] Approached throttling limits")
    else:
        print("\n[✓] Stayed within throttling limits")
    print("="*60)


class UploadStatistics:
    """Counters for one upload run, shared by all worker threads."""

    FIELDS = (
        'new_files',
        'skipped_files',        # unchanged, detected by size and timestamps
        'failed_files',
        'folders_created',
        'failed_folders',
        'skipped_entries',      # illegal names seen by the walker
        'bytes_uploaded',
        'bytes_skipped',
        'small_uploads',
        'sessions_created',
        'sessions_resumed',
        'sessions_restarted',   # expired or unknown on the server
        'fragments_uploaded',
        'retries_scheduled',
        'permanent_failures',
    )

    def __init__(self):
        self.stats = dict.fromkeys(self.FIELDS, 0)
        self.counter = LockedCounter(self.stats)

    def reset(self):
        self.counter.reset()

    def print_summary(self, total_entries):
        """
        Print the end-of-run upload report.

        Args:
            total_entries (int): Number of files and folders enqueued
        """
        s = self.counter.snapshot()
        print("[STATS] Upload Statistics:")
        print(f"   - Entries enqueued:         {total_entries:>6}")
        print(f"   - Files uploaded:           {s['new_files']:>6}")
        print(f"   - Files unchanged:          {s['skipped_files']:>6}")
        print(f"   - Folders created:          {s['folders_created']:>6}")
        print(f"   - Failed files:             {s['failed_files']:>6}")
        if s['failed_folders']:
            print(f"   - Failed folders:           {s['failed_folders']:>6}")
        if s['skipped_entries']:
            print(f"   - Illegal names skipped:    {s['skipped_entries']:>6}")

        if s['small_uploads'] or s['sessions_created'] or s['sessions_resumed']:
            print("\n[SESSION] Upload Methods:")
            print(f"   - Single request:           {s['small_uploads']:>6}")
            print(f"   - New sessions:             {s['sessions_created']:>6}")
            print(f"   - Resumed sessions:         {s['sessions_resumed']:>6}")
            if s['sessions_restarted']:
                print(f"   - Stale sessions replaced:  {s['sessions_restarted']:>6}")
            print(f"   - Fragments:                {s['fragments_uploaded']:>6}")

        if s['retries_scheduled'] or s['permanent_failures']:
            print("\n[RETRY] Retries:")
            print(f"   - Retries scheduled:        {s['retries_scheduled']:>6}")
            print(f"   - Not retried (permanent):  {s['permanent_failures']:>6}")

        print(f"\n[DATA] Uploaded {format_bytes(s['bytes_uploaded'])}, "
              f"skipped {format_bytes(s['bytes_skipped'])}")


def format_bytes(count):
    """Human-readable size, e.g. format_bytes(1536) == '1.5 KB'."""
    size = float(count)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


upload_stats = UploadStatistics()
