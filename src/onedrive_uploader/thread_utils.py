# -*- coding: utf-8 -*-
"""
Thread-safe console output and counters.

Scheduler workers run on "Upload_N" threads and the progress renderer on a
timer thread, so every print goes through one lock and, in debug mode, is
tagged with the thread that produced it.
"""

import builtins
import threading

from .utils import is_debug_enabled

_console_lock = threading.Lock()
_builtin_print = builtins.print


def _thread_label():
    """Short label for the current thread, e.g. [Main] or [Upload-2]."""
    name = threading.current_thread().name
    if name == "MainThread":
        return "[Main]"
    prefix, _, number = name.rpartition('_')
    if prefix == "Upload" and number.isdigit():
        # Executor threads count from zero
        return f"[Upload-{int(number) + 1}]"
    return f"[{name[:10]}]"


def thread_safe_print(*args, **kwargs):
    """
    print() replacement that never interleaves lines from different threads.

    With DEBUG=true every non-empty line is prefixed with the thread label.
    """
    with _console_lock:
        if args and is_debug_enabled():
            _builtin_print(_thread_label(), *args, **kwargs)
        else:
            _builtin_print(*args, **kwargs)


def enable_thread_safe_print():
    """Install thread_safe_print as the built-in print. Call before starting workers."""
    builtins.print = thread_safe_print


class LockedCounter:
    """
    Lock-guarded view of a statistics dictionary.

    Worker threads only ever add to counters, so increment() is the one
    mutating operation besides reset().

    Example:
        counter = LockedCounter(stats)
        counter.increment('fragments_uploaded')
        counter.increment('bytes_uploaded', len(fragment))
    """

    def __init__(self, values):
        self._values = values
        self._lock = threading.Lock()

    def increment(self, key, amount=1):
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def get(self, key, default=0):
        with self._lock:
            return self._values.get(key, default)

    def snapshot(self):
        """Return a consistent copy of all counters."""
        with self._lock:
            return dict(self._values)

    def reset(self):
        with self._lock:
            for key in self._values:
                self._values[key] = 0
