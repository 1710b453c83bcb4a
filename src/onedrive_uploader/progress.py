# -*- coding: utf-8 -*-
"""
Progress reporting for concurrent uploads.

A progress sink hands out one slot per running job. The number of slots equals
the scheduler's concurrency limit; slots are recycled when a job reports
current == total (or is released after a failure), never grown.
"""

import threading

from .utils import is_debug_enabled

_SPINNER = [' ', '|', '/', '-', '\\']
_IDLE_NAME = '<none>'


class ProgressSlot:
    """State of one progress slot."""

    def __init__(self, slot_id):
        self.id = slot_id
        self.name = _IDLE_NAME
        self.current = 0
        self.total = 0
        self.completed = True
        self.status = 0

    def percent(self):
        if self.completed:
            return None
        if self.total <= 0:
            return 0
        return min(100, -(-self.current * 100 // self.total))


class ProgressSink:
    """
    Call contract used by the upload manager.

    start() claims a slot and returns its handle, update() reports cumulative
    progress for that slot.
    """

    def start(self, name, current, total):
        raise NotImplementedError

    def update(self, slot_id, current):
        raise NotImplementedError

    def release(self, slot_id):
        """Free a slot whose job ended without reaching its total."""

    def complete(self):
        """Stop any background rendering."""


class NullProgress(ProgressSink):
    """Progress sink that records nothing."""

    def start(self, name, current, total):
        return 0

    def update(self, slot_id, current):
        pass


class ConsoleProgress(ProgressSink):
    """
    Fixed-size set of progress slots rendered to the console once per second.

    Args:
        size (int): Number of slots (the concurrency limit)
        interval (float): Seconds between renders
        render (bool): Start the background renderer
    """

    def __init__(self, size, interval=1.0, render=True):
        if size < 1:
            raise ValueError("size must be at least 1")
        self.size = size
        self.interval = interval
        self.slots = [ProgressSlot(idx) for idx in range(size)]
        self._lock = threading.Lock()
        self._timer = None
        self._stopped = False
        if render:
            self._schedule()

    def _schedule(self):
        if self._stopped:
            return
        self._timer = threading.Timer(self.interval, self._render_tick)
        self._timer.name = "Progress"
        self._timer.daemon = True
        self._timer.start()

    def _render_tick(self):
        self.render()
        self._schedule()

    def render(self):
        """Print one status line per slot."""
        with self._lock:
            lines = []
            running = sum(1 for slot in self.slots if not slot.completed)
            lines.append(f"Tasks active ({running} / {self.size})")
            for slot in self.slots:
                percent = slot.percent()
                perc = f"{'-' if percent is None else percent} %".rjust(5)
                lines.append(f"{slot.id}: {perc} ({_SPINNER[slot.status]}) || {slot.name}")
        for line in lines:
            print(line)

    def start(self, name, current, total):
        """
        Claim a free slot.

        Returns:
            int: Slot handle

        Raises:
            RuntimeError: If every slot is in use
        """
        with self._lock:
            for slot in self.slots:
                if slot.completed:
                    # A job that starts at its total never sends an update
                    slot.completed = current == total
                    slot.name = _IDLE_NAME if slot.completed else name
                    slot.current = current
                    slot.total = total
                    slot.status = 0
                    if is_debug_enabled():
                        print(f"[DEBUG] Progress slot {slot.id} -> {name} ({current}/{total})")
                    return slot.id
        raise RuntimeError("No room for new progress bar")

    def update(self, slot_id, current):
        """Record cumulative progress; the slot is recycled when current reaches total."""
        with self._lock:
            slot = self.slots[slot_id]
            slot.current = current
            slot.completed = current == slot.total
            if slot.completed:
                slot.name = _IDLE_NAME
                slot.status = 0
            else:
                slot.status = slot.status + 1 if slot.status < len(_SPINNER) - 1 else 1

    def release(self, slot_id):
        with self._lock:
            slot = self.slots[slot_id]
            slot.completed = True
            slot.name = _IDLE_NAME
            slot.status = 0

    def complete(self):
        self._stopped = True
        if self._timer is not None:
            self._timer.cancel()

    def free_slots(self):
        """Number of slots available for new jobs."""
        with self._lock:
            return sum(1 for slot in self.slots if slot.completed)
