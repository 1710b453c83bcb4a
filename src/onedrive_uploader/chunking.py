# -*- coding: utf-8 -*-
"""
Fixed-size fragment splitting for resumable uploads.

Upload sessions require every fragment except the last to have the same size,
and that size must be a multiple of 320 KiB. This module splits byte streams
into such fragments independently of how the bytes are read.
"""

from .utils import is_debug_enabled

# Graph API requires fragment sizes to be multiples of 320 KiB
FRAGMENT_ALIGNMENT = 320 * 1024

# Microsoft recommends staying at or below 60 MiB per fragment
MAX_FRAGMENT_SIZE = 60 * 1024 * 1024

# Read size used when streaming a file into the splitter
DEFAULT_READ_SIZE = 64 * 1024


class FixedChunkSplitter:
    """
    Stateful splitter that turns arbitrary byte slices into fixed-size frames.

    The splitter owns one buffer of exactly ``chunk_size`` bytes. Incoming
    slices fill the buffer; each time it becomes full a copy is emitted and
    the buffer starts over. ``flush()`` emits whatever partial frame remains.

    Example:
        >>> splitter = FixedChunkSplitter(4)
        >>> splitter.feed(b'abcdef')
        [b'abcd']
        >>> splitter.feed(b'gh')
        [b'efgh']
        >>> splitter.flush()
    """

    def __init__(self, chunk_size):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self._buffer = bytearray(chunk_size)
        self._length = 0

    @property
    def pending(self):
        """Number of bytes held in the buffer that have not been emitted yet."""
        return self._length

    def feed(self, data):
        """
        Add a slice of input and return the frames it completed.

        Args:
            data (bytes): Incoming bytes (any length, including zero)

        Returns:
            list: Zero or more immutable frames of exactly chunk_size bytes
        """
        frames = []
        view = memoryview(data)
        while len(view) > 0:
            fits = min(self.chunk_size - self._length, len(view))
            self._buffer[self._length:self._length + fits] = view[:fits]
            self._length += fits
            view = view[fits:]

            if self._length == self.chunk_size:
                frames.append(bytes(self._buffer))
                self._length = 0
        return frames

    def flush(self):
        """
        Emit the remaining partial frame at end of input.

        Returns:
            bytes: The final partial frame, or None when nothing is pending
        """
        if self._length == 0:
            return None
        frame = bytes(self._buffer[:self._length])
        self._length = 0
        return frame


def iter_fragments(stream, chunk_size, read_size=DEFAULT_READ_SIZE):
    """
    Read a binary stream to the end and yield fixed-size fragments.

    Args:
        stream: Binary file-like object positioned at the first byte to send
        chunk_size (int): Fragment size in bytes
        read_size (int): Bytes requested per read() call

    Yields:
        bytes: Fragments of chunk_size bytes, the last one possibly shorter
    """
    splitter = FixedChunkSplitter(chunk_size)
    while True:
        data = stream.read(read_size)
        if not data:
            break
        yield from splitter.feed(data)

    tail = splitter.flush()
    if tail is not None:
        yield tail


def closest_fragment_size(target, alignment=FRAGMENT_ALIGNMENT):
    """
    Return the multiple of ``alignment`` numerically closest to ``target``.

    Ties resolve to the larger multiple.

    Args:
        target (int): Desired size in bytes
        alignment (int): Required divisor

    Returns:
        int: Closest multiple of alignment

    Examples:
        >>> closest_fragment_size(10 * 1024 * 1024)
        10485760
        >>> closest_fragment_size(5 * 1024 * 1024)
        5242880
    """
    lower = (target // alignment) * alignment
    upper = lower + alignment
    if abs(target - lower) < abs(target - upper):
        return lower
    return upper


def compute_fragment_size(fragment_size_mb, alignment=FRAGMENT_ALIGNMENT):
    """
    Compute the process-wide fragment size from a target size in MiB.

    The result is aligned and clamped to [alignment, MAX_FRAGMENT_SIZE].

    Args:
        fragment_size_mb (float): Target fragment size in MiB
        alignment (int): Required divisor (default: 320 KiB)

    Returns:
        int: Fragment size in bytes
    """
    size = closest_fragment_size(int(fragment_size_mb * 1024 * 1024), alignment)
    if size < alignment:
        size = alignment
    if size > MAX_FRAGMENT_SIZE:
        size = (MAX_FRAGMENT_SIZE // alignment) * alignment
    if is_debug_enabled():
        print(f"[DEBUG] Fragment size for {fragment_size_mb} MiB target: {size:,} bytes")
    return size
