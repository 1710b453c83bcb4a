# -*- coding: utf-8 -*-
"""
Local file tree traversal for OneDrive uploads.

This module provides the lazy directory walker, name validation and the
exclusion filters applied while walking.
"""

import fnmatch
import os
import re
from collections import namedtuple
from enum import Enum

from .errors import FileSystemError
from .monitoring import upload_stats
from .utils import is_debug_enabled

# Characters OneDrive does not accept in file or folder names
ILLEGAL_NAME_CHARACTERS = '/\\*<>?:|'

_PATTERN_FLAGS = {
    'i': re.IGNORECASE,
    'm': re.MULTILINE,
    's': re.DOTALL,
    'x': re.VERBOSE,
}


class WalkMode(Enum):
    FILES = 'files'
    FOLDERS = 'folders'
    BOTH = 'both'


FileEntry = namedtuple('FileEntry', ['is_file', 'filename', 'size', 'rel_dir', 'rel_path', 'absolute_path'])
FileEntry.__doc__ = """
One file or folder found by walk().

Fields:
    is_file (bool): True for files, False for folders
    filename (str): Entry name
    size (int): File size in bytes (0 for folders)
    rel_dir (str): Parent directory relative to the walk root ('' at top level)
    rel_path (str): Entry path relative to the walk root, '/' separated
    absolute_path (str): Local path of the entry
"""


def validate_name(name):
    """
    Check that a file or folder name can be stored in the drive.

    Args:
        name (str): Entry name

    Raises:
        FileSystemError: If the name contains an illegal character or ends with a period
    """
    for char in ILLEGAL_NAME_CHARACTERS:
        if char in name:
            raise FileSystemError(f"Illegal character {char!r} in name: {name}")
    if name.endswith('.'):
        raise FileSystemError(f"Name cannot end with a period: {name}")


def parse_pattern(value):
    """
    Compile a name filter given as '/body/flags' or as a bare expression.

    Args:
        value (str): Pattern such as '/\\.mp4$/i'

    Returns:
        re.Pattern: Compiled expression, or None if value is empty

    Raises:
        ValueError: If the expression does not compile

    Examples:
        >>> parse_pattern('/\\.JPG$/i').search('img.jpg') is not None
        True
    """
    if not value:
        return None
    body, flags = value, 0
    if value.startswith('/') and value.rfind('/') > 0:
        end = value.rfind('/')
        body = value[1:end]
        for letter in value[end + 1:]:
            flags |= _PATTERN_FLAGS.get(letter, 0)
    try:
        return re.compile(body, flags)
    except re.error as e:
        raise ValueError(f"Invalid file pattern {value!r}: {e}") from None


def should_exclude_path(path, exclude_patterns):
    """
    Check if a file or directory path should be excluded based on exclusion patterns.

    The basename and the full path are matched with fnmatch; patterns without
    wildcards also match any single path component (e.g. 'node_modules').

    Args:
        path (str): File or directory path to check (can be absolute or relative)
        exclude_patterns (list): Exclusion patterns (e.g., ['*.tmp', '__pycache__'])

    Returns:
        bool: True if path should be excluded, False otherwise

    Examples:
        >>> should_exclude_path('file.tmp', ['*.tmp'])
        True
        >>> should_exclude_path('src/__pycache__/module.pyc', ['__pycache__'])
        True
        >>> should_exclude_path('docs/report.pdf', ['*.tmp', 'log'])
        False
    """
    if not exclude_patterns:
        return False

    normalized_path = path.replace('\\', '/')
    basename = os.path.basename(normalized_path)
    components = normalized_path.split('/')

    for pattern in exclude_patterns:
        if fnmatch.fnmatch(basename, pattern):
            return True
        if not any(c in pattern for c in '*?[') and pattern in components:
            return True
        if fnmatch.fnmatch(normalized_path, pattern):
            return True
        # Bare extensions ('tmp') match like '*.tmp'
        if not any(c in pattern for c in '*?[./'):
            if fnmatch.fnmatch(basename, f'*.{pattern}'):
                return True
    return False


def _sorted_entries(directory, quiet=False):
    """Directory entries sorted by name. Unreadable directories yield nothing."""
    try:
        with os.scandir(directory) as it:
            return iter(sorted(it, key=lambda e: e.name))
    except OSError as e:
        if not quiet:
            print(f"[!] Skipping unreadable directory {directory}: {e}")
            upload_stats.counter.increment('skipped_entries')
        return iter(())


def walk(base_dir, pattern=None, mode=WalkMode.BOTH, exclude_patterns=None, quiet=False):
    """
    Lazily walk a directory tree, depth first in name order.

    A directory is yielded before its contents. Entries with illegal names are
    reported and skipped together with everything below them. Excluded entries
    are skipped silently.

    Args:
        base_dir (str): Root directory (not itself yielded)
        pattern (re.Pattern): Optional filter applied to entry names
        mode (WalkMode): Which entry kinds to yield
        exclude_patterns (list): Glob-style exclusion patterns
        quiet (bool): Do not report skipped entries (for a repeated walk)

    Yields:
        FileEntry: Files and folders below base_dir
    """
    stack = [('', _sorted_entries(base_dir, quiet))]

    while stack:
        rel_dir, entries = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            continue

        rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name

        try:
            validate_name(entry.name)
        except FileSystemError as e:
            if not quiet:
                print(f"[!] Skipping {rel_path}: {e}")
                upload_stats.counter.increment('skipped_entries')
            continue

        if should_exclude_path(rel_path, exclude_patterns):
            if is_debug_enabled() and not quiet:
                print(f"[DEBUG] Excluded: {rel_path}")
            continue

        try:
            is_dir = entry.is_dir()
            size = 0 if is_dir else entry.stat().st_size
        except OSError as e:
            if not quiet:
                print(f"[!] Skipping unreadable entry {rel_path}: {e}")
                upload_stats.counter.increment('skipped_entries')
            continue

        matches = pattern is None or pattern.search(entry.name) is not None
        if is_dir:
            if matches and mode in (WalkMode.FOLDERS, WalkMode.BOTH):
                yield FileEntry(False, entry.name, 0, rel_dir, rel_path, entry.path)
            stack.append((rel_path, _sorted_entries(entry.path, quiet)))
        elif matches and mode in (WalkMode.FILES, WalkMode.BOTH):
            yield FileEntry(True, entry.name, size, rel_dir, rel_path, entry.path)
