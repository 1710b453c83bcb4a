# -*- coding: utf-8 -*-
"""
Shared utility functions for OneDrive upload operations.

This module provides common helper functions used across multiple modules.
"""

import os
import posixpath


def is_debug_enabled():
    """
    Check if general debug mode is enabled via DEBUG environment variable.

    This controls per-fragment messages, session handling details, retry
    decisions and other verbose upload details. Does not affect:
    - Configuration banner
    - File discovery counts
    - Final summary statistics
    - Error messages

    Returns:
        bool: True if general debug mode is enabled, False otherwise
    """
    return os.environ.get('DEBUG', 'false').lower() == 'true'


def is_progress_enabled():
    """
    Check if the periodic progress renderer is enabled via SHOW_PROGRESS.

    Returns:
        bool: True unless SHOW_PROGRESS is set to 'false'
    """
    return os.environ.get('SHOW_PROGRESS', 'true').lower() == 'true'


def normalize_remote_path(*parts):
    """
    Join path components into a normalized drive path.

    Backslashes become forward slashes, empty components are dropped and the
    result has no leading or trailing slash.

    Args:
        *parts (str): Path components (e.g. destination root and relative path)

    Returns:
        str: Normalized path such as 'Backup/photos/2024/img.jpg'

    Examples:
        >>> normalize_remote_path('/Backup/', 'photos\\\\img.jpg')
        'Backup/photos/img.jpg'
        >>> normalize_remote_path('/', '')
        ''
    """
    cleaned = [p.replace('\\', '/').strip('/') for p in parts if p]
    joined = posixpath.normpath('/'.join(c for c in cleaned if c)) if any(cleaned) else ''
    if joined in ('.', '/'):
        return ''
    return joined.strip('/')
