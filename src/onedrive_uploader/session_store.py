# -*- coding: utf-8 -*-
"""
Persistent state for resumable upload sessions.

Each in-progress chunked upload keeps one JSON record on disk, named by a
hash of the target path, so a later run (or another process) uploading the
same path resumes the same server-side session. Records always mirror the
last response acknowledged by the server and are removed once the transfer
completes.
"""

import json
import os
import tempfile
from collections import namedtuple
from datetime import datetime, timezone

import xxhash

from .errors import ProtocolError
from .utils import is_debug_enabled, normalize_remote_path

DEFAULT_SESSION_DIR = os.path.join(tempfile.gettempdir(), 'onedrive')


FragmentRange = namedtuple('FragmentRange', ['start', 'end'])
FragmentRange.__doc__ = """
A byte range the server still expects, parsed from "from-till" or "from-".

Fields:
    start (int): First expected byte
    end (int): Last expected byte (inclusive), or None for "to end of file"
"""


def parse_range(value):
    """
    Parse one entry of a nextExpectedRanges list.

    Args:
        value (str): Range string such as '500000-' or '0-327679'

    Returns:
        FragmentRange: The parsed range

    Raises:
        ProtocolError: If the string is not a valid range
    """
    if not isinstance(value, str) or '-' not in value:
        raise ProtocolError(f"Malformed expected range: {value!r}")
    start_text, _, end_text = value.strip().partition('-')
    try:
        start = int(start_text)
        end = int(end_text) if end_text else None
    except ValueError:
        raise ProtocolError(f"Malformed expected range: {value!r}") from None
    if start < 0 or (end is not None and end < start):
        raise ProtocolError(f"Malformed expected range: {value!r}")
    return FragmentRange(start, end)


def parse_graph_datetime(value):
    """
    Parse an ISO-8601 timestamp as returned by Graph (e.g. '2024-01-29T09:21:55.523Z').

    Returns:
        datetime: Timezone-aware UTC datetime, or None if value is empty
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_graph_datetime(value):
    """Format a datetime as a UTC ISO-8601 string with a 'Z' suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


def session_identity(target_path):
    """
    Derive the session identity for a target path.

    The identity only depends on the normalized path, so every process
    uploading the same target computes the same value.

    Args:
        target_path (str): Path of the file in the drive (destination + relative path)

    Returns:
        str: 32-character hexadecimal xxHash128 digest
    """
    normalized = normalize_remote_path(target_path)
    return xxhash.xxh128(normalized.encode('utf-8')).hexdigest()


class UploadSession:
    """
    Resumable transfer state for one file.

    Attributes:
        target_path (str): Normalized drive path of the file
        identity (str): Hash of target_path, also the record file name
        upload_url (str): Session URL returned by createUploadSession
        expiration (datetime): When the server will discard the session
        next_expected_ranges (list): Range strings reported by the server
        fragment_size (int): Fragment size used for this transfer
        resumable (bool): True when the state was loaded from disk
    """

    def __init__(self, target_path, fragment_size, store=None):
        self.target_path = normalize_remote_path(target_path)
        self.identity = session_identity(self.target_path)
        self.fragment_size = fragment_size
        self.upload_url = None
        self.expiration = None
        self.next_expected_ranges = []
        self.resumable = False
        self._store = store

    def set_data(self, data, store=True):
        """
        Merge fields from a server response (or a persisted record).

        Only keys present in data are updated. When store is True the new
        state is written to disk.

        Args:
            data (dict): Response body with any of uploadUrl,
                expirationDateTime, nextExpectedRanges
            store (bool): Persist the updated state
        """
        if 'expirationDateTime' in data:
            self.expiration = parse_graph_datetime(data['expirationDateTime'])
        if 'nextExpectedRanges' in data:
            ranges = data['nextExpectedRanges'] or []
            if not isinstance(ranges, list):
                raise ProtocolError(f"nextExpectedRanges is not a list: {ranges!r}")
            for value in ranges:
                parse_range(value)
            self.next_expected_ranges = list(ranges)
        if 'uploadUrl' in data:
            self.upload_url = data['uploadUrl']

        if store and self._store is not None:
            self._store.save(self)

    def expected_ranges(self):
        """Return the server-reported ranges as FragmentRange tuples."""
        return [parse_range(value) for value in self.next_expected_ranges]

    def start_position(self):
        """
        Offset of the first byte to send.

        Derived only from the server's reported ranges, never from local
        bookkeeping.

        Returns:
            int: Start of the first expected range, or 0 if none are reported
        """
        ranges = self.expected_ranges()
        if ranges:
            return ranges[0].start
        return 0

    def is_expired(self, now=None):
        """Check whether the server-side session has passed its expiration time."""
        if self.expiration is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expiration <= now

    def to_record(self):
        """Serialize the state persisted between runs."""
        return {
            'expirationDateTime': format_graph_datetime(self.expiration),
            'nextExpectedRanges': list(self.next_expected_ranges),
            'uploadUrl': self.upload_url,
        }

    def finish(self):
        """Delete the persisted record after a completed transfer."""
        if self._store is not None:
            self._store.delete(self.identity)


class SessionStore:
    """
    Directory of persisted session records, one JSON file per identity.

    Example:
        >>> store = SessionStore('/tmp/onedrive')
        >>> session = store.open_session('Backup/video.mp4', fragment_size=10485760)
        >>> session.resumable
        False
    """

    def __init__(self, directory=DEFAULT_SESSION_DIR):
        self.directory = directory

    def _record_path(self, identity):
        return os.path.join(self.directory, identity)

    def load(self, identity):
        """
        Read a persisted record.

        Args:
            identity (str): Session identity

        Returns:
            dict: The record, or None if no record exists

        Note:
            A record that cannot be parsed is deleted and treated as missing.
        """
        path = self._record_path(identity)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                record = json.load(f)
        except (OSError, ValueError) as e:
            print(f"[!] Discarding unreadable session record {identity}: {e}")
            self.delete(identity)
            return None
        if not isinstance(record, dict):
            print(f"[!] Discarding malformed session record {identity}")
            self.delete(identity)
            return None
        return record

    def save(self, session):
        """Write the session state, replacing any previous record atomically."""
        os.makedirs(self.directory, exist_ok=True)
        path = self._record_path(session.identity)
        fd, temp_path = tempfile.mkstemp(prefix=f'.{session.identity}.', dir=self.directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(session.to_record(), f, indent=2)
            os.replace(temp_path, path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise
        if is_debug_enabled():
            print(f"[DEBUG] Saved session state for {session.target_path}: {session.next_expected_ranges}")

    def delete(self, identity):
        """Remove a record if present."""
        path = self._record_path(identity)
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def open_session(self, target_path, fragment_size):
        """
        Create the session object for a target, loading persisted state if any.

        Args:
            target_path (str): Drive path of the file
            fragment_size (int): Fragment size for this transfer

        Returns:
            UploadSession: resumable is True when a record was found
        """
        session = UploadSession(target_path, fragment_size, store=self)
        record = self.load(session.identity)
        if record is not None:
            try:
                session.set_data(record, store=False)
            except (ProtocolError, ValueError) as e:
                print(f"[!] Discarding invalid session record for {session.target_path}: {e}")
                self.delete(session.identity)
                return UploadSession(target_path, fragment_size, store=self)
            session.resumable = session.upload_url is not None
        return session
