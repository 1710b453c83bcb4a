# -*- coding: utf-8 -*-
"""
Upload session management for OneDrive.

UploadSessionManager uploads one file or creates one folder per call:

- Files below the small-file threshold are sent in a single PUT.
- Larger files use a resumable upload session. Session state is persisted
  after every acknowledged fragment, so an interrupted transfer resumes at
  the offset the server reports on the next run.
- Before a large upload, remote metadata is compared with the local file and
  unchanged files are skipped.

Failures are raised (TransportError, ProtocolError, FileSystemError, OSError)
and turned into job results by the caller.
"""

import os
from datetime import datetime, timezone

from .chunking import iter_fragments
from .errors import FileSystemError, ProtocolError, TransportError
from .monitoring import upload_stats
from .progress import NullProgress
from .session_store import parse_graph_datetime
from .utils import is_debug_enabled

# Files smaller than this are uploaded with a single request
SMALL_FILE_THRESHOLD = 4 * 1024 * 1024

# Status query answers for sessions the server no longer knows
SESSION_GONE_STATUSES = (404, 410)

# Fragment rejections that mean the session no longer matches the local file
SESSION_MISMATCH_STATUSES = (400, 409, 416)

# Response keys that carry session state worth persisting
_SESSION_KEYS = ('uploadUrl', 'expirationDateTime', 'nextExpectedRanges')


def _utc_seconds(timestamp):
    """Convert a POSIX timestamp to a UTC datetime truncated to whole seconds."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def _iso_seconds(timestamp):
    return _utc_seconds(timestamp).strftime('%Y-%m-%dT%H:%M:%SZ')


def _created_timestamp(stat_result):
    # st_birthtime exists on macOS and BSD; Linux only offers ctime
    return getattr(stat_result, 'st_birthtime', stat_result.st_ctime)


def file_system_info(stat_result):
    """
    Build the fileSystemInfo timestamps sent with createUploadSession.

    Args:
        stat_result (os.stat_result): Local file status

    Returns:
        dict: createdDateTime, lastAccessedDateTime, lastModifiedDateTime
    """
    return {
        'createdDateTime': _iso_seconds(_created_timestamp(stat_result)),
        'lastAccessedDateTime': _iso_seconds(stat_result.st_atime),
        'lastModifiedDateTime': _iso_seconds(stat_result.st_mtime),
    }


class UploadSessionManager:
    """
    Uploads files and creates folders below the client's destination folder.

    Args:
        client (GraphClient): Transport client
        store (SessionStore): Persisted session records
        fragment_size (int): Fragment size for every chunked transfer
        progress (ProgressSink): Progress notifications
        small_file_threshold (int): Size below which a single request is used
        simple_upload_small_files (bool): Enable single-request uploads
        force_upload (bool): Skip change detection and always upload
    """

    def __init__(self, client, store, fragment_size, progress=None,
                 small_file_threshold=SMALL_FILE_THRESHOLD,
                 simple_upload_small_files=True, force_upload=False):
        self.client = client
        self.store = store
        self.fragment_size = fragment_size
        self.progress = progress or NullProgress()
        self.small_file_threshold = small_file_threshold
        self.simple_upload_small_files = simple_upload_small_files
        self.force_upload = force_upload

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upload_file(self, entry):
        """
        Upload one file.

        Args:
            entry (FileEntry): File found by the walker

        Returns:
            str: 'uploaded' or 'skipped'
        """
        stat_result = os.stat(entry.absolute_path)
        size = stat_result.st_size

        # Sessions cannot describe an empty body, so empty files always use a single request
        if size == 0 or (self.simple_upload_small_files and size < self.small_file_threshold):
            self._upload_small(entry, size)
            return 'uploaded'

        if not self.force_upload and not self.file_changed(entry, stat_result):
            print(f"[=] Unchanged, skipping: {entry.rel_path}")
            upload_stats.counter.increment('skipped_files')
            upload_stats.counter.increment('bytes_skipped', size)
            return 'skipped'

        self._upload_chunked(entry, stat_result)
        return 'uploaded'

    def _upload_small(self, entry, size):
        with open(entry.absolute_path, 'rb') as f:
            content = f.read()

        print(f"[→] Uploading file with simple upload: {entry.rel_path} ({len(content):,} bytes)")
        slot = self.progress.start(entry.rel_path, 0, len(content))
        try:
            item = self.client.upload_small_file(entry.rel_path, content)
        except Exception:
            self.progress.release(slot)
            raise

        uploaded = item.get('size', len(content))
        self.progress.update(slot, uploaded)
        if uploaded != len(content):
            print(f"[!] Server reports {uploaded:,} bytes for {entry.rel_path}, sent {len(content):,}")
            self.progress.release(slot)

        print(f"[✓] File uploaded: {entry.rel_path}")
        upload_stats.counter.increment('new_files')
        upload_stats.counter.increment('small_uploads')
        upload_stats.counter.increment('bytes_uploaded', len(content))

    def _upload_chunked(self, entry, stat_result):
        size = stat_result.st_size
        session = self._acquire_session(entry, stat_result)
        offset = session.start_position()
        if offset >= size:
            # Nothing left to send would leave the server session unfinished
            session.finish()
            raise ProtocolError(
                f"Server expects offset {offset} at or beyond the end of {entry.rel_path} ({size} bytes)"
            )

        print(f"[→] Uploading large file with resumable upload: {entry.rel_path} ({size:,} bytes)")
        slot = self.progress.start(entry.rel_path, offset, size)
        try:
            self._upload_fragments(entry, session, offset, size, slot)
        except TransportError as e:
            self.progress.release(slot)
            if e.status_code in SESSION_MISMATCH_STATUSES:
                print(f"[!] Upload session for {entry.rel_path} rejected fragment ({e.status_code}), "
                      f"discarding it so the next attempt starts a new one")
                self.store.delete(session.identity)
                upload_stats.counter.increment('sessions_restarted')
            raise
        except Exception:
            self.progress.release(slot)
            raise

        print(f"[✓] Large file upload complete: {entry.rel_path}")
        upload_stats.counter.increment('new_files')
        upload_stats.counter.increment('bytes_uploaded', size - offset)

    def _acquire_session(self, entry, stat_result):
        """
        Resume the persisted session for the entry, or create a new one.

        Returns:
            UploadSession: Session positioned by the server's expected ranges
        """
        target = self.client.target_path(entry.rel_path)
        session = self.store.open_session(target, self.fragment_size)

        if session.resumable:
            if session.is_expired():
                print(f"[!] Upload session for {entry.rel_path} expired, starting a new one")
                self.store.delete(session.identity)
                upload_stats.counter.increment('sessions_restarted')
                session = self.store.open_session(target, self.fragment_size)
            else:
                try:
                    status = self.client.get_upload_session(session.upload_url)
                except TransportError as e:
                    if e.status_code not in SESSION_GONE_STATUSES:
                        raise
                    print(f"[!] Upload session for {entry.rel_path} no longer exists ({e.status_code}), "
                          f"starting a new one")
                    self.store.delete(session.identity)
                    upload_stats.counter.increment('sessions_restarted')
                    session = self.store.open_session(target, self.fragment_size)
                else:
                    session.set_data(status)
                    upload_stats.counter.increment('sessions_resumed')
                    print(f"[*] Resuming upload of {entry.rel_path} at byte {session.start_position():,}")
                    return session

        data = self.client.create_upload_session(
            entry.rel_path, entry.filename, file_system_info(stat_result)
        )
        session.set_data(data)
        upload_stats.counter.increment('sessions_created')
        if is_debug_enabled():
            print(f"[DEBUG] Upload session created for {entry.rel_path}, expires {data.get('expirationDateTime')}")
        return session

    def _upload_fragments(self, entry, session, offset, size, slot):
        position = offset
        with open(entry.absolute_path, 'rb') as f:
            f.seek(offset)
            for fragment in iter_fragments(f, self.fragment_size):
                # Bytes appended after stat() are not part of this transfer
                fragment = fragment[:size - position]
                response = self.client.upload_fragment(session.upload_url, fragment, position, size)
                position += len(fragment)
                upload_stats.counter.increment('fragments_uploaded')

                if any(key in response for key in _SESSION_KEYS):
                    session.set_data(response)

                self.progress.update(slot, position)
                if position >= size:
                    break

        if position < size:
            raise FileSystemError(f"{entry.rel_path} shrank during upload ({position} of {size} bytes read)")

        session.finish()

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    def file_changed(self, entry, stat_result):
        """
        Compare the local file with the remote item.

        Size and the created/modified timestamps are compared at whole-second
        precision. Any failure to read remote metadata counts as changed.

        Returns:
            bool: True if the file must be uploaded
        """
        try:
            item = self.client.get_item(entry.rel_path)
        except (TransportError, ProtocolError) as e:
            if is_debug_enabled() and getattr(e, 'status_code', None) != 404:
                print(f"[DEBUG] Could not read remote metadata for {entry.rel_path}: {e}")
            return True

        try:
            remote_info = item.get('fileSystemInfo') or {}
            remote_created = parse_graph_datetime(remote_info.get('createdDateTime'))
            remote_modified = parse_graph_datetime(remote_info.get('lastModifiedDateTime'))
        except (TypeError, ValueError):
            return True

        if item.get('size') != stat_result.st_size:
            return True
        if remote_modified is None or remote_created is None:
            return True
        if remote_modified.replace(microsecond=0) != _utc_seconds(stat_result.st_mtime):
            return True
        if remote_created.replace(microsecond=0) != _utc_seconds(_created_timestamp(stat_result)):
            return True
        return False

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def create_folder(self, entry):
        """
        Create (or replace) the folder for a walker entry.

        Args:
            entry (FileEntry): Folder found by the walker
        """
        slot = self.progress.start(f"<{entry.rel_path}>", 0, 100)
        try:
            self.client.create_folder(entry.rel_dir, entry.filename)
        except Exception:
            self.progress.release(slot)
            raise
        self.progress.update(slot, 100)

        print(f"[✓] Created folder: {entry.rel_path}")
        upload_stats.counter.increment('folders_created')
