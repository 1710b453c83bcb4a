# -*- coding: utf-8 -*-
"""
Microsoft Graph API operations for OneDrive uploads.

This module wraps the drive endpoints used by the uploader:

- GET  {item-by-path}                          metadata for change detection
- PUT  {item-by-path}:/content                 single-request upload of small files
- POST {item-by-path}:/createUploadSession     start a resumable session
- GET  {uploadUrl}                             session status (next expected ranges)
- PUT  {uploadUrl}                             one fragment with a Content-Range header
- POST {parent-by-path}:/children              folder create-or-replace

Requests are not retried here. Every non-success response is raised as a
TransportError so the scheduler can decide how to retry the whole job.
"""

import threading
import urllib.parse

import requests

from .errors import ProtocolError, TransportError
from .monitoring import rate_monitor
from .utils import is_debug_enabled, normalize_remote_path

DEFAULT_GRAPH_ENDPOINT = 'graph.microsoft.com'

# Fragment PUTs can be slow on poor links; other calls are small
FRAGMENT_TIMEOUT_SECONDS = 300
REQUEST_TIMEOUT_SECONDS = 60


def default_drive_root(graph_endpoint=DEFAULT_GRAPH_ENDPOINT):
    """Return the item URL of the signed-in user's drive root."""
    return f"https://{graph_endpoint}/v1.0/me/drive/root"


def _parse_json(response, context):
    """Decode a JSON body, raising ProtocolError for malformed content."""
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        raise ProtocolError(f"{context}: response is not JSON: {response.text[:200]}") from None
    if not isinstance(data, dict):
        raise ProtocolError(f"{context}: unexpected response body: {str(data)[:200]}")
    return data


class GraphClient:
    """
    Thin Graph API client bound to one drive root and one destination folder.

    Args:
        token_provider: Object with get_valid_token() returning the Authorization value
        drive_root (str): Item URL of the drive root
            (e.g. 'https://graph.microsoft.com/v1.0/me/drive/root')
        destination_path (str): Destination folder inside the drive ('/' for root)
        session: Optional HTTP session used by every thread (tests pass a fake).
            By default each worker thread gets its own requests.Session.
    """

    def __init__(self, token_provider, drive_root=None, destination_path='/', session=None):
        self.token_provider = token_provider
        self.drive_root = (drive_root or default_drive_root()).rstrip('/')
        self.destination_path = normalize_remote_path(destination_path)
        self._shared_session = session
        self._local = threading.local()

    @property
    def session(self):
        """HTTP session for the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, 'session', None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def target_path(self, relative_path):
        """Drive path of a local entry: destination folder joined with its relative path."""
        return normalize_remote_path(self.destination_path, relative_path)

    def item_url(self, relative_path, suffix=''):
        """
        Build an item-by-path URL for a path relative to the destination.

        Args:
            relative_path (str): Path relative to the destination folder
            suffix (str): Path segment appended after the item address
                (e.g. '/content', '/createUploadSession', '/children')

        Returns:
            str: URL such as '{root}:/Backup/a%20b.txt:/content'
        """
        path = self.target_path(relative_path)
        if not path:
            return f"{self.drive_root}{suffix}"
        encoded = urllib.parse.quote(path)
        if suffix:
            return f"{self.drive_root}:/{encoded}:{suffix}"
        return f"{self.drive_root}:/{encoded}"

    def _request(self, method, url, operation, headers=None, timeout=REQUEST_TIMEOUT_SECONDS, **kwargs):
        """
        Send one authorized request.

        Raises:
            TransportError: For non-2xx responses and network-level failures
            AuthenticationError: Propagated from the token provider
        """
        request_headers = {'Authorization': self.token_provider.get_valid_token()}
        if headers:
            request_headers.update(headers)

        try:
            response = self.session.request(method, url, headers=request_headers, timeout=timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            if is_debug_enabled():
                print(f"[DEBUG] {method} {url[:100]} failed: {type(e).__name__}: {str(e)[:200]}")
            raise TransportError(None, body=f"{type(e).__name__}: {e}") from e

        rate_monitor.record_response(response, method, operation)

        if not 200 <= response.status_code < 300:
            if is_debug_enabled():
                print(f"[DEBUG] {method} {url[:100]} -> {response.status_code}: {response.text[:300]}")
            raise TransportError(response.status_code, response.headers, response.text[:500])

        return response

    def get_item(self, relative_path):
        """
        Fetch drive item metadata for a path.

        Returns:
            dict: driveItem JSON (id, size, fileSystemInfo, ...)
        """
        response = self._request('GET', self.item_url(relative_path), 'metadata_get')
        return _parse_json(response, "Item metadata")

    def upload_small_file(self, relative_path, content):
        """
        Upload a whole file in one request.

        Args:
            relative_path (str): Path relative to the destination folder
            content (bytes): File content

        Returns:
            dict: Uploaded driveItem metadata
        """
        url = self.item_url(relative_path, '/content')
        if is_debug_enabled():
            print(f"[DEBUG] Uploading {len(content)} bytes to: {url}")
        response = self._request(
            'PUT', url, 'small_upload',
            headers={'Content-Type': 'application/octet-stream'},
            data=content,
            timeout=FRAGMENT_TIMEOUT_SECONDS
        )
        return _parse_json(response, "Small file upload")

    def create_upload_session(self, relative_path, name, file_system_info):
        """
        Create a resumable upload session that replaces any existing item.

        Args:
            relative_path (str): Path relative to the destination folder
            name (str): File name
            file_system_info (dict): createdDateTime, lastAccessedDateTime,
                lastModifiedDateTime as ISO-8601 strings

        Returns:
            dict: Session info with uploadUrl and expirationDateTime

        Raises:
            ProtocolError: If the response has no uploadUrl
        """
        url = self.item_url(relative_path, '/createUploadSession')
        request_body = {
            "item": {
                "@odata.type": "microsoft.graph.driveItemUploadableProperties",
                "@microsoft.graph.conflictBehavior": "replace",
                "name": name,
                "fileSystemInfo": dict({"@odata.type": "microsoft.graph.fileSystemInfo"}, **file_system_info)
            }
        }
        if is_debug_enabled():
            print(f"[DEBUG] Creating upload session: {url}")
        response = self._request('POST', url, 'session_create', json=request_body)
        data = _parse_json(response, "Upload session")
        if not data.get('uploadUrl'):
            raise ProtocolError(f"Upload session response has no uploadUrl: {str(data)[:200]}")
        return data

    def get_upload_session(self, upload_url):
        """
        Query the status of an existing upload session.

        Returns:
            dict: Session status with nextExpectedRanges and expirationDateTime

        Raises:
            ProtocolError: If nextExpectedRanges is missing
        """
        response = self._request('GET', upload_url, 'session_status')
        data = _parse_json(response, "Upload session status")
        if 'nextExpectedRanges' not in data:
            raise ProtocolError(f"Upload session status has no nextExpectedRanges: {str(data)[:200]}")
        return data

    def upload_fragment(self, upload_url, fragment, start, total_size):
        """
        Upload one fragment of a session.

        Args:
            upload_url (str): Session URL
            fragment (bytes): Fragment content
            start (int): Offset of the first byte of the fragment
            total_size (int): Total file size in bytes

        Returns:
            dict: 202 status body (nextExpectedRanges) or, for the final
                fragment, the completed driveItem
        """
        end = min(start + len(fragment), total_size) - 1
        headers = {
            'Content-Length': str(len(fragment)),
            'Content-Range': f"bytes {start}-{end}/{total_size}"
        }
        if is_debug_enabled():
            print(f"[DEBUG] Uploading fragment: bytes {start}-{end}/{total_size}")
        response = self._request(
            'PUT', upload_url, 'fragment_upload',
            headers=headers,
            data=fragment,
            timeout=FRAGMENT_TIMEOUT_SECONDS
        )
        return _parse_json(response, "Fragment upload")

    def create_folder(self, parent_relative_path, name):
        """
        Create a folder, replacing an existing one with the same name.

        Args:
            parent_relative_path (str): Parent path relative to the destination folder
            name (str): Folder name

        Returns:
            dict: Created folder driveItem
        """
        url = self.item_url(parent_relative_path, '/children')
        request_body = {
            "name": name,
            "folder": {},
            "@microsoft.graph.conflictBehavior": "replace"
        }
        if is_debug_enabled():
            print(f"[DEBUG] Creating folder: {name} in {self.target_path(parent_relative_path) or '/'}")
        response = self._request('POST', url, 'folder_create', json=request_body)
        return _parse_json(response, "Folder creation")
