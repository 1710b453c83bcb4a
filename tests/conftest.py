import os

import pytest

from onedrive_uploader.errors import TransportError
from onedrive_uploader.monitoring import upload_stats
from onedrive_uploader.progress import ProgressSink
from onedrive_uploader.utils import normalize_remote_path


@pytest.fixture(autouse=True)
def _reset_stats(monkeypatch):
    monkeypatch.setenv("DEBUG", "false")
    upload_stats.reset()
    yield
    upload_stats.reset()


class RecordingProgress(ProgressSink):
    """Progress sink that keeps every call for assertions."""

    def __init__(self):
        self.started = []
        self.updates = []
        self.released = []

    def start(self, name, current, total):
        self.started.append((name, current, total))
        return len(self.started) - 1

    def update(self, slot_id, current):
        self.updates.append((slot_id, current))

    def release(self, slot_id):
        self.released.append(slot_id)


class FakeGraphClient:
    """
    In-memory stand-in for GraphClient.

    Failures are queued per method name as TransportError instances (or any
    exception) and raised on the next call of that method.
    """

    def __init__(self, destination_path="/Backup", fragment_response=None):
        self.destination_path = normalize_remote_path(destination_path)
        self.calls = []
        self.fragments = []
        self.failures = {}
        self.items = {}
        self.session_status = {"nextExpectedRanges": ["0-"], "expirationDateTime": "2099-01-01T00:00:00Z"}
        self.fragment_response = fragment_response

    def target_path(self, relative_path):
        return normalize_remote_path(self.destination_path, relative_path)

    def fail(self, method, error):
        self.failures.setdefault(method, []).append(error)

    def _maybe_fail(self, method):
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def get_item(self, relative_path):
        self.calls.append(("get_item", relative_path))
        self._maybe_fail("get_item")
        if relative_path not in self.items:
            raise TransportError(404, {}, "itemNotFound")
        return self.items[relative_path]

    def upload_small_file(self, relative_path, content):
        self.calls.append(("upload_small_file", relative_path, len(content)))
        self._maybe_fail("upload_small_file")
        return {"id": "item-1", "name": os.path.basename(relative_path), "size": len(content)}

    def create_upload_session(self, relative_path, name, file_system_info):
        self.calls.append(("create_upload_session", relative_path, name, file_system_info))
        self._maybe_fail("create_upload_session")
        return {
            "uploadUrl": f"https://upload.example.com/{name}",
            "expirationDateTime": "2099-01-01T00:00:00Z",
        }

    def get_upload_session(self, upload_url):
        self.calls.append(("get_upload_session", upload_url))
        self._maybe_fail("get_upload_session")
        return dict(self.session_status)

    def upload_fragment(self, upload_url, fragment, start, total_size):
        end = min(start + len(fragment), total_size) - 1
        self.calls.append(("upload_fragment", upload_url, start, end, total_size))
        self._maybe_fail("upload_fragment")
        self.fragments.append((start, bytes(fragment)))
        if end + 1 >= total_size:
            return {"id": "item-1", "size": total_size}
        if self.fragment_response is not None:
            return self.fragment_response(start, end, total_size)
        return {"nextExpectedRanges": [f"{end + 1}-"], "expirationDateTime": "2099-01-01T00:00:00Z"}

    def create_folder(self, parent_relative_path, name):
        self.calls.append(("create_folder", parent_relative_path, name))
        self._maybe_fail("create_folder")
        return {"id": f"folder-{name}", "name": name, "folder": {}}

    def called(self, method):
        return [call for call in self.calls if call[0] == method]


@pytest.fixture
def progress():
    return RecordingProgress()


@pytest.fixture
def fake_client():
    return FakeGraphClient()
