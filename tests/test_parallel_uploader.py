import pytest

from onedrive_uploader.errors import AuthenticationError, ProtocolError, TransportError
from onedrive_uploader.file_handler import FileEntry
from onedrive_uploader.monitoring import upload_stats
from onedrive_uploader.parallel_uploader import ParallelUploader
from onedrive_uploader.scheduler import Failure, PermanentFailure, RetryAfter, Success
from onedrive_uploader.session_store import SessionStore
from onedrive_uploader.uploader import UploadSessionManager


@pytest.fixture
def tree(tmp_path):
    source = tmp_path / "source"
    (source / "photos" / "2024").mkdir(parents=True)
    (source / "readme.txt").write_bytes(b"hello")
    (source / "photos" / "a.jpg").write_bytes(b"a" * 100)
    (source / "photos" / "2024" / "b.jpg").write_bytes(b"b" * 200)
    return source


@pytest.fixture
def sleeps():
    return []


def _uploader(client, tmp_path, progress, sleeps, max_workers=1, max_retry=3):
    manager = UploadSessionManager(client, SessionStore(str(tmp_path / "sessions")), 327680, progress=progress)
    return ParallelUploader(manager, max_workers=max_workers, max_retry=max_retry,
                            sleep=sleeps.append, jitter=lambda: 0)


def test_folders_are_enqueued_before_files(fake_client, tmp_path, progress, sleeps, tree):
    uploader = _uploader(fake_client, tmp_path, progress, sleeps)

    assert uploader.process(str(tree)) == 5
    assert uploader.wait(10) == 0

    kinds = [call[0] for call in fake_client.calls]
    assert kinds == ["create_folder", "create_folder",
                     "upload_small_file", "upload_small_file", "upload_small_file"]
    assert fake_client.called("create_folder") == [
        ("create_folder", "", "photos"),
        ("create_folder", "photos", "2024"),
    ]
    assert upload_stats.stats["folders_created"] == 2
    assert upload_stats.stats["new_files"] == 3


def test_concurrent_run_uploads_everything(fake_client, tmp_path, progress, sleeps, tree):
    uploader = _uploader(fake_client, tmp_path, progress, sleeps, max_workers=4)

    uploader.process(str(tree))

    assert uploader.wait(10) == 0
    assert len(uploader.scheduler.finished) == 5


def test_throttled_upload_is_retried_after_the_server_delay(fake_client, tmp_path, progress, sleeps, tree):
    fake_client.fail("upload_small_file", TransportError(503, {"Retry-After": "5"}, "busy"))
    uploader = _uploader(fake_client, tmp_path, progress, sleeps)

    uploader.process(str(tree))

    assert uploader.wait(10) == 0
    assert sleeps == [5]
    assert upload_stats.stats["retries_scheduled"] == 1
    assert len(fake_client.called("upload_small_file")) == 4


def test_insufficient_storage_is_not_retried(fake_client, tmp_path, progress, sleeps, tree):
    fake_client.fail("upload_small_file", TransportError(507, {}, "quota exceeded"))
    uploader = _uploader(fake_client, tmp_path, progress, sleeps)

    uploader.process(str(tree))

    assert uploader.wait(10) == 1
    assert len(fake_client.called("upload_small_file")) == 3
    assert upload_stats.stats["retries_scheduled"] == 0
    assert upload_stats.stats["permanent_failures"] == 1
    assert upload_stats.stats["failed_files"] == 1
    [job] = uploader.scheduler.failed
    assert job.retry_count == 0


def test_exhausted_retries_are_reported_at_drain(fake_client, tmp_path, progress, sleeps, tree, capsys):
    for _ in range(3):
        fake_client.fail("create_folder", TransportError(500, {}, "server error"))
    uploader = _uploader(fake_client, tmp_path, progress, sleeps, max_retry=2)

    uploader.process(str(tree))

    assert uploader.wait(10) == 1
    assert upload_stats.stats["failed_folders"] == 1
    out = capsys.readouterr().out
    assert "Upload queue drained: 4 succeeded, 1 failed" in out
    assert "Failed folder after 2 retries: photos" in out


def test_worker_maps_errors_to_results(fake_client, tmp_path, progress, sleeps):
    uploader = _uploader(fake_client, tmp_path, progress, sleeps)
    missing = FileEntry(True, "gone.txt", 1, "", "gone.txt", str(tmp_path / "gone.txt"))
    folder = FileEntry(False, "f", 0, "", "f", str(tmp_path / "f"))

    assert isinstance(uploader.upload_worker(missing), PermanentFailure)

    assert uploader.upload_worker(folder) == Success()

    fake_client.fail("create_folder", TransportError(None, body="timeout"))
    assert uploader.upload_worker(folder) == RetryAfter(5)

    fake_client.fail("create_folder", ProtocolError("bad response"))
    result = uploader.upload_worker(folder)
    assert isinstance(result, Failure)
    assert isinstance(result.cause, ProtocolError)

    uploader.scheduler.shutdown()


def test_authentication_failure_stops_the_run(fake_client, tmp_path, progress, sleeps, tree):
    fake_client.fail("create_folder", AuthenticationError("refresh token revoked"))
    uploader = _uploader(fake_client, tmp_path, progress, sleeps)

    uploader.process(str(tree))

    with pytest.raises(AuthenticationError):
        uploader.wait(10)


def test_empty_tree_drains_immediately(fake_client, tmp_path, progress, sleeps):
    empty = tmp_path / "empty"
    empty.mkdir()
    uploader = _uploader(fake_client, tmp_path, progress, sleeps)

    assert uploader.process(str(empty)) == 0
    assert uploader.wait(5) == 0
