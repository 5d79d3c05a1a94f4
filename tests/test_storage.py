import asyncio

import pytest

from modelsnap.core.exceptions import StorageError
from modelsnap.services.storage import StorageService


@pytest.fixture
def local_storage(tmp_path):
    return StorageService(local_path=str(tmp_path))


def test_upload_returns_proxy_ref_and_reads_back(local_storage, tmp_path):
    ref = asyncio.run(local_storage.upload_bytes(b"jpeg-bytes", "renders/biz_1/job_1.jpg"))

    assert ref == "/files/renders/biz_1/job_1.jpg"
    assert (tmp_path / "renders" / "biz_1" / "job_1.jpg").read_bytes() == b"jpeg-bytes"
    assert asyncio.run(local_storage.download_bytes(ref)) == b"jpeg-bytes"


def test_file_url(local_storage, tmp_path):
    target = tmp_path / "loose.jpg"
    target.write_bytes(b"abc")

    assert asyncio.run(local_storage.download_bytes(f"file://{target}")) == b"abc"


def test_missing_file_is_a_storage_error(local_storage):
    with pytest.raises(StorageError) as exc:
        asyncio.run(local_storage.get_file("renders/nope.jpg"))

    assert exc.value.retryable


@pytest.mark.parametrize("path", ["../outside.jpg", "models/../../outside.jpg", "/etc/passwd"])
def test_paths_cannot_leave_the_storage_root(local_storage, path):
    with pytest.raises(StorageError) as exc:
        asyncio.run(local_storage.get_file(path))
    assert exc.value.code == "INVALID_PATH"

    with pytest.raises(StorageError):
        asyncio.run(local_storage.upload_bytes(b"x", path))


def test_dot_segments_inside_the_root_still_resolve(local_storage, tmp_path):
    (tmp_path / "models").mkdir()
    (tmp_path / "models" / "ref.jpg").write_bytes(b"ref")

    assert asyncio.run(local_storage.get_file("uploads/../models/ref.jpg")) == b"ref"
