"""Unit tests for CacheJanitor."""

import errno
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from modelready.cache.janitor import CacheJanitor
from modelready.cache.locator import CacheLocator
from modelready.cache.validator import ArtifactValidator


@pytest.fixture
def locator(cache_root):
    return CacheLocator([str(cache_root)])


@pytest.fixture
def detector():
    detector = Mock()
    detector.is_active.return_value = False
    return detector


@pytest.fixture
def janitor(locator, detector):
    return CacheJanitor(locator, ArtifactValidator(), detector)


def _deny_unlink(*names):
    real_unlink = Path.unlink

    def fake_unlink(self, *args, **kwargs):
        if self.name in names:
            raise PermissionError(errno.EACCES, "Permission denied", str(self))
        return real_unlink(self, *args, **kwargs)

    return patch.object(Path, "unlink", autospec=True, side_effect=fake_unlink)


def test_cleanup_markers_removes_partial_downloads(janitor, make_snapshot):
    snapshot = make_snapshot()
    partial = snapshot / "model.safetensors.incomplete"
    partial.write_bytes(b"partial")
    tmp_dir = snapshot.parent / "download.tmp"
    (tmp_dir / "nested").mkdir(parents=True)
    (tmp_dir / "nested" / "chunk").write_bytes(b"abc")

    report = janitor.cleanup_markers(snapshot.parent.parent)

    assert not partial.exists()
    assert not tmp_dir.exists()
    assert (snapshot / "model.safetensors").exists()
    assert report.ok


def test_cleanup_all_continues_past_failures(janitor, cache_root):
    removable = cache_root / "stray.tmp"
    protected = cache_root / "protected.tmp"
    removable.write_bytes(b"x")
    protected.write_bytes(b"y")

    with _deny_unlink("protected.tmp"):
        report = janitor.cleanup_all(cache_root)

    assert not removable.exists()
    assert protected.exists()
    assert str(removable) in report.removed
    assert str(protected) in report.failed
    assert report.ok is False


def test_cleanup_all_skips_hidden_directories(janitor, cache_root):
    hidden = cache_root / ".locks"
    hidden.mkdir()
    (hidden / "lock.tmp").write_bytes(b"x")

    janitor.cleanup_all(cache_root)

    assert (hidden / "lock.tmp").exists()


def test_remove_invalid_files_only_touches_corrupted(janitor, make_snapshot):
    snapshot = make_snapshot(overrides={"tokenizer.json": b"", "config.json": None})

    report = janitor.remove_invalid_files(snapshot, ["config.json", "tokenizer.json", "model.safetensors"])

    assert not (snapshot / "tokenizer.json").exists()
    assert (snapshot / "model.safetensors").exists()
    assert report.removed == [str(snapshot / "tokenizer.json")]


def test_invalid_model_directory_is_removed(janitor, cache_root, descriptor, make_snapshot):
    make_snapshot(overrides={"special_tokens_map.json": "not json!!"})

    report = janitor.cleanup_invalid_model_directories(cache_root, descriptor)

    assert not (cache_root / descriptor.cache_dir_name).exists()
    assert report.ok


def test_valid_model_directory_is_kept(janitor, cache_root, descriptor, make_snapshot):
    snapshot = make_snapshot()

    report = janitor.cleanup_invalid_model_directories(cache_root, descriptor)

    assert snapshot.exists()
    assert report.removed == []


def test_invalid_nested_model_directory_is_removed(janitor, cache_root, descriptor, make_snapshot):
    nested_root = cache_root / "huggingface"
    make_snapshot(root=nested_root, overrides={"config.json": None})

    report = janitor.cleanup_invalid_model_directories(cache_root, descriptor)

    assert not (nested_root / descriptor.cache_dir_name).exists()
    assert nested_root.exists()
    assert report.ok


def test_model_directory_without_snapshots_is_removed(janitor, cache_root, descriptor, write_files):
    write_files(cache_root / descriptor.cache_dir_name)

    janitor.cleanup_invalid_model_directories(cache_root, descriptor)

    assert not (cache_root / descriptor.cache_dir_name).exists()


def test_externally_owned_directory_is_never_removed(janitor, detector, cache_root, descriptor, make_snapshot):
    snapshot = make_snapshot(overrides={"model.safetensors": None})
    detector.is_active.return_value = True

    report = janitor.cleanup_invalid_model_directories(cache_root, descriptor)

    assert snapshot.exists()
    assert report.skipped == [str(cache_root / descriptor.cache_dir_name)]
    detector.is_active.assert_called_once_with(descriptor)


def test_purge_model_removes_hub_and_legacy_directories(janitor, cache_root, descriptor, make_snapshot, write_files):
    make_snapshot()
    write_files(cache_root / descriptor.model_id)

    report = janitor.purge_model(cache_root, descriptor)

    assert not (cache_root / descriptor.cache_dir_name).exists()
    assert not (cache_root / descriptor.model_id).exists()
    assert report.ok


def test_purge_model_refuses_during_external_acquisition(janitor, detector, cache_root, descriptor, make_snapshot):
    snapshot = make_snapshot()
    detector.is_active.return_value = True

    with patch("modelready.cache.janitor.logger") as mock_logger:
        report = janitor.purge_model(cache_root, descriptor)
        mock_logger.warning.assert_called_once()

    assert snapshot.exists()
    assert report.skipped


def test_purge_model_without_files(janitor, cache_root, descriptor):
    report = janitor.purge_model(cache_root, descriptor)

    assert report.removed == []
    assert report.skipped == []


def test_cache_status(janitor, cache_root, make_snapshot):
    snapshot = make_snapshot()
    marker = snapshot / "model.safetensors.incomplete"
    marker.write_bytes(b"12345")
    expected = sum(p.stat().st_size for p in snapshot.iterdir())

    status = janitor.cache_status()

    assert status.total_size_bytes == expected
    assert status.model_count == 1
    assert status.corrupted_files == [str(marker)]
    assert status.cache_directories == [str(cache_root)]
    assert status.formatted_size == "0 MB"


def test_cache_status_skips_symlinked_snapshot_entries(janitor, cache_root, descriptor):
    blobs = cache_root / descriptor.cache_dir_name / "blobs"
    blobs.mkdir(parents=True)
    blob = blobs / "abc123"
    blob.write_bytes(b"z" * 1000)
    snapshot = cache_root / descriptor.cache_dir_name / "snapshots" / "main"
    snapshot.mkdir(parents=True)
    (snapshot / "model.safetensors").symlink_to(blob)

    assert janitor.cache_status().total_size_bytes == 1000


def test_formatted_size_in_gigabytes():
    from modelready.cache.types import CacheStatusReport

    assert CacheStatusReport(total_size_bytes=3 * 1024 ** 3 // 2).formatted_size == "1.5 GB"
