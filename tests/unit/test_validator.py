"""Unit tests for ArtifactValidator."""

import errno
from pathlib import Path
from unittest.mock import patch

import pytest

from modelready.cache.types import ValidationFailure, ValidationResult
from modelready.cache.validator import MIN_FILE_SIZE_BYTES, ArtifactValidator, has_corruption_marker
from modelready.models import REQUIRED_FILES


@pytest.fixture
def validator():
    return ArtifactValidator()


def test_complete_artifact_set(validator, make_snapshot):
    snapshot = make_snapshot()

    result = validator.validate(snapshot, REQUIRED_FILES)

    assert result.is_complete is True
    assert result.file is None
    assert result.reason is None


@pytest.mark.parametrize("filename", REQUIRED_FILES)
def test_missing_file_is_named(validator, make_snapshot, filename):
    snapshot = make_snapshot(overrides={filename: None})

    result = validator.validate(snapshot, REQUIRED_FILES)

    assert result.is_complete is False
    assert result.file == filename
    assert result.reason == ValidationFailure.MISSING


@pytest.mark.parametrize("filename", REQUIRED_FILES)
def test_zero_byte_file_is_too_small(validator, make_snapshot, filename):
    snapshot = make_snapshot(overrides={filename: b""})

    result = validator.validate(snapshot, REQUIRED_FILES)

    assert result.file == filename
    assert result.reason == ValidationFailure.TOO_SMALL
    assert result.is_corrupted is True


def test_size_threshold_is_bytes(validator, make_snapshot):
    just_enough = b"x" * MIN_FILE_SIZE_BYTES
    snapshot = make_snapshot(overrides={"model.safetensors": just_enough})
    assert validator.validate(snapshot, REQUIRED_FILES).is_complete is True

    (snapshot / "model.safetensors").write_bytes(just_enough[:-1])
    assert validator.validate(snapshot, REQUIRED_FILES).reason == ValidationFailure.TOO_SMALL


def test_unparseable_json(validator, make_snapshot):
    snapshot = make_snapshot(overrides={"tokenizer_config.json": "{not valid json at all"})

    result = validator.validate(snapshot, REQUIRED_FILES)

    assert result.file == "tokenizer_config.json"
    assert result.reason == ValidationFailure.UNPARSEABLE_JSON
    assert result.is_corrupted is True


def test_weights_are_not_parsed(validator, make_snapshot):
    """Non-JSON files only need to exist with a non-trivial size."""
    snapshot = make_snapshot(overrides={"model.safetensors": b"definitely not json"})

    assert validator.validate(snapshot, REQUIRED_FILES).is_complete is True


def test_validate_short_circuits_on_first_failure(validator, make_snapshot):
    snapshot = make_snapshot(overrides={"config.json": None, "tokenizer.json": b""})

    result = validator.validate(snapshot, REQUIRED_FILES)

    assert result.file == "config.json"


def test_validate_all_reports_every_problem(validator, make_snapshot):
    snapshot = make_snapshot(overrides={"config.json": None, "tokenizer.json": b""})

    problems = validator.validate_all(snapshot, REQUIRED_FILES)

    assert [(p.file, p.reason) for p in problems] == [
        ("config.json", ValidationFailure.MISSING),
        ("tokenizer.json", ValidationFailure.TOO_SMALL),
    ]


def test_directory_in_place_of_file_is_missing(validator, make_snapshot):
    snapshot = make_snapshot(overrides={"config.json": None})
    (snapshot / "config.json").mkdir()

    result = validator.validate(snapshot, REQUIRED_FILES)

    assert result.file == "config.json"
    assert result.reason == ValidationFailure.MISSING


def test_stat_error_is_classified_not_raised(validator, tmp_path):
    denied = OSError(errno.EACCES, "Permission denied")
    with patch.object(Path, "stat", side_effect=denied):
        result = validator.check_file(tmp_path / "config.json")

    assert result.reason == ValidationFailure.IO_ERROR
    assert result.errno == errno.EACCES


def test_has_required_files_skips_json_parse(validator, make_snapshot):
    snapshot = make_snapshot(overrides={"config.json": "{{{{{{{{{{{{"})

    assert validator.has_required_files(snapshot, REQUIRED_FILES) is True
    (snapshot / "tokenizer.json").unlink()
    assert validator.has_required_files(snapshot, REQUIRED_FILES) is False


def test_find_corruption_markers(validator, make_snapshot):
    snapshot = make_snapshot()
    (snapshot / "model.safetensors.incomplete").write_bytes(b"partial")
    (snapshot.parent / "tmpdir.tmp").mkdir()

    found = validator.find_corruption_markers(snapshot.parent.parent)

    assert found == sorted([snapshot / "model.safetensors.incomplete", snapshot.parent / "tmpdir.tmp"])


def test_markers_do_not_affect_validate(validator, make_snapshot):
    snapshot = make_snapshot()
    (snapshot / "stray.incomplete").write_bytes(b"")

    assert validator.validate(snapshot, REQUIRED_FILES).is_complete is True


@pytest.mark.parametrize("name, expected", [
    ("model.safetensors.incomplete", True),
    ("download.tmp", True),
    ("config.json", False),
    ("template.json", False),
])
def test_has_corruption_marker(name, expected):
    assert has_corruption_marker(name) is expected


def test_validation_result_refuses_truth_test():
    with pytest.raises(TypeError):
        bool(ValidationResult.complete())
