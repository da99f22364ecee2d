"""Shared fixtures: on-disk hub cache layouts built in tmp_path."""

import json
from pathlib import Path

import pytest

from modelready.models import REQUIRED_FILES, ModelKey, get_descriptor

VALID_CONTENT = {
    "config.json": json.dumps({"model_type": "gemma2", "hidden_size": 2304}),
    "tokenizer.json": json.dumps({"version": "1.0", "model": {"type": "BPE"}}),
    "tokenizer_config.json": json.dumps({"add_bos_token": True}),
    "special_tokens_map.json": json.dumps({"bos_token": "<bos>", "eos_token": "<eos>"}),
}
WEIGHTS = b"\x00" * 256


def write_artifacts(directory: Path, files=REQUIRED_FILES, overrides=None):
    """Write a valid artifact set; ``overrides`` maps filename to bytes/str (None skips the file)."""
    overrides = overrides or {}
    directory.mkdir(parents=True, exist_ok=True)
    for name in files:
        if name in overrides:
            content = overrides[name]
            if content is None:
                continue
        elif name in VALID_CONTENT:
            content = VALID_CONTENT[name]
        else:
            content = WEIGHTS
        path = directory / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
    return directory


def snapshot_path(root: Path, descriptor, snapshot: str = "main") -> Path:
    return root / descriptor.cache_dir_name / "snapshots" / snapshot


@pytest.fixture
def descriptor():
    return get_descriptor(ModelKey.GEMMA3_2B_4BIT)


@pytest.fixture
def cache_root(tmp_path):
    root = tmp_path / "hub"
    root.mkdir()
    return root


@pytest.fixture
def make_snapshot(cache_root, descriptor):
    """Factory writing ``<root>/<model dir>/snapshots/<snapshot>/`` with a valid artifact set."""
    def _make(snapshot="main", root=None, model=None, overrides=None):
        target = snapshot_path(root or cache_root, model or descriptor, snapshot)
        return write_artifacts(target, overrides=overrides)
    return _make


@pytest.fixture
def write_files():
    return write_artifacts
