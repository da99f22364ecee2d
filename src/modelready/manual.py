"""Manual model acquisition tool.

Runs outside the service process. While ``download`` runs, a lock marker in the
model's hub directory tells any running coordinator to yield instead of
starting its own download.

    python -m modelready.manual download [--model ID] [--force]
    python -m modelready.manual verify [--model ID]
    python -m modelready.manual clear [--model ID]
"""

import argparse
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from huggingface_hub import hf_hub_download

from modelready.cache.janitor import CacheJanitor
from modelready.cache.locator import SNAPSHOTS_DIR, CacheLocator
from modelready.cache.validator import ArtifactValidator
from modelready.config import Settings
from modelready.exceptions import UnknownModelError
from modelready.logger import create_logger
from modelready.models import get_descriptor
from modelready.models.types import ModelDescriptor

logger = create_logger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 2


def snapshot_dir(root: Path, descriptor: ModelDescriptor, settings: Settings) -> Path:
    return root / descriptor.cache_dir_name / SNAPSHOTS_DIR / settings.canonical_snapshot


def download_file(descriptor: ModelDescriptor, filename: str, target: Path, retries: int = MAX_RETRIES) -> bool:
    for attempt in range(1, retries + 1):
        try:
            hf_hub_download(repo_id=descriptor.hf_repo, filename=filename, local_dir=str(target))
            return True
        except Exception as e:
            logger.warning(f"Download of {filename} failed (attempt {attempt}/{retries}): {e}")
            if attempt < retries:
                time.sleep(RETRY_DELAY)
    return False


def download(descriptor: ModelDescriptor, settings: Settings, force: bool = False) -> int:
    root = settings.primary_root
    model_dir = root / descriptor.cache_dir_name
    target = snapshot_dir(root, descriptor, settings)
    validator = ArtifactValidator()

    target.mkdir(parents=True, exist_ok=True)
    lock_file = model_dir / settings.lock_file_name
    lock_file.write_text(f"Manual download started at {datetime.now().isoformat()}\n")
    logger.info(f"Created lock file {lock_file}")

    try:
        if force:
            for filename in descriptor.required_files:
                (target / filename).unlink(missing_ok=True)
            for path in validator.find_corruption_markers(target):
                path.unlink(missing_ok=True)
        elif validator.validate(target, descriptor.required_files).is_complete:
            print(f"All files for {descriptor.model_id} already present in {target}")
            return 0

        failed: List[str] = []
        for filename in descriptor.required_files:
            if not force and validator.check_file(target / filename).is_complete:
                print(f"  = {filename} (already present)")
                continue
            print(f"  ↓ {filename}")
            if not download_file(descriptor, filename, target):
                failed.append(filename)

        if failed:
            print(f"Failed to download: {', '.join(failed)}")
            return 1

        result = validator.validate(target, descriptor.required_files)
        if not result.is_complete:
            print(f"Downloaded files are invalid: {result.file} ({result.reason.value})")
            return 1

        print(f"{descriptor.name} downloaded to {target}")
        return 0
    finally:
        lock_file.unlink(missing_ok=True)
        logger.info(f"Removed lock file {lock_file}")


def verify(descriptor: ModelDescriptor, settings: Settings) -> int:
    locator = CacheLocator(
        settings.cache_roots,
        canonical_snapshot=settings.canonical_snapshot,
        search_depth=settings.search_depth,
        allow_legacy_layout=settings.allow_legacy_layout,
    )
    validator = ArtifactValidator()

    resolved = locator.locate(descriptor)
    if resolved is None:
        print(f"No snapshot of {descriptor.model_id} found in: {', '.join(str(r) for r in locator.cache_roots)}")
        return 1

    print(f"Snapshot directory: {resolved.snapshot_dir}")
    problems = 0
    for filename in descriptor.required_files:
        result = validator.check_file(resolved.snapshot_dir / filename)
        if result.is_complete:
            print(f"  ✓ {filename}")
        else:
            problems += 1
            print(f"  ✗ {filename}: {result.reason.value}{f' ({result.detail})' if result.detail else ''}")

    markers = validator.find_corruption_markers(resolved.model_dir)
    for path in markers:
        print(f"  ! leftover partial download: {path}")

    if problems or markers:
        return 1
    print(f"{descriptor.name} is ready to load")
    return 0


def clear(descriptor: ModelDescriptor, settings: Settings) -> int:
    locator = CacheLocator(settings.cache_roots)
    janitor = CacheJanitor(locator, ArtifactValidator())

    removed = 0
    failed = 0
    for root in locator.cache_roots:
        report = janitor.purge_model(root, descriptor, lock_file_name=settings.lock_file_name)
        removed += len(report.removed)
        failed += len(report.failed)
        for path, error in report.failed.items():
            print(f"  could not remove {path}: {error}")

    if removed == 0 and failed == 0:
        print(f"No files of {descriptor.model_id} found - nothing to clear")
    else:
        print(f"Removed {removed} entries for {descriptor.model_id}")
    return 1 if failed else 0


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Download, verify or clear a model in the local hub cache",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("download", "Download the model's required files"),
        ("verify", "Check the cached files of the model"),
        ("clear", "Remove the model from every cache root"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--model",
            dest="model_id",
            default=None,
            help="Model id (default: configured default model)",
        )
        if name == "download":
            sub.add_argument(
                "-f", "--force",
                action="store_true",
                help="Re-download all files even if they already exist",
            )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    settings = Settings.from_env()

    try:
        descriptor = get_descriptor(args.model_id or settings.default_model)
    except UnknownModelError as e:
        print(e.message, file=sys.stderr)
        return 2

    if args.command == "download":
        return download(descriptor, settings, force=args.force)
    if args.command == "verify":
        return verify(descriptor, settings)
    return clear(descriptor, settings)


if __name__ == "__main__":
    sys.exit(main())
