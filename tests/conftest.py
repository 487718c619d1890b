"""Shared fixtures: a config rooted in tmp_path and fake AWS clients."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest
from helpers import RecordingNotifier, StubDiffSource

from s3photos.config import SyncConfig
from s3photos.errors import RemoteUnavailable
from s3photos.syncer import PhotoSync

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def config(cache_dir: Path) -> SyncConfig:
    return SyncConfig(bucket="frame-bucket", lambda_function="frame-diff", cache_dir=cache_dir)


@pytest.fixture
def fake_aws() -> MagicMock:
    return MagicMock(name="aws")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fake_download(monkeypatch: pytest.MonkeyPatch) -> set[str]:
    """Replace the network download; keys added to the returned set fail."""
    failing: set[str] = set()

    def download(s3: Any, http: Any, bucket: str, key: str, dest: Path) -> int:
        if key in failing:
            raise RemoteUnavailable(f"simulated failure for {key}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"img")
        return 3

    monkeypatch.setattr("s3photos.s3_api.download_object", download)
    return failing


@pytest.fixture
def make_sync(config: SyncConfig, fake_aws: MagicMock, notifier: RecordingNotifier):
    def factory(diff_source: StubDiffSource | None = None) -> PhotoSync:
        return PhotoSync(config, aws=fake_aws, notifier=notifier, diff_source=diff_source)

    return factory
