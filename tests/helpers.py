"""Test doubles shared across the test modules."""

from __future__ import annotations

from typing import Any

from s3photos.notifications import Notifier
from s3photos.schema import DiffResponse, ManifestEntry, RemoteObject


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        super().__init__()
        self.events: list[tuple[str, Any]] = []
        self.subscribe(lambda notification, payload: self.events.append((notification, payload)))


class StubDiffSource:
    """Returns a fixed response (or raises) and records the manifests it was given."""

    def __init__(self, response: DiffResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or DiffResponse(to_download=[], to_delete=[])
        self.error = error
        self.calls: list[list[ManifestEntry]] = []

    def __call__(self, manifest: list[ManifestEntry]) -> DiffResponse:
        self.calls.append(list(manifest))
        if self.error is not None:
            raise self.error
        return self.response


def remote(key: str, size: int = 3) -> RemoteObject:
    return RemoteObject(key=key, last_modified="2024-05-01T10:00:00+00:00", size=size)


def entry(key: str) -> ManifestEntry:
    return ManifestEntry(
        key=key, url=f"cache/{key}", last_modified="2024-01-01T00:00:00+00:00", size=3
    )
