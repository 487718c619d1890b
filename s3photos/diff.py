"""
Key-set diff between the local manifest and a bucket listing.

Entries present on both sides are left alone, even if their size or
timestamp changed remotely.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from s3photos.schema import DiffResponse, ManifestEntry, RemoteObject


@dataclass
class DiffResult:
    to_download: List[RemoteObject] = field(default_factory=list)
    to_delete: List[ManifestEntry] = field(default_factory=list)

    def to_response(self) -> DiffResponse:
        return DiffResponse(to_download=self.to_download, to_delete=self.to_delete)


def compute_diff(
    manifest: Iterable[ManifestEntry],
    remote: Iterable[RemoteObject],
) -> DiffResult:
    """
    toDownload: remote objects whose key the manifest does not know.
    toDelete: manifest entries whose key is gone from the bucket.
    """
    manifest = list(manifest)
    remote = list(remote)
    manifest_keys = {entry.key for entry in manifest}
    remote_keys = {obj.key for obj in remote}

    return DiffResult(
        to_download=[obj for obj in remote if obj.key not in manifest_keys],
        to_delete=[entry for entry in manifest if entry.key not in remote_keys],
    )


def merge_manifest(
    old: Iterable[ManifestEntry],
    to_delete: Iterable[ManifestEntry],
    downloaded: Iterable[ManifestEntry],
) -> List[ManifestEntry]:
    """
    Surviving old entries followed by the new downloads, one entry per key.
    A later entry for the same key replaces the earlier one in place.
    """
    deleted_keys = {entry.key for entry in to_delete}
    merged: Dict[str, ManifestEntry] = {}
    for entry in old:
        if entry.key not in deleted_keys:
            merged[entry.key] = entry
    for entry in downloaded:
        merged[entry.key] = entry
    return list(merged.values())
