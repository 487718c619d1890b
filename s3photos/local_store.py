import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Collection, Iterator, List, Optional

from s3photos.errors import LocalIOError
from s3photos.schema import ManifestEntry, parse_manifest_entries

logger = logging.getLogger(__name__)

FILES_DELETED = "FILES_DELETED"


class ManifestStore:
    """
    Reads and rewrites the photos.json manifest kept in the cache directory.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> List[ManifestEntry]:
        """
        Load photos.json into a list of entries. Return empty if the file
        doesn't exist or can't be understood; entries that fail validation
        are dropped one by one.
        """
        if not self.exists():
            return []
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Error reading manifest %s, treating as empty: %s", self.path, e)
            return []

        if not isinstance(data, list):
            logger.warning("Manifest %s is not a JSON array, treating as empty", self.path)
            return []

        return parse_manifest_entries(data, source=str(self.path))

    def save(self, entries: List[ManifestEntry]):
        """
        Write the whole manifest to photos.json, replacing what was there.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump([entry.to_json() for entry in entries], f, indent=2)
        except OSError as e:
            raise LocalIOError(f"Cannot write manifest {self.path}: {e}") from e


def cache_path_for_key(cache_dir: Path, key: str) -> Path:
    """
    Where the cached copy of 'key' lives. Keys may contain folders;
    a key that would land outside the cache directory is rejected.
    """
    root = Path(cache_dir).resolve()
    path = (root / key).resolve()
    if path == root or not path.is_relative_to(root):
        raise LocalIOError(f"Key '{key}' does not map into cache directory {cache_dir}")
    return path


def cache_url_for_key(cache_dir: Path, key: str) -> str:
    """
    Relative location the display uses to load the cached copy, e.g. cache/samples/a.jpg
    """
    return f"{Path(cache_dir).name}/{key}"


def delete_cached_file(cache_dir: Path, key: str, keep: Collection[Path] = ()) -> List[Path]:
    """
    Best-effort delete of the cached copy of 'key', both at its full
    path and at the cache root under its basename. Paths in 'keep'
    (live photos of other keys, the manifest, notices) are never touched.
    Returns what was removed.
    """
    protected = {Path(p).resolve() for p in keep}
    removed = []
    candidates = []
    try:
        candidates.append(cache_path_for_key(cache_dir, key))
    except LocalIOError as e:
        logger.error("Skipping delete for %s: %s", key, e)
    basename = os.path.basename(key)
    if basename:
        root_copy = Path(cache_dir) / basename
        if root_copy.resolve() not in candidates:
            candidates.append(root_copy.resolve())

    for path in candidates:
        if path in protected:
            logger.debug("Keeping %s, still in use", path)
            continue
        if not path.is_file():
            continue
        try:
            path.unlink()
            removed.append(path)
            logger.info("Deleted local file: %s", path)
        except OSError as e:
            logger.error("Error deleting %s: %s", path, e)
    return removed


def copy_into_cache(source: Path, cache_dir: Path, key: str) -> Path:
    """
    Copy a local photo to the cache path for 'key', creating folders as needed.
    """
    dest = cache_path_for_key(cache_dir, key)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)
    except OSError as e:
        raise LocalIOError(f"Cannot copy {source} into cache: {e}") from e
    return dest


def iter_cached_files(cache_dir: Path, exclude: Optional[List[Path]] = None) -> Iterator[Path]:
    """
    Every regular file under the cache directory, recursively.
    """
    skip = {Path(p).resolve() for p in (exclude or [])}
    for root, dirs, files in os.walk(cache_dir):
        for fname in files:
            path = Path(root) / fname
            if path.resolve() in skip:
                continue
            yield path


# -----------------------------
# NOTIFICATION FILES
# -----------------------------


def read_notification_file(path: Path) -> Optional[dict]:
    """
    Parse a notification file dropped into the cache by another tool.
    Returns None if it is unreadable or not a JSON object.
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Error reading notification %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.error("Notification %s is not a JSON object", path)
        return None
    return data


def remove_notification_file(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("Could not remove notification %s: %s", path, e)


def write_update_notification(path: Path, files: List[str]):
    """
    Tell a running helper that objects were removed from the bucket.
    """
    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "type": FILES_DELETED,
        "files": list(files),
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
    except OSError as e:
        raise LocalIOError(f"Cannot write notification {path}: {e}") from e
