import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union

from s3photos.auth import AwsSessionManager
from s3photos.config import (
    SAMPLE_PHOTO_KEYS,
    UPDATE_NOTIFICATION_FILE,
    UPLOAD_NOTIFICATION_FILE,
    SyncConfig,
)
from s3photos.diff import merge_manifest
from s3photos.errors import (
    LocalIOError,
    RemoteUnavailable,
    S3PhotosError,
    SyncFailed,
    UploadFailed,
)
from s3photos.local_store import (
    FILES_DELETED,
    ManifestStore,
    cache_path_for_key,
    cache_url_for_key,
    copy_into_cache,
    delete_cached_file,
    iter_cached_files,
    read_notification_file,
    remove_notification_file,
    write_update_notification,
)
from s3photos.notifications import Notifier
from s3photos import s3_api
from s3photos.schema import ManifestEntry, RemoteObject, parse_manifest_entries

logger = logging.getLogger(__name__)


class PhotoSync:
    """
    Keeps the local photo cache in step with the bucket:
     - sync (diff, delete stale files, download new ones, rewrite manifest)
     - purge of old cache files followed by a full resync
     - ingest of new local photos
     - notification files dropped by the USB and sample tools

    Every operation that rewrites the manifest holds the same lock,
    so scheduled jobs and direct calls never interleave.
    """

    def __init__(
        self,
        config: SyncConfig,
        aws: Optional[AwsSessionManager] = None,
        notifier: Optional[Notifier] = None,
        diff_source=None,
    ):
        self.config = config
        self.cache_dir = config.cache_dir
        self.aws = aws if aws is not None else AwsSessionManager(config)
        self.notifier = notifier if notifier is not None else Notifier()
        self.store = ManifestStore(config.manifest_path)
        self._diff_source = diff_source
        self._lock = threading.RLock()

    def authenticate(self):
        """
        Open the AWS clients and make sure the cache directory exists.
        """
        if not self.cache_dir.exists():
            logger.info("Creating cache directory at: %s", self.cache_dir)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.aws.open()

    def close(self):
        self.aws.close()

    @property
    def diff_source(self):
        if self._diff_source is None:
            if self.config.use_local_diff:
                self._diff_source = s3_api.LocalDiffSource(self.aws.s3, self.config.bucket)
            else:
                self._diff_source = s3_api.LambdaDiffSource(
                    self.aws.lambda_client, self.config.lambda_function, self.config.bucket
                )
        return self._diff_source

    # -----------------------------
    # 1) SYNC
    # -----------------------------

    def sync(
        self,
        current_manifest: Optional[List[ManifestEntry]] = None,
        fallback_to_cache: bool = False,
    ) -> List[ManifestEntry]:
        """
        One diff pass against the bucket.

        current_manifest replaces the persisted manifest as the starting point
        (an empty list forces a full redownload). With fallback_to_cache, a
        failure to obtain the diff returns the persisted manifest instead of
        raising, as long as it is not empty.
        """
        with self._lock:
            try:
                diff = self._request_diff(current_manifest)
            except SyncFailed as e:
                logger.error("Error requesting photo diff: %s", e)
                if fallback_to_cache:
                    cached = self.store.load()
                    if cached:
                        logger.info("Using cached manifest with %s photos", len(cached))
                        return cached
                raise

            manifest, response = diff

            deleted_keys = {entry.key for entry in response.to_delete}
            surviving = [entry.key for entry in manifest if entry.key not in deleted_keys]
            keep = self._protected_paths(surviving)
            for entry in response.to_delete:
                delete_cached_file(self.cache_dir, entry.key, keep=keep)

            downloaded = self._download_all(response.to_download)

            updated = merge_manifest(manifest, response.to_delete, downloaded)
            self.store.save(updated)

            logger.info(
                "Manifest updated: Removed %s files, added %s files",
                len(response.to_delete),
                len(downloaded),
            )
            return updated

    def _request_diff(self, current_manifest):
        try:
            self.authenticate()
            if current_manifest is None:
                manifest = self.store.load()
            else:
                manifest = list(current_manifest)
            return manifest, self.diff_source(manifest)
        except SyncFailed:
            raise
        except Exception as e:
            raise SyncFailed(f"Sync failed: {e}") from e

    def _protected_paths(self, keys: Iterable[str]) -> Set[Path]:
        """
        Files a cleanup pass must leave alone: the cached copies of the
        given keys, the manifest and the notification files.
        """
        paths = {
            self.store.path.resolve(),
            (self.cache_dir / UPLOAD_NOTIFICATION_FILE).resolve(),
            (self.cache_dir / UPDATE_NOTIFICATION_FILE).resolve(),
        }
        for key in keys:
            try:
                paths.add(cache_path_for_key(self.cache_dir, key))
            except LocalIOError:
                continue
        return paths

    def _download_all(self, objects: List[RemoteObject]) -> List[ManifestEntry]:
        if not objects:
            return []
        with ThreadPoolExecutor(max_workers=self.config.download_concurrency) as pool:
            results = list(pool.map(self._download_one, objects))
        return [entry for entry in results if entry is not None]

    def _download_one(self, obj: RemoteObject) -> Optional[ManifestEntry]:
        """
        Fetch one object into the cache. A failure is logged and
        returns None so the other downloads carry on.
        """
        logger.info("Downloading photo: %s", obj.key)
        try:
            dest = cache_path_for_key(self.cache_dir, obj.key)
            written = s3_api.download_object(
                self.aws.s3, self.aws.http, self.config.bucket, obj.key, dest
            )
        except Exception as e:
            logger.error("Failed to download photo %s: %s", obj.key, e)
            return None

        return ManifestEntry(
            key=obj.key,
            url=cache_url_for_key(self.cache_dir, obj.key),
            last_modified=obj.last_modified,
            size=obj.size if obj.size is not None else written,
        )

    def refresh(self) -> Optional[List[ManifestEntry]]:
        """
        Sync, falling back to the cached manifest, and tell the display
        what happened. Never raises.
        """
        try:
            manifest = self.sync(fallback_to_cache=True)
        except S3PhotosError as e:
            logger.error("Error getting photos: %s", e)
            self.notifier.photos_error(str(e) or "Failed to fetch photos")
            return None
        logger.info("Retrieved %s photos", len(manifest))
        self.notifier.photos_updated(manifest)
        return manifest

    # -----------------------------
    # 2) CACHE PURGE
    # -----------------------------

    def purge(self, max_age_seconds: float) -> Optional[List[ManifestEntry]]:
        """
        Delete cached files older than max_age_seconds, then resync
        from an empty manifest so everything is fetched again.
        A max age of 0 disables the purge.
        """
        if not max_age_seconds or max_age_seconds <= 0:
            logger.info("Cache cleanup disabled (max age = 0)")
            return None

        with self._lock:
            logger.info("Cleaning up cache directory")
            cutoff = time.time() - max_age_seconds
            removed = 0
            for path in iter_cached_files(self.cache_dir, exclude=[self.store.path]):
                try:
                    if path.stat().st_mtime < cutoff:
                        logger.info("Removing old cache file: %s", path)
                        path.unlink()
                        removed += 1
                except OSError as e:
                    logger.error("Error removing cache file %s: %s", path, e)

            logger.info("Cache cleanup complete (%s removed), triggering photo sync", removed)
            try:
                manifest = self.sync(current_manifest=[])
            except S3PhotosError as e:
                logger.error("Resync after cache cleanup failed: %s", e)
                self.notifier.photos_error(str(e))
                return None

        self.notifier.photos_updated(manifest)
        return manifest

    # -----------------------------
    # 3) NEW PHOTOS
    # -----------------------------

    def ingest(self, local_file_path: Union[str, Path], remote_folder: str) -> ManifestEntry:
        """
        Upload a local photo to remote_folder/<basename>, copy it into the
        cache and record it in the manifest. Nothing local changes if the
        upload fails.
        """
        source = Path(local_file_path)
        logger.info("Processing new photo from path: %s", source)
        try:
            data = source.read_bytes()
        except OSError as e:
            raise LocalIOError(f"Cannot read {source}: {e}") from e

        folder = (remote_folder or "").strip("/")
        key = f"{folder}/{source.name}" if folder else source.name

        with self._lock:
            try:
                self.authenticate()
            except RemoteUnavailable as e:
                raise UploadFailed(f"Upload of {key} failed: {e}") from e
            s3_api.upload_object(self.aws.s3, self.config.bucket, key, data)

            copy_into_cache(source, self.cache_dir, key)
            logger.info("Copied photo to cache: %s", key)

            entry = ManifestEntry(
                key=key,
                url=cache_url_for_key(self.cache_dir, key),
                last_modified=datetime.now(timezone.utc).isoformat(),
                size=len(data),
            )
            manifest = merge_manifest(self.store.load(), [], [entry])
            self.store.save(manifest)
        return entry

    def handle_new_photo(
        self, local_file_path: Union[str, Path], remote_folder: Optional[str] = None
    ) -> Optional[ManifestEntry]:
        """
        Entry point for the selfie hook: ingest and notify the display.
        """
        folder = remote_folder or self.config.selfie_folder
        try:
            entry = self.ingest(local_file_path, folder)
        except S3PhotosError as e:
            logger.error("Error processing new photo: %s", e)
            self.notifier.photos_error(str(e))
            return None
        self.notifier.photos_updated(self.store.load())
        return entry

    def register_new_photos(self, new_photos: Iterable[Union[dict, ManifestEntry]]) -> List[ManifestEntry]:
        """
        Add photos that another tool already uploaded and cached.
        Keys already in the manifest are left as they are.
        """
        entries = parse_manifest_entries(new_photos, source="new photos")

        with self._lock:
            manifest = self.store.load()
            known = {entry.key for entry in manifest}
            added = []
            for entry in entries:
                if entry.key not in known:
                    known.add(entry.key)
                    added.append(entry)
            manifest.extend(added)
            self.store.save(manifest)

        logger.info("Manifest updated with %s new photos", len(added))
        return manifest

    # -----------------------------
    # 4) NOTIFICATION FILES
    # -----------------------------

    def process_notification_files(self):
        """
        Pick up notices left in the cache directory by the USB import
        and sample deletion tools, act on them and remove them.

        A notice that can't be parsed yet (the other tool may still be
        writing it) or that fails to apply stays for the next poll.
        """
        upload_file = self.cache_dir / UPLOAD_NOTIFICATION_FILE
        if upload_file.exists():
            data = read_notification_file(upload_file)
            if data is not None:
                new_photos = data.get("newPhotos")
                if isinstance(new_photos, list) and new_photos:
                    try:
                        self.register_new_photos(new_photos)
                    except LocalIOError as e:
                        logger.error("Error processing upload notification: %s", e)
                    else:
                        remove_notification_file(upload_file)
                        self.refresh()
                else:
                    remove_notification_file(upload_file)

        update_file = self.cache_dir / UPDATE_NOTIFICATION_FILE
        if update_file.exists():
            data = read_notification_file(update_file)
            if data is not None:
                remove_notification_file(update_file)
                files = data.get("files")
                if data.get("type") == FILES_DELETED and isinstance(files, list):
                    logger.info("Processing deletion of %s files", len(files))
                    self.refresh()

    def delete_samples(self, keys: Optional[List[str]] = None) -> List[str]:
        """
        Remove the bundled sample photos from the bucket and leave a
        notice so a running helper resyncs.
        """
        keys = list(SAMPLE_PHOTO_KEYS if keys is None else keys)
        self.authenticate()
        deleted = s3_api.delete_remote_objects(self.aws.s3, self.config.bucket, keys)
        write_update_notification(self.cache_dir / UPDATE_NOTIFICATION_FILE, deleted)
        return deleted
