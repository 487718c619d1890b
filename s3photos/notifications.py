"""Messages sent to the display after every sync or ingest attempt."""

import json
import logging
import sys
from typing import Any, Callable, List

from s3photos.schema import ManifestEntry

logger = logging.getLogger(__name__)

PHOTOS_UPDATED = "PHOTOS_UPDATED"
PHOTOS_ERROR = "PHOTOS_ERROR"

Subscriber = Callable[[str, Any], None]


class Notifier:
    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber):
        self._subscribers.append(callback)

    def photos_updated(self, manifest: List[ManifestEntry]):
        logger.info("Sending %s with %s photos", PHOTOS_UPDATED, len(manifest))
        self._emit(PHOTOS_UPDATED, [entry.to_json() for entry in manifest])

    def photos_error(self, message: str):
        logger.info("Sending %s: %s", PHOTOS_ERROR, message)
        self._emit(PHOTOS_ERROR, message)

    def _emit(self, notification: str, payload: Any):
        for callback in list(self._subscribers):
            try:
                callback(notification, payload)
            except Exception:
                logger.exception("Notification subscriber %r failed", callback)


def json_lines_subscriber(stream=None) -> Subscriber:
    """
    Subscriber that writes each notification as one JSON line,
    for a host process reading our stdout.
    """

    def write(notification: str, payload: Any):
        out = stream if stream is not None else sys.stdout
        out.write(json.dumps({"notification": notification, "payload": payload}) + "\n")
        out.flush()

    return write
