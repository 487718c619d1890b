import json
import logging
import mimetypes
import os
from pathlib import Path
from typing import Iterable, List, Optional

import requests
from botocore.exceptions import BotoCoreError, ClientError

from s3photos.diff import compute_diff
from s3photos.errors import LocalIOError, MalformedResponse, RemoteUnavailable, UploadFailed
from s3photos.schema import (
    DiffRequest,
    DiffResponse,
    ManifestEntry,
    RemoteObject,
    folder_of,
    parse_diff_response,
)

logger = logging.getLogger(__name__)

AWS_ERRORS = (BotoCoreError, ClientError)

PRESIGNED_URL_EXPIRY = 300
DOWNLOAD_TIMEOUT = (5, 60)
CHUNK_SIZE = 1024 * 1024


def _describe(e: Exception) -> str:
    if isinstance(e, ClientError):
        err = e.response.get("Error", {})
        return f"{err.get('Code', 'Unknown')}: {err.get('Message', str(e))}"
    return str(e)


def _timestamp(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def list_remote_objects(s3, bucket: str) -> List[RemoteObject]:
    """
    List every object in the bucket (all pages).
    Directory placeholder keys ending in '/' are skipped.
    """
    objects = []
    try:
        paginator = s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket):
            for item in page.get("Contents", []):
                key = item["Key"]
                if key.endswith("/"):
                    continue
                objects.append(
                    RemoteObject(
                        key=key,
                        last_modified=_timestamp(item.get("LastModified")),
                        size=item.get("Size"),
                        folder=folder_of(key),
                    )
                )
    except AWS_ERRORS as e:
        raise RemoteUnavailable(f"Cannot list bucket {bucket}: {_describe(e)}") from e
    return objects


def invoke_diff_function(lambda_client, function_name: str, request: DiffRequest) -> DiffResponse:
    """
    Ask the hosted diff function what to download and what to delete.
    """
    try:
        response = lambda_client.invoke(
            FunctionName=function_name,
            InvocationType="RequestResponse",
            Payload=json.dumps(request.to_json()).encode("utf-8"),
        )
        raw = response["Payload"].read()
    except AWS_ERRORS as e:
        raise RemoteUnavailable(f"Cannot invoke {function_name}: {_describe(e)}") from e

    try:
        payload = json.loads(raw) if raw else None
    except ValueError as e:
        if response.get("FunctionError"):
            raise RemoteUnavailable(f"Lambda error: {raw[:200]!r}") from e
        raise MalformedResponse(f"Diff function returned invalid JSON: {e}") from e

    if response.get("FunctionError"):
        message = "Unknown error"
        if isinstance(payload, dict):
            message = payload.get("errorMessage") or message
        logger.error("Lambda function error: %s", payload)
        raise RemoteUnavailable(f"Lambda error: {message}")

    return parse_diff_response(payload)


def download_object(s3, http: requests.Session, bucket: str, key: str, dest: Path) -> int:
    """
    Fetch one object through a presigned URL and write it to dest,
    creating folders as needed. Returns the number of bytes written.
    """
    try:
        url = s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=PRESIGNED_URL_EXPIRY,
        )
    except AWS_ERRORS as e:
        raise RemoteUnavailable(f"Cannot sign download for {key}: {_describe(e)}") from e

    dest = Path(dest)
    partial = dest.with_name(dest.name + ".part")
    written = 0
    try:
        with http.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as r:
            if r.status_code != 200:
                raise RemoteUnavailable(f"Download failed for {key}: HTTP {r.status_code}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(partial, "wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
                    written += len(chunk)
        os.replace(partial, dest)
    except requests.RequestException as e:
        _discard(partial)
        raise RemoteUnavailable(f"Download failed for {key}: {e}") from e
    except OSError as e:
        _discard(partial)
        raise LocalIOError(f"Cannot write {dest}: {e}") from e
    except RemoteUnavailable:
        _discard(partial)
        raise

    return written


def _discard(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial download %s: %s", path, e)


def upload_object(s3, bucket: str, key: str, data: bytes, content_type: Optional[str] = None):
    """
    Write raw bytes to bucket/key.
    """
    if content_type is None:
        content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    try:
        s3.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
    except AWS_ERRORS as e:
        raise UploadFailed(f"Upload of {key} failed: {_describe(e)}") from e
    logger.info("Uploaded photo to S3: %s", key)


def delete_remote_objects(s3, bucket: str, keys: Iterable[str]) -> List[str]:
    """
    Delete each key from the bucket, one at a time. Failures are logged
    and skipped. Returns the keys that were deleted.
    """
    deleted = []
    for key in keys:
        try:
            s3.delete_object(Bucket=bucket, Key=key)
        except AWS_ERRORS as e:
            logger.error("Error deleting %s from S3: %s", key, _describe(e))
            continue
        logger.info("Deleted from S3: %s", key)
        deleted.append(key)
    return deleted


# -----------------------------
# DIFF SOURCES
# -----------------------------


class LambdaDiffSource:
    """
    Diff computed by the hosted function, so the bucket listing
    never has to travel to the frame.
    """

    def __init__(self, lambda_client, function_name: str, bucket: str):
        self.lambda_client = lambda_client
        self.function_name = function_name
        self.bucket = bucket

    def __call__(self, manifest: List[ManifestEntry]) -> DiffResponse:
        logger.info("Requesting photo diff from Lambda %s", self.function_name)
        request = DiffRequest(current_manifest=manifest, bucket=self.bucket)
        return invoke_diff_function(self.lambda_client, self.function_name, request)


class LocalDiffSource:
    """
    Same diff, computed here from a full bucket listing.
    """

    def __init__(self, s3, bucket: str):
        self.s3 = s3
        self.bucket = bucket

    def __call__(self, manifest: List[ManifestEntry]) -> DiffResponse:
        logger.info("Listing bucket %s for a local diff", self.bucket)
        remote = list_remote_objects(self.s3, self.bucket)
        return compute_diff(manifest, remote).to_response()
