"""
Diff function deployed to AWS Lambda.

Receives the frame's current manifest, lists the bucket and answers with
the objects to download and the manifest entries to delete.
"""

import logging
import os

import boto3

from s3photos.diff import compute_diff
from s3photos.s3_api import list_remote_objects
from s3photos.schema import DiffRequest, parse_manifest_entries

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_s3_client = None


def get_s3_client():
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client("s3", region_name=os.environ.get("AWS_REGION"))
    return _s3_client


def parse_event(event) -> DiffRequest:
    """
    Read the request. A missing or non-array manifest counts as empty;
    invalid entries are dropped and the rest are kept.
    """
    if not isinstance(event, dict):
        event = {}
    manifest = event.get("currentManifest")
    if not isinstance(manifest, list):
        manifest = []
    bucket = event.get("bucket")
    if not isinstance(bucket, str):
        bucket = None
    return DiffRequest(
        current_manifest=parse_manifest_entries(manifest, source="request"),
        bucket=bucket,
    )


def handler(event, context):
    request = parse_event(event)
    logger.info("Diff function invoked with %s manifest entries", len(request.current_manifest))

    bucket = request.bucket or os.environ.get("BUCKET_NAME")
    if not bucket:
        raise ValueError("BUCKET_NAME environment variable not set")

    remote = list_remote_objects(get_s3_client(), bucket)
    result = compute_diff(request.current_manifest, remote)

    logger.info("Found %s files in bucket", len(remote))
    logger.info(
        "Changes: %s to download, %s to delete",
        len(result.to_download),
        len(result.to_delete),
    )
    return result.to_response().to_json()
