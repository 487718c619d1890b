"""
Exception types shared by the sync helper.

Per-item failures (one download, one delete) are logged and skipped by the
caller; everything below is raised for failures that end an operation.
"""


class S3PhotosError(Exception):
    """Base class for all errors raised by s3photos."""


class ConfigError(S3PhotosError):
    """Required settings are missing or invalid."""


class SyncFailed(S3PhotosError):
    """
    A whole sync pass failed. The underlying exception, if any,
    is available as __cause__.
    """


class RemoteUnavailable(SyncFailed):
    """The bucket or the diff function could not be reached, or access was denied."""


class MalformedResponse(SyncFailed):
    """The diff function answered with a payload of the wrong shape."""


class LocalIOError(S3PhotosError):
    """Reading or writing the manifest or a cache file failed."""


class UploadFailed(S3PhotosError):
    """Writing a new photo to the bucket failed."""
