"""Wire and on-disk shapes for manifests and the remote diff boundary."""

import logging
from typing import Any, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from s3photos.errors import MalformedResponse

logger = logging.getLogger(__name__)

DIFF_REQUEST = "diff_request"
DIFF_RESPONSE = "diff_response"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json(self) -> dict:
        """Plain dict with the camelCase field names used on disk and on the wire."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ManifestEntry(_CamelModel):
    """One remote object that has been fetched into the local cache."""

    key: str = Field(min_length=1)
    url: Optional[str] = None  # cached copy, relative to the helper's root
    last_modified: Optional[str] = Field(default=None, alias="lastModified")
    size: Optional[int] = Field(default=None, ge=0)


class RemoteObject(_CamelModel):
    """One entry of a bucket listing. Lives only for one sync pass."""

    key: str = Field(min_length=1)
    last_modified: Optional[str] = Field(default=None, alias="lastModified")
    size: Optional[int] = Field(default=None, ge=0)
    folder: Optional[str] = None


class DiffRequest(_CamelModel):
    kind: Literal["diff_request"] = DIFF_REQUEST
    current_manifest: List[ManifestEntry] = Field(default_factory=list, alias="currentManifest")
    bucket: Optional[str] = None


class DiffResponse(_CamelModel):
    kind: Literal["diff_response"] = DIFF_RESPONSE
    to_download: List[RemoteObject] = Field(alias="toDownload")
    to_delete: List[ManifestEntry] = Field(alias="toDelete")


def folder_of(key: str) -> str:
    """First path segment of a key, used by the display to group attributions."""
    return key.split("/")[0]


def parse_manifest_entries(items: Iterable[Any], source: str = "manifest") -> List[ManifestEntry]:
    """
    Validate manifest entries one at a time, dropping (and logging) the
    ones that can't be used so the rest of the manifest survives.
    """
    entries = []
    for item in items:
        if isinstance(item, ManifestEntry):
            entries.append(item)
            continue
        try:
            entries.append(ManifestEntry.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid entry %r in %s: %s", item, source, e)
    return entries


def parse_diff_response(payload: Any) -> DiffResponse:
    """
    Validate what came back from the diff function.
    Raises MalformedResponse unless both arrays are present and well formed.
    """
    if not isinstance(payload, dict):
        raise MalformedResponse(
            f"Diff response must be an object, got {type(payload).__name__}"
        )
    for name in ("toDownload", "toDelete"):
        if not isinstance(payload.get(name), list):
            raise MalformedResponse(f"Diff response missing required array '{name}'")
    try:
        return DiffResponse.model_validate(payload)
    except ValidationError as e:
        raise MalformedResponse(f"Invalid diff response: {e}") from e
