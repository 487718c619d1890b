"""Tests for the S3/Lambda wrappers, using fake boto3 clients."""

from __future__ import annotations

import io
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest
import requests
from botocore.exceptions import ClientError, EndpointConnectionError

from s3photos import s3_api
from s3photos.errors import LocalIOError, MalformedResponse, RemoteUnavailable, UploadFailed
from s3photos.schema import DiffRequest, ManifestEntry

if TYPE_CHECKING:
    from pathlib import Path


def _client_error(code: str = "AccessDenied", operation: str = "ListObjectsV2") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "nope"}}, operation)


def _s3_with_pages(*pages: dict[str, Any]) -> MagicMock:
    s3 = MagicMock()
    s3.get_paginator.return_value.paginate.return_value = list(pages)
    return s3


def _lambda_returning(payload: Any, function_error: str | None = None) -> MagicMock:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    response: dict[str, Any] = {"StatusCode": 200, "Payload": io.BytesIO(body)}
    if function_error:
        response["FunctionError"] = function_error
    client = MagicMock()
    client.invoke.return_value = response
    return client


def _http_returning(status: int, chunks: list[bytes]) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.iter_content.return_value = chunks
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    http = MagicMock()
    http.get.return_value = resp
    return http


class TestListRemoteObjects:
    def test_follows_every_page(self) -> None:
        when = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        s3 = _s3_with_pages(
            {"Contents": [{"Key": "samples/a.jpg", "LastModified": when, "Size": 10}]},
            {"Contents": [{"Key": "b.jpg", "LastModified": when, "Size": 20}]},
            {},
        )

        objects = s3_api.list_remote_objects(s3, "frame-bucket")

        s3.get_paginator.assert_called_once_with("list_objects_v2")
        s3.get_paginator.return_value.paginate.assert_called_once_with(Bucket="frame-bucket")
        assert [o.key for o in objects] == ["samples/a.jpg", "b.jpg"]
        assert objects[0].folder == "samples"
        assert objects[0].last_modified == "2024-05-01T10:00:00+00:00"
        assert objects[1].size == 20

    def test_skips_folder_placeholders(self) -> None:
        s3 = _s3_with_pages({"Contents": [{"Key": "samples/", "Size": 0}, {"Key": "samples/a.jpg", "Size": 1}]})

        assert [o.key for o in s3_api.list_remote_objects(s3, "b")] == ["samples/a.jpg"]

    @pytest.mark.parametrize(
        "error", [_client_error(), EndpointConnectionError(endpoint_url="https://s3.example")]
    )
    def test_aws_errors_become_remote_unavailable(self, error: Exception) -> None:
        s3 = MagicMock()
        s3.get_paginator.return_value.paginate.side_effect = error

        with pytest.raises(RemoteUnavailable):
            s3_api.list_remote_objects(s3, "frame-bucket")


class TestInvokeDiffFunction:
    def _request(self) -> DiffRequest:
        return DiffRequest(current_manifest=[ManifestEntry(key="a.jpg")], bucket="frame-bucket")

    def test_sends_tagged_request_and_parses_response(self) -> None:
        client = _lambda_returning({"kind": "diff_response", "toDownload": [{"key": "c.jpg"}], "toDelete": []})

        response = s3_api.invoke_diff_function(client, "frame-diff", self._request())

        kwargs = client.invoke.call_args.kwargs
        assert kwargs["FunctionName"] == "frame-diff"
        assert kwargs["InvocationType"] == "RequestResponse"
        sent = json.loads(kwargs["Payload"])
        assert sent["kind"] == "diff_request"
        assert sent["currentManifest"] == [{"key": "a.jpg"}]
        assert sent["bucket"] == "frame-bucket"
        assert [o.key for o in response.to_download] == ["c.jpg"]

    def test_function_error_is_remote_unavailable_with_message(self) -> None:
        client = _lambda_returning({"errorMessage": "BUCKET_NAME environment variable not set"}, "Unhandled")

        with pytest.raises(RemoteUnavailable, match="BUCKET_NAME"):
            s3_api.invoke_diff_function(client, "frame-diff", self._request())

    def test_invoke_failure_is_remote_unavailable(self) -> None:
        client = MagicMock()
        client.invoke.side_effect = _client_error("ResourceNotFoundException", "Invoke")

        with pytest.raises(RemoteUnavailable):
            s3_api.invoke_diff_function(client, "frame-diff", self._request())

    def test_invalid_json_is_malformed(self) -> None:
        client = _lambda_returning(b"<html>")

        with pytest.raises(MalformedResponse):
            s3_api.invoke_diff_function(client, "frame-diff", self._request())

    def test_wrong_shape_is_malformed(self) -> None:
        client = _lambda_returning({"toDownload": "a.jpg", "toDelete": []})

        with pytest.raises(MalformedResponse):
            s3_api.invoke_diff_function(client, "frame-diff", self._request())


class TestDownloadObject:
    def test_streams_to_destination(self, cache_dir: Path) -> None:
        s3 = MagicMock()
        s3.generate_presigned_url.return_value = "https://signed.example/a.jpg"
        http = _http_returning(200, [b"ab", b"cd"])
        dest = cache_dir / "samples" / "a.jpg"

        written = s3_api.download_object(s3, http, "frame-bucket", "samples/a.jpg", dest)

        assert written == 4
        assert dest.read_bytes() == b"abcd"
        assert not dest.with_name("a.jpg.part").exists()
        s3.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "frame-bucket", "Key": "samples/a.jpg"},
            ExpiresIn=s3_api.PRESIGNED_URL_EXPIRY,
        )
        assert http.get.call_args.args == ("https://signed.example/a.jpg",)

    def test_http_error_status(self, cache_dir: Path) -> None:
        http = _http_returning(403, [])
        dest = cache_dir / "a.jpg"

        with pytest.raises(RemoteUnavailable, match="403"):
            s3_api.download_object(MagicMock(), http, "frame-bucket", "a.jpg", dest)
        assert not dest.exists()

    def test_connection_error(self, cache_dir: Path) -> None:
        http = MagicMock()
        http.get.side_effect = requests.ConnectionError("reset")

        with pytest.raises(RemoteUnavailable):
            s3_api.download_object(MagicMock(), http, "frame-bucket", "a.jpg", cache_dir / "a.jpg")

    def test_unwritable_destination(self, cache_dir: Path) -> None:
        (cache_dir / "a.jpg").mkdir()
        http = _http_returning(200, [b"x"])

        with pytest.raises(LocalIOError):
            s3_api.download_object(MagicMock(), http, "frame-bucket", "a.jpg", cache_dir / "a.jpg")


class TestUploadAndDelete:
    def test_upload_guesses_content_type(self) -> None:
        s3 = MagicMock()

        s3_api.upload_object(s3, "frame-bucket", "selfies/me.jpg", b"data")

        s3.put_object.assert_called_once_with(
            Bucket="frame-bucket", Key="selfies/me.jpg", Body=b"data", ContentType="image/jpeg"
        )

    def test_upload_failure(self) -> None:
        s3 = MagicMock()
        s3.put_object.side_effect = _client_error("AccessDenied", "PutObject")

        with pytest.raises(UploadFailed):
            s3_api.upload_object(s3, "frame-bucket", "selfies/me.jpg", b"data")

    def test_delete_continues_past_failures(self) -> None:
        s3 = MagicMock()
        s3.delete_object.side_effect = [None, _client_error("AccessDenied", "DeleteObject"), None]

        deleted = s3_api.delete_remote_objects(s3, "frame-bucket", ["a.jpg", "b.jpg", "c.jpg"])

        assert deleted == ["a.jpg", "c.jpg"]
        assert s3.delete_object.call_count == 3


class TestDiffSources:
    def test_local_source_lists_and_diffs(self) -> None:
        s3 = _s3_with_pages({"Contents": [{"Key": "b.jpg", "Size": 1}, {"Key": "c.jpg", "Size": 1}]})
        source = s3_api.LocalDiffSource(s3, "frame-bucket")

        response = source([ManifestEntry(key="a.jpg"), ManifestEntry(key="b.jpg")])

        assert [o.key for o in response.to_download] == ["c.jpg"]
        assert [e.key for e in response.to_delete] == ["a.jpg"]

    def test_lambda_source_passes_bucket(self) -> None:
        client = _lambda_returning({"toDownload": [], "toDelete": []})
        source = s3_api.LambdaDiffSource(client, "frame-diff", "frame-bucket")

        source([])

        sent = json.loads(client.invoke.call_args.kwargs["Payload"])
        assert sent["bucket"] == "frame-bucket"
        assert sent["currentManifest"] == []
