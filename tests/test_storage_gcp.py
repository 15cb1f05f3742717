"""Unit tests for the Google Cloud Storage client.

All tests use a mocked aiohttp session, token and gcloud-aio-storage
client; no real GCP credentials or network access required.  The mocks
are injected directly onto the client to bypass init().
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from gcsfiles.storage.gcp import GCSClient, GCSReadStream, byte_range_header


def _make_client(project="test-project") -> GCSClient:
    """Create a GCSClient with mock session, token and storage (skip init)."""
    client = GCSClient(project=project)
    client._session = MagicMock()
    client._token = AsyncMock()
    client._token.get.return_value = "tok"
    client._storage = AsyncMock()
    client._uploads = AsyncMock()
    return client


def _json_response(payload) -> MagicMock:
    resp = MagicMock()
    resp.raise_for_status = MagicMock()
    resp.json = AsyncMock(return_value=payload)
    return resp


async def _agen(items):
    for item in items:
        yield item


class TestByteRangeHeader:
    """Tests for byte_range_header()."""

    def test_full_read(self):
        assert byte_range_header() == {}
        assert byte_range_header(0, None) == {}

    def test_bounded(self):
        assert byte_range_header(100, 199) == {"Range": "bytes=100-199"}

    def test_open_ended(self):
        assert byte_range_header(100) == {"Range": "bytes=100-"}

    def test_prefix(self):
        assert byte_range_header(0, 9) == {"Range": "bytes=0-9"}


class TestInit:
    """Tests for init() and close()."""

    async def test_init_wires_token_and_storage(self):
        with (
            patch("gcsfiles.storage.gcp.aiohttp.ClientSession") as mock_session_cls,
            patch("gcsfiles.storage.gcp.Token") as mock_token_cls,
            patch("gcsfiles.storage.gcp.Storage") as mock_storage_cls,
        ):
            client = GCSClient(project="p", service_file="/keys/sa.json")
            await client.init()

            session = mock_session_cls.return_value
            mock_token_cls.assert_called_once()
            assert mock_token_cls.call_args.kwargs["service_file"] == "/keys/sa.json"
            assert mock_token_cls.call_args.kwargs["session"] is session
            mock_storage_cls.assert_called_once_with(
                token=mock_token_cls.return_value,
                session=session,
                api_root="https://storage.googleapis.com",
            )

    async def test_close_releases_everything(self):
        client = _make_client()
        storage, token, session = client._storage, client._token, client._session
        session.close = AsyncMock()

        await client.close()

        storage.close.assert_awaited_once()
        token.close.assert_awaited_once()
        session.close.assert_awaited_once()
        assert client._session is None

    async def test_close_noop_when_not_initialized(self):
        await GCSClient().close()


class TestBuckets:
    """Tests for list_buckets() and create_bucket()."""

    async def test_list_first_page(self):
        client = _make_client()
        resp = _json_response({"items": [{"name": "a"}], "nextPageToken": "t2"})
        client._session.get.return_value.__aenter__.return_value = resp

        items, next_query = await client.list_buckets({"maxResults": 10})

        assert items == [{"name": "a"}]
        assert next_query == {"maxResults": 10, "pageToken": "t2"}
        call = client._session.get.call_args
        assert call.args == ("https://storage.googleapis.com/storage/v1/b",)
        assert call.kwargs["params"] == {"project": "test-project", "maxResults": 10}
        assert call.kwargs["headers"] == {"Authorization": "Bearer tok"}

    async def test_list_last_page(self):
        client = _make_client()
        resp = _json_response({"items": [{"name": "b"}]})
        client._session.get.return_value.__aenter__.return_value = resp

        items, next_query = await client.list_buckets({"pageToken": "t2"})

        assert items == [{"name": "b"}]
        assert next_query is None

    async def test_list_empty_project(self):
        client = _make_client()
        client._session.get.return_value.__aenter__.return_value = _json_response({})
        assert await client.list_buckets() == ([], None)

    async def test_list_http_error_propagates(self):
        client = _make_client()
        resp = _json_response({})
        resp.raise_for_status.side_effect = aiohttp.ClientResponseError(
            request_info=MagicMock(), history=(), status=403, message="Forbidden"
        )
        client._session.get.return_value.__aenter__.return_value = resp
        with pytest.raises(aiohttp.ClientResponseError):
            await client.list_buckets()

    async def test_create_bucket(self):
        client = _make_client()
        resp = _json_response({"name": "new", "location": "EU"})
        client._session.post.return_value.__aenter__.return_value = resp

        created = await client.create_bucket("new", {"location": "EU"})

        assert created == {"name": "new", "location": "EU"}
        call = client._session.post.call_args
        assert call.kwargs["params"] == {"project": "test-project"}
        assert call.kwargs["json"] == {"location": "EU", "name": "new"}


class TestObjects:
    """Tests for object metadata, reads and upload delegation."""

    async def test_get_object_metadata(self):
        client = _make_client()
        client._storage.download_metadata = AsyncMock(return_value={"name": "k"})

        assert await client.get_object_metadata("b", "k") == {"name": "k"}
        client._storage.download_metadata.assert_awaited_once_with("b", "k")

    async def test_open_read_range(self):
        client = _make_client()
        resp = MagicMock()
        resp.status = 206
        resp.headers = {"Content-Range": "bytes 100-199/1000"}
        resp.content.iter_chunked = lambda size: _agen([b"a", b"b"])
        client._session.get = AsyncMock(return_value=resp)

        stream = await client.open_read("my-bucket", "dir/a b.txt", start=100, end=199)

        call = client._session.get.call_args
        assert call.args == (
            "https://storage.googleapis.com/download/storage/v1/b/my-bucket/o/dir%2Fa%20b.txt",
        )
        assert call.kwargs["params"] == {"alt": "media"}
        assert call.kwargs["headers"]["Range"] == "bytes=100-199"
        assert call.kwargs["headers"]["Authorization"] == "Bearer tok"
        assert stream.status == 206
        assert stream.headers == {"Content-Range": "bytes 100-199/1000"}
        assert [chunk async for chunk in stream.iter_chunks()] == [b"a", b"b"]

        await stream.close()
        resp.release.assert_called_once()

    async def test_open_read_full_object_has_no_range(self):
        client = _make_client()
        resp = MagicMock()
        resp.status = 200
        resp.headers = {}
        client._session.get = AsyncMock(return_value=resp)

        await client.open_read("b", "k")

        assert "Range" not in client._session.get.call_args.kwargs["headers"]

    async def test_open_read_error_releases_response(self):
        client = _make_client()
        resp = MagicMock()
        resp.raise_for_status.side_effect = aiohttp.ClientResponseError(
            request_info=MagicMock(), history=(), status=404, message="Not Found"
        )
        client._session.get = AsyncMock(return_value=resp)

        with pytest.raises(aiohttp.ClientResponseError) as exc_info:
            await client.open_read("b", "missing")

        assert exc_info.value.status == 404
        resp.release.assert_called_once()

    async def test_create_resumable_upload_delegates(self):
        client = _make_client()
        client._uploads.create_uri = AsyncMock(return_value="https://session")
        hooks = [lambda r: r]

        uri = await client.create_resumable_upload(
            "b", "k", {"contentType": "text/plain"}, generation=2, hooks=hooks
        )

        assert uri == "https://session"
        client._uploads.create_uri.assert_awaited_once_with(
            "b", "k", {"contentType": "text/plain"}, generation=2, hooks=hooks
        )


def test_read_stream_copies_headers():
    resp = MagicMock()
    resp.status = 200
    resp.headers = {"Content-Length": "4"}
    stream = GCSReadStream(resp)
    assert stream.headers == {"Content-Length": "4"}
    assert stream.headers is not resp.headers
