"""Tests for the client-side file selection and relay client."""

import httpx
import pytest

from formrelay.client.selection import FileSelection, SelectionError
from formrelay.client.uploader import RelayClient
from formrelay.relay.validation import UploadLimits


@pytest.fixture
def make_path(tmp_path):
    def _make(name: str, size: int = 16):
        path = tmp_path / name
        path.write_bytes(b"x" * size)
        return path
    return _make


class TestFileSelection:
    """Tests for FileSelection."""

    def test_add_formats_names(self, make_path):
        selection = FileSelection()
        added = selection.add(make_path("My Photo.PNG"), make_path("cv.pdf"))

        assert len(selection) == 2
        assert [f.formatted_name for f in added] == ["my_photo.PNG", "cv.pdf"]
        assert added[0].original_name == "My Photo.PNG"
        assert added[1].content_type == "application/pdf"

    def test_count_limit_rejects_whole_batch(self, make_path):
        selection = FileSelection()
        selection.add(make_path("a.pdf"), make_path("b.pdf"))

        with pytest.raises(SelectionError, match="Maximum 3 files allowed"):
            selection.add(make_path("c.pdf"), make_path("d.pdf"))
        assert len(selection) == 2

    def test_type_limit(self, make_path):
        selection = FileSelection()
        with pytest.raises(SelectionError, match="Invalid file type"):
            selection.add(make_path("notes.txt"))
        assert len(selection) == 0

    def test_size_limit(self, make_path):
        selection = FileSelection(UploadLimits(max_file_size=10))
        with pytest.raises(SelectionError, match="too large"):
            selection.add(make_path("big.pdf", size=11))

    def test_remove_and_clear(self, make_path):
        selection = FileSelection()
        selection.add(make_path("a.pdf"), make_path("b.pdf"))

        removed = selection.remove(0)
        assert removed.original_name == "a.pdf"
        assert [f.original_name for f in selection] == ["b.pdf"]

        selection.clear()
        assert selection.entries == ()

    def test_subscribers_are_notified(self, make_path):
        selection = FileSelection()
        seen = []
        unsubscribe = selection.subscribe(lambda entries: seen.append(len(entries)))

        selection.add(make_path("a.pdf"))
        selection.add(make_path("b.pdf"))
        selection.remove(0)
        unsubscribe()
        selection.clear()

        assert seen == [1, 2, 1]

    def test_selections_are_independent(self, make_path):
        first = FileSelection()
        second = FileSelection()
        first.add(make_path("a.pdf"))

        assert len(first) == 1
        assert len(second) == 0


class TestRelayClient:
    """Tests for RelayClient."""

    @pytest.mark.asyncio
    async def test_upload_posts_files_names_and_email(self, make_path):
        captured = {}

        def handler(request):
            captured["request"] = request
            captured["body"] = request.read()
            return httpx.Response(200, json={"success": True, "message": "ok", "files": []})

        selection = FileSelection()
        selection.add(make_path("My CV.pdf"))

        client = RelayClient(
            "http://relay.local/",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        result = await client.upload(selection, "jane@example.com")

        assert result["success"] is True
        assert str(captured["request"].url) == "http://relay.local/api/upload"
        body = captured["body"]
        assert b'name="files"; filename="My CV.pdf"' in body
        assert b"my_cv.pdf" in body
        assert b"jane@example.com" in body

    @pytest.mark.asyncio
    async def test_upload_transport_failure(self, make_path):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        selection = FileSelection()
        selection.add(make_path("a.pdf"))

        client = RelayClient(
            "http://relay.local",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        result = await client.upload(selection, "jane@example.com")

        assert result["success"] is False
        assert result["errorDetails"]["code"] == "UPLOAD_FAILED"

    @pytest.mark.asyncio
    async def test_token_probe(self):
        def handler(request):
            assert request.url.path == "/api/test-token"
            return httpx.Response(
                200, json={"success": True, "data": {"scope": "api@example.com", "expires_in": 3599}}
            )

        client = RelayClient(
            "http://relay.local",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        result = await client.test_token()

        assert result["success"] is True
        assert result["data"]["scope"] == "api@example.com"

    @pytest.mark.asyncio
    async def test_token_probe_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = RelayClient(
            "http://relay.local",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        result = await client.test_token()

        assert result == {"success": False, "error": "refused"}
