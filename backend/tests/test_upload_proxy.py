"""
Upload proxy against a mocked storage API.
"""
import httpx
import pytest
from unittest.mock import patch

from services.upload_proxy import upload_file, UploadError

_RealAsyncClient = httpx.AsyncClient


def _client_factory(handler):
    transport = httpx.MockTransport(handler)

    def factory(**kwargs):
        return _RealAsyncClient(transport=transport, **kwargs)
    return factory


@pytest.mark.asyncio
async def test_upload_returns_download_url():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"name": "orders/ORD-1/front.jpg", "downloadTokens": "tok"})

    with patch("services.upload_proxy.httpx.AsyncClient", _client_factory(handler)), \
            patch("services.upload_proxy.BLOB_PUBLIC_URL", ""):
        url = await upload_file(b"jpeg", "orders/ORD-1/front.jpg", "image/jpeg",
                                token="id-token", upload_urls=["https://blob.example/o"])

    assert url == "https://blob.example/o/orders%2FORD-1%2Ffront.jpg?alt=media&token=tok"
    assert seen[0].headers["Authorization"] == "Bearer id-token"
    assert seen[0].headers["Content-Type"] == "image/jpeg"
    assert seen[0].url.params["name"] == "orders/ORD-1/front.jpg"


@pytest.mark.asyncio
async def test_upload_tries_next_endpoint_on_404():
    def handler(request):
        if request.url.host == "first.example":
            return httpx.Response(404, text="bucket not found")
        return httpx.Response(200, json={})

    with patch("services.upload_proxy.httpx.AsyncClient", _client_factory(handler)), \
            patch("services.upload_proxy.BLOB_PUBLIC_URL", ""):
        url = await upload_file(b"x", "a.png", upload_urls=["https://first.example/o", "https://second.example/o"])

    assert url.startswith("https://second.example/o/a.png")


@pytest.mark.asyncio
async def test_upload_surfaces_storage_error_text():
    def handler(request):
        return httpx.Response(403, text="Permission denied.")

    with patch("services.upload_proxy.httpx.AsyncClient", _client_factory(handler)):
        with pytest.raises(UploadError) as exc:
            await upload_file(b"x", "a.png", upload_urls=["https://one.example/o", "https://two.example/o"])

    assert exc.value.status_code == 403
    assert exc.value.detail == "Permission denied."


@pytest.mark.asyncio
async def test_upload_timeout_maps_to_504():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with patch("services.upload_proxy.httpx.AsyncClient", _client_factory(handler)):
        with pytest.raises(UploadError) as exc:
            await upload_file(b"x", "a.png", upload_urls=["https://one.example/o"])

    assert exc.value.status_code == 504


@pytest.mark.asyncio
async def test_upload_without_path_or_endpoint():
    with pytest.raises(UploadError) as exc:
        await upload_file(b"x", "", upload_urls=["https://one.example/o"])
    assert exc.value.status_code == 400

    with patch("services.upload_proxy.BLOB_UPLOAD_URLS", []):
        with pytest.raises(UploadError) as exc:
            await upload_file(b"x", "a.png")
    assert exc.value.status_code == 500
