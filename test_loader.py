"""
Tests for image loading: uploads, data URLs, files and anonymous downloads.
"""

import asyncio
import base64
from io import BytesIO

import pytest
import requests
from PIL import Image
from psd_tools import PSDImage

from slicestitch.services import loader
from slicestitch.services.errors import DecodeError
from slicestitch.services.loader import LocalHandle, decode_image, describe_ref, load_image, load_images


def _png(width=12, height=8, color=(10, 20, 30)):
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, content=b"", status_code=200, headers=None):
        self.content = content
        self.status_code = status_code
        self.headers = headers or {}
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start : start + chunk_size]


class FakeSession:
    """Stands in for requests.Session and records how it was used."""

    instances = []

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.trust_env = True
        self.calls = []
        FakeSession.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def get(self, url, timeout=None, stream=False):
        self.calls.append((url, timeout, stream))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_session(monkeypatch):
    FakeSession.instances = []

    def install(response=None, error=None):
        monkeypatch.setattr(loader.requests, "Session", lambda: FakeSession(response, error))

    return install


def test_decode_gives_rgba_pixels():
    raster = decode_image(_png(), source="test")

    assert (raster.width, raster.height) == (12, 8)
    assert raster.pixels.shape == (8, 12, 4)
    assert tuple(raster.pixels[0, 0]) == (10, 20, 30, 255)
    assert raster.aspect == 1.5


def test_load_uploaded_bytes():
    raster = load_image(LocalHandle(_png(), "photo.png"))

    assert raster.source == "photo.png"
    assert raster.width == 12


def test_load_data_url():
    url = "data:image/png;base64," + base64.b64encode(_png(5, 5)).decode("ascii")

    raster = load_image(url)

    assert (raster.width, raster.height) == (5, 5)


def test_non_base64_data_url_is_rejected():
    with pytest.raises(DecodeError):
        load_image("data:image/svg+xml,<svg></svg>")


def test_load_local_path(tmp_path):
    path = tmp_path / "tile.png"
    path.write_bytes(_png(3, 4))

    raster = load_image(path)

    assert (raster.width, raster.height) == (3, 4)


def test_missing_file_raises_decode_error(tmp_path):
    with pytest.raises(DecodeError) as excinfo:
        load_image(tmp_path / "nope.png")
    assert "nope.png" in excinfo.value.reference


def test_corrupt_and_empty_payloads_raise_decode_error():
    with pytest.raises(DecodeError):
        load_image(LocalHandle(b"definitely not an image"))
    with pytest.raises(DecodeError):
        load_image(LocalHandle(_png()[:40], "truncated.png"))
    with pytest.raises(DecodeError):
        load_image(LocalHandle(b""))


def test_exif_orientation_is_applied():
    exif = Image.Exif()
    exif[0x0112] = 6
    buffer = BytesIO()
    Image.new("RGB", (40, 20), (200, 0, 0)).save(buffer, format="JPEG", exif=exif.tobytes())

    raster = decode_image(buffer.getvalue())

    assert (raster.width, raster.height) == (20, 40)


def test_remote_fetch_is_anonymous(fake_session):
    fake_session(response=FakeResponse(_png(7, 3)))

    raster = load_image("https://example.com/photo.png")

    session = FakeSession.instances[0]
    assert session.trust_env is False
    assert session.calls == [("https://example.com/photo.png", loader.REMOTE_TIMEOUT, True)]
    assert (raster.width, raster.height) == (7, 3)


def test_remote_http_error_raises_decode_error(fake_session):
    fake_session(response=FakeResponse(status_code=404))

    with pytest.raises(DecodeError) as excinfo:
        load_image("https://example.com/missing.png")
    assert excinfo.value.reference == "https://example.com/missing.png"


def test_remote_network_error_raises_decode_error(fake_session):
    fake_session(error=requests.ConnectionError("unreachable"))

    with pytest.raises(DecodeError):
        load_image("http://example.invalid/photo.png")


def test_load_images_keeps_order():
    refs = [LocalHandle(_png(w, 10), f"img{w}") for w in (30, 10, 20)]

    rasters = asyncio.run(load_images(refs))

    assert [r.width for r in rasters] == [30, 10, 20]
    assert [r.source for r in rasters] == ["img30", "img10", "img20"]


def test_describe_ref_truncates_data_urls():
    url = "data:image/png;base64," + "A" * 500

    assert describe_ref(url) == url[:32] + "..."
    assert describe_ref(LocalHandle(b"", "upload.jpg")) == "upload.jpg"
    assert describe_ref("https://example.com/a.png") == "https://example.com/a.png"


def test_client_strings_never_read_server_files(tmp_path):
    path = tmp_path / "server_only.png"
    path.write_bytes(_png(3, 4))

    for ref in (str(path), "relative/tile.png", f"file://{path}"):
        with pytest.raises(DecodeError) as excinfo:
            load_image(ref)
        assert excinfo.value.reason == "only data: and http(s) URLs are accepted"


def _psd_bytes(width=6, height=4, color=(10, 200, 30)):
    buffer = BytesIO()
    PSDImage.frompil(Image.new("RGB", (width, height), color)).save(buffer)
    return buffer.getvalue()


def test_psd_documents_are_flattened():
    data = _psd_bytes()
    assert data.startswith(b"8BPS")

    raster = load_image(LocalHandle(data, "layout.psd"))

    assert (raster.width, raster.height) == (6, 4)
    assert tuple(raster.pixels[2, 3]) == (10, 200, 30, 255)


def test_truncated_psd_raises_decode_error():
    with pytest.raises(DecodeError) as excinfo:
        load_image(LocalHandle(_psd_bytes()[:20], "cut.psd"))
    assert excinfo.value.reference == "cut.psd"


def test_oversized_download_is_refused(fake_session, monkeypatch):
    monkeypatch.setattr(loader, "REMOTE_MAX_BYTES", 32)
    response = FakeResponse(_png(7, 3))
    fake_session(response=response)

    with pytest.raises(DecodeError):
        load_image("https://example.com/huge.png")
    assert response.closed is True


def test_declared_oversized_download_is_refused(fake_session, monkeypatch):
    monkeypatch.setattr(loader, "REMOTE_MAX_BYTES", 1000)
    fake_session(response=FakeResponse(b"", headers={"Content-Length": "5000"}))

    with pytest.raises(DecodeError) as excinfo:
        load_image("https://example.com/huge.png")
    assert "larger than 1000 bytes" in excinfo.value.reason
