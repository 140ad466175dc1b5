"""Tests for asset loading."""

import asyncio
import io

import pytest
from PIL import Image

from qrstyle.assets import BACKGROUND_MEDIA_TYPES, SVG_MEDIA_TYPE, AssetLoader, sniff_media_type
from qrstyle.config import DEFAULT_LOGO_PATH
from qrstyle.errors import AssetLoadError

from tests.conftest import STROKED_SVG


def test_sniff_svg_and_png(red_png_bytes):
    assert sniff_media_type(STROKED_SVG.encode()) == SVG_MEDIA_TYPE
    assert sniff_media_type(b"  <svg/>") == SVG_MEDIA_TYPE
    assert sniff_media_type(red_png_bytes) == "image/png"
    assert sniff_media_type(b"garbage") == "application/octet-stream"


def test_load_logo_from_bytes_and_path(tmp_path, red_png_bytes):
    path = tmp_path / "logo.svg"
    path.write_text(STROKED_SVG, encoding="utf-8")
    loader = AssetLoader()

    from_path = asyncio.run(loader.load_logo(str(path)))
    assert from_path.is_svg
    assert "<circle" in from_path.text

    from_bytes = asyncio.run(loader.load_logo(red_png_bytes))
    assert from_bytes.media_type == "image/png"
    assert not from_bytes.is_svg


def test_packaged_default_logo_loads():
    asset = asyncio.run(AssetLoader().load_logo(DEFAULT_LOGO_PATH))
    assert asset.is_svg


def test_missing_file_raises_asset_load_error(missing_path):
    with pytest.raises(AssetLoadError) as excinfo:
        asyncio.run(AssetLoader().load_logo(missing_path))
    assert excinfo.value.ref == missing_path


def test_unreachable_url_raises_asset_load_error():
    loader = AssetLoader(timeout=0.5)
    with pytest.raises(AssetLoadError):
        asyncio.run(loader.load_logo("http://127.0.0.1:9/logo.svg"))


def test_unrecognised_logo_bytes_rejected():
    with pytest.raises(AssetLoadError):
        asyncio.run(AssetLoader().load_logo(b"\x00\x01\x02"))


def test_empty_asset_rejected():
    with pytest.raises(AssetLoadError):
        asyncio.run(AssetLoader().load_logo(b""))


def test_unsupported_ref_type_rejected():
    with pytest.raises(AssetLoadError):
        asyncio.run(AssetLoader().load_logo(12345))


def test_load_bitmap_decodes_rgba(red_png_bytes):
    image = asyncio.run(AssetLoader().load_bitmap(red_png_bytes))
    assert image.mode == "RGBA"
    assert image.size == (32, 32)


def test_load_bitmap_rejects_svg_text():
    with pytest.raises(AssetLoadError):
        asyncio.run(AssetLoader().load_bitmap(STROKED_SVG.encode()))


def test_oversized_logo_header_is_an_asset_error(monkeypatch, red_png_bytes):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(AssetLoadError) as excinfo:
        asyncio.run(AssetLoader().load_logo(red_png_bytes))
    assert "too large" in excinfo.value.reason


def test_oversized_background_is_an_asset_error(monkeypatch, red_png_bytes):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(AssetLoadError):
        asyncio.run(AssetLoader().load_bitmap(red_png_bytes))


@pytest.mark.parametrize("fmt", ["PNG", "GIF", "BMP", "WEBP", "TIFF", "JPEG"])
def test_background_types_on_the_allow_list_decode(fmt):
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 0, 255)).save(buffer, format=fmt)
    assert sniff_media_type(buffer.getvalue()) in BACKGROUND_MEDIA_TYPES
    image = asyncio.run(AssetLoader().load_bitmap(buffer.getvalue()))
    assert image.size == (8, 8)


def test_background_type_off_the_allow_list_rejected():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 0, 255)).save(buffer, format="PPM")
    with pytest.raises(AssetLoadError) as excinfo:
        asyncio.run(AssetLoader().load_bitmap(buffer.getvalue()))
    assert "unsupported background type" in excinfo.value.reason
