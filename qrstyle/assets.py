"""Awaitable loading of logo and background assets.

Refs can be raw ``bytes``, a filesystem path (``str`` or ``Path``), or an
``http(s)://`` URL. Blocking reads run in a worker thread so a render
suspends at the I/O boundary instead of stalling the event loop.
"""

import asyncio
import io
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from qrstyle.errors import AssetLoadError
from qrstyle.logging import audit, get_logger, trace

log = get_logger("assets")

SVG_MEDIA_TYPE = "image/svg+xml"

# formats a browser file picker offers for an image background
BACKGROUND_MEDIA_TYPES = frozenset({
    "image/apng", "image/bmp", "image/gif", "image/jpeg", "image/pjpeg", "image/png",
    SVG_MEDIA_TYPE, "image/tiff", "image/webp", "image/x-icon",
})

# Pillow names that are a listed type under another label
_MEDIA_ALIASES = {"image/mpo": "image/jpeg", "image/vnd.microsoft.icon": "image/x-icon"}


@dataclass(frozen=True)
class LogoAsset:
    """A fetched logo: raw bytes plus the sniffed media type."""

    data: bytes
    media_type: str
    source: str = ""

    @property
    def is_svg(self) -> bool:
        return self.media_type == SVG_MEDIA_TYPE

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


def sniff_media_type(data: bytes) -> str:
    """``image/svg+xml`` for SVG text, otherwise Pillow's format as a MIME type.

    Raises:
        PIL.Image.DecompressionBombError: if the header declares an oversized image.
    """
    head = data[:1024].lstrip().lower()
    if b"<svg" in head or (head.startswith(b"<?xml") and b"<svg" in data[:4096].lower()):
        return SVG_MEDIA_TYPE
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"
    media_type = Image.MIME.get(fmt, f"image/{fmt.lower()}")
    return _MEDIA_ALIASES.get(media_type, media_type)


def _describe(ref) -> str:
    if isinstance(ref, (bytes, bytearray)):
        return f"<{len(ref)} bytes>"
    return str(ref)


def _is_url(ref) -> bool:
    return isinstance(ref, str) and ref.startswith(("http://", "https://"))


class AssetLoader:
    """Fetches assets by reference. One instance can serve many renders."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def _read(self, ref) -> bytes:
        if isinstance(ref, (bytes, bytearray)):
            return bytes(ref)
        if _is_url(ref):
            with urllib.request.urlopen(ref, timeout=self.timeout) as response:
                return response.read()
        if isinstance(ref, (str, Path)):
            return Path(ref).read_bytes()
        raise TypeError(f"Unsupported asset reference type: {type(ref).__name__}")

    async def fetch(self, ref) -> bytes:
        try:
            data = await asyncio.to_thread(self._read, ref)
        except (OSError, urllib.error.URLError, ValueError, TypeError) as exc:
            audit("asset.failed", logger=log, ref=_describe(ref), reason=str(exc))
            raise AssetLoadError(ref, str(exc)) from exc
        if not data:
            audit("asset.failed", logger=log, ref=_describe(ref), reason="empty")
            raise AssetLoadError(ref, "asset is empty")
        return data

    @trace
    async def load_logo(self, ref) -> LogoAsset:
        """Fetch a logo. SVG is kept as text; bitmaps are verified decodable."""
        data = await self.fetch(ref)
        media_type = self._sniff(ref, data)
        if media_type == "application/octet-stream":
            audit("asset.failed", logger=log, ref=_describe(ref), reason="unrecognised format")
            raise AssetLoadError(ref, "not an SVG document or a decodable image")
        audit("asset.loaded", logger=log, ref=_describe(ref), media_type=media_type, bytes=len(data))
        return LogoAsset(data=data, media_type=media_type, source=_describe(ref))

    @trace
    async def load_bitmap(self, ref) -> Image.Image:
        """Fetch and fully decode a bitmap (e.g. an image background) as RGBA.

        Only types in :data:`BACKGROUND_MEDIA_TYPES` are accepted.
        """
        if isinstance(ref, Image.Image):
            return ref.convert("RGBA")
        data = await self.fetch(ref)
        media_type = self._sniff(ref, data)
        if media_type not in BACKGROUND_MEDIA_TYPES:
            audit("asset.failed", logger=log, ref=_describe(ref), reason=f"type {media_type} not allowed")
            raise AssetLoadError(ref, f"unsupported background type {media_type}")
        try:
            image = await asyncio.to_thread(_decode_bitmap, data)
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            audit("asset.failed", logger=log, ref=_describe(ref), reason=str(exc))
            raise AssetLoadError(ref, f"cannot decode image: {exc}") from exc
        audit("asset.loaded", logger=log, ref=_describe(ref), size=f"{image.size[0]}x{image.size[1]}")
        return image

    def _sniff(self, ref, data: bytes) -> str:
        try:
            return sniff_media_type(data)
        except Image.DecompressionBombError as exc:
            audit("asset.failed", logger=log, ref=_describe(ref), reason=str(exc))
            raise AssetLoadError(ref, f"image too large: {exc}") from exc


def _decode_bitmap(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return img.convert("RGBA")
