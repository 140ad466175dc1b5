"""PNG/SVG export: byte encoding, deterministic names, atomic writes."""

import hashlib
import io
import os
import re
import tempfile
from pathlib import Path

from qrstyle.errors import ExportError
from qrstyle.logging import audit, get_logger, trace
from qrstyle.raster import PixelSurface
from qrstyle.vector import VectorDocument

log = get_logger("export")

_SLUG_RE = re.compile(r"[^A-Za-z0-9_-]+")
MAX_SLUG = 40


def export_filename(text: str, extension: str) -> str:
    """File name derived only from the payload, e.g. ``qr_https_example_com.png``."""
    ext = extension.lstrip(".").lower()
    slug = _SLUG_RE.sub("_", text).strip("_")[:MAX_SLUG].rstrip("_")
    if not slug:
        slug = hashlib.sha1(text.encode("utf-8")).hexdigest()[:10]
    return f"qr_{slug}.{ext}"


def encode_png(surface: PixelSurface) -> bytes:
    """Encode the display surface as PNG, tagging the physical DPI."""
    buffer = io.BytesIO()
    dpi = round(96 * surface.device_pixel_ratio)
    try:
        surface.image.save(buffer, format="PNG", dpi=(dpi, dpi))
    except (OSError, ValueError) as exc:
        raise ExportError("png", str(exc)) from exc
    return buffer.getvalue()


def _atomic_write(path: Path, payload: bytes, target: str):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".qrstyle-", suffix=path.suffix, dir=path.parent)
    except OSError as exc:
        raise ExportError(target, str(exc)) from exc
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except OSError as exc:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise ExportError(target, str(exc)) from exc


@trace
def save_png(surface: PixelSurface, text: str, directory: str | Path = ".") -> Path:
    path = Path(directory) / export_filename(text, "png")
    payload = encode_png(surface)
    _atomic_write(path, payload, "png")
    audit("export.saved", logger=log, format="png", path=str(path), bytes=len(payload))
    return path


@trace
def save_svg(document: VectorDocument, text: str, directory: str | Path = ".") -> Path:
    path = Path(directory) / export_filename(text, "svg")
    payload = document.markup.encode("utf-8")
    _atomic_write(path, payload, "svg")
    audit("export.saved", logger=log, format="svg", path=str(path), bytes=len(payload))
    return path
