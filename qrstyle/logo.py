"""Logo embedding for both output targets.

SVG logos are recoloured (strokes follow the module colour) and, on a
solid background, backed with a filled rectangle so the clip region shows
a flat backdrop instead of whatever lies beneath.

Raster: the logo is decoded to RGBA at the scaled logo size, clipped, and
pre-rotated by ``-θ`` so the final rotated blit leaves it upright.
Vector: the logo is emitted as a nested ``<svg>`` outside the rotation
group, so it never rotates in the first place.
"""

import base64
import io
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from PIL import Image, ImageChops, ImageDraw, ImageOps, UnidentifiedImageError

from qrstyle.assets import LogoAsset
from qrstyle.config import DEFAULT_LOGO_PATH, Background, RenderSettings, color_to_rgba
from qrstyle.errors import AssetLoadError
from qrstyle.logging import audit, get_logger, trace

log = get_logger("logo")

# XML declaration, DOCTYPE, comments and processing instructions ahead of the root
_PROLOG_RE = re.compile(r"^\s*(?:<\?.*?\?>\s*|<!DOCTYPE[^>]*>\s*|<!--.*?-->\s*)*", re.S | re.I)
_ROOT_OPEN_RE = re.compile(r"<svg\b([^>]*?)(/?)>", re.S | re.I)
_ROOT_CLOSE_RE = re.compile(r"</svg\s*>\s*$", re.I)
_ATTR_RE = re.compile(r"([\w:.-]+)\s*=\s*(\"[^\"]*\"|'[^']*')", re.S)
_STROKE_ATTR_RE = re.compile(r"(?<![\w:-])(stroke\s*=\s*)(\"[^\"]*\"|'[^']*')")
_STROKE_STYLE_RE = re.compile(r"(?<![\w-])(stroke\s*:\s*)([^;\"'}]+)")
_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)")


def default_logo_ref(settings: RenderSettings | None = None):
    """Where the ``default`` logo mode loads from: the settings override, else the packaged SVG."""
    if settings is not None:
        return settings.default_logo
    return DEFAULT_LOGO_PATH


def svg_number(value: float) -> str:
    """Deterministic short number formatting for generated markup."""
    s = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if s in ("-0", "") else s


@dataclass(frozen=True)
class ParsedSvg:
    """An SVG document split into the pieces needed to re-wrap it."""

    namespaces: dict[str, str]
    view_box: str
    inner: str


def strip_prolog(svg_text: str) -> str:
    return _PROLOG_RE.sub("", svg_text, count=1)


def _root_attrs(svg_text: str) -> tuple[re.Match, dict[str, str]]:
    match = _ROOT_OPEN_RE.search(svg_text)
    if match is None:
        raise ValueError("no <svg> root element")
    attrs = {name: raw[1:-1] for name, raw in _ATTR_RE.findall(match.group(1))}
    return match, attrs


def _length(value: str | None) -> float | None:
    if not value:
        return None
    m = _LENGTH_RE.match(value)
    return float(m.group(1)) if m else None


def _view_box(attrs: dict[str, str]) -> str:
    vb = attrs.get("viewBox")
    if vb and len(vb.replace(",", " ").split()) == 4:
        return " ".join(vb.replace(",", " ").split())
    w = _length(attrs.get("width")) or 100.0
    h = _length(attrs.get("height")) or w
    return f"0 0 {svg_number(w)} {svg_number(h)}"


def parse_svg(svg_text: str) -> ParsedSvg:
    """Validate *svg_text* and extract namespaces, viewBox and inner markup.

    Raises:
        ValueError: if the document is not well-formed SVG.
    """
    body = strip_prolog(svg_text).strip()
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise ValueError(f"malformed SVG: {exc}") from exc
    if not (root.tag == "svg" or root.tag.endswith("}svg")):
        raise ValueError(f"root element is {root.tag!r}, not <svg>")

    match, attrs = _root_attrs(body)
    namespaces = {k: v for k, v in attrs.items() if k == "xmlns" or k.startswith("xmlns:")}
    namespaces.setdefault("xmlns", "http://www.w3.org/2000/svg")

    if match.group(2):  # self-closing root
        inner = ""
    else:
        inner = _ROOT_CLOSE_RE.sub("", body[match.end():]).strip()
    return ParsedSvg(namespaces=namespaces, view_box=_view_box(attrs), inner=inner)


def recolor_strokes(svg_text: str, color: str) -> str:
    """Point every stroke at *color*; ``stroke="none"`` stays off. Fill is untouched."""

    def _attr(m):
        quote = m.group(2)[0]
        if m.group(2)[1:-1].strip().lower() == "none":
            return m.group(0)
        return f"{m.group(1)}{quote}{color}{quote}"

    def _style(m):
        if m.group(2).strip().lower() == "none":
            return m.group(0)
        return f"{m.group(1)}{color}"

    return _STROKE_STYLE_RE.sub(_style, _STROKE_ATTR_RE.sub(_attr, svg_text))


def inject_background(svg_text: str, color: str) -> str:
    """Insert a rect filling the logo's viewBox as the root's first child."""
    match, attrs = _root_attrs(svg_text)
    x, y, w, h = _view_box(attrs).split()
    rect = f'<rect x="{x}" y="{y}" width="{w}" height="{h}" fill="{color}"/>'
    if match.group(2):
        opening = match.group(0)[:-2].rstrip() + ">"
        return svg_text[:match.start()] + opening + rect + "</svg>" + svg_text[match.end():]
    return svg_text[:match.end()] + rect + svg_text[match.end():]


def prepare_logo_svg(svg_text: str, module_color: str, background: Background) -> str:
    """Recolour strokes and, on a solid background, synthesise a backdrop."""
    prepared = recolor_strokes(strip_prolog(svg_text), module_color)
    if background.is_solid:
        prepared = inject_background(prepared, background.color)
    return prepared


# ---------------------------------------------------------------------------
# Raster target
# ---------------------------------------------------------------------------

def clip_mask(size: int, clip_shape: str) -> Image.Image:
    mask = Image.new("L", (size, size), 0)
    draw = ImageDraw.Draw(mask)
    if clip_shape == "circle":
        draw.ellipse([0, 0, size - 1, size - 1], fill=255)
    else:
        draw.rectangle([0, 0, size - 1, size - 1], fill=255)
    return mask


def _svg_to_rgba(svg_text: str, size: int, source: str) -> Image.Image:
    try:
        import cairosvg

        png = cairosvg.svg2png(bytestring=svg_text.encode("utf-8"),
                               output_width=size, output_height=size)
        with Image.open(io.BytesIO(png)) as img:
            return img.convert("RGBA")
    except (ImportError, OSError, ValueError, SyntaxError) as exc:
        raise AssetLoadError(source, f"cannot rasterise SVG logo: {exc}") from exc


def _bitmap_to_rgba(data: bytes, size: int, background: Background, source: str) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as img:
            logo = ImageOps.contain(img.convert("RGBA"), (size, size), Image.LANCZOS)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise AssetLoadError(source, f"cannot decode logo bitmap: {exc}") from exc

    fill = color_to_rgba(background.color) if background.is_solid else (0, 0, 0, 0)
    canvas = Image.new("RGBA", (size, size), fill)
    canvas.alpha_composite(logo, ((size - logo.width) // 2, (size - logo.height) // 2))
    return canvas


@trace
def rasterize_logo(
    asset: LogoAsset,
    size: int,
    *,
    module_color: str,
    background: Background,
    clip_shape: str = "rect",
    rotation: float = 0.0,
) -> Image.Image:
    """Decode *asset* into a clipped RGBA square of side *size*.

    *rotation* is the parent rotation; the logo is turned the opposite
    way so it reads upright once the composed surface is rotated.

    Raises:
        AssetLoadError: if the asset cannot be decoded or rasterised.
    """
    if size <= 0:
        raise ValueError(f"logo size must be positive, got {size}")

    if asset.is_svg:
        prepared = prepare_logo_svg(asset.text, module_color, background)
        try:
            parse_svg(prepared)
        except ValueError as exc:
            raise AssetLoadError(asset.source, str(exc)) from exc
        logo = _svg_to_rgba(prepared, size, asset.source)
    else:
        logo = _bitmap_to_rgba(asset.data, size, background, asset.source)

    if logo.size != (size, size):
        logo = logo.resize((size, size), Image.LANCZOS)
    logo.putalpha(ImageChops.multiply(logo.getchannel("A"), clip_mask(size, clip_shape)))

    if rotation:
        # PIL turns counter-clockwise for positive angles; the display blit turns clockwise
        logo = logo.rotate(rotation, resample=Image.BICUBIC, expand=True)
    return logo


# ---------------------------------------------------------------------------
# Vector target
# ---------------------------------------------------------------------------

def _clip_path(clip_id: str, x: float, y: float, size: float, clip_shape: str) -> str:
    if clip_shape == "circle":
        r = size / 2
        shape = f'<circle cx="{svg_number(x + r)}" cy="{svg_number(y + r)}" r="{svg_number(r)}"/>'
    else:
        shape = (f'<rect x="{svg_number(x)}" y="{svg_number(y)}" '
                 f'width="{svg_number(size)}" height="{svg_number(size)}"/>')
    return f'<defs><clipPath id="{clip_id}">{shape}</clipPath></defs>'


def _image_fallback(asset: LogoAsset, x: float, y: float, size: float, clip_id: str) -> str:
    encoded = base64.b64encode(asset.data).decode("ascii")
    href = f"data:{asset.media_type};base64,{encoded}"
    return (
        f'<image x="{svg_number(x)}" y="{svg_number(y)}" '
        f'width="{svg_number(size)}" height="{svg_number(size)}" '
        f'preserveAspectRatio="xMidYMid meet" clip-path="url(#{clip_id})" '
        f'href="{href}" xlink:href="{href}"/>'
    )


@trace
def embed_vector_logo(
    asset: LogoAsset,
    x: float,
    y: float,
    size: float,
    *,
    module_color: str,
    background: Background,
    clip_shape: str = "rect",
    clip_id: str = "qrstyle-logo-clip",
) -> str:
    """Return the markup fragment placing *asset* in the box (x, y, size).

    SVG sources are re-wrapped as a nested ``<svg>``; anything that fails
    to parse (and any bitmap) is embedded as a clipped ``<image>`` instead.
    """
    parts = [_clip_path(clip_id, x, y, size, clip_shape)]

    parsed = None
    if asset.is_svg:
        try:
            parsed = parse_svg(prepare_logo_svg(asset.text, module_color, background))
        except ValueError as exc:
            log.warning("Logo %s is not valid SVG, embedding as image: %s", asset.source, exc)
            audit("logo.vector_fallback", logger=log, source=asset.source, reason=str(exc))

    if parsed is None:
        parts.append(_image_fallback(asset, x, y, size, clip_id))
        return "".join(parts)

    ns = " ".join(f'{k}="{v}"' for k, v in sorted(parsed.namespaces.items()))
    parts.append(
        f'<g clip-path="url(#{clip_id})">'
        f'<svg {ns} x="{svg_number(x)}" y="{svg_number(y)}" '
        f'width="{svg_number(size)}" height="{svg_number(size)}" '
        f'viewBox="{parsed.view_box}" preserveAspectRatio="xMidYMid meet">'
        f"{parsed.inner}</svg></g>"
    )
    return "".join(parts)
