"""Vector exporter: regenerate the raster composition as a standalone SVG document."""

import base64
import io
import math
from dataclasses import dataclass, field

from PIL import Image

from qrstyle.assets import AssetLoader, LogoAsset
from qrstyle.config import RenderConfig, RenderSettings
from qrstyle.errors import AssetLoadError, ExportError
from qrstyle.generator import ModuleGrid
from qrstyle.layout import Layout, exclusion_mask, expansion_factor
from qrstyle.logging import audit, get_logger, trace
from qrstyle.logo import embed_vector_logo, svg_number
from qrstyle.raster import load_render_assets

log = get_logger("vector")

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"


@dataclass
class VectorDocument:
    markup: str
    canvas_size: int
    drawn_cells: frozenset[tuple[int, int]] = frozenset()
    asset_errors: list[AssetLoadError] = field(default_factory=list)

    def __str__(self) -> str:
        return self.markup


def canvas_size(qr_size: float, rotation: float, padding_fraction: float = 0.1) -> tuple[int, float]:
    """Return (canvas side, padding) so the rotated square never clips."""
    padding = qr_size * padding_fraction
    side = math.ceil(qr_size * expansion_factor(rotation)) + 2 * padding
    return int(math.ceil(side)), padding


def module_paths(grid: ModuleGrid, config: RenderConfig, layout: Layout,
                 excluded, origin: float) -> tuple[list[tuple[str, str]], set]:
    """Merged path data per fill colour, one ``M h v h z`` run per drawn dark module.

    Returns ``[(fill, d), ...]`` with the module colour first, then any
    distinct finder colours, plus the set of drawn cells. Without finder
    colours that is a single path. Coordinates are logical pixels relative
    to *origin* (the square's top-left corner inside the rotation group).
    """
    cell = layout.logical_cell_size
    c = svg_number(cell)
    base = origin + layout.margin
    runs: dict[str, list[str]] = {config.module_color: []}
    drawn = set()
    for row in range(grid.size):
        for col in range(grid.size):
            if excluded[row, col] or not grid.is_dark(row, col):
                continue
            x = svg_number(base + col * cell)
            y = svg_number(base + row * cell)
            fill = config.fill_for(grid.finder_role(row, col))
            runs.setdefault(fill, []).append(f"M{x} {y}h{c}v{c}h-{c}z")
            drawn.add((row, col))
    return [(fill, "".join(parts)) for fill, parts in runs.items() if parts], drawn


def _background_markup(config: RenderConfig, background_image: Image.Image | None,
                       origin: float, qr_size: float) -> str:
    bg = config.background
    pos = f'x="{svg_number(origin)}" y="{svg_number(origin)}" width="{svg_number(qr_size)}" height="{svg_number(qr_size)}"'
    if bg.kind == "solid":
        return f'<rect {pos} fill="{bg.color}"/>'
    if bg.kind == "image" and background_image is not None:
        buffer = io.BytesIO()
        background_image.save(buffer, format="PNG")
        href = "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
        return f'<image {pos} preserveAspectRatio="none" href="{href}" xlink:href="{href}"/>'
    return ""


@trace
def compose_vector(
    grid: ModuleGrid,
    config: RenderConfig,
    layout: Layout,
    *,
    settings: RenderSettings | None = None,
    background_image: Image.Image | None = None,
    logo_asset: LogoAsset | None = None,
    asset_errors: list[AssetLoadError] | None = None,
) -> VectorDocument:
    """Build the SVG document from already-loaded assets."""
    settings = settings or RenderSettings()
    if grid.size != layout.module_count:
        raise ValueError(f"Layout computed for {layout.module_count} modules, grid has {grid.size}")

    qr_size = layout.qr_size
    side, _ = canvas_size(qr_size, config.rotation, settings.vector_padding_fraction)
    center = side / 2
    origin = -qr_size / 2

    excluded = exclusion_mask(layout, config.logo.requested)
    paths, drawn = module_paths(grid, config, layout, excluded, origin)

    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>\n',
        f'<svg xmlns="{SVG_NS}" xmlns:xlink="{XLINK_NS}" version="1.1" '
        f'width="{side}" height="{side}" viewBox="0 0 {side} {side}">',
        f'<g transform="translate({svg_number(center)} {svg_number(center)}) '
        f'rotate({svg_number(config.rotation)})">',
        _background_markup(config, background_image, origin, qr_size),
    ]
    for fill, path_data in paths:
        parts.append(f'<path fill="{fill}" shape-rendering="crispEdges" d="{path_data}"/>')
    parts.append("</g>")

    # logo lives outside the rotation group so it is always upright
    if config.logo.requested and logo_asset is not None:
        size = layout.logo_size
        parts.append(embed_vector_logo(
            logo_asset,
            center - size / 2, center - size / 2, size,
            module_color=config.module_color,
            background=config.background,
            clip_shape=settings.logo_clip,
        ))
    parts.append("</svg>\n")

    errors = list(asset_errors or [])
    audit("vector.rendered", logger=log,
          data=config.text[:80], canvas=side, rotation=config.rotation,
          drawn=len(drawn), excluded=int(excluded.sum()), asset_errors=len(errors))
    return VectorDocument(
        markup="".join(parts),
        canvas_size=side,
        drawn_cells=frozenset(drawn),
        asset_errors=errors,
    )


@trace
async def render_vector(
    grid: ModuleGrid,
    config: RenderConfig,
    layout: Layout,
    *,
    settings: RenderSettings | None = None,
    loader: AssetLoader | None = None,
) -> VectorDocument:
    """Load assets, then build the document. Asset failures fall back, never fatal."""
    settings = settings or RenderSettings()
    loader = loader or AssetLoader(timeout=settings.fetch_timeout)
    background_image, logo_asset, errors = await load_render_assets(config, loader, settings)
    try:
        return compose_vector(
            grid, config, layout,
            settings=settings,
            background_image=background_image,
            logo_asset=logo_asset,
            asset_errors=errors,
        )
    except (OSError, ValueError) as exc:
        raise ExportError("svg", str(exc)) from exc
