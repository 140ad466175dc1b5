"""Raster compositor: supersampled composition, then a rotated DPI-aware blit.

Two stages:

1. ``compose_offscreen`` draws background, modules and logo unrotated on
   a surface ``offscreen_scale`` times larger than the logical QR size.
2. ``blit_to_display`` downsamples that surface and rotates it about the
   display centre in one affine resample, onto a transparent surface of
   ``display_size · dpr`` physical pixels.

Modules are never re-rasterised per rotation angle.
"""

import math
from dataclasses import dataclass, field

import numpy as np
from PIL import Image, ImageDraw

from qrstyle.assets import AssetLoader, LogoAsset
from qrstyle.config import RenderConfig, RenderSettings, color_to_rgba
from qrstyle.errors import AssetLoadError
from qrstyle.generator import ModuleGrid
from qrstyle.layout import SQRT2, Layout, exclusion_mask, pixel_rect
from qrstyle.logging import audit, get_logger, trace
from qrstyle.logo import default_logo_ref, rasterize_logo

log = get_logger("raster")


@dataclass
class PixelSurface:
    """Final display surface plus the data needed to re-export it.

    ``image`` is RGBA at physical resolution
    (``logical_size · device_pixel_ratio`` pixels square).
    """

    image: Image.Image
    logical_size: float
    device_pixel_ratio: float
    offscreen: Image.Image | None = None
    excluded: np.ndarray | None = None
    asset_errors: list[AssetLoadError] = field(default_factory=list)


def _paint_background(surface: Image.Image, config: RenderConfig, background_image: Image.Image | None):
    bg = config.background
    if bg.kind == "solid":
        surface.paste(color_to_rgba(bg.color), (0, 0, surface.width, surface.height))
    elif bg.kind == "image" and background_image is not None:
        stretched = background_image.convert("RGBA").resize(surface.size, Image.LANCZOS)
        surface.alpha_composite(stretched)
    # transparent: leave unpainted


def _paint_modules(surface: Image.Image, grid: ModuleGrid, config: RenderConfig,
                   layout: Layout, excluded: np.ndarray) -> int:
    draw = ImageDraw.Draw(surface)
    fills = {role: color_to_rgba(config.fill_for(role)) for role in (None, "ring", "center")}
    light = color_to_rgba(config.background.color) if config.background.is_solid else None

    drawn = 0
    for row in range(grid.size):
        for col in range(grid.size):
            # excluded cells get neither foreground nor background paint
            if excluded[row, col]:
                continue
            if grid.is_dark(row, col):
                fill = fills[grid.finder_role(row, col)]
            elif light is not None:
                fill = light
            else:
                continue
            x, y, w, h = pixel_rect(layout, row, col)
            draw.rectangle([x, y, x + w - 1, y + h - 1], fill=fill)
            drawn += 1
    return drawn


def _paste_logo(surface: Image.Image, logo: Image.Image, layout: Layout):
    cx = cy = layout.grid_center
    x = int(round(cx - logo.width / 2))
    y = int(round(cy - logo.height / 2))
    # alpha_composite cannot take negative offsets; crop the logo instead
    src_x, src_y = max(0, -x), max(0, -y)
    visible = logo.crop((src_x, src_y, logo.width, logo.height))
    surface.alpha_composite(visible, (max(0, x), max(0, y)))


@trace
def compose_offscreen(
    grid: ModuleGrid,
    config: RenderConfig,
    layout: Layout,
    *,
    background_image: Image.Image | None = None,
    logo_image: Image.Image | None = None,
) -> tuple[Image.Image, np.ndarray]:
    """Draw the unrotated composition at supersampled resolution.

    Returns the RGBA surface and the exclusion mask that was applied.
    """
    if grid.size != layout.module_count:
        raise ValueError(f"Layout computed for {layout.module_count} modules, grid has {grid.size}")

    side = layout.surface_size
    surface = Image.new("RGBA", (side, side), (0, 0, 0, 0))

    _paint_background(surface, config, background_image)
    excluded = exclusion_mask(layout, config.logo.requested)
    drawn = _paint_modules(surface, grid, config, layout, excluded)

    if logo_image is not None:
        _paste_logo(surface, logo_image, layout)

    audit("raster.composed", logger=log,
          surface=f"{side}x{side}", drawn=drawn,
          excluded=int(excluded.sum()), logo=logo_image is not None)
    return surface, excluded


def blit_to_display(offscreen: Image.Image, layout: Layout, rotation: float) -> Image.Image:
    """Rotate and scale *offscreen* onto a transparent DPI-scaled display surface.

    Scale is ``display / (reference · √2)`` so the square fits the display
    at every angle.
    """
    dpr = layout.device_pixel_ratio
    out_side = max(1, int(round(layout.display_size * dpr)))
    ref = offscreen.width

    scale = out_side / (ref * SQRT2)
    scaled_side = max(1, int(round(ref * scale)))
    scaled = offscreen.resize((scaled_side, scaled_side), Image.LANCZOS)

    theta = math.radians(rotation)
    cos_t, sin_t = math.cos(theta), math.sin(theta)
    half_out = out_side / 2
    half_in = scaled_side / 2
    # inverse map: display pixel -> scaled-surface pixel (clockwise rotation, y down)
    coeffs = (
        cos_t, sin_t, half_in - cos_t * half_out - sin_t * half_out,
        -sin_t, cos_t, half_in + sin_t * half_out - cos_t * half_out,
    )
    return scaled.transform(
        (out_side, out_side),
        Image.AFFINE,
        coeffs,
        resample=Image.BICUBIC,
        fillcolor=(0, 0, 0, 0),
    )


@trace
def compose_raster(
    grid: ModuleGrid,
    config: RenderConfig,
    layout: Layout,
    *,
    settings: RenderSettings | None = None,
    background_image: Image.Image | None = None,
    logo_asset: LogoAsset | None = None,
    asset_errors: list[AssetLoadError] | None = None,
) -> PixelSurface:
    """Pure drawing core: everything already loaded, nothing awaited."""
    settings = settings or RenderSettings()
    errors = list(asset_errors or [])

    logo_image = None
    if config.logo.requested and logo_asset is not None:
        size = max(1, int(round(layout.scaled_logo_size)))
        try:
            logo_image = rasterize_logo(
                logo_asset, size,
                module_color=config.module_color,
                background=config.background,
                clip_shape=settings.logo_clip,
                rotation=config.rotation,
            )
        except AssetLoadError as exc:
            log.warning("Logo skipped: %s", exc)
            errors.append(exc)

    offscreen, excluded = compose_offscreen(
        grid, config, layout,
        background_image=background_image,
        logo_image=logo_image,
    )
    display = blit_to_display(offscreen, layout, config.rotation)

    audit("raster.rendered", logger=log,
          data=config.text[:80], display=f"{display.width}x{display.height}",
          rotation=config.rotation, dpr=layout.device_pixel_ratio,
          asset_errors=len(errors))
    return PixelSurface(
        image=display,
        logical_size=layout.display_size,
        device_pixel_ratio=layout.device_pixel_ratio,
        offscreen=offscreen,
        excluded=excluded,
        asset_errors=errors,
    )


async def load_render_assets(
    config: RenderConfig,
    loader: AssetLoader,
    settings: RenderSettings,
) -> tuple[Image.Image | None, LogoAsset | None, list[AssetLoadError]]:
    """Await the background and logo stages in order, collecting failures."""
    errors: list[AssetLoadError] = []

    background_image = None
    if config.background.kind == "image":
        try:
            background_image = await loader.load_bitmap(config.background.source)
        except AssetLoadError as exc:
            log.warning("Background image skipped: %s", exc)
            errors.append(exc)

    logo_asset = None
    if config.logo.requested:
        ref = default_logo_ref(settings) if config.logo.kind == "default" else config.logo.source
        try:
            logo_asset = await loader.load_logo(ref)
        except AssetLoadError as exc:
            log.warning("Logo skipped: %s", exc)
            errors.append(exc)

    return background_image, logo_asset, errors


@trace
async def render_raster(
    grid: ModuleGrid,
    config: RenderConfig,
    layout: Layout,
    *,
    settings: RenderSettings | None = None,
    loader: AssetLoader | None = None,
) -> PixelSurface:
    """Load assets, then compose. Asset failures are reported, never fatal."""
    settings = settings or RenderSettings()
    loader = loader or AssetLoader(timeout=settings.fetch_timeout)
    background_image, logo_asset, errors = await load_render_assets(config, loader, settings)
    return compose_raster(
        grid, config, layout,
        settings=settings,
        background_image=background_image,
        logo_asset=logo_asset,
        asset_errors=errors,
    )
