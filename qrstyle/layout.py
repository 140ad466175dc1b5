"""Layout calculator: every piece of pixel geometry a render needs.

All raster coordinates below are in *supersampled* pixels, i.e. logical
pixels multiplied by ``offscreen_scale``. The vector exporter works in
logical pixels and divides by ``offscreen_scale`` where needed.

Both renderers take their per-cell exclusion decisions from
:func:`exclusion_mask`, so the raster and vector outputs clear exactly
the same cells for a given layout.
"""

import math
from dataclasses import dataclass

import numpy as np

from qrstyle.logging import audit, get_logger, trace

log = get_logger("layout")

SQRT2 = math.sqrt(2.0)

# Padding around the logo so no partially covered module touches it.
SAFE_ZONE_PADDING = 1.1


@dataclass(frozen=True)
class SafeZone:
    """Axis-aligned square centred on the grid."""

    x: float
    y: float
    side: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.side / 2, self.y + self.side / 2

    def spans_x(self, start, end):
        """Edge-inclusive overlap of ``[start, end]`` with the zone's columns.

        Works on scalars and numpy arrays alike.
        """
        return (start <= self.x + self.side) & (end >= self.x)

    def spans_y(self, start, end):
        return (start <= self.y + self.side) & (end >= self.y)

    def touches(self, x: float, y: float, w: float, h: float) -> bool:
        """Edge-inclusive AABB overlap: sharing a border counts as touching."""
        return bool(self.spans_x(x, x + w) & self.spans_y(y, y + h))


@dataclass(frozen=True)
class Layout:
    container_size: float
    qr_size: float
    display_size: float
    margin: float
    offscreen_scale: float
    module_count: int
    cell_size: float
    logo_size: float
    scaled_logo_size: float
    safe_zone: SafeZone
    device_pixel_ratio: float = 1.0

    @property
    def surface_size(self) -> int:
        """Side of the supersampled raster surface in pixels.

        Floored, so the last row and column of cells always reach the edge.
        """
        return max(1, math.floor(self.qr_size * self.offscreen_scale))

    @property
    def grid_origin(self) -> float:
        return self.margin * self.offscreen_scale

    @property
    def grid_center(self) -> float:
        return self.qr_size * self.offscreen_scale / 2

    @property
    def logical_cell_size(self) -> float:
        return self.cell_size / self.offscreen_scale


def expansion_factor(rotation_deg: float) -> float:
    """Bounding-box growth of a unit square rotated by *rotation_deg*.

    ``max(|cos θ| + |sin θ|, 1)``: exactly 1 at multiples of 90°,
    ``√2`` at 45°.
    """
    theta = math.radians(rotation_deg % 360.0)
    return max(abs(math.cos(theta)) + abs(math.sin(theta)), 1.0)


@trace
def compute_layout(
    container_size: float,
    logo_fraction: float = 0.2,
    offscreen_scale: float = 2.0,
    *,
    module_count: int,
    margin_fraction: float = 0.0,
    device_pixel_ratio: float = 1.0,
) -> Layout:
    """Derive the geometry for one render.

    ``qr_size = container_size·√2/2`` so the square still fits the
    container after a worst-case 45° rotation.

    Args:
        container_size: Side of the visible display square, logical px.
        logo_fraction: Logo side as a fraction of ``qr_size``.
        offscreen_scale: Supersampling factor of the intermediate raster.
        module_count: Side ``N`` of the module grid.
        margin_fraction: Quiet margin on each side as a fraction of ``qr_size``.
        device_pixel_ratio: Physical pixels per logical pixel on the display.
    """
    if container_size <= 0:
        raise ValueError(f"container_size must be positive, got {container_size}")
    if offscreen_scale <= 0:
        raise ValueError(f"offscreen_scale must be positive, got {offscreen_scale}")
    if device_pixel_ratio <= 0:
        raise ValueError(f"device_pixel_ratio must be positive, got {device_pixel_ratio}")
    if module_count <= 0:
        raise ValueError(f"module_count must be positive, got {module_count}")
    if not 0 <= logo_fraction < 1:
        raise ValueError(f"logo_fraction must be in [0, 1), got {logo_fraction}")
    if not 0 <= margin_fraction < 0.5:
        raise ValueError(f"margin_fraction must be in [0, 0.5), got {margin_fraction}")

    qr_size = container_size * SQRT2 / 2
    margin = qr_size * margin_fraction
    cell_size = (qr_size - 2 * margin) * offscreen_scale / module_count

    logo_size = qr_size * logo_fraction
    scaled_logo_size = logo_size * offscreen_scale
    side = scaled_logo_size * SAFE_ZONE_PADDING
    center = qr_size * offscreen_scale / 2
    safe_zone = SafeZone(x=center - side / 2, y=center - side / 2, side=side)

    layout = Layout(
        container_size=float(container_size),
        qr_size=qr_size,
        display_size=float(container_size),
        margin=margin,
        offscreen_scale=float(offscreen_scale),
        module_count=module_count,
        cell_size=cell_size,
        logo_size=logo_size,
        scaled_logo_size=scaled_logo_size,
        safe_zone=safe_zone,
        device_pixel_ratio=float(device_pixel_ratio),
    )
    audit("layout.computed", logger=log,
          container=container_size, qr_size=round(qr_size, 2),
          cell=round(cell_size, 3), modules=module_count,
          safe_zone=round(side, 2), dpr=device_pixel_ratio)
    return layout


def cell_rect(layout: Layout, row: int, col: int) -> tuple[float, float, float, float]:
    """Exact (x, y, w, h) of a cell on the supersampled surface."""
    x = layout.grid_origin + col * layout.cell_size
    y = layout.grid_origin + row * layout.cell_size
    return x, y, layout.cell_size, layout.cell_size


def pixel_rect(layout: Layout, row: int, col: int) -> tuple[int, int, int, int]:
    """Integer (x, y, w, h) of a cell: origin floored, extent ceiled.

    Adjacent cells overlap by at most one pixel and never leave a seam.
    """
    x, y, w, h = cell_rect(layout, row, col)
    return math.floor(x), math.floor(y), math.ceil(w), math.ceil(h)


def exclusion_mask(layout: Layout, logo_requested: bool) -> np.ndarray:
    """Boolean N×N array, ``True`` where a cell touches the logo safe zone.

    Computed from config intent: a logo that later fails to load still
    clears its zone.
    """
    n = layout.module_count
    if not logo_requested or layout.safe_zone.side <= 0:
        return np.zeros((n, n), dtype=bool)

    zone = layout.safe_zone
    starts = layout.grid_origin + np.arange(n) * layout.cell_size
    ends = starts + layout.cell_size
    return np.outer(zone.spans_y(starts, ends), zone.spans_x(starts, ends))
