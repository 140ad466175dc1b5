"""Render session: the in-process entry point a UI layer drives.

Requests are debounced into one trailing render. Every render carries a
generation number, and only the newest generation may publish. A render
overtaken by a newer request still runs to completion, but its result is
dropped. Published output is swapped in as one immutable snapshot, so a
reader never sees a grid from one render paired with a surface from
another.
"""

import asyncio
from dataclasses import dataclass

from qrstyle.assets import AssetLoader
from qrstyle.config import RenderConfig, RenderSettings
from qrstyle.errors import EncodingError
from qrstyle.export import encode_png, export_filename
from qrstyle.generator import ModuleGrid, build_grid
from qrstyle.layout import Layout, compute_layout
from qrstyle.logging import audit, get_logger, trace
from qrstyle.raster import PixelSurface, render_raster
from qrstyle.vector import VectorDocument, render_vector

log = get_logger("session")


@dataclass(frozen=True)
class RenderSnapshot:
    config: RenderConfig
    grid: ModuleGrid
    layout: Layout
    surface: PixelSurface


class RenderSession:
    def __init__(self, settings: RenderSettings | None = None, loader: AssetLoader | None = None):
        self.settings = settings or RenderSettings()
        self.loader = loader or AssetLoader(timeout=self.settings.fetch_timeout)
        self._generation = 0
        self._snapshot: RenderSnapshot | None = None
        self._document: VectorDocument | None = None
        self._pending: asyncio.Task | None = None
        self._debouncing: set[asyncio.Task] = set()

    # -- read-only views ---------------------------------------------------

    @property
    def snapshot(self) -> RenderSnapshot | None:
        return self._snapshot

    @property
    def surface(self) -> PixelSurface | None:
        return self._snapshot.surface if self._snapshot else None

    @property
    def config(self) -> RenderConfig | None:
        return self._snapshot.config if self._snapshot else None

    @property
    def layout(self) -> Layout | None:
        return self._snapshot.layout if self._snapshot else None

    @property
    def document(self) -> VectorDocument | None:
        return self._document

    @property
    def last_errors(self) -> list:
        return list(self._snapshot.surface.asset_errors) if self._snapshot else []

    # -- rendering ---------------------------------------------------------

    def _publish(self, generation: int, snapshot: RenderSnapshot | None) -> bool:
        if generation != self._generation:
            audit("render.superseded", logger=log, generation=generation, current=self._generation)
            return False
        self._snapshot = snapshot
        self._document = None
        return True

    def clear(self):
        """Drop all output and invalidate any render still in flight."""
        self._generation += 1
        self._publish(self._generation, None)

    @trace
    async def render(self, config: RenderConfig, container_size: float | None = None) -> PixelSurface | None:
        """Render *config* now. Returns the published surface, or ``None``.

        ``None`` means the text was empty (output cleared) or a newer
        request overtook this one.

        Raises:
            EncodingError: the payload does not fit; output is cleared.
        """
        self._generation += 1
        generation = self._generation

        if not config.text:
            self._publish(generation, None)
            audit("render.cleared", logger=log, generation=generation)
            return None

        try:
            grid = build_grid(config.text, config.error_correction)
        except EncodingError:
            self._publish(generation, None)
            raise

        s = self.settings
        layout = compute_layout(
            container_size or s.container_size,
            s.logo_fraction,
            s.offscreen_scale,
            module_count=grid.size,
            margin_fraction=s.margin_fraction,
            device_pixel_ratio=s.device_pixel_ratio,
        )
        surface = await render_raster(grid, config, layout, settings=s, loader=self.loader)

        if not self._publish(generation, RenderSnapshot(config, grid, layout, surface)):
            return None
        return surface

    async def _debounced(self, config: RenderConfig, container_size: float | None):
        task = asyncio.current_task()
        try:
            await asyncio.sleep(self.settings.debounce_seconds)
        finally:
            self._debouncing.discard(task)
        return await self.render(config, container_size)

    def request_render(self, config: RenderConfig, container_size: float | None = None) -> asyncio.Task:
        """Schedule a trailing render, cancelling one still waiting out its delay.

        Must be called from inside a running event loop.
        """
        previous = self._pending
        if previous is not None and previous in self._debouncing:
            previous.cancel()
            self._debouncing.discard(previous)
            log.debug("Debounced render coalesced into a newer request")

        # anything already rendering is now stale
        self._generation += 1
        task = asyncio.get_running_loop().create_task(self._debounced(config, container_size))
        task.add_done_callback(self._reap)
        self._debouncing.add(task)
        self._pending = task
        if previous is not None and previous.done():
            self._reap(previous)
        return task

    def _reap(self, task: asyncio.Task):
        """Consume the outcome of a superseded task; nothing will await it any more."""
        if task is self._pending or task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("Superseded render failed: %r", exc)
            audit("render.abandoned", logger=log, error=type(exc).__name__)

    async def flush(self) -> PixelSurface | None:
        """Wait for the most recent request to finish."""
        task = self._pending
        if task is None:
            return None
        return await task

    # -- export ------------------------------------------------------------

    @trace
    async def export_vector(self) -> VectorDocument | None:
        """Regenerate the SVG for the published snapshot. No-op when nothing is shown."""
        snapshot = self._snapshot
        if snapshot is None:
            return None
        document = await render_vector(
            snapshot.grid, snapshot.config, snapshot.layout,
            settings=self.settings, loader=self.loader,
        )
        # a newer render may have published while the logo was loading
        if snapshot is self._snapshot:
            self._document = document
        return document

    def export_png(self) -> bytes | None:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        return encode_png(snapshot.surface)

    def export_name(self, extension: str) -> str | None:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        return export_filename(snapshot.config.text, extension)
