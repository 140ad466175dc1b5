"""Shared test fixtures."""

import io

import pytest
from PIL import Image

from qrstyle.config import RenderSettings
from qrstyle.generator import ModuleGrid, build_grid
from qrstyle.layout import compute_layout


STROKED_SVG = '''<?xml version="1.0" encoding="UTF-8"?>
<!-- exported by hand -->
<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" width="24" height="24" viewBox="0 0 24 24" fill="none">
  <circle cx="12" cy="12" r="10" stroke="#ff0000" stroke-width="2"/>
  <path d="M8 12h8" style="stroke:#00ff00;stroke-width:2" stroke-linecap="round"/>
  <rect x="4" y="4" width="2" height="2" stroke="none" fill="#123456"/>
</svg>'''

NO_VIEWBOX_SVG = '<svg xmlns="http://www.w3.org/2000/svg" width="40px" height="20px"><rect width="40" height="20" fill="#00f"/></svg>'

MALFORMED_SVG = '<svg xmlns="http://www.w3.org/2000/svg"><g><circle r="3"></svg>'


@pytest.fixture
def settings():
    return RenderSettings(container_size=300.0, offscreen_scale=2.0, debounce_seconds=0.01)


@pytest.fixture
def hello_grid():
    return build_grid("HELLO", "H")


@pytest.fixture
def hello_layout(hello_grid, settings):
    return compute_layout(
        settings.container_size,
        settings.logo_fraction,
        settings.offscreen_scale,
        module_count=hello_grid.size,
    )


@pytest.fixture
def checker_grid():
    """9x9 checkerboard: (r + c) even is dark."""
    return ModuleGrid.from_rows([[(r + c) % 2 == 0 for c in range(9)] for r in range(9)])


@pytest.fixture
def red_png_bytes():
    buffer = io.BytesIO()
    Image.new("RGBA", (32, 32), (255, 0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def missing_path(tmp_path):
    return tmp_path / "does-not-exist.svg"


@pytest.fixture
def cairo_available():
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        pytest.skip("cairo backend unavailable")
