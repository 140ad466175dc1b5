"""Tests for the render session: debounce, stale-result dropping, exports."""

import asyncio
import logging
import xml.etree.ElementTree as ET

import pytest

import qrstyle.session as session_module
from qrstyle.assets import AssetLoader
from qrstyle.config import LogoSpec, RenderConfig
from qrstyle.errors import EncodingError
from qrstyle.session import RenderSession


class GatedLoader(AssetLoader):
    """Holds every logo load until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def load_logo(self, ref):
        self.entered.set()
        await self.release.wait()
        return await super().load_logo(ref)


def test_nothing_to_export_before_first_render(settings):
    session = RenderSession(settings)
    assert session.snapshot is None
    assert session.export_png() is None
    assert session.export_name("png") is None
    assert asyncio.run(session.export_vector()) is None


def test_render_publishes_consistent_snapshot(settings):
    session = RenderSession(settings)
    surface = asyncio.run(session.render(RenderConfig("HELLO", rotation=15)))

    snapshot = session.snapshot
    assert surface is snapshot.surface
    assert snapshot.grid.size == 21
    assert snapshot.layout.module_count == snapshot.grid.size
    assert session.config.rotation == 15
    assert surface.image.size == (300, 300)
    assert session.last_errors == []


def test_container_size_override(settings):
    session = RenderSession(settings)
    surface = asyncio.run(session.render(RenderConfig("HELLO"), container_size=200))
    assert surface.image.size == (200, 200)
    assert session.layout.container_size == 200


def test_empty_text_clears_output(settings):
    session = RenderSession(settings)

    async def scenario():
        await session.render(RenderConfig("HELLO"))
        assert session.snapshot is not None
        return await session.render(RenderConfig(""))

    assert asyncio.run(scenario()) is None
    assert session.snapshot is None
    assert session.export_png() is None


def test_encoding_error_clears_output_and_propagates(settings):
    session = RenderSession(settings)

    async def scenario():
        await session.render(RenderConfig("HELLO"))
        await session.render(RenderConfig("x" * 4000))

    with pytest.raises(EncodingError):
        asyncio.run(scenario())
    assert session.snapshot is None


def test_rapid_requests_coalesce_into_one_render(settings, monkeypatch):
    calls = []
    real_render = session_module.render_raster

    async def counting_render(grid, config, layout, **kwargs):
        calls.append(config.text)
        return await real_render(grid, config, layout, **kwargs)

    monkeypatch.setattr(session_module, "render_raster", counting_render)
    session = RenderSession(settings)

    async def scenario():
        for text in ("H", "HE", "HEL", "HELLO"):
            session.request_render(RenderConfig(text))
        return await session.flush()

    surface = asyncio.run(scenario())
    assert calls == ["HELLO"]
    assert surface is session.surface
    assert session.config.text == "HELLO"


def test_overtaken_render_is_discarded(settings, red_png_bytes):
    async def scenario():
        loader = GatedLoader()
        session = RenderSession(settings, loader=loader)
        slow = asyncio.create_task(
            session.render(RenderConfig("SLOW", logo=LogoSpec.custom(red_png_bytes)))
        )
        await loader.entered.wait()

        fast = await session.render(RenderConfig("FAST"))
        loader.release.set()
        stale = await slow
        return session, fast, stale

    session, fast, stale = asyncio.run(scenario())
    assert stale is None
    assert fast is session.surface
    assert session.config.text == "FAST"


def test_request_render_invalidates_render_in_flight(settings, red_png_bytes):
    async def scenario():
        loader = GatedLoader()
        session = RenderSession(settings, loader=loader)
        slow = asyncio.create_task(
            session.render(RenderConfig("SLOW", logo=LogoSpec.custom(red_png_bytes)))
        )
        await loader.entered.wait()
        session.request_render(RenderConfig("NEXT"))
        loader.release.set()
        stale = await slow
        latest = await session.flush()
        return session, stale, latest

    session, stale, latest = asyncio.run(scenario())
    assert stale is None
    assert latest is session.surface
    assert session.config.text == "NEXT"


def test_exports_follow_the_published_render(settings):
    session = RenderSession(settings)

    async def scenario():
        await session.render(RenderConfig("HELLO", module_color="#334455"))
        return await session.export_vector()

    document = asyncio.run(scenario())
    assert session.document is document
    root = ET.fromstring(document.markup.encode("utf-8"))
    assert root.find(".//{http://www.w3.org/2000/svg}path").get("fill") == "#334455"

    assert session.export_png().startswith(b"\x89PNG")
    assert session.export_name("png") == "qr_HELLO.png"
    assert session.export_name("svg") == "qr_HELLO.svg"


def test_clear_drops_output(settings):
    session = RenderSession(settings)
    asyncio.run(session.render(RenderConfig("HELLO")))
    session.clear()
    assert session.snapshot is None
    assert session.document is None


class FailingLoader(GatedLoader):
    """Like GatedLoader, but the held load ends in an unexpected error."""

    async def load_logo(self, ref):
        self.entered.set()
        await self.release.wait()
        raise RuntimeError("loader crashed")


def test_failure_of_a_superseded_request_is_logged(settings, red_png_bytes, caplog):
    async def scenario():
        loader = FailingLoader()
        session = RenderSession(settings, loader=loader)
        first = session.request_render(RenderConfig("SLOW", logo=LogoSpec.custom(red_png_bytes)))
        await loader.entered.wait()
        session.request_render(RenderConfig("NEXT"))
        loader.release.set()
        latest = await session.flush()
        await asyncio.sleep(0)
        return session, first, latest

    with caplog.at_level(logging.WARNING, logger="qrstyle.session"):
        session, first, latest = asyncio.run(scenario())

    assert first.done() and isinstance(first.exception(), RuntimeError)
    assert latest is session.surface
    assert session.config.text == "NEXT"
    assert any("Superseded render failed" in r.getMessage() for r in caplog.records)
    assert "render.abandoned" in [getattr(r, "event", None) for r in caplog.records]
