"""Render configuration: per-render value objects and process-wide settings."""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path

from PIL import ImageColor

DEFAULT_LOGO_PATH = Path(__file__).parent / "data" / "default_logo.svg"

LOGO_CLIP_SHAPES = ("rect", "circle")

ERROR_CORRECTION = "H"


def normalize_color(value: str) -> str:
    """Parse any Pillow colour string and return it as ``#rrggbb``."""
    try:
        rgb = ImageColor.getrgb(value)
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid colour: {value!r}") from exc
    return "#{:02x}{:02x}{:02x}".format(*rgb[:3])


def color_to_rgba(value: str) -> tuple[int, int, int, int]:
    r, g, b = ImageColor.getrgb(value)[:3]
    return r, g, b, 255


@dataclass(frozen=True)
class Background:
    """Background mode: ``solid`` colour, ``transparent``, or a stretched ``image``."""

    kind: str = "solid"
    color: str = "#ffffff"
    source: object = None

    def __post_init__(self):
        if self.kind not in ("solid", "transparent", "image"):
            raise ValueError(f"Unknown background kind: {self.kind!r}")
        if self.kind == "image" and self.source is None:
            raise ValueError("Image background needs a source")
        object.__setattr__(self, "color", normalize_color(self.color))

    @classmethod
    def solid(cls, color: str = "#ffffff") -> "Background":
        return cls(kind="solid", color=color)

    @classmethod
    def transparent(cls) -> "Background":
        return cls(kind="transparent")

    @classmethod
    def image(cls, source) -> "Background":
        return cls(kind="image", source=source)

    @property
    def is_solid(self) -> bool:
        """Flat colour: light modules are painted and logos get a backdrop."""
        return self.kind == "solid"


@dataclass(frozen=True)
class LogoSpec:
    """Logo mode: ``none``, the packaged ``default`` asset, or a ``custom`` asset ref."""

    kind: str = "none"
    source: object = None

    def __post_init__(self):
        if self.kind not in ("none", "default", "custom"):
            raise ValueError(f"Unknown logo kind: {self.kind!r}")
        if self.kind == "custom" and self.source is None:
            raise ValueError("Custom logo needs a source")

    @classmethod
    def none(cls) -> "LogoSpec":
        return cls()

    @classmethod
    def default(cls) -> "LogoSpec":
        return cls(kind="default")

    @classmethod
    def custom(cls, source) -> "LogoSpec":
        return cls(kind="custom", source=source)

    @property
    def requested(self) -> bool:
        return self.kind != "none"


@dataclass(frozen=True)
class RenderConfig:
    """Everything one render depends on. Re-created per render, never mutated.

    ``rotation`` is normalised into ``[0, 360)`` so that a config at ``θ`` and
    one at ``θ + 360`` compare (and render) equal.

    ``finder_ring_color`` and ``finder_center_color`` recolour the dark
    outer ring and the 3×3 centre of the three finder patterns. ``None``
    means they follow ``module_color``.
    """

    text: str
    module_color: str = "#000000"
    background: Background = field(default_factory=Background)
    logo: LogoSpec = field(default_factory=LogoSpec)
    rotation: float = 0.0
    error_correction: str = "H"
    finder_ring_color: str | None = None
    finder_center_color: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "module_color", normalize_color(self.module_color))
        for name in ("finder_ring_color", "finder_center_color"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, normalize_color(value))

        level = str(self.error_correction).upper()
        # the logo safe zone relies on level H recovery
        if level != ERROR_CORRECTION:
            raise ValueError(f"error_correction is fixed at {ERROR_CORRECTION!r}, got {self.error_correction!r}")
        object.__setattr__(self, "error_correction", level)

        rotation = float(self.rotation) % 360.0
        # -0.0 and 360.0 (float rounding of tiny negatives) both collapse to 0
        if rotation == 360.0 or rotation == 0.0:
            rotation = 0.0
        object.__setattr__(self, "rotation", rotation)

    def replace(self, **changes) -> "RenderConfig":
        return dataclasses.replace(self, **changes)

    def fill_for(self, role: str | None) -> str:
        """Colour of a dark module in finder *role* (``ring``, ``center`` or ``None``)."""
        if role == "ring" and self.finder_ring_color:
            return self.finder_ring_color
        if role == "center" and self.finder_center_color:
            return self.finder_center_color
        return self.module_color


@dataclass(frozen=True)
class RenderSettings:
    """Process-wide rendering constants.

    The fixed-size and container-sized variants are the same code path
    with a different ``container_size``.
    """

    container_size: float = 300.0
    logo_fraction: float = 0.2
    offscreen_scale: float = 2.0
    device_pixel_ratio: float = 1.0
    margin_fraction: float = 0.0
    vector_padding_fraction: float = 0.1
    logo_clip: str = "rect"
    debounce_seconds: float = 0.3
    default_logo: object = DEFAULT_LOGO_PATH
    fetch_timeout: float = 10.0

    def __post_init__(self):
        if self.logo_clip not in LOGO_CLIP_SHAPES:
            raise ValueError(f"logo_clip must be one of {LOGO_CLIP_SHAPES}, got {self.logo_clip!r}")
        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")
        if not 0 <= self.vector_padding_fraction < 1:
            raise ValueError("vector_padding_fraction must be in [0, 1)")

    def replace(self, **changes) -> "RenderSettings":
        return dataclasses.replace(self, **changes)
