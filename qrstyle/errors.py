"""Exception taxonomy for the rendering pipeline."""


class QRStyleError(Exception):
    """Base class for every error the pipeline surfaces."""


class EncodingError(QRStyleError):
    """The encoder rejected the payload (e.g. too long for level H)."""

    def __init__(self, text: str, level: str, reason: str = ""):
        self.text = text
        self.level = level
        self.reason = reason
        preview = text if len(text) <= 40 else text[:40] + "..."
        msg = f"Cannot encode {len(text)} chars at level {level}: {preview!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class AssetLoadError(QRStyleError):
    """A logo or background asset could not be fetched or decoded.

    Recovered inside the renderers: the render completes without the asset.
    """

    def __init__(self, ref: object, reason: str = ""):
        self.ref = ref
        self.reason = reason
        super().__init__(f"Failed to load asset {_describe_ref(ref)}: {reason}")


class ExportError(QRStyleError):
    """PNG/SVG serialization or file write failed. No partial file is left."""

    def __init__(self, target: str, reason: str = ""):
        self.target = target
        self.reason = reason
        super().__init__(f"Export to {target} failed: {reason}")


def _describe_ref(ref: object) -> str:
    if isinstance(ref, (bytes, bytearray)):
        return f"<{len(ref)} bytes>"
    s = str(ref)
    return s if len(s) <= 80 else s[:80] + "..."
