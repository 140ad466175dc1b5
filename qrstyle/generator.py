"""ModuleGrid adapter: wrap the qrcode encoder's output into an immutable boolean grid."""

from dataclasses import dataclass
from enum import Enum

import numpy as np
import qrcode
import qrcode.constants
from qrcode.exceptions import DataOverflowError

from qrstyle.errors import EncodingError
from qrstyle.logging import audit, get_logger, trace

log = get_logger("generator")


class ECCLevel(Enum):
    L = qrcode.constants.ERROR_CORRECT_L  # 7%
    M = qrcode.constants.ERROR_CORRECT_M  # 15%
    Q = qrcode.constants.ERROR_CORRECT_Q  # 25%
    H = qrcode.constants.ERROR_CORRECT_H  # 30%


ECC_NAMES = {"L": ECCLevel.L, "M": ECCLevel.M, "Q": ECCLevel.Q, "H": ECCLevel.H}

FINDER_SIDE = 7


@dataclass(frozen=True)
class EncodedSymbol:
    """Raw encoder output: a square grid flattened row-major."""

    size: int
    data: tuple[bool, ...]


@dataclass(frozen=True)
class ModuleGrid:
    """Square matrix of modules, ``True`` = dark. Immutable once built."""

    modules: tuple[tuple[bool, ...], ...]

    def __post_init__(self):
        n = len(self.modules)
        if n == 0:
            raise ValueError("ModuleGrid cannot be empty")
        for row in self.modules:
            if len(row) != n:
                raise ValueError(f"ModuleGrid must be square, got a row of {len(row)} in a {n}-row grid")

    @classmethod
    def from_flat(cls, size: int, data) -> "ModuleGrid":
        data = tuple(bool(v) for v in data)
        if len(data) != size * size:
            raise ValueError(f"Expected {size * size} modules for size {size}, got {len(data)}")
        return cls(tuple(data[r * size:(r + 1) * size] for r in range(size)))

    @classmethod
    def from_rows(cls, rows) -> "ModuleGrid":
        return cls(tuple(tuple(bool(v) for v in row) for row in rows))

    @property
    def size(self) -> int:
        return len(self.modules)

    @property
    def dark_count(self) -> int:
        return sum(sum(row) for row in self.modules)

    def is_dark(self, row: int, col: int) -> bool:
        return self.modules[row][col]

    def finder_role(self, row: int, col: int) -> str | None:
        """``ring`` or ``center`` inside one of the three 7×7 finder patterns, else ``None``.

        The light separator ring between the two reports ``None``.
        """
        n = self.size
        if n < FINDER_SIDE:
            return None
        for top, left in ((0, 0), (0, n - FINDER_SIDE), (n - FINDER_SIDE, 0)):
            r, c = row - top, col - left
            if 0 <= r < FINDER_SIDE and 0 <= c < FINDER_SIDE:
                if r in (0, FINDER_SIDE - 1) or c in (0, FINDER_SIDE - 1):
                    return "ring"
                if 2 <= r <= 4 and 2 <= c <= 4:
                    return "center"
                return None
        return None

    def as_array(self) -> np.ndarray:
        return np.array(self.modules, dtype=bool)


def _level(text: str, level: str) -> ECCLevel:
    try:
        return ECC_NAMES[level.upper()]
    except (KeyError, AttributeError):
        raise EncodingError(text, str(level), "unknown error-correction level") from None


def encode(text: str, error_correction: str = "H") -> EncodedSymbol:
    """Encoder collaborator: fit *text* into the smallest symbol at *error_correction*.

    Raises:
        EncodingError: if the payload exceeds the capacity of version 40, or
            *error_correction* is not one of L, M, Q, H.
    """
    ecc_level = _level(text, error_correction)
    qr = qrcode.QRCode(
        version=None,
        error_correction=ecc_level.value,
        box_size=1,
        border=0,
    )
    qr.add_data(text)
    try:
        qr.make(fit=True)
    except DataOverflowError as exc:
        raise EncodingError(text, error_correction.upper(), "payload exceeds symbol capacity") from exc
    except ValueError as exc:
        raise EncodingError(text, error_correction.upper(), str(exc)) from exc

    size = len(qr.modules)
    flat = tuple(bool(cell) for row in qr.modules for cell in row)
    return EncodedSymbol(size=size, data=flat)


@trace
def build_grid(text: str, level: str = "H") -> ModuleGrid:
    """Encode *text* and wrap the result as a :class:`ModuleGrid`.

    Empty text is a caller precondition (skip rendering, clear the output),
    not an encoding failure, so it raises ``ValueError``.
    """
    if not text:
        raise ValueError("Cannot build a grid for empty text; skip rendering instead")

    symbol = encode(text, level)
    grid = ModuleGrid.from_flat(symbol.size, symbol.data)

    audit("grid.built", logger=log,
          data=text[:80], size=f"{grid.size}x{grid.size}",
          ecc=level.upper(), dark=grid.dark_count)
    return grid
