"""
Cell grid and falling-glyph simulation for the flurry screensaver.

Every cell is a single byte holding two independent glyph indices, one per
layer. The low nibble is the foreground glyph, the high nibble the
background glyph; 0 on either nibble means "nothing there":

     8   4   2   1   8   4   2   1
     |   |   |   |   |   |   |   |
     0   0   0   0   0   0   0   0
    '-------------' '-------------'
      BG GLYPH IDX    FG GLYPH IDX

Drops fall one row per tick and leave through the bottom edge. New drops are
spawned on the top row, a few per tick, until the grid approaches its target
density. Nothing in here knows about terminals.
"""

from __future__ import annotations

import math
from enum import IntEnum
from typing import Iterator, Union

import numpy as np
from numpy.typing import NDArray

# ── Palette ─────────────────────────────────────────────────────────────
# Index 0 is the blank glyph and never falls.
GLYPHS: tuple[str, ...] = (" ", "*", ".", "¤", "°", "·", "×")
NUM_GLYPHS: int = len(GLYPHS)

# ── Cell layout ─────────────────────────────────────────────────────────
BITMASK_FG: int = 0x0F
BITMASK_BG: int = 0xF0
SHIFT_BG: int = 4


class Layer(IntEnum):
    FG = 1
    BG = 2

    @property
    def other(self) -> Layer:
        return Layer.BG if self is Layer.FG else Layer.FG


_MASKS: dict[Layer, int] = {Layer.FG: BITMASK_FG, Layer.BG: BITMASK_BG}
_SHIFTS: dict[Layer, int] = {Layer.FG: 0, Layer.BG: SHIFT_BG}


# ═══════════════════════════════════════════════════════════════════════
#  Cell codec
# ═══════════════════════════════════════════════════════════════════════
# These work on plain ints and, element-wise, on uint8 arrays.
CellLike = Union[int, NDArray[np.uint8]]


def encode(fg: CellLike, bg: CellLike) -> CellLike:
    """Pack foreground and background glyph indices into one cell value."""
    return ((bg << SHIFT_BG) & BITMASK_BG) | (fg & BITMASK_FG)


def decode_layer(cell: CellLike, layer: Layer) -> CellLike:
    return (cell & _MASKS[layer]) >> _SHIFTS[layer]


def with_layer(cell: CellLike, layer: Layer, value: CellLike) -> CellLike:
    """Return `cell` with one layer's glyph replaced, the other kept."""
    mask = _MASKS[layer]
    return (cell & (~mask & 0xFF)) | ((value << _SHIFTS[layer]) & mask)


# ═══════════════════════════════════════════════════════════════════════
#  Randomness
# ═══════════════════════════════════════════════════════════════════════

def make_rng(seed: int | None = None) -> np.random.Generator:
    return np.random.default_rng(seed)


def rand_int(rng: np.random.Generator, lo: int, hi: int) -> int:
    """Uniform int in [lo, hi], both ends inclusive."""
    return int(rng.integers(lo, hi, endpoint=True))


# ═══════════════════════════════════════════════════════════════════════
#  The grid
# ═══════════════════════════════════════════════════════════════════════

class Grid:
    """
    A rows x cols field of packed two-layer cells.

    Row 0 is the top of the screen; gravity pulls towards higher rows.
    Reads outside the grid return blank and writes outside it are dropped,
    because the fall step routinely touches the row below the last one.
    """

    def __init__(
        self,
        rows: int,
        cols: int,
        density: float,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.rng: np.random.Generator = rng if rng is not None else make_rng()
        self.rows: int = 0
        self.cols: int = 0
        self.density: float = 0.0
        self.data: NDArray[np.uint8] = np.zeros((0, 0), dtype=np.uint8)
        self._counts: dict[Layer, int] = {Layer.FG: 0, Layer.BG: 0}
        self.resize(rows, cols, density)

    # ── Lifecycle ───────────────────────────────────────────────────

    def resize(self, rows: int, cols: int, density: float | None = None) -> None:
        """Throw away all cells and start over with the new dimensions."""
        if rows <= 0 or cols <= 0:
            raise ValueError(f"grid size must be positive, got {rows}x{cols}")
        if density is not None:
            if not 0.0 <= density <= 1.0:
                raise ValueError(f"density must be within [0, 1], got {density}")
            self.density = float(density)

        self.data = np.zeros((rows, cols), dtype=np.uint8)
        self.rows = rows
        self.cols = cols
        self._counts = {Layer.FG: 0, Layer.BG: 0}

    # ── Cell access ─────────────────────────────────────────────────

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def get(self, row: int, col: int, layer: Layer) -> int:
        if not self.in_bounds(row, col):
            return 0
        return int(decode_layer(int(self.data[row, col]), layer))

    def set(self, row: int, col: int, layer: Layer, value: int) -> bool:
        if not self.in_bounds(row, col):
            return False
        cell = int(self.data[row, col])
        was = decode_layer(cell, layer)
        self.data[row, col] = with_layer(cell, layer, value)
        now = decode_layer(int(self.data[row, col]), layer)
        if was and not now:
            self._counts[layer] -= 1
        elif now and not was:
            self._counts[layer] += 1
        return True

    def add_drop(self, row: int, col: int, layer: Layer) -> bool:
        """Place a random glyph on an empty cell. Occupied cells are left alone."""
        if not self.in_bounds(row, col):
            return False
        if self.get(row, col, layer):
            return False
        return self.set(row, col, layer, rand_int(self.rng, 1, NUM_GLYPHS - 1))

    def active_count(self, layer: Layer) -> int:
        return self._counts[layer]

    def desired_count(self) -> int:
        return int(self.rows * self.cols * self.density)

    # ── Read-only views for renderers ───────────────────────────────

    def layer(self, layer: Layer) -> NDArray[np.uint8]:
        view = decode_layer(self.data, layer)
        view.flags.writeable = False
        return view

    def visible(self) -> tuple[NDArray[np.uint8], NDArray[np.bool_]]:
        """Glyph index shown in each cell, and whether the foreground won."""
        fg = decode_layer(self.data, Layer.FG)
        bg = decode_layer(self.data, Layer.BG)
        is_fg = fg > 0
        return np.where(is_fg, fg, bg).astype(np.uint8), is_fg

    def iter_cells(self) -> Iterator[tuple[int, int, int, Layer | None]]:
        """Row-major walk yielding (row, col, glyph, layer-or-None)."""
        for row in range(self.rows):
            for col in range(self.cols):
                fg = self.get(row, col, Layer.FG)
                if fg:
                    yield row, col, fg, Layer.FG
                    continue
                bg = self.get(row, col, Layer.BG)
                if bg:
                    yield row, col, bg, Layer.BG
                else:
                    yield row, col, 0, None

    def to_text(self) -> str:
        glyphs, _ = self.visible()
        return "\n".join(
            "".join(GLYPHS[g] for g in row) for row in glyphs.tolist()
        )


# ═══════════════════════════════════════════════════════════════════════
#  Simulation
# ═══════════════════════════════════════════════════════════════════════

def _fall(grid: Grid, layer: Layer) -> int:
    """Move every glyph on `layer` one row down. Returns drops lost."""
    vals = decode_layer(grid.data, layer)
    lost = int(np.count_nonzero(vals[-1]))

    # Shifting the whole layer at once is the same as sweeping each column
    # bottom-up: every glyph lands exactly one row lower, none moves twice.
    moved = np.zeros_like(vals)
    moved[1:] = vals[:-1]
    grid.data = with_layer(grid.data, layer, moved).astype(np.uint8)
    grid._counts[layer] -= lost
    return lost


def _spawn(grid: Grid, layer: Layer) -> int:
    """Drip new drops onto the top row, spreading the deficit over `rows` ticks."""
    missing = grid.desired_count() - grid.active_count(layer)
    if missing <= 0:
        return 0
    placed = 0
    for _ in range(math.ceil(missing / grid.rows)):
        # An occupied top cell simply swallows the attempt.
        if grid.add_drop(0, rand_int(grid.rng, 0, grid.cols - 1), layer):
            placed += 1
    return placed


def advance(grid: Grid, layer: Layer) -> int:
    """One tick of gravity and spawning on one layer. Returns drops lost."""
    lost = _fall(grid, layer)
    _spawn(grid, layer)
    return lost


def reseed(grid: Grid) -> int:
    """Scatter a burst of drops over the whole grid, on random layers."""
    placed = 0
    for _ in range(grid.desired_count()):
        col = rand_int(grid.rng, 0, grid.cols - 1)
        row = rand_int(grid.rng, 0, grid.rows - 1)
        layer = Layer(rand_int(grid.rng, int(Layer.FG), int(Layer.BG)))
        if grid.add_drop(row, col, layer):
            placed += 1
    return placed
