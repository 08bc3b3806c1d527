#!/usr/bin/env python3
"""
  *  f l u r r y  *
  Gently falling glyphs for idle terminals.

  Two layers of drops drift down the screen. The foreground layer falls
  every frame and is drawn bright; the background layer falls every other
  frame and is drawn dim, which gives the rain a bit of depth.

  Controls:
    q         quit
    r         reseed the screen
    s         toggle stats line

  Resizing the terminal starts a fresh, reseeded grid. SIGINT, SIGQUIT and
  SIGTERM end the animation and restore the terminal.
"""

from __future__ import annotations

import argparse
import curses
import os
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType
from typing import IO, ClassVar, Sequence

import numpy as np

from flurry_grid import GLYPHS, Grid, Layer, advance, make_rng, reseed

PROGRAM_NAME = "flurry"
__version__ = "0.1.0"

# ── Tunables ────────────────────────────────────────────────────────────
DROPS_BASE_VALUE: float = 0.001
DROPS_FACTOR_MIN: int = 1
DROPS_FACTOR_MAX: int = 100
DROPS_FACTOR_DEF: int = 10

SPEED_BASE_VALUE: float = 1.0
SPEED_FACTOR_MIN: int = 1
SPEED_FACTOR_MAX: int = 100
SPEED_FACTOR_DEF: int = 10

# ── Palette (xterm 256-color indices) ───────────────────────────────────
COLOR_BG: int = 0      # opaque background: black
COLOR_FG_0: int = 15   # foreground layer: white
COLOR_FG_1: int = 249  # background layer: light grey

LOG_PATH = Path(__file__).resolve().parent / "flurry_stats.csv"


# ═══════════════════════════════════════════════════════════════════════
#  Options
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Options:
    speed: int = SPEED_FACTOR_DEF
    drops: int = DROPS_FACTOR_DEF
    seed: int = 0
    fg_colors: bool = False
    opaque: bool = False
    log_path: Path | None = None

    @property
    def interval(self) -> float:
        """Seconds to sleep between frames."""
        return SPEED_BASE_VALUE / self.speed

    @property
    def density(self) -> float:
        return DROPS_BASE_VALUE * self.drops


def clamp(val: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, val))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME, description="Falling glyphs for your terminal"
    )
    parser.add_argument("-b", "--background", action="store_true",
                        help="use black background color")
    parser.add_argument("-f", "--fg-colors", action="store_true",
                        help="use white / light grey for the two layers")
    parser.add_argument("-d", "--density", type=int, default=0,
                        help=f"density factor ({DROPS_FACTOR_MIN} .. "
                             f"{DROPS_FACTOR_MAX}, default: {DROPS_FACTOR_DEF})")
    parser.add_argument("-s", "--speed", type=int, default=0,
                        help=f"speed factor ({SPEED_FACTOR_MIN} .. "
                             f"{SPEED_FACTOR_MAX}, default: {SPEED_FACTOR_DEF})")
    parser.add_argument("-r", "--seed", type=int, default=0,
                        help="seed for the random number generator "
                             "(default: current time)")
    parser.add_argument("--log", nargs="?", type=Path, const=LOG_PATH,
                        default=None, metavar="PATH",
                        help=f"write tick stats as CSV (default path: {LOG_PATH.name})")
    parser.add_argument("-V", "--version", action="version",
                        version=f"{PROGRAM_NAME} {__version__}")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> Options:
    """Parse the command line. Zero means "use the default", like leaving it out."""
    args = build_parser().parse_args(argv)

    speed = args.speed or SPEED_FACTOR_DEF
    drops = args.density or DROPS_FACTOR_DEF
    seed = args.seed or int(time.time())

    return Options(
        speed=clamp(speed, SPEED_FACTOR_MIN, SPEED_FACTOR_MAX),
        drops=clamp(drops, DROPS_FACTOR_MIN, DROPS_FACTOR_MAX),
        seed=seed,
        fg_colors=args.fg_colors,
        opaque=args.background,
        log_path=args.log,
    )


# ═══════════════════════════════════════════════════════════════════════
#  Terminal geometry and signals
# ═══════════════════════════════════════════════════════════════════════

class TerminalSizeError(RuntimeError):
    pass


def terminal_size(fd: int | None = None) -> tuple[int, int]:
    """Return (rows, cols) of the controlling terminal."""
    if fd is None:
        fd = sys.__stdout__.fileno()
    try:
        size = os.get_terminal_size(fd)
    except OSError as e:
        raise TerminalSizeError("Failed to determine terminal size") from e
    if size.lines <= 0 or size.columns <= 0:
        raise TerminalSizeError("Terminal size not appropriate")
    return size.lines, size.columns


@dataclass
class SignalMailbox:
    """
    Two flags flipped from signal handlers, read by the main loop.

    Handlers never do anything but set a flag; the loop picks the flags up
    once per frame, so a resize arriving mid-paint shows up next frame.
    """

    STOP_SIGNALS: ClassVar[tuple[str, ...]] = ("SIGINT", "SIGQUIT", "SIGTERM")
    RESIZE_SIGNAL: ClassVar[str] = "SIGWINCH"

    resized: bool = False
    running: bool = True
    _previous: dict[int, object] = field(default_factory=dict)

    def on_signal(self, sig: int, frame: FrameType | None) -> None:
        if sig == getattr(signal, self.RESIZE_SIGNAL, None):
            self.resized = True
        else:
            self.running = False

    def notify_resize(self) -> None:
        self.resized = True

    def stop(self) -> None:
        self.running = False

    def take_resize(self) -> bool:
        """Read and clear the resize flag."""
        resized, self.resized = self.resized, False
        return resized

    def install(self) -> None:
        for name in (*self.STOP_SIGNALS, self.RESIZE_SIGNAL):
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            self._previous[sig] = signal.signal(sig, self.on_signal)

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes per-tick rain telemetry to CSV."""

    HEADER: ClassVar[str] = "tick,time_s,rows,cols,fg_drops,bg_drops,event\n"

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        if self._path is None:
            return
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        tick: int,
        rows: int,
        cols: int,
        fg_drops: int,
        bg_drops: int,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        try:
            self._fh.write(f"{tick},{t:.1f},{rows},{cols},{fg_drops},{bg_drops},{event}\n")
            if event or tick % 50 == 0:
                self._fh.flush()
        except OSError:
            self.close()

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Color management
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ColorMap:
    """Curses color pairs for the two layers and the blank background."""

    PAIR_FG: ClassVar[int] = 1
    PAIR_BG: ClassVar[int] = 2
    PAIR_BLANK: ClassVar[int] = 3

    fg_colors: bool = False
    opaque: bool = False
    enabled: bool = False

    def setup(self) -> None:
        try:
            curses.start_color()
            curses.use_default_colors()
        except curses.error:
            return

        rich = curses.COLORS >= 256
        back = (COLOR_BG if rich else curses.COLOR_BLACK) if self.opaque else -1
        if self.fg_colors:
            fg0 = COLOR_FG_0 if rich else curses.COLOR_WHITE
            fg1 = COLOR_FG_1 if rich else curses.COLOR_WHITE
        else:
            fg0 = fg1 = -1

        try:
            curses.init_pair(self.PAIR_FG, fg0, back)
            curses.init_pair(self.PAIR_BG, fg1, back)
            curses.init_pair(self.PAIR_BLANK, -1, back)
        except curses.error:
            return
        self.enabled = True

    def attr(self, layer: Layer) -> int:
        if layer is Layer.FG:
            pair = curses.color_pair(self.PAIR_FG) if self.enabled else 0
            return pair | curses.A_BOLD
        pair = curses.color_pair(self.PAIR_BG) if self.enabled else 0
        return pair | curses.A_NORMAL

    def blank(self) -> int:
        return curses.color_pair(self.PAIR_BLANK) if self.enabled else 0


# ═══════════════════════════════════════════════════════════════════════
#  The rain
# ═══════════════════════════════════════════════════════════════════════

class Flurry:
    """
    A grid plus the tick cadence that drives it.

    The foreground layer advances every tick, the background layer on
    every other tick, so background drops fall at half speed.
    """

    def __init__(self, rows: int, cols: int, density: float, seed: int | None = None) -> None:
        self.seed = seed
        self.grid: Grid = Grid(rows, cols, density, rng=make_rng(seed))
        self.tick: int = 0
        reseed(self.grid)

    def resize(self, rows: int, cols: int) -> None:
        """Start over on a fresh grid of the given size."""
        self.grid.resize(rows, cols)
        reseed(self.grid)

    def reseed(self) -> int:
        return reseed(self.grid)

    def step(self) -> None:
        advance(self.grid, Layer.FG)
        if self.tick % 2 == 1:
            advance(self.grid, Layer.BG)
        self.tick += 1

    def drops(self, layer: Layer) -> int:
        return self.grid.active_count(layer)


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

def render(
    stdscr: curses.window,
    flurry: Flurry,
    cmap: ColorMap,
    show_stats: bool = False,
) -> int:
    """Paint every non-blank cell. Returns the number of glyphs drawn.

    Expects an erased screen; blank cells are never touched.
    """
    max_y, max_x = stdscr.getmaxyx()
    glyphs, is_fg = flurry.grid.visible()
    draw_rows = min(glyphs.shape[0], max_y)
    draw_cols = min(glyphs.shape[1], max_x)
    glyphs = glyphs[:draw_rows, :draw_cols]
    is_fg = is_fg[:draw_rows, :draw_cols]

    ys, xs = np.nonzero(glyphs)
    gs = glyphs[ys, xs].tolist()
    fs = is_fg[ys, xs].tolist()

    _addstr = stdscr.addstr
    fg_attr = cmap.attr(Layer.FG)
    bg_attr = cmap.attr(Layer.BG)

    for y, x, g, f in zip(ys.tolist(), xs.tolist(), gs, fs):
        try:
            _addstr(y, x, GLYPHS[g], fg_attr if f else bg_attr)
        except curses.error:
            # Writing the bottom-right cell moves the cursor off-screen.
            pass

    if show_stats:
        _draw_stats_line(stdscr, flurry, max_y, max_x)
    return len(gs)


def _draw_stats_line(
    stdscr: curses.window, flurry: Flurry, max_y: int, max_x: int
) -> None:
    grid = flurry.grid
    line = (
        f" tick {flurry.tick:,}  fg {flurry.drops(Layer.FG):,}"
        f"  bg {flurry.drops(Layer.BG):,}  target {grid.desired_count():,}"
        f"  {grid.rows}x{grid.cols}  seed {flurry.seed} "
    )
    try:
        stdscr.addstr(max_y - 1, 0, line[: max_x - 1], curses.A_REVERSE)
    except curses.error:
        pass


# ═══════════════════════════════════════════════════════════════════════
#  Main loop
# ═══════════════════════════════════════════════════════════════════════

def main(stdscr: curses.window, opts: Options, mailbox: SignalMailbox) -> None:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.nodelay(True)

    cmap = ColorMap(fg_colors=opts.fg_colors, opaque=opts.opaque)
    cmap.setup()
    stdscr.bkgd(" ", cmap.blank())

    max_y, max_x = stdscr.getmaxyx()
    flurry = Flurry(max_y, max_x, opts.density, seed=opts.seed)

    logger = StatsLogger(opts.log_path)
    logger.open()
    logger.log(0, max_y, max_x, flurry.drops(Layer.FG), flurry.drops(Layer.BG), "start")

    show_stats = False

    try:
        while mailbox.running:
            event = ""

            # ── Input ──────────────────────────────────────────────
            try:
                key = stdscr.getch()
            except curses.error:
                key = -1

            if key in (ord("q"), ord("Q")):
                mailbox.stop()
                break
            elif key in (ord("r"), ord("R")):
                flurry.reseed()
                event = "reseed"
            elif key in (ord("s"), ord("S")):
                show_stats = not show_stats
            elif key == curses.KEY_RESIZE:
                mailbox.notify_resize()

            # ── Resize ─────────────────────────────────────────────
            if mailbox.take_resize():
                rows, cols = terminal_size()
                curses.resizeterm(rows, cols)
                max_y, max_x = stdscr.getmaxyx()
                flurry.resize(max_y, max_x)
                event = "resize"

            # ── Render ─────────────────────────────────────────────
            stdscr.erase()
            render(stdscr, flurry, cmap, show_stats=show_stats)
            stdscr.refresh()

            # ── Simulate ───────────────────────────────────────────
            flurry.step()

            # ── Log ────────────────────────────────────────────────
            if event or flurry.tick % 10 == 0:
                logger.log(
                    tick=flurry.tick,
                    rows=flurry.grid.rows,
                    cols=flurry.grid.cols,
                    fg_drops=flurry.drops(Layer.FG),
                    bg_drops=flurry.drops(Layer.BG),
                    event=event,
                )

            time.sleep(opts.interval)
    finally:
        logger.close()


def run(argv: Sequence[str] | None = None) -> int:
    opts = parse_args(argv)

    try:
        terminal_size()
    except TerminalSizeError as e:
        print(f"{PROGRAM_NAME}: {e}", file=sys.stderr)
        return 1

    mailbox = SignalMailbox()
    mailbox.install()
    try:
        curses.wrapper(main, opts, mailbox)
    except (TerminalSizeError, MemoryError) as e:
        print(f"{PROGRAM_NAME}: {str(e) or 'out of memory'}", file=sys.stderr)
        return 1
    finally:
        mailbox.restore()
    return 0


if __name__ == "__main__":
    sys.exit(run())
