#!/usr/bin/env python3
"""
Profiling harness for the flurry screensaver.

Runs the simulation + rendering pipeline headlessly under cProfile,
then prints a ranked breakdown of where time is spent.

Usage:
  python3 flurry_bench.py                  # 500 frames, summary
  python3 flurry_bench.py -n 1000          # 1000 frames
  python3 flurry_bench.py -d 100           # densest rain
  python3 flurry_bench.py --line-timing    # per-frame component timing
  python3 flurry_bench.py --dump prof.out  # dump cProfile binary for snakeviz etc.
"""

from __future__ import annotations

import argparse
import cProfile
import pstats
import time
from io import StringIO
from typing import Sequence

import numpy as np

from flurry import (
    DROPS_BASE_VALUE,
    DROPS_FACTOR_DEF,
    ColorMap,
    Flurry,
    render,
)
from flurry_grid import Layer


# ── Fake curses stubs for headless rendering ────────────────────────────

class FakeWindow:
    """Minimal curses.window stub that remembers what was drawn."""

    def __init__(self, rows: int, cols: int) -> None:
        self._rows = rows
        self._cols = cols
        self.cells: dict[tuple[int, int], tuple[str, int]] = {}
        self.calls = 0

    def getmaxyx(self) -> tuple[int, int]:
        return self._rows, self._cols

    def addstr(self, y: int, x: int, text: str, attr: int = 0) -> None:
        self.calls += 1
        for i, ch in enumerate(text):
            self.cells[(y, x + i)] = (ch, attr)

    def erase(self) -> None:
        self.cells.clear()

    def refresh(self) -> None:
        pass


def simulate_frame(flurry: Flurry, win: FakeWindow, cmap: ColorMap) -> dict[str, float]:
    """One full frame (erase, render, step), timing each component."""
    timings: dict[str, float] = {}

    t0 = time.perf_counter()
    win.erase()
    drawn = render(win, flurry, cmap)  # type: ignore[arg-type]
    timings["render"] = time.perf_counter() - t0
    timings["_glyphs"] = float(drawn)

    t0 = time.perf_counter()
    flurry.step()
    timings["step"] = time.perf_counter() - t0

    return timings


def run_benchmark(
    n_frames: int,
    term_rows: int = 60,
    term_cols: int = 200,
    drops: int = DROPS_FACTOR_DEF,
    seed: int = 1,
    line_timing: bool = False,
    dump_path: str | None = None,
) -> None:
    """Run the benchmark for n_frames and report results."""

    flurry = Flurry(term_rows, term_cols, DROPS_BASE_VALUE * drops, seed=seed)
    win = FakeWindow(term_rows, term_cols)
    cmap = ColorMap()

    print(f"Grid: {term_rows}x{term_cols}  "
          f"Target drops/layer: {flurry.grid.desired_count():,}  "
          f"Frames: {n_frames}")
    print()

    # ── Per-frame component timing ─────────────────────────────────
    if line_timing:
        comp_times: dict[str, list[float]] = {}
        total_times: list[float] = []

        for frame in range(n_frames):
            frame_t0 = time.perf_counter()
            for k, v in simulate_frame(flurry, win, cmap).items():
                comp_times.setdefault(k, []).append(v)
            total_times.append(time.perf_counter() - frame_t0)

            if (frame + 1) % 100 == 0:
                avg_ms = sum(total_times[-100:]) / 100 * 1000
                print(f"  frame {frame + 1}/{n_frames}  "
                      f"avg {avg_ms:.2f}ms/frame  "
                      f"fg {flurry.drops(Layer.FG):,}  bg {flurry.drops(Layer.BG):,}")

        print()
        print("=== Per-Frame Component Breakdown (ms) ===")
        print(f"{'Component':<25} {'Mean':>8} {'P50':>8} {'P95':>8} {'P99':>8} {'Max':>8}")
        print("-" * 73)

        def stats_line(name: str, data: list[float]) -> str:
            arr = np.array(data) * 1000  # to ms
            return (f"{name:<25} {arr.mean():8.2f} {np.median(arr):8.2f} "
                    f"{np.percentile(arr, 95):8.2f} {np.percentile(arr, 99):8.2f} "
                    f"{arr.max():8.2f}")

        for k in sorted(comp_times.keys()):
            if k.startswith("_"):
                continue
            print(stats_line(k, comp_times[k]))
        print(stats_line("TOTAL (render+step)", total_times))

        glyphs = np.array(comp_times.get("_glyphs", [0.0]))
        print(f"\nglyphs/frame: mean={glyphs.mean():.0f}  max={glyphs.max():.0f}")
        return

    # ── cProfile run ───────────────────────────────────────────────
    def profiled_run() -> None:
        for _ in range(n_frames):
            simulate_frame(flurry, win, cmap)

    profiler = cProfile.Profile()
    wall_t0 = time.perf_counter()
    profiler.runctx("profiled_run()", globals(), locals())
    wall_dt = time.perf_counter() - wall_t0

    print(f"Wall time: {wall_dt:.2f}s  ({wall_dt / max(n_frames, 1) * 1000:.2f}ms/frame)")
    if wall_dt > 0:
        print(f"Effective FPS: {n_frames / wall_dt:.1f}")
    print()

    if dump_path:
        profiler.dump_stats(dump_path)
        print(f"Profile data saved to: {dump_path}")
        print(f"  View with: python3 -m pstats {dump_path}")
        print()

    buf = StringIO()
    ps = pstats.Stats(profiler, stream=buf)
    ps.sort_stats("cumulative")
    ps.print_stats(25)
    print(buf.getvalue())


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Profile the flurry screensaver")
    parser.add_argument("-n", "--frames", type=int, default=500,
                        help="Number of frames to simulate (default: 500)")
    parser.add_argument("--rows", type=int, default=60,
                        help="Simulated terminal rows (default: 60)")
    parser.add_argument("--cols", type=int, default=200,
                        help="Simulated terminal cols (default: 200)")
    parser.add_argument("-d", "--density", type=int, default=DROPS_FACTOR_DEF,
                        help=f"Density factor (default: {DROPS_FACTOR_DEF})")
    parser.add_argument("-r", "--seed", type=int, default=1,
                        help="Random seed (default: 1)")
    parser.add_argument("--line-timing", action="store_true",
                        help="Per-frame component timing instead of cProfile")
    parser.add_argument("--dump", type=str, default=None,
                        help="Dump cProfile binary to this path")
    args = parser.parse_args(argv)

    run_benchmark(
        n_frames=args.frames,
        term_rows=args.rows,
        term_cols=args.cols,
        drops=args.density,
        seed=args.seed,
        line_timing=args.line_timing,
        dump_path=args.dump,
    )


if __name__ == "__main__":
    main()
