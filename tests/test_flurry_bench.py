from __future__ import annotations

import pytest

from flurry import ColorMap, Flurry
from flurry_bench import FakeWindow, main, run_benchmark, simulate_frame


def test_fake_window_records_cells() -> None:
    win = FakeWindow(2, 3)
    win.addstr(1, 0, "ab", 7)
    assert win.getmaxyx() == (2, 3)
    assert win.cells == {(1, 0): ("a", 7), (1, 1): ("b", 7)}
    win.erase()
    assert win.cells == {}


def test_simulate_frame_times_components() -> None:
    rain = Flurry(10, 20, 0.05, seed=3)
    timings = simulate_frame(rain, FakeWindow(10, 20), ColorMap())
    assert set(timings) == {"render", "step", "_glyphs"}
    assert timings["_glyphs"] > 0
    assert rain.tick == 1


def test_line_timing_report(capsys: pytest.CaptureFixture[str]) -> None:
    run_benchmark(20, term_rows=8, term_cols=16, seed=2, line_timing=True)
    out = capsys.readouterr().out
    assert "Grid: 8x16" in out
    assert "Per-Frame Component Breakdown" in out
    assert "TOTAL (render+step)" in out


def test_main_parses_arguments(capsys: pytest.CaptureFixture[str]) -> None:
    main(["-n", "5", "--rows", "6", "--cols", "9", "-d", "50", "--line-timing"])
    out = capsys.readouterr().out
    assert "Grid: 6x9" in out
    assert "Frames: 5" in out
