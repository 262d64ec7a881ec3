"""
Pulsescope per-frame pipeline benchmark + flag isolation check.

Usage:
    python scripts/benchmark.py [--quick] [--bins N] [--log-level LEVEL]

Modes:
    default:  2 000 frames per configuration, 3 timed runs
    --quick:  300 frames per configuration, 2 timed runs (CI-friendly)

Output: timing table + isolation report printed to stdout.

Isolation check: two pipelines fed the same synthetic frames, one with every
enhanced analyzer enabled and one with none.  The always-on fields (bands,
gains, beats, vocal, amplitude) must be identical.
"""

import argparse
import os
import sys
import time
from typing import List

import numpy as np

# Make sure the package is on the path when run from repo root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pulsescope import AudioPipeline, FeatureFlags
from pulsescope.logging_config import configure_logging

_SEP = "─" * 72

CORE_FIELDS = (
    "low", "mid", "high", "kick", "snare", "hihat",
    "low_gain", "mid_gain", "high_gain", "kick_gain", "snare_gain", "hihat_gain",
    "vocal_likelihood", "amplitude", "raw_amplitude", "beat_intensity", "bps", "is_beat",
)


def _hdr(title: str) -> None:
    print(f"\n{_SEP}")
    print(f"  {title}")
    print(_SEP)


def _synthetic_frames(n_frames: int, n_bins: int, fps: int = 60, seed: int = 0) -> np.ndarray:
    """dB frames with a 120 BPM kick pulse over a noisy, slowly varying bed."""
    rng = np.random.RandomState(seed)
    frames = rng.uniform(-90.0, -60.0, (n_frames, n_bins))
    tilt = np.linspace(0.0, -20.0, n_bins)
    frames += tilt
    beat_every = fps // 2
    kick_bins = slice(1, max(3, n_bins // 200))
    for i in range(0, n_frames, beat_every):
        frames[i, kick_bins] = -5.0
        frames[i, : n_bins // 8] += 25.0
    return np.clip(frames, -120.0, 0.0)


def _run(frames: np.ndarray, flags: FeatureFlags, dt: float) -> AudioPipeline:
    pipeline = AudioPipeline(flags=flags)
    for frame in frames:
        pipeline.update(dt, frame)
    return pipeline


def _timeit(frames: np.ndarray, flags: FeatureFlags, dt: float, runs: int) -> List[float]:
    """Per-frame wall time of each run, in seconds."""
    _run(frames[: min(len(frames), 60)], flags, dt)
    times = []
    for _ in range(runs):
        t0 = time.perf_counter()
        _run(frames, flags, dt)
        times.append((time.perf_counter() - t0) / len(frames))
    return times


def _stats(times: List[float]) -> str:
    arr = np.array(times)
    return f"mean={arr.mean()*1e6:.0f} µs  min={arr.min()*1e6:.0f} µs  max={arr.max()*1e6:.0f} µs"


def _isolation_report(frames: np.ndarray, dt: float) -> List[str]:
    """Names of always-on fields that differ between flags off and flags on."""
    off = AudioPipeline(flags=FeatureFlags.all_disabled())
    on = AudioPipeline(flags=FeatureFlags.all_enabled())
    mismatched = set()
    for frame in frames:
        a = off.update(dt, frame)
        b = on.update(dt, frame)
        for name in CORE_FIELDS:
            if getattr(a, name) != getattr(b, name):
                mismatched.add(name)
    return sorted(mismatched)


def main() -> None:
    parser = argparse.ArgumentParser(description="Pulsescope pipeline benchmark")
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Fewer frames and runs for fast CI runs",
    )
    parser.add_argument("--bins", type=int, default=1024, help="Bins per frame (default: 1024)")
    parser.add_argument("--fps", type=int, default=60, help="Simulated frame rate (default: 60)")
    parser.add_argument("--log-level", default=None, help="Package log level (default: env or INFO)")
    args = parser.parse_args()

    configure_logging(args.log_level)

    if args.quick:
        N_FRAMES, RUNS = 300, 2
        label = f"{N_FRAMES} frames × {args.bins} bins (quick mode)"
    else:
        N_FRAMES, RUNS = 2000, 3
        label = f"{N_FRAMES} frames × {args.bins} bins (full mode)"

    dt = 1.0 / args.fps
    frames = _synthetic_frames(N_FRAMES, args.bins, fps=args.fps)

    print(f"\nPulsescope Pipeline Benchmark  -  {label}")
    print(f"Timed runs: {RUNS}  |  Frame budget at {args.fps} fps: {dt*1e3:.1f} ms")

    configs = {
        "flags off": FeatureFlags.all_disabled(),
        "spectral": FeatureFlags(spectral=True),
        "chroma": FeatureFlags(chroma=True),
        "onset": FeatureFlags(onset=True),
        "onset + tempo": FeatureFlags(onset=True, tempo=True),
        "all enabled": FeatureFlags.all_enabled(),
    }

    results = {}
    for i, (name, flags) in enumerate(configs.items(), start=1):
        _hdr(f"{i}. {name}")
        t = _timeit(frames, flags, dt, RUNS)
        results[name] = t
        print(f"  {_stats(t)}")

    # ------------------------------------------------------------------
    # Isolation check
    # ------------------------------------------------------------------
    _hdr("Flag isolation (always-on fields, flags off vs all enabled)")
    mismatched = _isolation_report(frames[: min(N_FRAMES, 600)], dt)
    if mismatched:
        print(f"  !! Always-on fields changed by enhanced flags: {', '.join(mismatched)}")
        sys.exit(1)
    print("  All always-on fields identical.  PASSED.")

    # ------------------------------------------------------------------
    # Summary table
    # ------------------------------------------------------------------
    _hdr("Summary")
    name_w = max(len(n) for n in results) + 2
    print(f"  {'Configuration':<{name_w}} Time (µs/frame, mean)  Budget used")
    print(f"  {'-'*name_w} ---------------------  -----------")
    for name, times in results.items():
        mean = float(np.mean(times))
        print(f"  {name:<{name_w}} {mean*1e6:>21.0f}  {mean/dt*100:>10.2f}%")

    print(f"\n{_SEP}\n")


if __name__ == "__main__":
    main()
