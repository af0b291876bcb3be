#!/usr/bin/env python3
"""
bpmkey - Tempo and key analysis

Plays a WAV file through the analysis engine and prints the
{bpm, key, confidence, error} result as JSON.
"""

import argparse
import cProfile
import json
import sys
import time
from pathlib import Path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Estimate the BPM and key of a WAV file")
    parser.add_argument("file", help="WAV file to analyse")
    parser.add_argument("--content-id", default=None,
                        help="Cache/history identifier (default: file name)")
    parser.add_argument("--pitch", type=float, default=0.0,
                        help="Pitch offset applied during playback (semitones, or ratio with --ratio)")
    parser.add_argument("--ratio", action="store_true",
                        help="Treat --pitch as a playback ratio offset in [-0.5, 0.5]")
    parser.add_argument("--rate", type=float, default=1.0,
                        help="Playback rate multiplier applied during playback")
    parser.add_argument("--start", type=float, default=None,
                        help="Start position in seconds (default: just past the intro window)")
    parser.add_argument("--no-exclusion", action="store_true",
                        help="Analyse intro and outro too")
    parser.add_argument("--realtime", action="store_true",
                        help="Pace ticks at the real tick interval")
    parser.add_argument("--cache", default=None, help="JSON result cache file")
    parser.add_argument("--history-dir", default=None,
                        help="Directory for the analysis history reports")
    parser.add_argument("--config", default=None,
                        help="Config JSON file (default: ~/.bpmkey/config.json)")
    parser.add_argument("--log-level", default=None,
                        help="Override the configured log level (DEBUG/INFO/WARNING/ERROR)")
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    return parser


def run_analysis(args: argparse.Namespace) -> int:
    t_start = time.perf_counter()

    from analysis_engine import AnalysisEngine
    from analysis_history import AnalysisHistory
    from config_persistence import load_config
    from logging_utils import set_log_level
    from result_cache import JsonResultCache
    from wav_sampler import WavFrameSampler

    config = load_config(Path(args.config) if args.config else None)
    set_log_level(args.log_level or config.log_level)

    session = config.session
    if args.no_exclusion:
        session.intro_skip_s = 0.0
        session.outro_skip_s = 0.0
    start_s = args.start if args.start is not None else session.intro_skip_s

    path = Path(args.file)
    try:
        sampler = WavFrameSampler(path, config.audio, tick_ms=session.tick_interval_ms,
                                  start_s=start_s, pitch_offset=args.pitch,
                                  transpose=not args.ratio, playback_rate=args.rate)
    except (OSError, ValueError) as e:
        print(f"[Startup] Cannot read {path}: {e}", file=sys.stderr)
        return 2

    cache = JsonResultCache(args.cache) if args.cache else None
    history = (AnalysisHistory(Path(args.history_dir), config.history_max_entries)
               if args.history_dir else None)

    engine = AnalysisEngine(config, status_callback=lambda msg: print(msg, file=sys.stderr, flush=True),
                            cache=cache, history=history)
    result = engine.analyze(sampler, content_id=args.content_id or path.name,
                            title=path.stem, realtime=args.realtime)

    print(json.dumps(result.to_dict(), indent=2))
    print(f"[Startup] Finished in {(time.perf_counter() - t_start) * 1000:.0f} ms",
          file=sys.stderr, flush=True)
    return 0


def main() -> None:
    args = build_parser().parse_args()

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_analysis(args)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_analysis(args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
