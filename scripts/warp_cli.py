#!/usr/bin/env python
"""Warp engine command-line runner over raw PCM files.

Usage
-----
    # Loudness, peak, clipping and stereo metrics
    python scripts/warp_cli.py analyze take.raw --channels 2 --sample-rate 44100

    # Onsets and tempo estimate
    python scripts/warp_cli.py transients take.raw --sensitivity 0.7

    # Grid-aligned markers at 124 BPM, eighth-note grid
    python scripts/warp_cli.py quantize take.raw --bpm 124 --subdivision 2

    # Render with markers from a JSON file, one octave down, then master
    python scripts/warp_cli.py render take.raw out.raw --markers markers.json \\
        --pitch -12 --algorithm high_quality --quality high --preset streaming-master

Input and output files are headerless interleaved little-endian PCM
(--format float32 or int16). Engine settings come from WARP_* environment
variables, optionally loaded from a .env file.

Exit codes
----------
    0  — success
    2  — engine error (invalid input, unsupported configuration, ...)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pydantic  # noqa: E402
from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from core.config import ALGORITHMS, QUALITIES, EngineConfig  # noqa: E402
from core.dynamics.presets import preset_chain  # noqa: E402
from core.errors import EngineError, ValidationError  # noqa: E402
from core.warp.render import RenderRequest  # noqa: E402
from core.warp.types import WarpMarker  # noqa: E402
from worker.engine import WarpEngine  # noqa: E402
from worker.jobs import MarkerModel  # noqa: E402
from worker.pcm import PCM_FORMATS, decode_pcm, encode_pcm  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Clip warp engine")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    def add_input(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("input", type=Path, help="Raw interleaved PCM file")
        cmd.add_argument("--channels", type=int, default=2, choices=[1, 2])
        cmd.add_argument("--sample-rate", type=int, default=44100)
        cmd.add_argument("--format", default="float32", choices=sorted(PCM_FORMATS))

    analyze = sub.add_parser("analyze", help="Print signal metrics")
    add_input(analyze)

    transients = sub.add_parser("transients", help="Print onsets and tempo estimate")
    add_input(transients)
    transients.add_argument("--sensitivity", type=float, default=0.5)
    transients.add_argument("--min-gap", type=float, default=0.05, help="Seconds")

    quantize = sub.add_parser("quantize", help="Print grid-aligned warp markers")
    add_input(quantize)
    quantize.add_argument("--bpm", type=float, required=True)
    quantize.add_argument("--strength", type=float, default=1.0)
    quantize.add_argument("--sensitivity", type=float, default=0.5)
    quantize.add_argument("--subdivision", type=int, default=1)
    quantize.add_argument("--grid-offset", type=float, default=0.0, help="Seconds")

    render = sub.add_parser("render", help="Render the clip through its markers")
    add_input(render)
    render.add_argument("output", type=Path, help="Destination raw PCM file")
    render.add_argument("--markers", type=Path, help="JSON list of markers")
    render.add_argument("--start", type=float, help="Preview range start (timeline seconds)")
    render.add_argument("--end", type=float, help="Preview range end (timeline seconds)")
    render.add_argument("--pitch", type=float, default=0.0, help="Semitones")
    render.add_argument("--no-formants", action="store_true", help="Disable formant correction")
    render.add_argument("--algorithm", default="phase_vocoder", choices=list(ALGORITHMS))
    render.add_argument("--quality", choices=list(QUALITIES), help="Default: normal/high")
    render.add_argument("--preset", help="Dynamics preset applied after warping")

    return p.parse_args(argv)


def _load_markers(path: Path | None) -> tuple[WarpMarker, ...]:
    if path is None:
        return ()
    data = json.loads(path.read_text(encoding="utf-8"))
    try:
        return tuple(MarkerModel.model_validate(item).to_marker() for item in data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid marker file {path}: {exc}") from exc


def _run(args: argparse.Namespace, engine: WarpEngine) -> dict[str, Any]:
    buffer = decode_pcm(args.input.read_bytes(), args.channels, args.sample_rate, args.format)

    if args.command == "analyze":
        return engine.analyze(buffer).as_dict()

    if args.command == "transients":
        return engine.analyze_transients(
            buffer, sensitivity=args.sensitivity, min_gap_sec=args.min_gap
        ).as_dict()

    if args.command == "quantize":
        markers = engine.quantize(
            buffer,
            args.bpm,
            strength=args.strength,
            sensitivity=args.sensitivity,
            subdivision=args.subdivision,
            grid_offset=args.grid_offset,
        )
        return {"markers": [m.as_dict() for m in markers]}

    markers = _load_markers(args.markers)
    post = preset_chain(args.preset) if args.preset else ()
    options: dict[str, Any] = {
        "pitch_shift_semitones": args.pitch,
        "preserve_formants": not args.no_formants,
        "algorithm": args.algorithm,
        "post_processing": post,
    }
    if args.quality:
        options["quality"] = args.quality
    if args.start is not None or args.end is not None:
        start = args.start if args.start is not None else 0.0
        end = args.end if args.end is not None else buffer.duration
        request = RenderRequest.preview(markers, start, end, **options)
    else:
        request = RenderRequest.commit(markers, replace_original=False, **options)

    result = engine.render(buffer, request)
    args.output.write_bytes(encode_pcm(result.buffer, args.format))
    return {"output": str(args.output), **result.metadata()}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = WarpEngine(EngineConfig.from_env())
    try:
        output = _run(args, engine)
    except EngineError as exc:
        print(json.dumps({"error": exc.to_dict()}), file=sys.stderr)
        return 2
    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
