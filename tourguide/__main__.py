#!/usr/bin/env python3
"""
Tourguide - Location-aware walking tour guide

Usage:
    python -m tourguide TOUR_FILE [options]

Options:
    --lat LAT          Starting latitude (for testing without GPS)
    --lon LON          Starting longitude (for testing without GPS)
    --record FILE      Record GPS trace to JSON file for debugging
    --playback FILE    Playback GPS trace from JSON file
    --speed FACTOR     Playback speed multiplier (default: 1.0)
    --ws PORT          Take positions from a websocket client on PORT
    --log FILE         Log file path (default: tourguide_TIMESTAMP.log)
    --language CODE    Announcement language (default: en-US)
    --threshold M      Deviation threshold in meters (default: 50)
    --no-audio         Disable spoken announcements
    --no-auto-correct  Report deviations without starting back-on-track guidance
    --preview          Compute and print the tour route without walking
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from .app import TourGuide, load_tour
from .errors import InvalidConfiguration
from .gps import GPSPlayback, GPSRecorder
from .models import GuidanceSettings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Location-aware walking tour guide",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("tour", metavar="TOUR_FILE",
                        help="JSON file listing the tour's points of interest")
    parser.add_argument("--lat", type=float, metavar="LAT",
                        help="Starting latitude (for testing without GPS)")
    parser.add_argument("--lon", type=float, metavar="LON",
                        help="Starting longitude (for testing without GPS)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--ws", type=int, metavar="PORT",
                        help="Take positions from a websocket client on PORT")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: tourguide_TIMESTAMP.log)")
    parser.add_argument("--language", metavar="CODE",
                        help="Announcement language (default: en-US)")
    parser.add_argument("--threshold", type=float, metavar="M",
                        help="Deviation threshold in meters (default: 50)")
    parser.add_argument("--no-audio", action="store_true",
                        help="Disable spoken announcements")
    parser.add_argument("--no-auto-correct", action="store_true",
                        help="Report deviations without starting back-on-track guidance")
    parser.add_argument("--preview", action="store_true",
                        help="Compute and print the tour route without walking")
    return parser


def settings_from_args(args: argparse.Namespace) -> GuidanceSettings:
    overrides = {}
    if args.language:
        overrides["language"] = args.language
    if args.threshold is not None:
        overrides["deviation_threshold"] = args.threshold
    if args.no_audio:
        overrides["audio_enabled"] = False
    if args.no_auto_correct:
        overrides["auto_correct_deviations"] = False
    return GuidanceSettings.from_config().merged(overrides)


def main(argv: Optional[list[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Validate lat/lon - must provide both or neither
    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")
    if args.playback and args.ws:
        parser.error("--playback and --ws cannot be combined")
    if args.threshold is not None and args.threshold <= 0:
        parser.error("--threshold must be positive")

    try:
        pois = load_tour(args.tour)
    except FileNotFoundError:
        print(f"Tour file not found: {args.tour}")
        sys.exit(1)
    except (ValueError, InvalidConfiguration) as e:
        print(f"Invalid tour file {args.tour}: {e}")
        sys.exit(1)

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"tourguide_{timestamp}.log"

    start_location = (args.lat, args.lon) if args.lat is not None else None
    guide = TourGuide(
        pois,
        log_path=log_path,
        settings=settings_from_args(args),
        start_location=start_location,
        preview_mode=args.preview,
        ws_port=args.ws,
    )

    if args.playback:
        if not Path(args.playback).exists():
            print(f"Playback file not found: {args.playback}")
            sys.exit(1)
        guide.set_position_source(GPSPlayback(args.playback, args.speed))
    elif args.record:
        guide.set_position_source(GPSRecorder(guide.position_source, args.record))

    try:
        asyncio.run(guide.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
