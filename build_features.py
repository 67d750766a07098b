#!/usr/bin/env python3
"""
build_features.py — winter maintenance priority map data builder.

Stages:
  1. Load    — travelways (local file or export download), bike and ice routes
  2. Select  — travelways for the map, plus plowed / no-plow / ice indexes
  3. Match   — give each bike route a priority from its nearest reference line
  4. Encode  — write features.bin (travelways) and features_cycling.bin (bike)
  5. Extras  — optional decision log and priorities.json schedule

Usage:
    python3 build_features.py --bike bike.geojson --ice ice.geojson
    python3 build_features.py --travelways travelways.geojson --bike bike.geojson --ice ice.geojson
    python3 build_features.py ... --storm-end 2026-01-15T06:00:00   # also write priorities.json
    python3 build_features.py ... --decisions decisions.jsonl       # audit log, one line per feature
    python3 build_features.py -h
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import config
from bike_priority import ReferenceSets, build_index, classify_bike_routes, select_ice, select_travelways
from feature_bin import EncodeError, encode_features
from fetch import DownloadError, download_travelways
from ingest import IngestError, load_feature_collection, parse_bike_routes, parse_ice_routes, parse_travelways
from matcher import MatchThresholds

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    bike_file: str
    ice_file: str
    travelways_file: str | None = None
    travelways_out: str = config.TRAVELWAYS_OUT
    bike_out: str = config.BIKE_OUT
    max_match_meters: float = config.MAX_MATCH_METERS
    max_angle_deg: float = config.MAX_SEGMENT_ANGLE_DEG
    max_overall_angle_deg: float = config.MAX_OVERALL_ANGLE_DEG
    priority_bias_meters: float = config.PRIORITY_BIAS_METERS
    index_cols: int = config.INDEX_GRID_COLS
    index_rows: int = config.INDEX_GRID_ROWS
    shadow_only_when_closer: bool = False
    decisions_out: str | None = None
    storm_end: datetime | None = None
    priorities_out: str = config.PRIORITIES_OUT

    def thresholds(self) -> MatchThresholds:
        return MatchThresholds(
            max_distance=self.max_match_meters,
            max_segment_angle=self.max_angle_deg,
            max_overall_angle=self.max_overall_angle_deg,
            priority_bias=self.priority_bias_meters,
        )


@dataclass
class RunResult:
    travelway_features: list = field(default_factory=list)
    bike_features: list = field(default_factory=list)
    decisions: list = field(default_factory=list)


# ── Priority schedule ────────────────────────────────────────────────

def _format_deadline(when: datetime) -> str:
    """'Mon 3:04 PM' style, without a zero-padded hour."""
    hour = when.hour % 12 or 12
    return f"{when:%a} {hour}:{when:%M} {when:%p}"


def build_priority_schedule(storm_end: datetime) -> dict:
    """Clearing timeline and deadline for each priority after *storm_end*."""
    schedule = {}
    for number, hours in sorted(config.PRIORITY_TIMELINE_HOURS.items()):
        schedule[str(number)] = {
            "number": number,
            "timeline": f"{hours} hours",
            "deadline": _format_deadline(storm_end + timedelta(hours=hours)),
        }
    return schedule


# ── Stages ───────────────────────────────────────────────────────────

def load_travelways(path: str | None) -> dict:
    if path:
        return load_feature_collection(path)
    logger.info("No travelways file given, downloading the export")
    return load_feature_collection(download_travelways())


def write_decisions(decisions, path) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for d in decisions:
            f.write(json.dumps(d.to_dict()) + "\n")
    logger.info(f"Wrote {len(decisions)} decisions to {path}")


def run(cfg: RunConfig) -> RunResult:
    thresholds = cfg.thresholds()

    travelways = parse_travelways(load_travelways(cfg.travelways_file))
    bikes = parse_bike_routes(load_feature_collection(cfg.bike_file))
    ice = parse_ice_routes(load_feature_collection(cfg.ice_file))

    selection = select_travelways(travelways)
    ice_lines, ice_decisions = select_ice(ice)
    refs = ReferenceSets(
        travelways=build_index(selection.lines, cfg.index_cols, cfg.index_rows),
        no_plow=build_index(selection.no_plow_lines, cfg.index_cols, cfg.index_rows),
        ice=build_index(ice_lines, cfg.index_cols, cfg.index_rows),
        travelway_titles=selection.titles,
    )

    bike_features, bike_decisions = classify_bike_routes(
        bikes, refs, thresholds, cfg.shadow_only_when_closer)

    result = RunResult(
        travelway_features=selection.outputs,
        bike_features=bike_features,
        decisions=selection.decisions + ice_decisions + bike_decisions,
    )
    if not result.travelway_features:
        raise EncodeError("no travelway features to write")
    if not result.bike_features:
        raise EncodeError("no bike features to write")

    # Encode both before writing either, so a capacity error leaves no partial output.
    outputs = [
        (cfg.travelways_out, result.travelway_features, encode_features(result.travelway_features)),
        (cfg.bike_out, result.bike_features, encode_features(result.bike_features)),
    ]
    for path, features, data in outputs:
        Path(path).write_bytes(data)
        logger.info(f"Wrote {len(features)} features ({len(data)} bytes) to {path}")

    if cfg.decisions_out:
        write_decisions(result.decisions, cfg.decisions_out)
    if cfg.storm_end is not None:
        Path(cfg.priorities_out).write_text(json.dumps(build_priority_schedule(cfg.storm_end)))
        logger.info(f"Wrote priority schedule to {cfg.priorities_out}")
    return result


# ── Main ─────────────────────────────────────────────────────────────

def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Winter maintenance priority map data builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("--travelways", metavar="FILE",
                   help="Travelways GeoJSON (downloaded from the open data export if omitted)")
    p.add_argument("--bike", metavar="FILE", required=True, help="Bike routes GeoJSON")
    p.add_argument("--ice", metavar="FILE", required=True, help="Ice routes GeoJSON")
    p.add_argument("--travelways-out", default=config.TRAVELWAYS_OUT, metavar="FILE")
    p.add_argument("--bike-out", default=config.BIKE_OUT, metavar="FILE")
    p.add_argument("--max-match-meters", type=float, default=config.MAX_MATCH_METERS)
    p.add_argument("--max-angle-deg", type=float, default=config.MAX_SEGMENT_ANGLE_DEG)
    p.add_argument("--max-overall-angle-deg", type=float, default=config.MAX_OVERALL_ANGLE_DEG)
    p.add_argument("--priority-bias-meters", type=float, default=config.PRIORITY_BIAS_METERS)
    p.add_argument("--shadow-only-when-closer", action="store_true",
                   help="Only drop a protected route for an unplowed neighbour nearer than "
                        "its plowed match")
    p.add_argument("--decisions", metavar="FILE", help="Write a JSON-lines decision log")
    p.add_argument("--storm-end", metavar="YYYY-MM-DDTHH:MM:SS",
                   help="Storm end time (local); writes priorities.json")
    p.add_argument("--priorities-out", default=config.PRIORITIES_OUT, metavar="FILE")
    p.add_argument("-v", "--verbose", action="store_true", help="Log every exclusion")
    return p.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE),
            logging.StreamHandler(),
        ]
    )


def main(argv=None) -> bool:
    args = parse_args(argv)
    setup_logging(args.verbose)

    storm_end = None
    if args.storm_end:
        try:
            storm_end = datetime.strptime(args.storm_end, "%Y-%m-%dT%H:%M:%S")
        except ValueError as e:
            logger.error(f"Invalid --storm-end: {e}")
            return False

    try:
        cfg = RunConfig(
            bike_file=args.bike,
            ice_file=args.ice,
            travelways_file=args.travelways,
            travelways_out=args.travelways_out,
            bike_out=args.bike_out,
            max_match_meters=args.max_match_meters,
            max_angle_deg=args.max_angle_deg,
            max_overall_angle_deg=args.max_overall_angle_deg,
            priority_bias_meters=args.priority_bias_meters,
            shadow_only_when_closer=args.shadow_only_when_closer,
            decisions_out=args.decisions,
            storm_end=storm_end,
            priorities_out=args.priorities_out,
        )
        run(cfg)
    except (IngestError, EncodeError, DownloadError) as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        return False
    except (OSError, ValueError) as e:
        logger.error(f"Run failed: {e}")
        return False

    logger.info("Pipeline completed successfully")
    return True


if __name__ == '__main__':
    success = main()
    sys.exit(0 if success else 1)
