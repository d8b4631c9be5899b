#!/usr/bin/env python3
"""
Estimate internal levels from the play data of several users.

Seeds an estimator from the song database, applies every user's records,
rating target lists and song score lists until nothing changes, and prints
the events that were added on top of the database.

Usage:
    python scripts/internal_lv_estimate.py --database data/songs.json --config data/estimator_config.json
    python scripts/internal_lv_estimate.py --distrust --compare

Paths default to MAIMAI_DATABASE_PATH / MAIMAI_ESTIMATOR_CONFIG from the
environment (or .env).
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from maimai_analysis import (
    Config,
    Estimator,
    EstimatorError,
    MaimaiVersion,
    candidates_to_dataframe,
    events_to_dataframe,
    find_database_contradictions,
    load_database,
    update_all,
)
from maimai_analysis.config import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_ESTIMATOR_CONFIG,
    create_example_config,
    default_version,
)


def main():
    parser = argparse.ArgumentParser(
        description="Estimate internal levels from play data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Create example estimator config
    python scripts/internal_lv_estimate.py --create-config estimator_config.json

    # Estimate for the latest version
    python scripts/internal_lv_estimate.py --database songs.json --config estimator_config.json

    # Estimate an older version and save candidates to CSV
    python scripts/internal_lv_estimate.py --version BUDDIES_PLUS --output candidates.csv

    # Ignore stored constants and report where user data disagrees with them
    python scripts/internal_lv_estimate.py --distrust --compare
        """,
    )

    parser.add_argument(
        "--database",
        type=Path,
        default=DEFAULT_DATABASE_PATH,
        help=f"Song database JSON (default: {DEFAULT_DATABASE_PATH})",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_ESTIMATOR_CONFIG,
        help=f"Estimator config JSON (default: {DEFAULT_ESTIMATOR_CONFIG})",
    )
    parser.add_argument(
        "--version",
        type=MaimaiVersion.parse,
        default=None,
        help="Version to estimate, e.g. PRISM (default: MAIMAI_VERSION or latest)",
    )
    parser.add_argument(
        "--distrust",
        action="store_true",
        help="Start from full level ranges instead of stored constants",
    )
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Print events that contradict the stored constants",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write the final candidates to this CSV file",
    )
    parser.add_argument(
        "--events-output",
        type=Path,
        help="Write the new events to this CSV file",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not print per-round progress",
    )
    parser.add_argument(
        "--create-config",
        type=Path,
        help="Create example config file at specified path",
    )

    args = parser.parse_args()

    if args.create_config:
        create_example_config(args.create_config)
        return

    version = args.version or default_version()

    try:
        database = load_database(args.database)
        config = Config.load(args.config)
        datas = config.read_all(database)
    except (FileNotFoundError, LookupError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Loaded {len(database)} songs, {len(datas)} users")
    print(f"Estimating internal levels for {version}")

    try:
        estimator = Estimator(database, version, distrust_all=args.distrust)
        before_len = estimator.event_len
        rounds = update_all(database, datas, estimator, verbose=not args.quiet)
    except (EstimatorError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    new_events = estimator.events_since(before_len)
    print(f"\nConverged after {rounds} rounds, {len(new_events)} new events")
    for event in new_events:
        print(event)

    if args.compare:
        contradictions = find_database_contradictions(estimator, since=before_len)
        print(f"\n{len(contradictions)} contradictions with the database")
        for contradiction in contradictions:
            print(contradiction)

    print(f"\nDetermined: {estimator.num_determined_scores()}/{len(estimator)} charts")

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        candidates_to_dataframe(estimator).to_csv(args.output, index=False)
        print(f"Saved candidates to: {args.output}")
    if args.events_output:
        args.events_output.parent.mkdir(parents=True, exist_ok=True)
        events_to_dataframe(new_events).to_csv(args.events_output, index=False)
        print(f"Saved events to: {args.events_output}")


if __name__ == "__main__":
    main()
