"""
Reporting helpers for estimator results.

This module provides:
- events_to_dataframe: the event log as a pandas DataFrame
- candidates_to_dataframe: current candidates of every chart
- format_rating_target_entry: one line of a rating target list with the
  rating every candidate constant would give
- find_database_contradictions: estimated candidates that exclude the
  constant stored in the database
"""

from dataclasses import dataclass
from typing import Iterable, Optional

import pandas as pd

from maimai_analysis.database import SongDatabase
from maimai_analysis.estimator import Estimator, Event
from maimai_analysis.rating import InternalScoreLevel, format_achievement, single_song_rating
from maimai_analysis.version import MaimaiVersion


def _reason_kind(event: Event) -> str:
    return type(event.reason).__name__.removesuffix("Reason").lower()


def events_to_dataframe(events: Iterable[Event]) -> pd.DataFrame:
    """
    Convert events to a DataFrame, one row per event in log order.

    Columns: chart, song_id, generation, difficulty, candidates,
    determined, reason_kind, reason.
    """
    rows = []
    for event in events:
        rows.append({
            "chart": event.chart_name,
            "song_id": event.chart.song_id,
            "generation": event.chart.generation.abbrev(),
            "difficulty": event.chart.difficulty.label(),
            "candidates": str(event.candidates),
            "determined": event.candidates.is_unique(),
            "reason_kind": _reason_kind(event),
            "reason": str(event.reason),
        })
    return pd.DataFrame(rows, columns=[
        "chart", "song_id", "generation", "difficulty",
        "candidates", "determined", "reason_kind", "reason",
    ])


def candidates_to_dataframe(estimator: Estimator) -> pd.DataFrame:
    """Current candidates per chart, sorted by smallest candidate then name."""
    database = estimator.database
    rows = []
    for view in estimator.get_scores():
        constants = list(view.candidates.candidates())
        unique = view.candidates.get_if_unique()
        rows.append({
            "chart": database.describe(view.chart),
            "level": str(view.candidates.into_level(estimator.version)),
            "min": constants[0].value / 10,
            "max": constants[-1].value / 10,
            "count": len(constants),
            "constant": None if unique is None else unique.value / 10,
            "events": len(view.reasons),
        })
    df = pd.DataFrame(rows, columns=["chart", "level", "min", "max", "count", "constant", "events"])
    if not df.empty:
        df = df.sort_values(["min", "chart"]).reset_index(drop=True)
    return df


def format_rating_target_entry(
    estimator: Optional[Estimator],
    entry,
    version: MaimaiVersion,
    database: Optional[SongDatabase] = None,
) -> str:
    """
    Render one rating target entry as a row of per-constant ratings.

    Every constant of the entry's displayed level gets a cell: the rating
    it would give at the entry's achievement if the estimator still allows
    it, blank brackets if it has been ruled out. Rows are padded to six
    cells so that lists line up.

    Example:
        13+ [199] [201] [   ] [   ]        100.5000% Song (DX MASTER)
    """
    if estimator is not None:
        database = estimator.database
    if database is None:
        raise ValueError("Either an estimator or a database is required")

    stored = database.level(entry.chart, version)
    if stored is None:
        raise ValueError(f"Level not found: {database.describe(entry.chart)} in {version}")
    level = stored.into_level(version)
    possible = InternalScoreLevel.unknown(version, level)

    allowed = possible
    if estimator is not None:
        view = estimator.get(entry.chart)
        if view is not None:
            allowed = view.candidates

    cells = []
    for constant in possible.candidates():
        if constant in allowed:
            cells.append(f"[{single_song_rating(constant, entry.achievement):>3}]")
        else:
            cells.append("[   ]")
    cells.extend(["     "] * max(0, 6 - len(cells)))

    return (
        f"{str(level):<3} {' '.join(cells)} "
        f"{format_achievement(entry.achievement):>9} {database.describe(entry.chart)}"
    )


@dataclass(frozen=True)
class DatabaseContradiction:
    chart_name: str
    estimated: InternalScoreLevel
    stored: InternalScoreLevel

    def __str__(self) -> str:
        return f"Contradiction detected: {self.chart_name}: estimated {self.estimated}, found {self.stored}"


def find_database_contradictions(
    estimator: Estimator,
    since: int = 0,
    version: Optional[MaimaiVersion] = None,
) -> list[DatabaseContradiction]:
    """
    Compare events against the database's stored levels.

    Meant for an estimator built with distrust_all, so that every narrowing
    comes from user evidence alone. An event whose candidates share nothing
    with the stored level is a contradiction.

    Args:
        estimator: Estimator after update_all.
        since: First event index to check, usually the log length before
            the update.
        version: Version whose stored levels are compared (defaults to the
            estimator's version).

    Raises:
        ValueError: an event's chart has no stored level in `version`.
    """
    database = estimator.database
    version = version or estimator.version
    found = []
    for event in estimator.events_since(since):
        entry = database.for_version(event.chart, version)
        if entry is None:
            raise ValueError(f"Not found: {event.chart_name} in {version}")
        if entry.level is None:
            raise ValueError(f"Level not found: {event.chart_name} in {version}")
        if event.candidates.intersection(entry.level).is_empty():
            found.append(DatabaseContradiction(event.chart_name, event.candidates.copy(), entry.level))
    return found
