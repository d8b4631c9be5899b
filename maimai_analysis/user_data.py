"""
Per-user play data handed to the estimator.

Records, rating target lists and song score lists are plain in-memory
values whose chart references are already bound to a SongDatabase. The
JSON loader resolves charts by icon (preferred) or by song name.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from maimai_analysis.database import (
    ChartRef,
    ScoreDifficulty,
    ScoreGeneration,
    SongDatabase,
    parse_enum,
)
from maimai_analysis.estimator import RatingTargetLabel, RecordLabel
from maimai_analysis.rating import ScoreLevel, parse_achievement
from maimai_analysis.song_score import EntryGroup, ScoreEntry, SongScoreList


@dataclass(frozen=True)
class PlayRecord:
    played_at: datetime
    chart: ChartRef
    achievement: int
    rating_delta: int

    def played_within(self, start: datetime, end: datetime) -> bool:
        return start <= self.played_at < end

    @property
    def label(self) -> RecordLabel:
        return RecordLabel(self.played_at)


@dataclass(frozen=True)
class RatingTargetEntry:
    chart: ChartRef
    achievement: int


@dataclass(frozen=True)
class RatingTargetList:
    play_time: datetime
    rating: int
    target_new: tuple = ()
    target_old: tuple = ()
    candidates_new: tuple = ()
    candidates_old: tuple = ()

    def played_within(self, start: datetime, end: datetime) -> bool:
        return start <= self.play_time < end

    @property
    def label(self) -> RatingTargetLabel:
        return RatingTargetLabel(self.play_time)


@dataclass
class UserData:
    records: list[PlayRecord] = field(default_factory=list)  # chronological
    rating_targets: list[RatingTargetList] = field(default_factory=list)
    song_score_list: Optional[SongScoreList] = None


# =============================================================================
# JSON loading
# =============================================================================

def _chart_from_dict(database: SongDatabase, data: dict) -> ChartRef:
    return database.resolve_chart(
        generation=parse_enum(ScoreGeneration, data["generation"]),
        difficulty=parse_enum(ScoreDifficulty, data["difficulty"]),
        icon=data.get("icon"),
        name=data.get("name"),
    )


def _achievement(value) -> int:
    return parse_achievement(value) if isinstance(value, str) else int(value)


def _target_entries(database: SongDatabase, items: list) -> tuple:
    return tuple(
        RatingTargetEntry(_chart_from_dict(database, item), _achievement(item["achievement"]))
        for item in items
    )


def _groups(database: SongDatabase, items: list) -> list[EntryGroup]:
    groups = []
    for group in items:
        entries = [
            ScoreEntry(
                _chart_from_dict(database, item),
                None if item.get("achievement") is None else _achievement(item["achievement"]),
            )
            for item in group.get("entries", [])
        ]
        groups.append(EntryGroup(group.get("label", ""), entries))
    return groups


def user_data_from_dict(database: SongDatabase, data: dict) -> UserData:
    records = [
        PlayRecord(
            played_at=datetime.fromisoformat(item["played_at"]),
            chart=_chart_from_dict(database, item),
            achievement=_achievement(item["achievement"]),
            rating_delta=int(item["rating_delta"]),
        )
        for item in data.get("records", [])
    ]
    records.sort(key=lambda r: r.played_at)

    rating_targets = [
        RatingTargetList(
            play_time=datetime.fromisoformat(item["timestamp"]),
            rating=int(item["rating"]),
            target_new=_target_entries(database, item.get("target_new", [])),
            target_old=_target_entries(database, item.get("target_old", [])),
            candidates_new=_target_entries(database, item.get("candidates_new", [])),
            candidates_old=_target_entries(database, item.get("candidates_old", [])),
        )
        for item in data.get("rating_targets", [])
    ]
    rating_targets.sort(key=lambda t: t.play_time)

    song_score_list = None
    raw_list = data.get("song_score_list")
    if raw_list is not None:
        song_score_list = SongScoreList(
            by_difficulty={
                parse_enum(ScoreDifficulty, name): _groups(database, groups)
                for name, groups in raw_list.get("by_difficulty", {}).items()
            },
            by_level=[
                (ScoreLevel.parse(item["level"]), _groups(database, item.get("groups", [])))
                for item in raw_list.get("by_level", [])
            ],
        )

    return UserData(records, rating_targets, song_score_list)


def load_user_data(path: Path, database: SongDatabase) -> UserData:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"User data not found: {path}")
    with open(path, encoding="utf-8") as f:
        return user_data_from_dict(database, json.load(f))
