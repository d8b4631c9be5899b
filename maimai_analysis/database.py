"""
Song database: a read-only catalog of songs and their charts.

Charts are addressed by ChartRef, a small value type indexing into the
database's song list, so references are cheap to hash, compare and copy.

This module provides:
- ScoreGeneration / ScoreDifficulty enums
- RemoveState: removal and revival dates of a song
- Song / OrdinaryScores: the stored catalog entries
- ChartRef / ChartForVersion: references into the catalog
- SongDatabase: lookups by id, icon and name
- load_database: JSON loader
"""

import json
from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum
from pathlib import Path
from typing import Iterator, Optional

from maimai_analysis.rating import InternalScoreLevel
from maimai_analysis.version import MaimaiVersion


class ChartNotFoundError(LookupError):
    """Raised when a song or chart cannot be resolved uniquely."""


class ScoreGeneration(IntEnum):
    STANDARD = 0
    DELUXE = 1

    def abbrev(self) -> str:
        return "Std" if self == ScoreGeneration.STANDARD else "DX"


class ScoreDifficulty(IntEnum):
    BASIC = 0
    ADVANCED = 1
    EXPERT = 2
    MASTER = 3
    RE_MASTER = 4

    def label(self) -> str:
        return "Re:MASTER" if self == ScoreDifficulty.RE_MASTER else self.name


def parse_enum(enum_cls, text: str):
    try:
        return enum_cls[text.strip().upper().replace("-", "_").replace(":", "_")]
    except KeyError:
        raise ValueError(f"Unknown {enum_cls.__name__}: {text!r}") from None


# =============================================================================
# Catalog entries
# =============================================================================

@dataclass(frozen=True)
class RemoveState:
    """`removed` set and `revived` unset means the song is gone for good."""
    removed: Optional[date] = None
    revived: Optional[date] = None

    def is_removed(self) -> bool:
        return self.removed is not None and self.revived is None

    def exist_for_version(self, version: MaimaiVersion) -> bool:
        if self.removed is None:
            return True
        remove_version = MaimaiVersion.of_date(self.removed)
        if remove_version is None:
            raise ValueError(f"Removal date before the first version: {self.removed}")
        # A removal on the first day of a version hides the song for that whole version.
        if self.removed == remove_version.start_date():
            after_removed = remove_version <= version
        else:
            after_removed = remove_version < version
        if not after_removed:
            return True
        if self.revived is None:
            return False
        recover_version = MaimaiVersion.of_date(self.revived)
        return recover_version is not None and recover_version <= version


@dataclass
class OrdinaryScores:
    """Charts of one generation of a song, with levels per version."""
    version: Optional[MaimaiVersion] = None
    levels: dict = field(default_factory=dict)  # ScoreDifficulty -> {MaimaiVersion: InternalScoreLevel}


@dataclass
class Song:
    name: str
    icon: Optional[str] = None
    scores: dict = field(default_factory=dict)  # ScoreGeneration -> OrdinaryScores
    remove_state: RemoveState = field(default_factory=RemoveState)


@dataclass(frozen=True, order=True)
class ChartRef:
    """One difficulty of one generation of one song in a SongDatabase."""
    song_id: int
    generation: ScoreGeneration
    difficulty: ScoreDifficulty


@dataclass(frozen=True)
class ChartForVersion:
    chart: ChartRef
    version: MaimaiVersion
    level: Optional[InternalScoreLevel]


# =============================================================================
# Database
# =============================================================================

class SongDatabase:
    """Read-only collection of songs. ChartRefs are only valid for the database that made them."""

    def __init__(self, songs: list[Song]):
        self._songs = list(songs)
        self._icon_map: dict[str, int] = {}
        self._name_map: dict[str, list[int]] = {}
        for song_id, song in enumerate(self._songs):
            if song.icon is not None:
                if song.icon in self._icon_map:
                    raise ValueError(f"Duplicate icon: {song.icon}")
                self._icon_map[song.icon] = song_id
            self._name_map.setdefault(song.name, []).append(song_id)

    def __len__(self) -> int:
        return len(self._songs)

    @property
    def songs(self) -> list[Song]:
        return self._songs

    def song(self, chart: ChartRef) -> Song:
        return self._songs[chart.song_id]

    def chart(self, song_id: int, generation: ScoreGeneration, difficulty: ScoreDifficulty) -> ChartRef:
        scores = self._songs[song_id].scores.get(generation)
        if scores is None or difficulty not in scores.levels:
            raise ChartNotFoundError(
                f"{self._songs[song_id].name} has no {generation.abbrev()} {difficulty.label()} chart"
            )
        return ChartRef(song_id, generation, difficulty)

    def charts(self) -> Iterator[ChartRef]:
        for song_id, song in enumerate(self._songs):
            for generation in sorted(song.scores):
                for difficulty in sorted(song.scores[generation].levels):
                    yield ChartRef(song_id, generation, difficulty)

    def chart_version(self, chart: ChartRef) -> Optional[MaimaiVersion]:
        """Version in which the chart's generation was added."""
        return self.song(chart).scores[chart.generation].version

    def level(self, chart: ChartRef, version: MaimaiVersion) -> Optional[InternalScoreLevel]:
        levels = self.song(chart).scores[chart.generation].levels[chart.difficulty]
        level = levels.get(version)
        return None if level is None else level.copy()

    def for_version(self, chart: ChartRef, version: MaimaiVersion) -> Optional[ChartForVersion]:
        """The chart as seen in `version`, or None if it is not playable there."""
        song = self.song(chart)
        debut = song.scores[chart.generation].version
        if debut is not None and version < debut:
            return None
        if not song.remove_state.exist_for_version(version):
            return None
        return ChartForVersion(chart, version, self.level(chart, version))

    def all_charts_for_version(self, version: MaimaiVersion) -> Iterator[ChartForVersion]:
        for chart in self.charts():
            found = self.for_version(chart, version)
            if found is not None:
                yield found

    def describe(self, chart: ChartRef) -> str:
        return f"{self.song(chart).name} ({chart.generation.abbrev()} {chart.difficulty.label()})"

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def song_from_icon(self, icon: str) -> int:
        try:
            return self._icon_map[icon]
        except KeyError:
            raise ChartNotFoundError(f"No song matches icon {icon!r}") from None

    def songs_from_name(self, name: str) -> list[int]:
        return list(self._name_map.get(name, []))

    def resolve_chart(
        self,
        generation: ScoreGeneration,
        difficulty: ScoreDifficulty,
        icon: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ChartRef:
        """
        Find a chart by icon (preferred) or by song name.

        Raises:
            ChartNotFoundError: nothing matches, or the name is ambiguous.
        """
        if icon is not None:
            song_id = self.song_from_icon(icon)
        elif name is not None:
            matches = [
                song_id for song_id in self.songs_from_name(name)
                if generation in self._songs[song_id].scores
            ]
            if len(matches) != 1:
                raise ChartNotFoundError(
                    f"Song is not unique: {name!r} ({generation.abbrev()}): found {len(matches)}"
                )
            song_id = matches[0]
        else:
            raise ValueError("Either icon or name is required")
        return self.chart(song_id, generation, difficulty)


# =============================================================================
# Loading
# =============================================================================

def _parse_date(value) -> Optional[date]:
    return None if value is None else date.fromisoformat(value)


def _parse_version(value) -> MaimaiVersion:
    if isinstance(value, int):
        return MaimaiVersion.from_index(value)
    return MaimaiVersion.parse(value)


def song_from_dict(data: dict) -> Song:
    """
    Build a Song from its JSON form.

    Example:
        {"name": "...", "icon": "...", "removed": "2024-05-01",
         "scores": {"deluxe": {"version": "BUDDIES",
                               "levels": {"master": {"BUDDIES": -12.7, "PRISM": 12.8}}}}}
    """
    scores = {}
    for generation_name, generation_data in data.get("scores", {}).items():
        generation = parse_enum(ScoreGeneration, generation_name)
        version = generation_data.get("version")
        levels = {}
        for difficulty_name, per_version in generation_data.get("levels", {}).items():
            difficulty = parse_enum(ScoreDifficulty, difficulty_name)
            levels[difficulty] = {}
            for version_name, value in per_version.items():
                level_version = _parse_version(version_name)
                levels[difficulty][level_version] = InternalScoreLevel.from_float(value, level_version)
        scores[generation] = OrdinaryScores(
            version=None if version is None else _parse_version(version),
            levels=levels,
        )
    return Song(
        name=data["name"],
        icon=data.get("icon"),
        scores=scores,
        remove_state=RemoveState(_parse_date(data.get("removed")), _parse_date(data.get("revived"))),
    )


def load_database(path: Path) -> SongDatabase:
    """Load a song database from a JSON list of songs."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Song database not found: {path}")
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return SongDatabase([song_from_dict(song) for song in raw])
