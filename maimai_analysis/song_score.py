"""
Song score lists and the sort order they reveal.

The in-game score list can be browsed by difficulty (one page per genre)
or by displayed level. Inside a level page, charts are sorted by internal
level first and then by their position in the difficulty view, so the
difficulty view gives a tiebreak key for every chart of a level page.
"""

from dataclasses import dataclass, field
from typing import Optional

from maimai_analysis.database import ChartRef, ScoreDifficulty
from maimai_analysis.rating import ScoreLevel


class SongScoreListError(ValueError):
    """The two views of a song score list do not agree."""


@dataclass(frozen=True)
class ScoreEntry:
    chart: ChartRef
    achievement: Optional[int] = None


@dataclass
class EntryGroup:
    label: str
    entries: list[ScoreEntry] = field(default_factory=list)


@dataclass
class SongScoreList:
    """
    A browsed score list.

    by_difficulty: difficulty -> genre pages in display order.
    by_level: (level, pages) pairs; each level is expected on exactly one page.
    """
    by_difficulty: dict = field(default_factory=dict)  # ScoreDifficulty -> list[EntryGroup]
    by_level: list = field(default_factory=list)  # list[tuple[ScoreLevel, list[EntryGroup]]]


@dataclass(frozen=True, order=True)
class ScoreOrder:
    """Position of a chart in the difficulty view, harder difficulties first."""
    genre_index: int
    reversed_difficulty: int
    index: int


@dataclass(frozen=True)
class ScoreAndOrder:
    chart: ChartRef
    order: ScoreOrder


@dataclass
class AssociatedSongScoreList:
    scores_by_level: dict = field(default_factory=dict)  # ScoreLevel -> list[ScoreAndOrder]

    @classmethod
    def from_song_score_list(cls, listing: SongScoreList) -> "AssociatedSongScoreList":
        """
        Annotate every chart of the level view with its ScoreOrder.

        Raises:
            SongScoreListError: a chart is listed twice in the difficulty
                view, a level does not have exactly one page, or a chart of
                the level view is missing from the difficulty view.
        """
        chart_to_order: dict[ChartRef, ScoreOrder] = {}
        for difficulty in sorted(listing.by_difficulty):
            for genre_index, group in enumerate(listing.by_difficulty[difficulty]):
                for index, entry in enumerate(group.entries):
                    if entry.chart in chart_to_order:
                        raise SongScoreListError(f"Duplicate chart in {group.label}: {entry.chart}")
                    chart_to_order[entry.chart] = ScoreOrder(
                        genre_index=genre_index,
                        reversed_difficulty=-int(ScoreDifficulty(difficulty)),
                        index=index,
                    )

        scores_by_level = {}
        for level, groups in listing.by_level:
            if len(groups) != 1:
                raise SongScoreListError(f"There should be exactly one group (Lv.{level})")
            orders = []
            for entry in groups[0].entries:
                order = chart_to_order.get(entry.chart)
                if order is None:
                    raise SongScoreListError(f"Score missing from the difficulty view: {entry.chart} (Lv.{level})")
                orders.append(ScoreAndOrder(entry.chart, order))
            scores_by_level[level] = orders
        return cls(scores_by_level)

    def levels(self) -> list[ScoreLevel]:
        return sorted(self.scores_by_level)
