"""
Internal level estimator.

Holds one candidate set per chart for a single game version and narrows
them using evidence:
- the song database (seeding),
- rating deltas of individual play records (determine_by_delta),
- rating target lists, i.e. the game's own top-N breakdown
  (guess_from_rating_target_order),
- song score lists sorted by level (guess_by_sort_order).

Every narrowing goes through Estimator.set, which appends an Event to an
append-only log so that each candidate set can be explained later.
"""

import bisect
from dataclasses import dataclass, field, replace
from datetime import datetime, time
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Protocol, Union

from maimai_analysis.database import ChartRef, SongDatabase
from maimai_analysis.rating import (
    InternalScoreLevel,
    ScoreConstant,
    ScoreLevel,
    format_achievement,
    single_song_rating,
)
from maimai_analysis.sum_ordering import possibilities_from_sum_and_ordering
from maimai_analysis.version import MaimaiVersion


NEW_SONG_COUNT = 15
OLD_SONG_COUNT = 35

# Songs removed mid-version disappear at the daily maintenance.
REMOVAL_TIME_OF_DAY = time(5, 0, 0)


# =============================================================================
# Errors
# =============================================================================

class EstimatorError(Exception):
    """Base class for estimator failures."""


class MissingChartError(EstimatorError):
    """Evidence refers to a chart the estimator does not track."""

    def __init__(self, chart: ChartRef, context: str = ""):
        self.chart = chart
        message = f"The following chart is not tracked: {chart}"
        if context:
            message = f"{context}: {message}"
        super().__init__(message)


class ContradictionError(EstimatorError):
    """A chart ran out of candidates; the evidence is inconsistent."""

    def __init__(self, chart: ChartRef, chart_name: str, reasons: list["Event"]):
        self.chart = chart
        self.chart_name = chart_name
        self.reasons = list(reasons)
        super().__init__(
            f"No more candidates for {chart_name}: " + "; ".join(str(e) for e in self.reasons)
        )


class ConvergenceError(EstimatorError):
    """Fixed-point iteration did not settle."""


# =============================================================================
# Evidence labels and reasons
# =============================================================================

@dataclass(frozen=True)
class RecordLabel:
    play_time: Optional[datetime] = None
    user: Optional[str] = None

    def __str__(self) -> str:
        text = "play record"
        if self.play_time is not None:
            text += f" played at {self.play_time}"
        if self.user is not None:
            text += f" by {self.user}"
        return text


@dataclass(frozen=True)
class RatingTargetLabel:
    timestamp: datetime
    user: Optional[str] = None
    iteration: Optional[int] = None

    def __str__(self) -> str:
        text = f"rating target recorded at {self.timestamp}"
        if self.user is not None:
            text += f" by {self.user}"
        if self.iteration is not None:
            text += f" (iteration {self.iteration})"
        return text


@dataclass(frozen=True)
class DatabaseReason:
    level: InternalScoreLevel = field(compare=False)

    def __str__(self) -> str:
        return f"according to the database which stores {self.level}"


@dataclass(frozen=True)
class DeltaReason:
    achievement: int
    rating: int
    label: RecordLabel

    def __str__(self) -> str:
        return (
            f"because the record achieving {format_achievement(self.achievement)} determines "
            f"the single-song rating to be {self.rating} (source: {self.label})"
        )


@dataclass(frozen=True)
class ListReason:
    label: RatingTargetLabel

    def __str__(self) -> str:
        return f"by the rating target list (source: {self.label})"


@dataclass(frozen=True)
class SongScoreListReason:
    level: ScoreLevel

    def __str__(self) -> str:
        return f"by the song score list (Lv.{self.level})"


@dataclass(frozen=True)
class AssumptionReason:
    def __str__(self) -> str:
        return "by assumption"


Reason = Union[DatabaseReason, DeltaReason, ListReason, SongScoreListReason, AssumptionReason]


@dataclass(frozen=True)
class Event:
    """One narrowing step: `chart` became `candidates` because of `reason`."""
    chart: ChartRef
    chart_name: str
    candidates: InternalScoreLevel = field(compare=False)
    reason: Reason

    def copy(self) -> "Event":
        """Detached copy; the candidate sets inside are not shared with the log."""
        reason = self.reason
        if isinstance(reason, DatabaseReason):
            reason = DatabaseReason(reason.level.copy())
        return replace(self, candidates=self.candidates.copy(), reason=reason)

    def __str__(self) -> str:
        verb = "determined" if self.candidates.is_unique() else "constrained"
        return f"{self.chart_name}: {verb} to {self.candidates} {self.reason}"


@dataclass
class _Candidates:
    chart: ChartRef
    candidates: InternalScoreLevel
    reasons: list = field(default_factory=list)  # indices into Estimator._events


@dataclass(frozen=True)
class CandidatesView:
    """Read-only snapshot of a chart's candidates and their justification."""
    chart: ChartRef
    candidates: InternalScoreLevel = field(compare=False)
    reasons: tuple = ()

    def __str__(self) -> str:
        return f"{self.candidates}"


class NewOrOld(Enum):
    NEW = "new"
    OLD = "old"

    @property
    def max_count(self) -> int:
        return NEW_SONG_COUNT if self is NewOrOld.NEW else OLD_SONG_COUNT


# =============================================================================
# Evidence interfaces
# =============================================================================

class RecordLike(Protocol):
    """A play record whose rating delta is known."""

    def played_within(self, start: datetime, end: datetime) -> bool:
        """Whether the play falls in [start, end); return True to skip the check."""
        ...

    @property
    def chart(self) -> ChartRef: ...

    @property
    def achievement(self) -> int: ...

    @property
    def rating_delta(self) -> int: ...

    @property
    def label(self) -> RecordLabel: ...


class RatingTargetEntryLike(Protocol):
    @property
    def chart(self) -> ChartRef: ...

    @property
    def achievement(self) -> int: ...


class RatingTargetListLike(Protocol):
    """Snapshot of the rating target page."""

    def played_within(self, start: datetime, end: datetime) -> bool: ...

    @property
    def play_time(self) -> datetime: ...

    @property
    def rating(self) -> int: ...

    @property
    def target_new(self) -> Iterable[RatingTargetEntryLike]: ...

    @property
    def target_old(self) -> Iterable[RatingTargetEntryLike]: ...

    @property
    def candidates_new(self) -> Iterable[RatingTargetEntryLike]: ...

    @property
    def candidates_old(self) -> Iterable[RatingTargetEntryLike]: ...

    @property
    def label(self) -> RatingTargetLabel: ...


# =============================================================================
# Best-N rating window
# =============================================================================

class BestRatingWindow:
    """
    The best `max_count` charts by rating contribution, rebuilt from deltas.

    A positive delta on a chart already in the window raises its rating by
    delta. A chart entering a full window replaces the lowest entry, so its
    rating is the evicted rating plus delta.
    """

    def __init__(self, max_count: int):
        self.max_count = max_count
        self._sorted: list[tuple[int, ChartRef]] = []
        self._ratings: dict[ChartRef, int] = {}

    def __len__(self) -> int:
        return len(self._ratings)

    def __contains__(self, chart: ChartRef) -> bool:
        return chart in self._ratings

    def rating(self, chart: ChartRef) -> Optional[int]:
        return self._ratings.get(chart)

    def total(self) -> int:
        return sum(self._ratings.values())

    def entries(self) -> list[tuple[int, ChartRef]]:
        """(rating, chart) pairs, lowest first."""
        return list(self._sorted)

    def update(self, chart: ChartRef, delta: int) -> int:
        """Apply a delta and return the chart's new rating."""
        if chart in self._ratings:
            old = self._ratings[chart]
            del self._sorted[bisect.bisect_left(self._sorted, (old, chart))]
            rating = old + delta
        elif len(self._ratings) >= self.max_count:
            evicted_rating, evicted_chart = self._sorted.pop(0)
            del self._ratings[evicted_chart]
            rating = evicted_rating + delta
        else:
            rating = delta
        self._ratings[chart] = rating
        bisect.insort(self._sorted, (rating, chart))
        return rating


@dataclass
class _TargetSlot:
    new: bool
    contributes_to_sum: bool
    chart: ChartRef
    achievement: int
    levels: InternalScoreLevel


# =============================================================================
# Estimator
# =============================================================================

class Estimator:
    """
    Candidate sets of internal levels for every chart of one version.

    Example:
        estimator = Estimator(database, MaimaiVersion.PRISM)
        estimator.determine_by_delta(records, NewOrOld.NEW)
        estimator.guess_from_rating_target_order(rating_targets)
        for view in estimator.get_scores():
            print(view.chart, view.candidates)
    """

    def __init__(self, database: SongDatabase, version: MaimaiVersion, distrust_all: bool = False):
        """
        Seed candidates from the database.

        Args:
            database: Song catalog.
            version: Version whose internal levels are estimated.
            distrust_all: Ignore stored constants and start from the full
                range of each chart's displayed level.

        Raises:
            ValueError: a chart available in `version` has no level.
        """
        self.version = version
        self._database = database
        self._events: list[Event] = []
        self._map: dict[ChartRef, _Candidates] = {}

        for entry in database.all_charts_for_version(version):
            level = entry.level
            if level is None:
                raise ValueError(f"Missing score level: {database.describe(entry.chart)} in {version}")
            if distrust_all:
                level = InternalScoreLevel.unknown(version, level.into_level(version))
            candidates = _Candidates(entry.chart, level)
            candidates.reasons.append(self._push(Event(
                chart=entry.chart,
                chart_name=database.describe(entry.chart),
                candidates=level.copy(),
                reason=DatabaseReason(level.copy()),
            )))
            self._map[entry.chart] = candidates

    @classmethod
    def new_distrust_all(cls, database: SongDatabase, version: MaimaiVersion) -> "Estimator":
        return cls(database, version, distrust_all=True)

    def _push(self, event: Event) -> int:
        self._events.append(event)
        return len(self._events) - 1

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def database(self) -> SongDatabase:
        return self._database

    @property
    def events(self) -> tuple:
        return tuple(e.copy() for e in self._events)

    def events_since(self, index: int) -> list[Event]:
        return [e.copy() for e in self._events[index:]]

    @property
    def event_len(self) -> int:
        return len(self._events)

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, chart: ChartRef) -> bool:
        return chart in self._map

    def _view(self, candidates: _Candidates) -> CandidatesView:
        return CandidatesView(
            chart=candidates.chart,
            candidates=candidates.candidates.copy(),
            reasons=tuple(self._events[i].copy() for i in candidates.reasons),
        )

    def get(self, chart: ChartRef) -> Optional[CandidatesView]:
        candidates = self._map.get(chart)
        return None if candidates is None else self._view(candidates)

    def require(self, chart: ChartRef) -> CandidatesView:
        candidates = self._map.get(chart)
        if candidates is None:
            raise MissingChartError(chart)
        return self._view(candidates)

    def get_scores(self) -> Iterator[CandidatesView]:
        for candidates in self._map.values():
            yield self._view(candidates)

    def num_determined_scores(self) -> int:
        return sum(1 for c in self._map.values() if c.candidates.is_unique())

    # -------------------------------------------------------------------------
    # Narrowing
    # -------------------------------------------------------------------------

    def set(self, chart: ChartRef, predicate: Callable[[ScoreConstant], bool], reason: Reason):
        """
        Keep only the candidates of `chart` satisfying `predicate`.

        An event is recorded only if something was removed.

        Raises:
            MissingChartError: `chart` is not tracked.
            ContradictionError: no candidate is left.
        """
        candidates = self._map.get(chart)
        if candidates is None:
            raise MissingChartError(chart, f"While applying evidence {reason}")
        old_count = candidates.candidates.count_candidates()
        candidates.candidates.retain(predicate)
        if candidates.candidates.count_candidates() < old_count:
            candidates.reasons.append(self._push(Event(
                chart=chart,
                chart_name=self._database.describe(chart),
                candidates=candidates.candidates.copy(),
                reason=reason,
            )))
        if candidates.candidates.is_empty():
            raise ContradictionError(
                chart,
                self._database.describe(chart),
                [self._events[i].copy() for i in candidates.reasons],
            )

    def assume(self, chart: ChartRef, predicate: Callable[[ScoreConstant], bool]):
        self.set(chart, predicate, AssumptionReason())

    def register_single_song_rating(self, chart: ChartRef, achievement: int, rating: int, label: RecordLabel):
        """Keep constants whose rating at `achievement` is exactly `rating`."""
        self.set(
            chart,
            lambda level: single_song_rating(level, achievement) == rating,
            DeltaReason(achievement, rating, label),
        )

    def determine_by_delta(self, records: Iterable[RecordLike], new_or_old: NewOrOld):
        """
        Replay rating deltas through a best-N window to pin single-song ratings.

        Records must be in chronological order. Records outside this
        version's time window are skipped, as are non-positive deltas and
        charts of the other (new/old) group. This is only sound when the
        player's records of that group are complete.
        """
        start, end = self.version.start_time(), self.version.end_time()
        window = BestRatingWindow(new_or_old.max_count)

        # TODO: for NewOrOld.OLD the window should first be filled from plays
        # made before the version started; it currently starts empty.
        for record in records:
            if not record.played_within(start, end):
                continue
            chart = record.chart
            chart_version = self._database.chart_version(chart)
            if chart_version is None:
                raise ValueError(f"No version associated to {self._database.describe(chart)}")
            delta = record.rating_delta
            is_new = chart_version == self.version
            if delta <= 0 or is_new != (new_or_old is NewOrOld.NEW):
                continue
            rating = window.update(chart, delta)
            self.register_single_song_rating(chart, record.achievement, rating, record.label)

    def mid_version_removal_time(self) -> Optional[datetime]:
        """
        Earliest removal of a tracked song inside this version's window.

        Every tracked chart is playable at some point of the version, so a
        removal date inside the window means a removal in mid-version.
        """
        start, end = self.version.start_time().date(), self.version.end_time().date()
        removals = []
        for chart in self._map:
            remove_state = self._database.song(chart).remove_state
            if remove_state.is_removed() and start <= remove_state.removed < end:
                removals.append(datetime.combine(remove_state.removed, REMOVAL_TIME_OF_DAY))
        return min(removals, default=None)

    def guess_from_rating_target_order(self, rating_targets: Iterable[RatingTargetListLike]):
        """
        Narrow candidates using rating target lists.

        Entries of a list are ordered by (new, rating, achievement),
        descending, and the target entries sum to the displayed rating. The
        sum is dropped for lists recorded after a mid-version removal,
        since a removal changes the best-N set behind the player's back.
        Lists recorded outside this version are skipped.
        """
        start, end = self.version.start_time(), self.version.end_time()
        removal_time = self.mid_version_removal_time()

        for target_list in rating_targets:
            if not target_list.played_within(start, end):
                continue
            reliable = removal_time is None or target_list.play_time < removal_time

            slots: list[_TargetSlot] = []
            for new, contributes, entries in (
                (True, True, target_list.target_new),
                (True, False, target_list.candidates_new),
                (False, True, target_list.target_old),
                (False, False, target_list.candidates_old),
            ):
                for entry in entries:
                    candidates = self._map.get(entry.chart)
                    if candidates is None:
                        raise MissingChartError(entry.chart, f"While processing {target_list.label}")
                    slots.append(_TargetSlot(
                        new=new,
                        contributes_to_sum=contributes,
                        chart=entry.chart,
                        achievement=entry.achievement,
                        levels=candidates.candidates.copy(),
                    ))

            def slot_candidates(i: int):
                slot = slots[i]
                for level in slot.levels.candidates():
                    rating = single_song_rating(level, slot.achievement)
                    value = rating if slot.contributes_to_sum and reliable else 0
                    yield value, (level, (slot.new, rating, slot.achievement))

            result = possibilities_from_sum_and_ordering(
                len(slots),
                slot_candidates,
                key=lambda pair: pair[1][1],
                target_sum=target_list.rating if reliable else 0,
                reverse=True,
            )
            reason = ListReason(target_list.label)
            for slot, feasible in zip(slots, result):
                allowed = {level for _, (level, _) in feasible}
                self.set(slot.chart, lambda level, allowed=allowed: level in allowed, reason)

    def guess_by_sort_order(self, song_score_list):
        """
        Narrow candidates using a song score list sorted by level.

        Within one displayed level the list is sorted by internal level and
        then by ScoreOrder, so the (constant, order) pairs must be ascending.

        Args:
            song_score_list: An AssociatedSongScoreList.
        """
        for level, scores in sorted(song_score_list.scores_by_level.items()):
            levels = []
            for score in scores:
                candidates = self._map.get(score.chart)
                if candidates is None:
                    raise MissingChartError(score.chart, f"Candidates entry missing (Lv.{level})")
                levels.append(candidates.candidates.copy())

            result = possibilities_from_sum_and_ordering(
                len(scores),
                lambda i: ((0, (constant, scores[i].order)) for constant in levels[i].candidates()),
                key=lambda pair: pair[1],
                target_sum=0,
            )
            reason = SongScoreListReason(level)
            for score, feasible in zip(scores, result):
                allowed = {constant for _, (constant, _) in feasible}
                self.set(score.chart, lambda constant, allowed=allowed: constant in allowed, reason)
