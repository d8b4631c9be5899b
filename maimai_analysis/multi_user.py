"""
Run the estimator over several users' data until nothing changes.

Rating deltas are replayed once per user whose data is complete; their
results never depend on other evidence. Rating target lists and song score
lists are then re-applied in rounds, since every narrowing can tighten the
constraints of the next list, until a round adds no event.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from maimai_analysis.config import UserConfig
from maimai_analysis.database import ChartRef, SongDatabase
from maimai_analysis.estimator import (
    ConvergenceError,
    Estimator,
    NewOrOld,
    RatingTargetLabel,
    RecordLabel,
)
from maimai_analysis.song_score import AssociatedSongScoreList
from maimai_analysis.user_data import PlayRecord, RatingTargetList, UserData


MAX_ROUNDS = 1000


@dataclass(frozen=True)
class UserRecord:
    """A play record seen through one user's config."""
    record: PlayRecord
    user: str
    ignore_time: bool = False

    def played_within(self, start: datetime, end: datetime) -> bool:
        return self.ignore_time or self.record.played_within(start, end)

    @property
    def chart(self) -> ChartRef:
        return self.record.chart

    @property
    def achievement(self) -> int:
        return self.record.achievement

    @property
    def rating_delta(self) -> int:
        return self.record.rating_delta

    @property
    def label(self) -> RecordLabel:
        return RecordLabel(self.record.played_at, self.user)


@dataclass(frozen=True)
class UserRatingTargetList:
    """A rating target list tagged with its user and the round it was applied in."""
    target_list: RatingTargetList
    user: str
    ignore_time: bool = False
    iteration: Optional[int] = None

    def played_within(self, start: datetime, end: datetime) -> bool:
        return self.ignore_time or self.target_list.played_within(start, end)

    @property
    def play_time(self) -> datetime:
        return self.target_list.play_time

    @property
    def rating(self) -> int:
        return self.target_list.rating

    @property
    def target_new(self):
        return self.target_list.target_new

    @property
    def target_old(self):
        return self.target_list.target_old

    @property
    def candidates_new(self):
        return self.target_list.candidates_new

    @property
    def candidates_old(self):
        return self.target_list.candidates_old

    @property
    def label(self) -> RatingTargetLabel:
        return RatingTargetLabel(self.target_list.play_time, self.user, self.iteration)


def update_all(
    database: SongDatabase,
    datas: list[tuple[UserConfig, UserData]],
    estimator: Estimator,
    verbose: bool = True,
) -> int:
    """
    Apply every user's evidence to `estimator` until a fixed point.

    Args:
        database: The database `estimator` was built from.
        datas: (config, data) pairs, one per user.
        estimator: Estimator to narrow in place.
        verbose: Print progress.

    Returns:
        Number of rounds run, the last one adding no event.

    Raises:
        EstimatorError: contradicting evidence or no convergence.
    """
    if estimator.database is not database:
        raise ValueError("The estimator was built from a different song database")

    for config, data in datas:
        options = config.estimator_config
        records = [UserRecord(r, config.name, options.ignore_time) for r in data.records]
        for complete, new_or_old in (
            (options.new_songs_are_complete, NewOrOld.NEW),
            (options.old_songs_are_complete, NewOrOld.OLD),
        ):
            if not complete:
                continue
            before = estimator.event_len
            estimator.determine_by_delta(records, new_or_old)
            if verbose:
                print(f"  {config.name}: {new_or_old.value} songs by delta, "
                      f"{estimator.event_len - before} events")

    listings = [
        AssociatedSongScoreList.from_song_score_list(data.song_score_list)
        for _, data in datas
        if data.song_score_list is not None
    ]

    for iteration in range(MAX_ROUNDS):
        before = estimator.event_len
        for config, data in datas:
            ignore_time = config.estimator_config.ignore_time
            estimator.guess_from_rating_target_order(
                UserRatingTargetList(t, config.name, ignore_time, iteration)
                for t in data.rating_targets
            )
        for listing in listings:
            estimator.guess_by_sort_order(listing)
        added = estimator.event_len - before
        if verbose:
            print(f"  Round {iteration}: {added} events, "
                  f"{estimator.num_determined_scores()}/{len(estimator)} determined")
        if added == 0:
            return iteration + 1

    raise ConvergenceError(f"No fixed point after {MAX_ROUNDS} rounds")
