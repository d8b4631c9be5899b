"""
Tests for the internal level estimator.

Tests verify that:
1. Seeding follows the database (and ignores it under distrust_all)
2. Candidates only shrink, and running out of them is a contradiction
3. A single rating delta can pin an unknown constant
4. The best-N window agrees with recomputation from scratch
5. Rating target lists narrow candidates by order and sum, and lose
   their sum after a mid-version removal
6. Song score lists narrow candidates by sort order

Run with: pytest tests/test_estimator.py -v
"""

import random
from datetime import datetime

import pytest

from maimai_analysis.database import ChartRef, ScoreDifficulty, ScoreGeneration
from maimai_analysis.estimator import (
    BestRatingWindow,
    ContradictionError,
    DatabaseReason,
    DeltaReason,
    Estimator,
    ListReason,
    MissingChartError,
    NewOrOld,
    SongScoreListReason,
)
from maimai_analysis.rating import ScoreConstant, ScoreLevel
from maimai_analysis.song_score import (
    AssociatedSongScoreList,
    EntryGroup,
    ScoreEntry,
    SongScoreList,
)
from maimai_analysis.user_data import PlayRecord, RatingTargetEntry, RatingTargetList
from maimai_analysis.version import MaimaiVersion


BUDDIES = MaimaiVersion.BUDDIES
SSS_PLUS = 1005000
IN_BUDDIES = datetime(2023, 10, 1, 12, 0)


def chart(song_id: int) -> ChartRef:
    return ChartRef(song_id, ScoreGeneration.DELUXE, ScoreDifficulty.MASTER)


def values(estimator: Estimator, song_id: int) -> list[int]:
    return [c.value for c in estimator.require(chart(song_id)).candidates.candidates()]


# =============================================================================
# Seeding
# =============================================================================

class TestSeeding:

    def test_one_database_event_per_chart(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        assert len(estimator) == 3
        assert estimator.event_len == 3
        assert all(isinstance(e.reason, DatabaseReason) for e in estimator.events)

    def test_seeded_candidates(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        assert values(estimator, 0) == list(range(70, 77))
        assert values(estimator, 2) == [73]
        assert estimator.num_determined_scores() == 1

    def test_distrust_all_widens_known_levels(self, level7_database):
        estimator = Estimator.new_distrust_all(level7_database, BUDDIES)
        assert values(estimator, 2) == list(range(70, 77))
        assert estimator.num_determined_scores() == 0

    def test_removed_song_not_tracked(self, make_database):
        database = make_database(
            dict(name="gone", level=12.0, removed="2023-01-01"),
            dict(name="kept", level=12.0),
        )
        estimator = Estimator(database, BUDDIES)
        assert chart(0) not in estimator
        assert chart(1) in estimator

    def test_song_from_later_version_not_tracked(self, make_database):
        database = make_database(dict(name="future", level=12.0, version="PRISM"))
        assert len(Estimator(database, BUDDIES)) == 0

    def test_missing_level_is_an_error(self, make_database):
        database = make_database(dict(name="stale", level=12.5, version="FESTIVAL"))
        with pytest.raises(ValueError, match="Missing score level"):
            Estimator(database, BUDDIES)


# =============================================================================
# Narrowing
# =============================================================================

class TestSet:

    def test_event_only_when_something_removed(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        before = estimator.event_len
        estimator.assume(chart(0), lambda c: True)
        assert estimator.event_len == before
        estimator.assume(chart(0), lambda c: c.value <= 74)
        assert estimator.event_len == before + 1
        assert len(estimator.require(chart(0)).reasons) == 2

    def test_candidates_never_grow(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        rng = random.Random(7)
        counts = [7]
        for _ in range(5):
            allowed = set(rng.sample(range(70, 77), 5))
            try:
                estimator.assume(chart(0), lambda c: c.value in allowed)
            except ContradictionError:
                break
            counts.append(estimator.require(chart(0)).candidates.count_candidates())
        assert counts == sorted(counts, reverse=True)

    def test_contradiction(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        with pytest.raises(ContradictionError) as excinfo:
            estimator.assume(chart(2), lambda c: c.value != 73)
        assert excinfo.value.chart == chart(2)
        assert "No more candidates for K" in str(excinfo.value)
        # Once empty, any further narrowing keeps failing.
        with pytest.raises(ContradictionError):
            estimator.assume(chart(2), lambda c: True)

    def test_event_log_cannot_be_changed_by_callers(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        estimator.events[0].candidates.retain(lambda c: False)
        estimator.events_since(0)[0].reason.level.retain(lambda c: False)
        estimator.require(chart(1)).reasons[0].candidates.retain(lambda c: False)

        assert values(estimator, 0) == list(range(70, 77))
        assert "constrained to [7.0, 7.1, 7.2, 7.3, 7.4, 7.5, 7.6]" in str(estimator.events[0])
        assert str(estimator.events[0].reason.level) == "[7.0, 7.1, 7.2, 7.3, 7.4, 7.5, 7.6]"
        assert estimator.events[1].candidates.count_candidates() == 7

    def test_contradiction_reasons_are_detached(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        with pytest.raises(ContradictionError) as excinfo:
            estimator.assume(chart(2), lambda c: c.value != 73)
        excinfo.value.reasons[0].candidates.retain(lambda c: False)
        assert str(estimator.events[2].candidates) == "7.3"

    def test_missing_chart(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        with pytest.raises(MissingChartError):
            estimator.assume(chart(99), lambda c: True)
        assert estimator.get(chart(99)) is None


# =============================================================================
# Rating deltas
# =============================================================================

class TestDetermineByDelta:

    def test_single_delta_pins_constant(self, make_database):
        database = make_database(dict(name="A", level=-7.0))
        estimator = Estimator(database, BUDDIES)
        records = [PlayRecord(IN_BUDDIES, chart(0), SSS_PLUS, 164)]
        estimator.determine_by_delta(records, NewOrOld.NEW)

        view = estimator.require(chart(0))
        assert view.candidates.get_if_unique() == ScoreConstant(73)
        assert len(view.reasons) == 2
        assert isinstance(view.reasons[-1].reason, DeltaReason)
        assert "determined to 7.3" in str(view.reasons[-1])

    def test_improvement_adds_to_previous_rating(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        records = [
            PlayRecord(IN_BUDDIES, chart(0), 1000000, 157),  # 7.3 at 100.0000% gives 157
            PlayRecord(datetime(2023, 10, 2), chart(0), SSS_PLUS, 7),
        ]
        estimator.determine_by_delta(records, NewOrOld.NEW)
        assert values(estimator, 0) == [73]

    def test_skipped_records(self, make_database):
        database = make_database(
            dict(name="new", level=-7.0),
            dict(name="old", level=-7.0, debut="FESTIVAL"),
        )
        estimator = Estimator(database, BUDDIES)
        records = [
            PlayRecord(datetime(2024, 4, 1), chart(0), SSS_PLUS, 164),  # outside BUDDiES
            PlayRecord(IN_BUDDIES, chart(0), SSS_PLUS, 0),  # no delta
            PlayRecord(IN_BUDDIES, chart(1), SSS_PLUS, 164),  # old chart in the new pass
        ]
        before = estimator.event_len
        estimator.determine_by_delta(records, NewOrOld.NEW)
        assert estimator.event_len == before

    def test_old_pass(self, make_database):
        database = make_database(dict(name="old", level=-7.0, debut="FESTIVAL"))
        estimator = Estimator(database, BUDDIES)
        estimator.determine_by_delta([PlayRecord(IN_BUDDIES, chart(0), SSS_PLUS, 164)], NewOrOld.OLD)
        assert values(estimator, 0) == [73]

    def test_full_window_evicts_lowest(self, make_database):
        """The 16th new chart replaces a 157 entry, so its rating is 157 + delta."""
        songs = [dict(name=f"known{i}", level=7.0) for i in range(15)]
        database = make_database(*songs, dict(name="X", level=-7.0))
        estimator = Estimator(database, BUDDIES)
        records = [
            PlayRecord(datetime(2023, 10, 1, 12, i), chart(i), SSS_PLUS, 157)
            for i in range(15)
        ]
        records.append(PlayRecord(datetime(2023, 10, 2), chart(15), SSS_PLUS, 7))
        estimator.determine_by_delta(records, NewOrOld.NEW)

        assert values(estimator, 15) == [73]
        reason = estimator.require(chart(15)).reasons[-1].reason
        assert reason.rating == 164

    def test_old_pass_ignores_plays_before_version(self, make_database):
        """
        Known limitation: the old-song window starts empty at the version
        start instead of being filled from earlier plays, so the first delta
        inside the version is taken as the whole rating.
        """
        database = make_database(dict(name="old", level=-7.0, debut="FESTIVAL"))
        estimator = Estimator(database, BUDDIES)
        records = [
            PlayRecord(datetime(2023, 6, 1), chart(0), 1000000, 151),
            PlayRecord(IN_BUDDIES, chart(0), SSS_PLUS, 164),
        ]
        estimator.determine_by_delta(records, NewOrOld.OLD)

        view = estimator.require(chart(0))
        assert values(estimator, 0) == [73]
        assert len(view.reasons) == 2
        assert view.reasons[-1].reason.label.play_time == IN_BUDDIES

    def test_inconsistent_delta_is_a_contradiction(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        with pytest.raises(ContradictionError):
            estimator.determine_by_delta([PlayRecord(IN_BUDDIES, chart(2), SSS_PLUS, 171)], NewOrOld.NEW)


class TestBestRatingWindow:

    def test_eviction(self):
        window = BestRatingWindow(2)
        assert window.update(chart(0), 10) == 10
        assert window.update(chart(1), 20) == 20
        assert window.update(chart(2), 5) == 15  # replaces chart 0
        assert chart(0) not in window
        assert window.entries() == [(15, chart(2)), (20, chart(1))]
        assert window.total() == 35

    def test_update_existing(self):
        window = BestRatingWindow(2)
        window.update(chart(0), 10)
        assert window.update(chart(0), 3) == 13
        assert len(window) == 1

    @pytest.mark.parametrize("seed", [35, 36, 37])
    def test_matches_top_n_from_scratch(self, seed):
        """Deltas are what the game shows: top-N sum after a play minus before."""
        rng = random.Random(seed)
        max_count = 5
        best: dict = {}

        def top_n():
            return sorted(best.values(), reverse=True)[:max_count]

        window = BestRatingWindow(max_count)
        for _ in range(500):
            target = chart(rng.randrange(12))
            before = sum(top_n())
            best[target] = max(best.get(target, 0), rng.randint(1, 300))
            delta = sum(top_n()) - before
            if delta <= 0:
                continue
            window.update(target, delta)
            assert window.rating(target) == best[target]
            assert window.total() == sum(top_n())
            assert sorted(r for r, _ in window.entries()) == sorted(top_n())


# =============================================================================
# Rating target lists
# =============================================================================

def target_list(play_time, rating, new_entries):
    return RatingTargetList(
        play_time=play_time,
        rating=rating,
        target_new=tuple(RatingTargetEntry(chart(i), a) for i, a in new_entries),
    )


class TestRatingTargetOrder:

    def test_order_and_sum(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        lists = [target_list(IN_BUDDIES, 164 + 164, [(0, SSS_PLUS), (2, SSS_PLUS)])]
        estimator.guess_from_rating_target_order(lists)
        assert values(estimator, 0) == [73]
        assert isinstance(estimator.require(chart(0)).reasons[-1].reason, ListReason)

    def test_order_only_after_mid_version_removal(self, make_database):
        database = make_database(
            dict(name="A", level=-7.0),
            dict(name="B", level=-7.0),
            dict(name="K", level=7.3),
            dict(name="R", level=7.0, removed="2023-12-01"),
        )
        estimator = Estimator(database, BUDDIES)
        assert estimator.mid_version_removal_time() == datetime(2023, 12, 1, 5, 0)

        # Sum would pin A to 7.3, but the list is no longer reliable.
        lists = [target_list(datetime(2023, 12, 10), 328, [(0, SSS_PLUS), (2, SSS_PLUS)])]
        estimator.guess_from_rating_target_order(lists)
        assert values(estimator, 0) == [73, 74, 75, 76]

    def test_list_outside_version_is_skipped(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        before = estimator.event_len
        estimator.guess_from_rating_target_order(
            [target_list(datetime(2024, 4, 1), 328, [(0, SSS_PLUS), (2, SSS_PLUS)])]
        )
        assert estimator.event_len == before

    def test_unknown_chart(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        with pytest.raises(MissingChartError):
            estimator.guess_from_rating_target_order([target_list(IN_BUDDIES, 164, [(42, SSS_PLUS)])])


# =============================================================================
# Song score lists
# =============================================================================

def level_page(order):
    """Level 7 page listing charts in `order`; difficulty view lists them by id."""
    listing = SongScoreList(
        by_difficulty={
            ScoreDifficulty.MASTER: [EntryGroup("POPS", [ScoreEntry(chart(i)) for i in range(3)])],
        },
        by_level=[(ScoreLevel(7), [EntryGroup("Lv.7", [ScoreEntry(chart(i)) for i in order])])],
    )
    return AssociatedSongScoreList.from_song_score_list(listing)


class TestSortOrder:

    def test_listed_before_known_chart(self, level7_database):
        estimator = Estimator(level7_database, BUDDIES)
        estimator.guess_by_sort_order(level_page([0, 2]))
        assert values(estimator, 0) == [70, 71, 72, 73]
        reason = estimator.require(chart(0)).reasons[-1].reason
        assert reason == SongScoreListReason(ScoreLevel(7))

    def test_listed_after_known_chart_breaks_tie(self, level7_database):
        # A comes first in the difficulty view, so sharing 7.3 would put it before K.
        estimator = Estimator(level7_database, BUDDIES)
        estimator.guess_by_sort_order(level_page([2, 0]))
        assert values(estimator, 0) == [74, 75, 76]

    def test_unordered_page_is_a_contradiction(self, make_database):
        database = make_database(dict(name="hi", level=7.5), dict(name="lo", level=7.1))
        estimator = Estimator(database, BUDDIES)
        listing = SongScoreList(
            by_difficulty={ScoreDifficulty.MASTER: [EntryGroup("POPS", [ScoreEntry(chart(0)), ScoreEntry(chart(1))])]},
            by_level=[(ScoreLevel(7), [EntryGroup("Lv.7", [ScoreEntry(chart(0)), ScoreEntry(chart(1))])])],
        )
        with pytest.raises(ContradictionError):
            estimator.guess_by_sort_order(AssociatedSongScoreList.from_song_score_list(listing))
