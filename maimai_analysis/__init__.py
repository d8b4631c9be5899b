"""
maimai internal level estimation.

Narrows the hidden internal level ("constant") of every chart of a game
version from play records, rating target lists and song score lists.
"""

from maimai_analysis.version import MaimaiVersion
from maimai_analysis.rating import (
    CandidateBitmask,
    InternalScoreLevel,
    ScoreConstant,
    ScoreLevel,
    format_achievement,
    parse_achievement,
    rank_coef,
    single_song_rating,
)
from maimai_analysis.database import (
    ChartNotFoundError,
    ChartRef,
    ScoreDifficulty,
    ScoreGeneration,
    SongDatabase,
    load_database,
)
from maimai_analysis.sum_ordering import possibilities_from_sum_and_ordering
from maimai_analysis.estimator import (
    ContradictionError,
    ConvergenceError,
    Estimator,
    EstimatorError,
    Event,
    MissingChartError,
    NewOrOld,
)
from maimai_analysis.song_score import (
    AssociatedSongScoreList,
    SongScoreList,
    SongScoreListError,
)
from maimai_analysis.user_data import UserData, load_user_data
from maimai_analysis.config import Config, EstimatorConfig, UserConfig
from maimai_analysis.multi_user import update_all
from maimai_analysis.report import (
    candidates_to_dataframe,
    events_to_dataframe,
    find_database_contradictions,
    format_rating_target_entry,
)
