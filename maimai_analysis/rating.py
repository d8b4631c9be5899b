"""
Rating arithmetic and internal level candidate sets.

This module provides:
- ScoreConstant: the hidden internal level of a chart (x10 fixed point)
- ScoreLevel: the coarse level shown in game ("12", "12+")
- rank_coef / single_song_rating: the game's per-chart rating formula
- CandidateBitmask / InternalScoreLevel: the set of constants still
  possible for a chart, stored as an offset plus a 16-bit mask

Achievement values are plain ints in units of 0.0001% (100.5000% = 1005000).
"""

from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from maimai_analysis.version import MaimaiVersion


# =============================================================================
# Constants
# =============================================================================

MIN_SCORE_CONSTANT = 10  # 1.0
MAX_SCORE_CONSTANT = 150  # 15.0
MAX_ACHIEVEMENT = 1010000  # 101.0000%
RATING_ACHIEVEMENT_CAP = 1005000  # achievement above SSS+ border does not count

MASK_BITS = 16
MASK_ALL = (1 << MASK_BITS) - 1
EMPTY_OFFSET = 100  # canonical offset of the empty set

# (minimum achievement, coefficient x10), highest border first
# Source: https://gamerch.com/maimai/entry/533647#content_2_1 (retrieved 2023/07/10)
RANK_COEFFICIENTS = [
    (1005000, 224),
    (1004999, 222),
    (1000000, 216),
    (999999, 214),
    (995000, 211),
    (990000, 208),
    (980000, 203),
    (970000, 200),
    (969999, 176),
    (940000, 168),
    (900000, 152),
    (800000, 136),
    (750000, 120),
    (700000, 112),
    (600000, 96),
    (500000, 80),
    (400000, 64),
    (300000, 48),
    (200000, 32),
    (100000, 16),
    (0, 0),
]


def format_achievement(achievement: int) -> str:
    """Format an achievement value, e.g. 1005000 -> '100.5000%'."""
    return f"{achievement // 10000}.{achievement % 10000:04d}%"


def parse_achievement(text: str) -> int:
    """Parse '100.5000%' (or '100.5') into an achievement value."""
    text = text.strip().rstrip("%")
    integer, _, fraction = text.partition(".")
    if not integer.isdigit() or (fraction and not fraction.isdigit()) or len(fraction) > 4:
        raise ValueError(f"Invalid achievement value: {text!r}")
    value = int(integer) * 10000 + int(fraction.ljust(4, "0") or 0)
    if value > MAX_ACHIEVEMENT:
        raise ValueError(f"Achievement value out of range: {text!r}")
    return value


# =============================================================================
# Score constants and levels
# =============================================================================

@dataclass(frozen=True, order=True)
class ScoreConstant:
    """Internal level of a chart, stored x10 (12.3 -> 123)."""
    value: int

    def __post_init__(self):
        if not MIN_SCORE_CONSTANT <= self.value <= MAX_SCORE_CONSTANT:
            raise ValueError(f"Score constant out of range: {self.value}")

    @classmethod
    def from_float(cls, value: float) -> "ScoreConstant":
        return cls(round(value * 10))

    @classmethod
    def all(cls) -> Iterator["ScoreConstant"]:
        """Every valid constant, ascending."""
        return (cls(v) for v in range(MIN_SCORE_CONSTANT, MAX_SCORE_CONSTANT + 1))

    def to_lv(self, version: MaimaiVersion) -> "ScoreLevel":
        """Displayed level of this constant in the given version."""
        level = self.value // 10
        boundary = 6 if version.uses_six_boundary() else 7
        return ScoreLevel(level, 7 <= level <= 14 and self.value % 10 >= boundary)

    def __str__(self) -> str:
        return f"{self.value // 10}.{self.value % 10}"


@dataclass(frozen=True, order=True)
class ScoreLevel:
    """Displayed level. Levels 1-6 and 15 have no plus variant."""
    level: int
    plus: bool = False

    def __post_init__(self):
        if not 1 <= self.level <= 15 or (self.plus and not 7 <= self.level <= 14):
            raise ValueError(f"Level out of range: {self.level}{'+' if self.plus else ''}")

    @classmethod
    def parse(cls, text: str) -> "ScoreLevel":
        """Parse '12' or '12+'."""
        text = text.strip()
        plus = text.endswith("+")
        digits = text[:-1] if plus else text
        if not digits.isdigit():
            raise ValueError(f"Invalid level: {text!r}")
        return cls(int(digits), plus)

    def score_constant_range(self, buddies_plus_or_later: bool = True) -> range:
        """Raw (x10) constants belonging to this level."""
        if self.level <= 6:
            return range(self.level * 10, (self.level + 1) * 10)
        if self.level == 15:
            return range(150, 151)
        boundary = self.level * 10 + (6 if buddies_plus_or_later else 7)
        if self.plus:
            return range(boundary, (self.level + 1) * 10)
        return range(self.level * 10, boundary)

    def score_constant_candidates(self, version: MaimaiVersion) -> Iterator[ScoreConstant]:
        for value in self.score_constant_range(version.uses_six_boundary()):
            yield ScoreConstant(value)

    def successor(self) -> Optional["ScoreLevel"]:
        if self.level == 15:
            return None
        if 7 <= self.level <= 14 and not self.plus:
            return ScoreLevel(self.level, True)
        return ScoreLevel(self.level + 1)

    @staticmethod
    def range_inclusive(low: "ScoreLevel", high: "ScoreLevel") -> Iterator["ScoreLevel"]:
        """All levels from `low` to `high`, both inclusive, ascending."""
        current = low
        while current is not None and current <= high:
            yield current
            current = current.successor()

    def __str__(self) -> str:
        return f"{self.level}{'+' if self.plus else ''}"


def rank_coef(achievement: int) -> int:
    """Rank coefficient (x10) for an achievement value."""
    for border, coef in RANK_COEFFICIENTS:
        if achievement >= border:
            return coef
    raise ValueError(f"Negative achievement value: {achievement}")


def single_song_rating(
    constant: ScoreConstant,
    achievement: int,
    coef: Optional[int] = None,
) -> int:
    """
    Rating contribution of one chart.

    rating = floor(constant * min(achievement, 100.5%) * coef), with every
    factor in its fixed-point unit, exactly as the game truncates it.
    """
    if coef is None:
        coef = rank_coef(achievement)
    product = constant.value * min(achievement, RATING_ACHIEVEMENT_CAP) * coef
    return product // 10 // 1000000 // 10


# =============================================================================
# Candidate sets
# =============================================================================

def _lowest_bit_index(mask: int) -> int:
    return (mask & -mask).bit_length() - 1


@dataclass(frozen=True)
class CandidateBitmask:
    """
    Externally supplied candidate mask for a displayed level.

    Bit i stands for the constant `level * 10 + i`, i.e. bits are counted
    from the integer part of the level, not from the bucket minimum.
    """
    bits: int

    def __post_init__(self):
        if not 0 <= self.bits <= MASK_ALL:
            raise ValueError(f"Bitmask out of range: {self.bits:#x}")

    @classmethod
    def from_constants(cls, level: ScoreLevel, constants) -> "CandidateBitmask":
        base = level.level * 10
        bits = 0
        for constant in constants:
            shift = constant.value - base
            if not 0 <= shift < MASK_BITS:
                raise ValueError(f"{constant} cannot be expressed relative to Lv.{level}")
            bits |= 1 << shift
        return cls(bits)

    def is_empty(self) -> bool:
        return self.bits == 0


class InternalScoreLevel:
    """
    Set of internal level constants still possible for one chart.

    Bit i of `mask` set means `offset + i` (raw x10 value) is a candidate.
    Canonical form has bit 0 set, so `offset` is the smallest candidate;
    the empty set is canonically `(EMPTY_OFFSET, 0)`. Every operation
    except `retain` returns a new canonical instance.
    """

    __slots__ = ("offset", "mask")

    def __init__(self, offset: int, mask: int):
        if not 0 <= mask <= MASK_ALL:
            raise ValueError(f"Mask does not fit in {MASK_BITS} bits: {mask:#x}")
        self.offset = offset
        self.mask = mask

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def empty(cls) -> "InternalScoreLevel":
        return cls(EMPTY_OFFSET, 0)

    @classmethod
    def known(cls, value: ScoreConstant) -> "InternalScoreLevel":
        return cls(value.value, 1)

    @classmethod
    def unknown(cls, version: MaimaiVersion, level: ScoreLevel) -> "InternalScoreLevel":
        """Every constant the displayed level allows in `version`."""
        bucket = level.score_constant_range(version.uses_six_boundary())
        return cls(bucket.start, (1 << len(bucket)) - 1)

    @classmethod
    def new(
        cls,
        version: MaimaiVersion,
        level: ScoreLevel,
        mask: CandidateBitmask,
    ) -> "InternalScoreLevel":
        """
        Level bucket restricted by `mask`.

        Raises:
            ValueError: the mask is empty or its lowest bit lies below the
                bucket minimum.
        """
        bucket = cls.unknown(version, level)
        if mask.is_empty():
            raise ValueError(f"Empty candidate mask for Lv.{level}")
        base = level.level * 10
        lowest = base + _lowest_bit_index(mask.bits)
        if lowest < bucket.offset:
            raise ValueError(
                f"Candidate {ScoreConstant(lowest)} is below the minimum of Lv.{level} "
                f"({ScoreConstant(bucket.offset)}) in {version}"
            )
        aligned = mask.bits >> (bucket.offset - base)
        return cls(bucket.offset, aligned & bucket.mask).canonicalize()

    @classmethod
    def from_float(cls, value: float, version: MaimaiVersion) -> "InternalScoreLevel":
        """
        Decode the song-data encoding.

        Positive values are known constants (12.3). Negative values are
        unknown constants of a displayed level, with .6 or .7 marking plus
        (-12.7 means "12+, constant unknown").
        """
        raw = round(abs(value) * 10)
        if value > 0:
            try:
                return cls.known(ScoreConstant(raw))
            except ValueError:
                raise ValueError(f"Out-of-range known value: {value}") from None
        fraction = raw % 10
        if fraction == 0:
            plus = False
        elif fraction in (6, 7):
            plus = True
        else:
            raise ValueError(f"Absurd fractional part for unknown value: {value}")
        try:
            level = ScoreLevel(raw // 10, plus)
        except ValueError:
            raise ValueError(f"Out-of-range unknown value: {value}") from None
        return cls.unknown(version, level)

    # -------------------------------------------------------------------------
    # Algebra
    # -------------------------------------------------------------------------

    def copy(self) -> "InternalScoreLevel":
        return InternalScoreLevel(self.offset, self.mask)

    def canonicalize(self) -> "InternalScoreLevel":
        result = self.copy()
        result._canonicalize_in_place()
        return result

    def _canonicalize_in_place(self):
        if self.mask == 0:
            self.offset = EMPTY_OFFSET
            return
        shift = _lowest_bit_index(self.mask)
        self.offset += shift
        self.mask >>= shift

    def intersection(self, other: "InternalScoreLevel") -> "InternalScoreLevel":
        if self.is_empty() or other.is_empty():
            return InternalScoreLevel.empty()
        # Align both masks on the larger offset; bits below it drop out.
        base = max(self.offset, other.offset)
        mine = self.mask >> (base - self.offset)
        theirs = other.mask >> (base - other.offset)
        return InternalScoreLevel(base, mine & theirs & MASK_ALL).canonicalize()

    def retain(self, predicate: Callable[[ScoreConstant], bool]):
        """Keep only candidates satisfying `predicate`. Mutates in place."""
        kept = 0
        for i in range(MASK_BITS):
            if self.mask >> i & 1 and predicate(ScoreConstant(self.offset + i)):
                kept |= 1 << i
        self.mask = kept
        self._canonicalize_in_place()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def contains(self, value: ScoreConstant) -> bool:
        shift = value.value - self.offset
        return 0 <= shift < MASK_BITS and bool(self.mask >> shift & 1)

    def __contains__(self, value: ScoreConstant) -> bool:
        return self.contains(value)

    def candidates(self) -> Iterator[ScoreConstant]:
        """Candidates in ascending order. Each call starts over."""
        for i in range(MASK_BITS):
            if self.mask >> i & 1:
                yield ScoreConstant(self.offset + i)

    def count_candidates(self) -> int:
        return self.mask.bit_count()

    def is_empty(self) -> bool:
        return self.mask == 0

    def is_unique(self) -> bool:
        return self.count_candidates() == 1

    def get_if_unique(self) -> Optional[ScoreConstant]:
        if self.is_unique():
            return ScoreConstant(self.offset + _lowest_bit_index(self.mask))
        return None

    def into_level(self, version: MaimaiVersion) -> ScoreLevel:
        """Displayed level of the smallest candidate."""
        return ScoreConstant(self.offset).to_lv(version)

    def __eq__(self, other) -> bool:
        if not isinstance(other, InternalScoreLevel):
            return NotImplemented
        return (self.offset, self.mask) == (other.offset, other.mask)

    __hash__ = None

    def __repr__(self) -> str:
        return f"InternalScoreLevel(offset={self.offset}, mask={self.mask:#06b})"

    def __str__(self) -> str:
        unique = self.get_if_unique()
        if unique is not None:
            return str(unique)
        return "[" + ", ".join(str(c) for c in self.candidates()) + "]"
