"""
maimai game versions and their time windows.

Each version starts at 06:00 (JST, naive datetimes throughout) on its
release date and ends when the next one starts. Ratings are computed per
version, so every piece of evidence is filtered by these windows.
"""

from datetime import date, datetime, time
from enum import IntEnum
from typing import Optional


VERSION_START_HOUR = time(6, 0, 0)


class MaimaiVersion(IntEnum):
    """Game versions in release order (value = index used by the song data)."""
    MAIMAI = 0
    MAIMAI_PLUS = 1
    GREEN = 2
    GREEN_PLUS = 3
    ORANGE = 4
    ORANGE_PLUS = 5
    PINK = 6
    PINK_PLUS = 7
    MURASAKI = 8
    MURASAKI_PLUS = 9
    MILK = 10
    MILK_PLUS = 11
    FINALE = 12
    DELUXE = 13
    DELUXE_PLUS = 14
    SPLASH = 15
    SPLASH_PLUS = 16
    UNIVERSE = 17
    UNIVERSE_PLUS = 18
    FESTIVAL = 19
    FESTIVAL_PLUS = 20
    BUDDIES = 21
    BUDDIES_PLUS = 22
    PRISM = 23
    PRISM_PLUS = 24

    @classmethod
    def from_index(cls, value: int) -> "MaimaiVersion":
        """Version from the signed index stored in song data (sign is ignored)."""
        try:
            return cls(abs(value))
        except ValueError:
            raise ValueError(f"Unexpected version: {value}") from None

    @classmethod
    def parse(cls, name: str) -> "MaimaiVersion":
        """Parse `"BUDDIES_PLUS"`, `"buddies-plus"` or a numeric index."""
        text = name.strip()
        if text.lstrip("-").isdigit():
            return cls.from_index(int(text))
        key = text.upper().replace("-", "_").replace(" ", "_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown version: {name}") from None

    @classmethod
    def latest(cls) -> "MaimaiVersion":
        return cls.PRISM_PLUS

    def next(self) -> Optional["MaimaiVersion"]:
        if self == MaimaiVersion.latest():
            return None
        return MaimaiVersion(self + 1)

    def start_date(self) -> date:
        return _START_DATES[self]

    def start_time(self) -> datetime:
        return datetime.combine(self.start_date(), VERSION_START_HOUR)

    def end_time(self) -> datetime:
        following = self.next()
        if following is None:
            return datetime.max
        return following.start_time()

    def contains_time(self, moment: datetime) -> bool:
        return self.start_time() <= moment < self.end_time()

    @classmethod
    def of_time(cls, moment: datetime) -> Optional["MaimaiVersion"]:
        for version in cls:
            if version.contains_time(moment):
                return version
        return None

    @classmethod
    def of_date(cls, day: date) -> Optional["MaimaiVersion"]:
        for version in cls:
            following = version.next()
            if version.start_date() <= day and (following is None or day < following.start_date()):
                return version
        return None

    def uses_six_boundary(self) -> bool:
        """True from BUDDiES PLUS on, where `x+` starts at `x.6` instead of `x.7`."""
        return self >= MaimaiVersion.BUDDIES_PLUS

    def __str__(self) -> str:
        return self.name


_START_DATES = {
    MaimaiVersion.MAIMAI: date(2012, 7, 12),
    MaimaiVersion.MAIMAI_PLUS: date(2012, 12, 13),
    MaimaiVersion.GREEN: date(2013, 7, 11),
    MaimaiVersion.GREEN_PLUS: date(2014, 2, 26),
    MaimaiVersion.ORANGE: date(2014, 9, 18),
    MaimaiVersion.ORANGE_PLUS: date(2015, 3, 19),
    MaimaiVersion.PINK: date(2015, 12, 9),
    MaimaiVersion.PINK_PLUS: date(2016, 6, 30),
    MaimaiVersion.MURASAKI: date(2016, 12, 14),
    MaimaiVersion.MURASAKI_PLUS: date(2017, 6, 22),
    MaimaiVersion.MILK: date(2017, 12, 14),
    MaimaiVersion.MILK_PLUS: date(2018, 6, 21),
    MaimaiVersion.FINALE: date(2018, 12, 13),
    MaimaiVersion.DELUXE: date(2019, 7, 11),
    MaimaiVersion.DELUXE_PLUS: date(2020, 1, 23),
    MaimaiVersion.SPLASH: date(2020, 9, 17),
    MaimaiVersion.SPLASH_PLUS: date(2021, 3, 18),
    MaimaiVersion.UNIVERSE: date(2021, 9, 16),
    MaimaiVersion.UNIVERSE_PLUS: date(2022, 3, 24),
    MaimaiVersion.FESTIVAL: date(2022, 9, 15),
    MaimaiVersion.FESTIVAL_PLUS: date(2023, 3, 23),
    MaimaiVersion.BUDDIES: date(2023, 9, 14),
    MaimaiVersion.BUDDIES_PLUS: date(2024, 3, 21),
    MaimaiVersion.PRISM: date(2024, 9, 12),
    MaimaiVersion.PRISM_PLUS: date(2025, 3, 13),
}
