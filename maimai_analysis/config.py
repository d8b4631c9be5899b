"""
Configuration for estimator runs.

Defaults come from the environment (a .env file is loaded if present):
    MAIMAI_DATABASE_PATH     song database JSON
    MAIMAI_ESTIMATOR_CONFIG  multi-user estimator config JSON
    MAIMAI_VERSION           version to estimate (default: latest)

The estimator config lists users, where their play data lives, and how
far each user's data can be trusted:

    {
      "users": [
        {"name": "main", "data_path": "main.json",
         "estimator_config": {"new_songs_are_complete": true}}
      ]
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from maimai_analysis.database import SongDatabase
from maimai_analysis.user_data import UserData, load_user_data
from maimai_analysis.version import MaimaiVersion

# Load environment variables from .env file
load_dotenv()

DEFAULT_DATABASE_PATH = Path(os.getenv("MAIMAI_DATABASE_PATH", "data/songs.json"))
DEFAULT_ESTIMATOR_CONFIG = Path(os.getenv("MAIMAI_ESTIMATOR_CONFIG", "data/estimator_config.json"))
_version_name = os.getenv("MAIMAI_VERSION", "")


def default_version() -> MaimaiVersion:
    if _version_name:
        return MaimaiVersion.parse(_version_name)
    return MaimaiVersion.latest()


@dataclass(frozen=True)
class EstimatorConfig:
    """
    How much a user's data can be trusted.

    Attributes:
        new_songs_are_complete: Every play of new-version charts is recorded,
            so rating deltas can be replayed for them.
        old_songs_are_complete: Same for charts of older versions.
        ignore_time: Treat every record and list as belonging to the
            estimated version.
    """
    new_songs_are_complete: bool = False
    old_songs_are_complete: bool = False
    ignore_time: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "EstimatorConfig":
        unknown = set(data) - {"new_songs_are_complete", "old_songs_are_complete", "ignore_time"}
        if unknown:
            raise ValueError(f"Unknown estimator_config keys: {sorted(unknown)}")
        return cls(
            new_songs_are_complete=bool(data.get("new_songs_are_complete", False)),
            old_songs_are_complete=bool(data.get("old_songs_are_complete", False)),
            ignore_time=bool(data.get("ignore_time", False)),
        )


@dataclass(frozen=True)
class UserConfig:
    name: str
    data_path: Path
    estimator_config: EstimatorConfig = EstimatorConfig()


@dataclass
class Config:
    users: list[UserConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Path = Path(".")) -> "Config":
        users = []
        for user in data.get("users", []):
            if "name" not in user or "data_path" not in user:
                raise ValueError(f"User entry needs 'name' and 'data_path': {user}")
            data_path = Path(user["data_path"])
            if not data_path.is_absolute():
                data_path = base_dir / data_path
            users.append(UserConfig(
                name=user["name"],
                data_path=data_path,
                estimator_config=EstimatorConfig.from_dict(user.get("estimator_config", {})),
            ))
        return cls(users)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a config; relative data paths are taken from the config's directory."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Estimator config not found: {path}")
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f), base_dir=path.parent)

    def read_all(self, database: SongDatabase) -> list[tuple[UserConfig, UserData]]:
        return [(user, load_user_data(user.data_path, database)) for user in self.users]


EXAMPLE_CONFIG = {
    "users": [
        {
            "name": "main",
            "data_path": "main.json",
            "estimator_config": {
                "new_songs_are_complete": True,
                "old_songs_are_complete": False,
                "ignore_time": False,
            },
        },
    ],
}


def create_example_config(output_path: Path):
    """Write an example estimator config."""
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(EXAMPLE_CONFIG, f, indent=2)
    print(f"Created example config at: {output_path}")
