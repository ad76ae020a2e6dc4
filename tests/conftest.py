from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config
import db
from models import Actor
from signups import SignupManager

LEAD_ID = 1
PLAYER_ID = 100


@pytest.fixture(autouse=True)
def temp_database(tmp_path) -> Iterator[None]:
    """Use an isolated SQLite database for each test."""

    old_path = config.DB_PATH
    test_db = tmp_path / "raids.db"
    config.DB_PATH = str(test_db)
    db.init_db()
    try:
        yield
    finally:
        config.DB_PATH = old_path


class RecordingNotifier:
    def __init__(self) -> None:
        self.raid_ids: list[int] = []

    def notify(self, raid_id: int) -> None:
        self.raid_ids.append(raid_id)


class FailingNotifier:
    def notify(self, raid_id: int) -> None:
        raise RuntimeError(f"notifier down for {raid_id}")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def manager(notifier: RecordingNotifier) -> SignupManager:
    return SignupManager(notifier=notifier)


@pytest.fixture
def failing_manager() -> SignupManager:
    return SignupManager(notifier=FailingNotifier())


@pytest.fixture
def lead() -> Actor:
    return Actor(user_id=LEAD_ID, is_raidlead=True)


@pytest.fixture
def player() -> Actor:
    return Actor(user_id=PLAYER_ID)


@pytest.fixture
def make_raid() -> Callable[..., int]:
    def factory(
        starts_at: int,
        *,
        difficulty: str = "HEROIC",
        title: str = "Liberation of Undermine",
        loot_type: str = "UNSAVED",
        lead_id: int = LEAD_ID,
        **kwargs: Any,
    ) -> int:
        return db.create_raid(
            title=title,
            difficulty=difficulty,
            loot_type=loot_type,
            starts_at=starts_at,
            bosses=8,
            lead_id=lead_id,
            **kwargs,
        )

    return factory


@pytest.fixture
def make_character() -> Callable[..., int]:
    def factory(name: str, *, user_id: int = PLAYER_ID, realm: str = "Blackhand") -> int:
        return db.create_character(user_id=user_id, name=name, realm=realm)

    return factory
