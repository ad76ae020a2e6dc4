from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

import db
import raids
from errors import ForbiddenError, NotFoundError, ValidationError
from models import FLEXIBLE, Actor, CharacterBound, Difficulty, LootType, SignupRole, SignupStatus

BERLIN = ZoneInfo("Europe/Berlin")


def berlin_ts(day: int, hour: int = 20) -> int:
    return int(datetime(2025, 10, day, hour, 0, tzinfo=BERLIN).timestamp())


def test_edit_raid_applies_changes(make_raid, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    preset_id = db.save_preset("Mythic 20", tanks=2, healers=4, dps=14)

    raid = raids.edit_raid(
        raid_id,
        lead,
        title="Manaforge Omega",
        starts_at="21:30 11.10.25",
        difficulty="MYTHIC",
        loot_type="VIP",
        bosses=3,
        preset="Mythic 20",
        lead_id=42,
    )
    assert raid.title == "Manaforge Omega"
    assert raid.starts_at == int(datetime(2025, 10, 11, 21, 30, tzinfo=BERLIN).timestamp())
    assert raid.difficulty is Difficulty.MYTHIC
    assert raid.loot_type is LootType.VIP
    assert (raid.bosses, raid.preset_id, raid.lead_id) == (3, preset_id, 42)


def test_edit_raid_keeps_unset_fields(make_raid, lead) -> None:
    raid_id = make_raid(berlin_ts(10), title="Undermine")
    raid = raids.edit_raid(raid_id, lead, bosses=2)
    assert raid.title == "Undermine"
    assert raid.starts_at == berlin_ts(10)
    assert raid.bosses == 2


def test_edit_raid_errors(make_raid, lead, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    with pytest.raises(ForbiddenError):
        raids.edit_raid(raid_id, player, title="Mine now")
    with pytest.raises(NotFoundError):
        raids.edit_raid(raid_id + 1, lead, title="Ghost")
    with pytest.raises(ValidationError):
        raids.edit_raid(raid_id, lead, title="  ")
    with pytest.raises(ValidationError):
        raids.edit_raid(raid_id, lead, starts_at="soon")
    with pytest.raises(NotFoundError):
        raids.edit_raid(raid_id, lead, preset="Unknown")
    assert db.fetch_raid(raid_id).title == "Liberation of Undermine"

    admin = Actor(user_id=500, is_admin=True)
    assert raids.edit_raid(raid_id, admin, title="By admin").title == "By admin"


def test_user_raids_split_upcoming_and_past(make_raid, make_character) -> None:
    now = datetime(2025, 10, 10, 12, 0, tzinfo=BERLIN)
    past_raid = make_raid(berlin_ts(3), title="Last week")
    soon = make_raid(berlin_ts(10), title="Tonight")
    later = make_raid(berlin_ts(12), title="Sunday")
    char_id = make_character("Thrall")

    later_signup = db.insert_signup(
        raid_id=later, user_id=100, binding=FLEXIBLE, role=SignupRole.LOOTBUDDY
    )
    soon_signup = db.insert_signup(
        raid_id=soon,
        user_id=100,
        binding=CharacterBound(char_id),
        role=SignupRole.DPS,
        status=SignupStatus.PICKED,
    )
    past_signup = db.insert_signup(
        raid_id=past_raid, user_id=100, binding=FLEXIBLE, role=SignupRole.LOOTBUDDY
    )
    db.insert_signup(raid_id=soon, user_id=200, binding=FLEXIBLE, role=SignupRole.LOOTBUDDY)

    upcoming, past = raids.user_raids(100, now)
    assert [signup.id for _, signup in upcoming] == [soon_signup, later_signup]
    assert [signup.id for _, signup in past] == [past_signup]

    text, has_any = raids.describe_user_signups(100, now)
    assert has_any
    lines = text.splitlines()
    assert lines[0] == "**Предстоящие**"
    assert lines[1] == (
        f"#{soon_signup} • `{soon}` Tonight • 20:00 10.10.25 • ДД (Thrall-blackhand) • в составе"
    )
    assert lines[2].startswith(f"#{later_signup} • `{later}` Sunday")
    assert lines[2].endswith("Лутбадди (без персонажа) • в ожидании")
    assert lines[3] == "**Прошедшие**"
    assert lines[4].startswith(f"#{past_signup} • `{past_raid}` Last week")


def test_describe_user_signups_empty() -> None:
    assert raids.describe_user_signups(100) == ("У вас пока нет заявок.", False)
