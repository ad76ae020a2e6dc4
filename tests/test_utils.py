from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

import db
import presets
import utils
from errors import (
    ConflictError,
    ConflictReason,
    DuplicateSignupError,
    ERROR_STATUS,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    status_for,
)
from models import FLEXIBLE, Actor, CharacterBound, Signup, SignupRole, SignupStatus


def test_parse_role_capacities_success() -> None:
    assert utils.parse_role_capacities("tank:2, healer:3, dps:10, loot:4") == {
        SignupRole.TANK: 2,
        SignupRole.HEAL: 3,
        SignupRole.DPS: 10,
        SignupRole.LOOTBUDDY: 4,
    }


def test_parse_role_capacities_errors() -> None:
    with pytest.raises(ValidationError):
        utils.parse_role_capacities("badchunk")
    with pytest.raises(ValidationError):
        utils.parse_role_capacities("tank:two")
    with pytest.raises(ValidationError):
        utils.parse_role_capacities("tank:-1")
    with pytest.raises(ValidationError):
        utils.parse_role_capacities("bard:1")


def test_parse_time_local_uses_cycle_zone() -> None:
    dt = utils.parse_time_local("20:30 10.10.25")
    assert dt == datetime(2025, 10, 10, 20, 30, tzinfo=ZoneInfo("Europe/Berlin"))
    assert utils.format_ts(int(dt.timestamp())) == "20:30 10.10.25"
    with pytest.raises(ValidationError):
        utils.parse_time_local("tomorrow")


def _raid(lead_id):
    return SimpleNamespace(lead_id=lead_id)


def test_may_manage() -> None:
    assert utils.may_manage(Actor(user_id=1), _raid(1))
    assert not utils.may_manage(Actor(user_id=2, is_raidlead=True), _raid(1))
    assert utils.may_manage(Actor(user_id=2, is_admin=True), _raid(1))
    assert utils.may_manage(Actor(user_id=3, is_owner=True), _raid(None))
    assert not utils.may_manage(Actor(user_id=2), _raid(None))


def test_actor_from_member() -> None:
    member = SimpleNamespace(
        id=7,
        guild_permissions=SimpleNamespace(administrator=False, manage_events=True),
        roles=[SimpleNamespace(name="Raidlead")],
    )
    actor = utils.actor_from_member(member, SimpleNamespace(owner_id=7))
    assert (actor.is_raidlead, actor.is_admin, actor.is_owner) == (True, True, True)
    assert actor.role_level == 3

    plain = utils.actor_from_member(SimpleNamespace(id=8))
    assert plain == Actor(user_id=8)


def test_build_roster_text_with_preset() -> None:
    preset = db.fetch_preset_by_id(db.save_preset("Small", tanks=2, dps=3))
    signup = Signup(
        id=1,
        raid_id=1,
        user_id=100,
        binding=CharacterBound(5),
        role=SignupRole.TANK,
        saved=True,
        note=None,
        status=SignupStatus.PICKED,
        created_at=0,
    )
    character = SimpleNamespace(display_name="Thrall-blackhand")
    text = utils.build_roster_text([signup], {5: character}, preset)
    assert "**Танки** [1/2]: `#1` Thrall-blackhand (<@100>) 🔒" in text
    assert "**ДД** [0/3]: —" in text
    assert "Хилы" not in text


def test_build_waiting_text_shows_signup_ids() -> None:
    signups = [
        Signup(
            id=signup_id,
            raid_id=1,
            user_id=user_id,
            binding=binding,
            role=role,
            saved=False,
            note=None,
            status=SignupStatus.REGISTERED,
            created_at=0,
        )
        for signup_id, user_id, binding, role in (
            (12, 100, CharacterBound(5), SignupRole.DPS),
            (13, 200, FLEXIBLE, SignupRole.LOOTBUDDY),
        )
    ]
    character = SimpleNamespace(display_name="Thrall-blackhand")
    text = utils.build_waiting_text(signups, {5: character})
    assert text.splitlines() == [
        "ДД: `#12` Thrall-blackhand (<@100>)",
        "Лутбадди: `#13` <@200>",
    ]


@pytest.mark.parametrize(
    "exc, fragment",
    [
        (ConflictError(ConflictReason.TIME_CONFLICT, "x"), "±90"),
        (DuplicateSignupError("x"), "уже записан"),
        (ForbiddenError("x"), "Недостаточно прав"),
        (NotFoundError("Raid 5 not found"), "Raid 5 not found"),
        (ValidationError("bad"), "Ошибка: bad"),
    ],
)
def test_describe_error(exc, fragment) -> None:
    assert fragment in utils.describe_error(exc)


def test_error_status_codes() -> None:
    assert status_for(DuplicateSignupError("x")) == 409
    assert status_for(ValidationError("x")) == 400
    assert status_for(ConflictError(ConflictReason.TIME_CONFLICT, "x")) == 409
    assert status_for(RuntimeError("x")) == 500
    assert ERROR_STATUS[NotFoundError] == 404


def test_presets_helpers() -> None:
    preset = presets.create_or_update_preset("Heroic 20", "tank:2, heal:4, dps:14")
    assert preset.total == 20
    assert presets.preset_capacity(preset)[SignupRole.LOOTBUDDY] == 0
    assert presets.resolve_preset(" Heroic 20 ").id == preset.id
    assert presets.resolve_preset(None) is None

    description, has_any = presets.list_presets_description()
    assert has_any
    assert "**Heroic 20** • мест 20" in description

    assert presets.delete_preset("Heroic 20") == "Пресет **Heroic 20** удалён."
    with pytest.raises(NotFoundError):
        presets.delete_preset("Heroic 20")
    with pytest.raises(ValidationError):
        presets.create_or_update_preset(" ", "tank:1")
    assert presets.list_presets_description() == ("Пресетов пока нет.", False)


def test_make_embed_lists_roster() -> None:
    pytest.importorskip("discord")
    raid_id = db.create_raid(
        title="Undermine",
        difficulty="HEROIC",
        loot_type="SAVED",
        starts_at=int(datetime(2025, 10, 10, 20, 0, tzinfo=ZoneInfo("Europe/Berlin")).timestamp()),
        bosses=8,
        lead_id=1,
    )
    raid = db.fetch_raid(raid_id)
    embed = utils.make_embed(raid, [], [], {})
    names = [field.name for field in embed.fields]
    assert names[:3] == ["Старт", "Сложность", "Лут"]
    assert embed.fields[0].value == "20:00 10.10.25"
    assert embed.footer.text == f"ID события: {raid_id}"
