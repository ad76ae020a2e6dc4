from __future__ import annotations

import threading
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

import db
from errors import (
    ConflictError,
    ConflictReason,
    DuplicateSignupError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from models import FLEXIBLE, Actor, CharacterBound, SignupStatus, binding_for
from signups import SignupManager

BERLIN = ZoneInfo("Europe/Berlin")


def berlin_ts(day: int, hour: int = 20, month: int = 10) -> int:
    return int(datetime(2025, month, day, hour, 0, tzinfo=BERLIN).timestamp())


def test_create_character_signup(manager, notifier, make_raid, make_character, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Thrall")
    signup = manager.create(raid_id, actor=player, role="dps", character_id=char_id, note="  ")
    assert signup.binding == CharacterBound(char_id)
    assert signup.status is SignupStatus.REGISTERED
    assert signup.note is None
    assert notifier.raid_ids == [raid_id]


def test_flexible_registration_does_not_notify(manager, notifier, make_raid, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    signup = manager.create(raid_id, actor=player, role="loot")
    assert signup.binding is FLEXIBLE
    assert notifier.raid_ids == []


def test_duplicate_character_signup_rejected(manager, make_raid, make_character, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Thrall")
    manager.create(raid_id, actor=player, role="tank", character_id=char_id)
    with pytest.raises(DuplicateSignupError):
        manager.create(raid_id, actor=player, role="dps", character_id=char_id)
    # Characterless signups are not unique per raid
    manager.create(raid_id, actor=player, role="lootbuddy")
    manager.create(raid_id, actor=player, role="lootbuddy")
    assert len(db.list_signups(raid_id)) == 3


def test_database_enforces_uniqueness(make_raid, make_character) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Thrall")
    kwargs = dict(
        raid_id=raid_id,
        user_id=100,
        binding=CharacterBound(char_id),
        role="DPS",
        status=SignupStatus.REGISTERED,
    )
    db.insert_signup(**kwargs)
    with pytest.raises(DuplicateSignupError):
        db.insert_signup(**kwargs)


def test_booster_without_character_fails_before_lookup(manager, player) -> None:
    with pytest.raises(ValidationError):
        manager.create(9999, actor=player, role="heal")


def test_unknown_role_and_raid(manager, make_raid, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    with pytest.raises(ValidationError):
        manager.create(raid_id, actor=player, role="bard")
    with pytest.raises(NotFoundError):
        manager.create(raid_id + 1, actor=player, role="loot")


def test_character_must_belong_to_user(manager, make_raid, make_character, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    foreign = make_character("Jaina", user_id=200)
    with pytest.raises(ForbiddenError):
        manager.create(raid_id, actor=player, role="dps", character_id=foreign)
    with pytest.raises(NotFoundError):
        manager.create(raid_id, actor=player, role="dps", character_id=foreign + 1)


def test_signing_up_others_requires_authority(manager, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Jaina", user_id=200)
    with pytest.raises(ForbiddenError):
        manager.create(raid_id, actor=player, role="dps", character_id=char_id, user_id=200)
    signup = manager.create(raid_id, actor=lead, role="dps", character_id=char_id, user_id=200)
    assert signup.user_id == 200


def test_unauthorized_picked_request_is_downgraded(manager, make_raid, make_character, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Thrall")
    signup = manager.create(
        raid_id, actor=player, role="dps", character_id=char_id, status="PICKED"
    )
    assert signup.status is SignupStatus.REGISTERED


def test_lead_may_create_picked_signup(manager, make_raid, make_character, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    first = make_character("Thrall")
    second = make_character("Garrosh")
    signup = manager.create(
        raid_id, actor=lead, role="dps", character_id=first, user_id=100, status="PICKED"
    )
    assert signup.is_picked
    with pytest.raises(ConflictError) as excinfo:
        manager.create(
            raid_id, actor=lead, role="tank", character_id=second, user_id=100, status="PICKED"
        )
    assert excinfo.value.reason is ConflictReason.ALREADY_BOOSTER_IN_EVENT
    assert len(db.list_signups(raid_id)) == 1


def test_pick_requires_authority(manager, make_raid, make_character, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Thrall")
    signup = manager.create(raid_id, actor=player, role="dps", character_id=char_id)
    with pytest.raises(ForbiddenError):
        manager.pick(signup.id, player)
    admin = Actor(user_id=2, is_admin=True)
    assert manager.pick(signup.id, admin).is_picked
    with pytest.raises(NotFoundError):
        manager.pick(signup.id + 100, admin)


def test_character_once_per_cycle_and_difficulty(manager, make_raid, make_character, player, lead) -> None:
    raid_a = make_raid(berlin_ts(10))
    raid_b = make_raid(berlin_ts(12), difficulty="HC")
    raid_mythic = make_raid(berlin_ts(13), difficulty="MYTHIC")
    char_id = make_character("Thrall")
    in_a = manager.create(raid_a, actor=player, role="dps", character_id=char_id)
    in_b = manager.create(raid_b, actor=player, role="dps", character_id=char_id)

    manager.pick(in_a.id, lead)
    # Picking into A removed the character's other registrations of the week
    assert db.fetch_signup(in_b.id) is None

    in_b = manager.create(raid_b, actor=player, role="dps", character_id=char_id)
    with pytest.raises(ConflictError) as excinfo:
        manager.pick(in_b.id, lead)
    assert excinfo.value.reason is ConflictReason.CHAR_ALREADY_PICKED_IN_CYCLE_SAME_DIFFICULTY
    assert db.fetch_signup(in_b.id).status is SignupStatus.REGISTERED

    in_mythic = manager.create(raid_mythic, actor=player, role="dps", character_id=char_id)
    assert manager.pick(in_mythic.id, lead).is_picked


def test_time_conflict_between_raids(manager, make_raid, make_character, player, lead) -> None:
    raid_a = make_raid(berlin_ts(10, 20))
    raid_b = make_raid(berlin_ts(10, 21), difficulty="MYTHIC")
    first = make_character("Thrall")
    second = make_character("Garrosh")
    picked = manager.create(raid_a, actor=player, role="dps", character_id=first)
    manager.pick(picked.id, lead)
    other = manager.create(raid_b, actor=player, role="dps", character_id=second)
    with pytest.raises(ConflictError) as excinfo:
        manager.pick(other.id, lead)
    assert excinfo.value.code == "TIME_CONFLICT"


def test_flexible_pick_next_to_booster_in_same_raid(manager, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    booster = manager.create(raid_id, actor=player, role="dps", character_id=make_character("Thrall"))
    loot = manager.create(raid_id, actor=player, role="lootbuddy")
    manager.pick(booster.id, lead)
    assert manager.pick(loot.id, lead).is_picked


def test_second_booster_in_same_raid(manager, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    first = manager.create(raid_id, actor=player, role="dps", character_id=make_character("Thrall"))
    second = manager.create(raid_id, actor=player, role="heal", character_id=make_character("Anduin"))
    manager.pick(first.id, lead)
    with pytest.raises(ConflictError) as excinfo:
        manager.pick(second.id, lead)
    assert excinfo.value.reason is ConflictReason.ALREADY_BOOSTER_IN_EVENT


def test_cleanup_keeps_picked_and_other_cycles(manager, make_raid, make_character, player, lead) -> None:
    char_id = make_character("Thrall")
    raid_a = make_raid(berlin_ts(10))
    raid_same_week = make_raid(berlin_ts(11))
    raid_picked = make_raid(berlin_ts(12), difficulty="NORMAL")
    raid_next_week = make_raid(berlin_ts(17))
    picked = manager.create(raid_picked, actor=player, role="dps", character_id=char_id)
    manager.pick(picked.id, lead)
    target = manager.create(raid_a, actor=player, role="dps", character_id=char_id)
    registered = manager.create(raid_same_week, actor=player, role="dps", character_id=char_id)
    later = manager.create(raid_next_week, actor=player, role="dps", character_id=char_id)
    loot = manager.create(raid_same_week, actor=player, role="loot")

    manager.pick(target.id, lead)

    assert db.fetch_signup(registered.id) is None
    assert db.fetch_signup(picked.id).status is SignupStatus.PICKED
    assert db.fetch_signup(later.id) is not None
    assert db.fetch_signup(loot.id) is not None


def test_cleanup_is_callable_on_its_own(manager, make_raid, make_character, player) -> None:
    char_id = make_character("Thrall")
    raid_a = make_raid(berlin_ts(10))
    raid_b = make_raid(berlin_ts(11))
    target = manager.create(raid_a, actor=player, role="dps", character_id=char_id)
    other = manager.create(raid_b, actor=player, role="dps", character_id=char_id)
    with db.transaction() as conn:
        removed = manager.cleanup_registrations(conn, target, db.fetch_raid(raid_a, conn=conn))
    assert removed == [other.id]
    assert db.fetch_signup(target.id) is not None


def test_unpick_then_pick_round_trip(manager, notifier, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    signup = manager.create(raid_id, actor=player, role="dps", character_id=make_character("Thrall"))
    manager.pick(signup.id, lead)
    assert manager.unpick(signup.id, lead).status is SignupStatus.REGISTERED
    again = manager.pick(signup.id, lead)
    assert again.status is SignupStatus.PICKED
    assert notifier.raid_ids == [raid_id] * 4


def test_notifier_failure_does_not_fail_pick(
    failing_manager, make_raid, make_character, player, lead, caplog
) -> None:
    raid_id = make_raid(berlin_ts(10))
    signup = failing_manager.create(
        raid_id, actor=player, role="dps", character_id=make_character("Thrall")
    )
    assert failing_manager.pick(signup.id, lead).is_picked
    assert "Failed to notify" in caplog.text


def test_remove_and_remove_for_character(manager, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    char_id = make_character("Thrall")
    loot = manager.create(raid_id, actor=player, role="loot")
    manager.create(raid_id, actor=player, role="dps", character_id=char_id)

    assert manager.remove(loot.id) == {"deleted": True}
    with pytest.raises(NotFoundError):
        manager.remove(loot.id)

    stranger = Actor(user_id=300)
    with pytest.raises(ForbiddenError):
        manager.remove_for_character(raid_id, char_id, stranger)
    assert manager.remove_for_character(raid_id, char_id, player) == {"deleted": True}
    with pytest.raises(NotFoundError):
        manager.remove_for_character(raid_id, char_id, lead)


def test_roster_splits_picked_and_registered(manager, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    booster = manager.create(raid_id, actor=player, role="dps", character_id=make_character("Thrall"))
    loot = manager.create(raid_id, actor=player, role="loot")
    manager.pick(booster.id, lead)

    picked, registered = SignupManager.roster(raid_id)
    assert [s.id for s in picked] == [booster.id]
    assert [s.id for s in registered] == [loot.id]
    assert {s.id for s in manager.list_for_user(player.user_id)} == {booster.id, loot.id}
    with pytest.raises(NotFoundError):
        SignupManager.roster(raid_id + 1)


def test_deleting_raid_drops_signups(manager, make_raid, player) -> None:
    raid_id = make_raid(berlin_ts(10))
    signup = manager.create(raid_id, actor=player, role="loot")
    assert db.delete_raid(raid_id)
    assert db.fetch_signup(signup.id) is None


def test_remove_with_actor_checks_authority(manager, notifier, make_raid, make_character, player, lead) -> None:
    raid_id = make_raid(berlin_ts(10))
    own = manager.create(raid_id, actor=player, role="loot")
    booster = manager.create(raid_id, actor=player, role="dps", character_id=make_character("Thrall"))
    other_loot = manager.create(raid_id, actor=Actor(user_id=200), role="loot")

    with pytest.raises(ForbiddenError):
        manager.remove(other_loot.id, player)
    assert db.fetch_signup(other_loot.id) is not None

    assert manager.remove(own.id, player) == {"deleted": True}
    assert manager.remove(booster.id, lead) == {"deleted": True}
    assert manager.remove(other_loot.id, Actor(user_id=300, is_admin=True)) == {"deleted": True}
    assert db.list_signups(raid_id) == []
    assert notifier.raid_ids[-3:] == [raid_id, raid_id, raid_id]


def test_invalid_character_id_is_a_validation_error(manager, make_raid, player) -> None:
    assert binding_for("7") == CharacterBound(7)
    with pytest.raises(ValidationError):
        binding_for([7])
    raid_id = make_raid(berlin_ts(10))
    with pytest.raises(ValidationError):
        manager.create(raid_id, actor=player, role="dps", character_id="abc")
    assert db.list_signups(raid_id) == []


def test_concurrent_picks_cannot_both_pass_time_check(manager, make_raid, make_character, player, lead) -> None:
    raid_a = make_raid(berlin_ts(10, 20))
    raid_b = make_raid(berlin_ts(10, 20) + 30 * 60, difficulty="MYTHIC")
    first = manager.create(raid_a, actor=player, role="dps", character_id=make_character("Thrall"))
    second = manager.create(raid_b, actor=player, role="dps", character_id=make_character("Garrosh"))

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def pick(signup_id: int) -> None:
        barrier.wait()
        try:
            manager.pick(signup_id, lead)
            result = "ok"
        except ConflictError as exc:
            result = exc.code
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=pick, args=(s.id,)) for s in (first, second)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["TIME_CONFLICT", "ok"]
    statuses = sorted(db.fetch_signup(s.id).status.value for s in (first, second))
    assert statuses == ["PICKED", "REGISTERED"]
