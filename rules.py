"""Roster admission rules checked before a signup may become picked.

The rules only read the picked state handed in by the caller and never touch
the database. Rules run in a fixed order and the first failure wins:

1. a user may have only one picked character-bound signup per raid;
2. a character may be picked only once per cycle window and difficulty;
3. a user may not be picked into raids starting within the collision window
   of each other. Within the same raid, a flexible (loot) pick may join an
   existing character pick.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import config
from cycles import window_containing
from errors import ConflictError, ConflictReason
from models import CharacterBound, PickedEntry, Raid, Signup


@dataclass(slots=True)
class Conflict:
    reason: ConflictReason
    message: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_error(self) -> ConflictError:
        return ConflictError(self.reason, self.message, self.meta)


def collision_bounds(starts_at: int, minutes: Optional[int] = None) -> Tuple[int, int]:
    """Inclusive ``(from, to)`` epoch bounds around a raid start."""
    span = (config.PICK_COLLISION_MINUTES if minutes is None else minutes) * 60
    return starts_at - span, starts_at + span


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _others(entries: Iterable[PickedEntry], signup_id: int) -> List[PickedEntry]:
    return [entry for entry in entries if entry.signup_id != signup_id]


def check_booster_in_event(
    signup: Signup, user_picks: Iterable[PickedEntry]
) -> Optional[Conflict]:
    if not isinstance(signup.binding, CharacterBound):
        return None
    for entry in _others(user_picks, signup.id):
        if (
            entry.raid_id == signup.raid_id
            and entry.user_id == signup.user_id
            and isinstance(entry.binding, CharacterBound)
        ):
            return Conflict(
                ConflictReason.ALREADY_BOOSTER_IN_EVENT,
                "User already has a picked boost character in this raid",
                {
                    "signup_id": signup.id,
                    "conflicting_signup_id": entry.signup_id,
                    "raid_id": signup.raid_id,
                    "user_id": signup.user_id,
                },
            )
    return None


def check_character_cycle(
    signup: Signup, raid: Raid, character_picks: Iterable[PickedEntry]
) -> Optional[Conflict]:
    if not isinstance(signup.binding, CharacterBound):
        return None
    window = window_containing(raid.starts_at)
    for entry in _others(character_picks, signup.id):
        if entry.character_id != signup.binding.character_id:
            continue
        if entry.raid_id == signup.raid_id:
            continue
        if entry.difficulty is not raid.difficulty:
            continue
        if not window.contains(entry.starts_at):
            continue
        return Conflict(
            ConflictReason.CHAR_ALREADY_PICKED_IN_CYCLE_SAME_DIFFICULTY,
            "Character is already picked for this difficulty in the current cycle",
            {
                "signup_id": signup.id,
                "conflicting_signup_id": entry.signup_id,
                "raid_id": signup.raid_id,
                "conflicting_raid_id": entry.raid_id,
                "character_id": signup.binding.character_id,
                "difficulty": raid.difficulty.value,
                "window_start": window.start.isoformat(),
                "window_end": window.end.isoformat(),
            },
        )
    return None


def check_time_collision(
    signup: Signup, raid: Raid, user_picks: Iterable[PickedEntry]
) -> Optional[Conflict]:
    lower, upper = collision_bounds(raid.starts_at)
    colliding = [
        entry
        for entry in _others(user_picks, signup.id)
        if entry.user_id == signup.user_id and lower <= entry.starts_at <= upper
    ]
    if not colliding:
        return None
    other_raids = [entry for entry in colliding if entry.raid_id != signup.raid_id]
    if not other_raids:
        # Same raid only: a loot pick may sit next to a character pick.
        if not isinstance(signup.binding, CharacterBound) and any(
            isinstance(entry.binding, CharacterBound) for entry in colliding
        ):
            return None
    culprit = other_raids[0] if other_raids else colliding[0]
    return Conflict(
        ConflictReason.TIME_CONFLICT,
        f"Time collision within {config.PICK_COLLISION_MINUTES} minutes with another picked signup",
        {
            "signup_id": signup.id,
            "conflicting_signup_id": culprit.signup_id,
            "raid_id": signup.raid_id,
            "conflicting_raid_id": culprit.raid_id,
            "user_id": signup.user_id,
            "window_start": _iso(lower),
            "window_end": _iso(upper),
        },
    )


def evaluate_pick(
    signup: Signup,
    raid: Raid,
    *,
    user_picks: Iterable[PickedEntry],
    character_picks: Iterable[PickedEntry],
) -> Optional[Conflict]:
    """Return the first rule violation for picking ``signup``, or ``None``."""
    user_picks = list(user_picks)
    character_picks = list(character_picks)
    return (
        check_booster_in_event(signup, user_picks)
        or check_character_cycle(signup, raid, character_picks)
        or check_time_collision(signup, raid, user_picks)
    )


def assert_can_pick(
    signup: Signup,
    raid: Raid,
    *,
    user_picks: Iterable[PickedEntry],
    character_picks: Iterable[PickedEntry],
) -> None:
    conflict = evaluate_pick(
        signup, raid, user_picks=user_picks, character_picks=character_picks
    )
    if conflict is not None:
        raise conflict.to_error()


__all__ = [
    "Conflict",
    "assert_can_pick",
    "check_booster_in_event",
    "check_character_cycle",
    "check_time_collision",
    "collision_bounds",
    "evaluate_pick",
]
