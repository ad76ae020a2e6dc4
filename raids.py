"""Shared helpers for editing raids and listing a user's signups."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

import db
from errors import ForbiddenError, NotFoundError, ValidationError
from models import Actor, Raid, Signup, SignupStatus
from presets import resolve_preset
from utils import ROLE_LABELS, format_ts, may_manage, parse_time_local

STATUS_LABELS = {
    SignupStatus.PICKED: "в составе",
    SignupStatus.REGISTERED: "в ожидании",
}


def edit_raid(
    raid_id: int,
    actor: Actor,
    *,
    title: Optional[str] = None,
    starts_at: Optional[str] = None,
    difficulty: Optional[str] = None,
    loot_type: Optional[str] = None,
    bosses: Optional[int] = None,
    preset: Optional[str] = None,
    lead_id: Optional[int] = None,
) -> Raid:
    """Apply the given changes to a raid the actor may manage.

    Existing signups are kept as they are; moving the start time does not
    re-run the pick rules for already picked signups.
    """
    raid = db.fetch_raid(raid_id)
    if raid is None:
        raise NotFoundError(f"Raid {raid_id} not found")
    if not may_manage(actor, raid):
        raise ForbiddenError(f"User {actor.user_id} may not manage raid {raid_id}")
    if title is not None and not title.strip():
        raise ValidationError("Raid title is required")

    starts_ts = int(parse_time_local(starts_at).timestamp()) if starts_at else None
    preset_obj = resolve_preset(preset)
    db.update_raid(
        raid_id,
        title=title,
        difficulty=difficulty,
        loot_type=loot_type,
        bosses=bosses,
        starts_at=starts_ts,
        lead_id=lead_id,
        preset_id=preset_obj.id if preset_obj else None,
    )
    updated = db.fetch_raid(raid_id)
    if updated is None:
        raise NotFoundError(f"Raid {raid_id} not found")
    return updated


def user_raids(
    user_id: int, now: Optional[datetime] = None
) -> Tuple[List[Tuple[Raid, Signup]], List[Tuple[Raid, Signup]]]:
    """Split a user's signups into upcoming (soonest first) and past (latest first)."""
    now_ts = int((now or datetime.now(tz=timezone.utc)).timestamp())
    upcoming: List[Tuple[Raid, Signup]] = []
    past: List[Tuple[Raid, Signup]] = []
    for signup in db.list_user_signups(user_id):
        raid = db.fetch_raid(signup.raid_id)
        if raid is None:
            continue
        (upcoming if raid.starts_at >= now_ts else past).append((raid, signup))
    upcoming.sort(key=lambda pair: (pair[0].starts_at, pair[1].id))
    past.sort(key=lambda pair: (-pair[0].starts_at, pair[1].id))
    return upcoming, past


def _describe_entry(raid: Raid, signup: Signup) -> str:
    character = db.fetch_character(signup.character_id) if signup.character_id else None
    who = character.display_name if character else "без персонажа"
    return (
        f"#{signup.id} • `{raid.id}` {raid.title} • {format_ts(raid.starts_at)}"
        f" • {ROLE_LABELS[signup.role]} ({who}) • {STATUS_LABELS[signup.status]}"
    )


def describe_user_signups(
    user_id: int, now: Optional[datetime] = None, past_limit: int = 5
) -> Tuple[str, bool]:
    upcoming, past = user_raids(user_id, now)
    if not upcoming and not past:
        return ("У вас пока нет заявок.", False)
    lines = ["**Предстоящие**"]
    lines.extend(_describe_entry(raid, signup) for raid, signup in upcoming)
    if not upcoming:
        lines.append("—")
    if past:
        lines.append("**Прошедшие**")
        lines.extend(_describe_entry(raid, signup) for raid, signup in past[:past_limit])
    return ("\n".join(lines), True)


__all__ = ["describe_user_signups", "edit_raid", "user_raids"]
