"""Helpers shared by the command layer and the signup core."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Sequence

from config import CYCLE_TIMEZONE, RAIDLEAD_ROLE, TIME_FMT
from errors import (
    ConflictError,
    ConflictReason,
    DuplicateSignupError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from models import Actor, Character, Preset, Raid, Signup, SignupRole

if TYPE_CHECKING:
    import discord


def actor_from_member(user, guild=None) -> Actor:
    """Build an Actor from a Discord member and its guild."""
    perms = getattr(user, "guild_permissions", None)
    roles = getattr(user, "roles", None) or []
    owner_id = getattr(guild, "owner_id", None)
    return Actor(
        user_id=int(user.id),
        is_raidlead=any(getattr(role, "name", None) == RAIDLEAD_ROLE for role in roles),
        is_admin=bool(
            perms
            and (getattr(perms, "administrator", False) or getattr(perms, "manage_events", False))
        ),
        is_owner=owner_id is not None and int(owner_id) == int(user.id),
    )


def may_manage(actor: Actor, raid: Raid) -> bool:
    """Return True if the actor leads the raid or is an admin/owner."""
    if actor.is_admin or actor.is_owner:
        return True
    return raid.lead_id is not None and actor.user_id == raid.lead_id


def parse_time_local(value: str) -> datetime:
    """Parse ``TIME_FMT`` as wall-clock time in the cycle time zone."""
    from zoneinfo import ZoneInfo

    try:
        naive = datetime.strptime(value.strip(), TIME_FMT)
    except ValueError as exc:
        raise ValidationError(f"Time must look like {TIME_FMT}: '{value}'") from exc
    return naive.replace(tzinfo=ZoneInfo(CYCLE_TIMEZONE))


def format_ts(ts: int) -> str:
    from zoneinfo import ZoneInfo

    return datetime.fromtimestamp(ts, tz=ZoneInfo(CYCLE_TIMEZONE)).strftime(TIME_FMT)


def parse_role_capacities(roles_str: str) -> Dict[SignupRole, int]:
    """Parse ``tank:2, heal:3, dps:10, loot:4`` into role capacities."""
    if not roles_str:
        return {}
    result: Dict[SignupRole, int] = {}
    for chunk in roles_str.split(","):
        part = chunk.strip()
        if not part:
            continue
        if ":" not in part:
            raise ValidationError(f"Invalid role chunk '{part}'. Use name:count")
        name, count = part.split(":", 1)
        role = SignupRole.parse(name)
        try:
            capacity = int(count.strip())
        except ValueError as exc:
            raise ValidationError(f"Invalid count for role '{name.strip()}': '{count}'") from exc
        if capacity < 0:
            raise ValidationError(f"Role capacity must be >= 0 for '{name.strip()}'")
        result[role] = capacity
    if not result:
        raise ValidationError("At least one role must be specified")
    return result


ROLE_LABELS = {
    SignupRole.TANK: "Танки",
    SignupRole.HEAL: "Хилы",
    SignupRole.DPS: "ДД",
    SignupRole.LOOTBUDDY: "Лутбадди",
}


def _signup_label(signup: Signup, characters: Mapping[int, Character]) -> str:
    mention = f"<@{signup.user_id}>"
    character = characters.get(signup.character_id) if signup.character_id else None
    if character:
        mention = f"{character.display_name} ({mention})"
    if signup.saved:
        mention += " 🔒"
    # Leads address signups by id in /signup pick, unpick and remove
    return f"`#{signup.id}` {mention}"


def build_roster_text(
    picked: Sequence[Signup],
    characters: Mapping[int, Character],
    preset: Optional[Preset] = None,
) -> str:
    by_role: Dict[SignupRole, list[str]] = {role: [] for role in SignupRole}
    for signup in picked:
        by_role[signup.role].append(_signup_label(signup, characters))
    capacity = preset.capacity if preset else {}
    lines: list[str] = []
    for role, members in by_role.items():
        limit = capacity.get(role)
        if not members and not limit:
            continue
        bar = f"[{len(members)}/{limit}]" if limit else f"[{len(members)}]"
        lines.append(f"**{ROLE_LABELS[role]}** {bar}: " + (", ".join(members) if members else "—"))
    return "\n".join(lines)


def build_waiting_text(registered: Sequence[Signup], characters: Mapping[int, Character]) -> str:
    return "\n".join(
        f"{ROLE_LABELS[signup.role]}: {_signup_label(signup, characters)}"
        for signup in registered
    )


def make_embed(
    raid: Raid,
    picked: Sequence[Signup],
    registered: Sequence[Signup],
    characters: Mapping[int, Character],
    preset: Optional[Preset] = None,
) -> "discord.Embed":
    import discord

    embed = discord.Embed(title=f"⚔️ {raid.title}", color=discord.Color.blurple())
    embed.add_field(name="Старт", value=format_ts(raid.starts_at))
    embed.add_field(name="Сложность", value=raid.difficulty.value.title())
    embed.add_field(name="Лут", value=raid.loot_type.value.title())
    if raid.bosses:
        embed.add_field(name="Боссы", value=f"{raid.bosses}/8")
    if raid.lead_id:
        embed.add_field(name="Лидер", value=f"<@{raid.lead_id}>")
    embed.add_field(
        name="Состав",
        value=build_roster_text(picked, characters, preset) or "—",
        inline=False,
    )
    waiting = build_waiting_text(registered, characters)
    if waiting:
        embed.add_field(name="Заявки", value=waiting[:1024], inline=False)
    embed.set_footer(text=f"ID события: {raid.id}")
    return embed


CONFLICT_MESSAGES = {
    ConflictReason.ALREADY_BOOSTER_IN_EVENT: "У игрока уже есть выбранный персонаж в этом рейде.",
    ConflictReason.CHAR_ALREADY_PICKED_IN_CYCLE_SAME_DIFFICULTY: (
        "Персонаж уже выбран на эту сложность в текущем цикле."
    ),
    ConflictReason.TIME_CONFLICT: "Пересечение по времени с другим рейдом (±90 минут).",
}


def describe_error(exc: Exception) -> str:
    """Turn a core error into a user-facing message."""
    if isinstance(exc, ConflictError):
        return f"Конфликт: {CONFLICT_MESSAGES.get(exc.reason, str(exc))}"
    if isinstance(exc, DuplicateSignupError):
        return "Этот персонаж уже записан на рейд."
    if isinstance(exc, ForbiddenError):
        return "Недостаточно прав: только лидер рейда, администратор или владелец."
    if isinstance(exc, NotFoundError):
        return f"Не найдено: {exc}"
    if isinstance(exc, ValidationError):
        return f"Ошибка: {exc}"
    return "Внутренняя ошибка."


__all__ = [
    "actor_from_member",
    "build_roster_text",
    "build_waiting_text",
    "describe_error",
    "format_ts",
    "make_embed",
    "may_manage",
    "parse_role_capacities",
    "parse_time_local",
]
