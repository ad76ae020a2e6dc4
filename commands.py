"""Slash commands for raids, signups, characters and presets."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import discord
from discord import app_commands

import db
from config import TIME_FMT, log
from cycles import current_window, format_window_label, next_window
from errors import NotFoundError, RaidBotError, ValidationError
from models import Character, Difficulty, LootType, SignupRole, SignupStatus
from presets import create_or_update_preset, delete_preset, list_presets_description, resolve_preset
from raids import describe_user_signups, edit_raid
from utils import actor_from_member, describe_error, format_ts, may_manage, parse_time_local
from views import (
    DiscordRaidNotifier,
    RosterView,
    build_raid_embed,
    handle_leave,
    manager_for,
    refresh_message,
)

raid_group = app_commands.Group(name="raid", description="Рейдовые события")
signup_group = app_commands.Group(name="signup", description="Заявки на рейды")
char_group = app_commands.Group(name="char", description="Ваши персонажи")
preset_group = app_commands.Group(name="preset", description="Пресеты состава")

DIFFICULTY_CHOICES = [
    app_commands.Choice(name="Normal", value=Difficulty.NORMAL.value),
    app_commands.Choice(name="Heroic", value=Difficulty.HEROIC.value),
    app_commands.Choice(name="Mythic", value=Difficulty.MYTHIC.value),
]

LOOT_CHOICES = [
    app_commands.Choice(name="Saved", value=LootType.SAVED.value),
    app_commands.Choice(name="Unsaved", value=LootType.UNSAVED.value),
    app_commands.Choice(name="VIP", value=LootType.VIP.value),
]

ROLE_CHOICES = [
    app_commands.Choice(name="Танк", value=SignupRole.TANK.value),
    app_commands.Choice(name="Хил", value=SignupRole.HEAL.value),
    app_commands.Choice(name="ДД", value=SignupRole.DPS.value),
    app_commands.Choice(name="Лутбадди", value=SignupRole.LOOTBUDDY.value),
]

PERMISSION_ERROR = "Недостаточно прав: только лидер рейда, администратор или владелец."


def _resolve_character(user_id: int, name: str, realm: Optional[str] = None) -> Character:
    if realm:
        character = db.find_character(user_id, name, realm)
        if character is None:
            raise NotFoundError(f"Character {name}-{realm} not found")
        return character
    matches = [c for c in db.list_characters(user_id) if c.name.lower() == name.strip().lower()]
    if not matches:
        raise NotFoundError(f"Character {name} not found")
    if len(matches) > 1:
        raise ValidationError(f"Several characters named {name}, specify the realm")
    return matches[0]


# ---------------------------------------------------------------------- /raid


@raid_group.command(name="create", description="Создать рейдовое событие")
@app_commands.describe(
    title="Название события",
    starts_at=f"Время старта в формате {TIME_FMT} (время сервера рейда)",
    difficulty="Сложность",
    loot_type="Тип лута",
    bosses="Количество боссов (0-8)",
    preset="Пресет состава (опционально)",
    lead="Лидер рейда (по умолчанию вы)",
)
@app_commands.choices(difficulty=DIFFICULTY_CHOICES, loot_type=LOOT_CHOICES)
async def raid_create(
    interaction: discord.Interaction,
    title: str,
    starts_at: str,
    difficulty: app_commands.Choice[str],
    loot_type: app_commands.Choice[str],
    bosses: app_commands.Range[int, 0, 8] = 8,
    preset: Optional[str] = None,
    lead: Optional[discord.Member] = None,
) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    if actor.role_level < 1:
        await interaction.response.send_message(
            "Создавать рейды могут только рейдлидеры и администраторы.", ephemeral=True
        )
        return
    try:
        starts_ts = int(parse_time_local(starts_at).timestamp())
        preset_obj = resolve_preset(preset)
        raid_id = db.create_raid(
            title=title,
            difficulty=difficulty.value,
            loot_type=loot_type.value,
            starts_at=starts_ts,
            bosses=int(bosses),
            lead_id=lead.id if lead else interaction.user.id,
            preset_id=preset_obj.id if preset_obj else None,
            channel_id=int(interaction.channel_id),
        )
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return

    raid = db.fetch_raid(raid_id)
    assert raid is not None
    log.info("Raid %s created by %s", raid_id, interaction.user.id)
    await interaction.response.send_message(embed=build_raid_embed(raid), view=RosterView(raid.id))
    msg = await interaction.original_response()
    db.update_message_id(raid_id, int(interaction.channel_id), msg.id)


@raid_group.command(name="delete", description="Удалить событие")
@app_commands.describe(raid_id="ID события для удаления")
async def raid_delete(interaction: discord.Interaction, raid_id: int) -> None:
    raid = db.fetch_raid(raid_id)
    if not raid:
        await interaction.response.send_message("Событие не найдено.", ephemeral=True)
        return
    if not may_manage(actor_from_member(interaction.user, interaction.guild), raid):
        await interaction.response.send_message(PERMISSION_ERROR, ephemeral=True)
        return

    db.delete_raid(raid_id)
    log.info("Raid %s deleted by %s", raid_id, interaction.user.id)
    await interaction.response.send_message("Событие удалено.", ephemeral=True)

    if raid.message_id and raid.channel_id:
        channel = interaction.client.get_channel(raid.channel_id)
        try:
            if isinstance(channel, (discord.TextChannel, discord.Thread)):
                msg = await channel.fetch_message(raid.message_id)
                await msg.edit(content="(Событие удалено)", embed=None, view=None)
        except discord.HTTPException:  # pragma: no cover - network errors ignored
            log.warning("Could not update message of deleted raid %s", raid_id)


@raid_group.command(name="edit", description="Изменить событие")
@app_commands.describe(
    raid_id="ID события",
    title="Новое название",
    starts_at=f"Новое время старта в формате {TIME_FMT}",
    difficulty="Сложность",
    loot_type="Тип лута",
    bosses="Количество боссов (0-8)",
    preset="Пресет состава",
    lead="Новый лидер рейда",
)
@app_commands.choices(difficulty=DIFFICULTY_CHOICES, loot_type=LOOT_CHOICES)
async def raid_edit(
    interaction: discord.Interaction,
    raid_id: int,
    title: Optional[str] = None,
    starts_at: Optional[str] = None,
    difficulty: Optional[app_commands.Choice[str]] = None,
    loot_type: Optional[app_commands.Choice[str]] = None,
    bosses: Optional[app_commands.Range[int, 0, 8]] = None,
    preset: Optional[str] = None,
    lead: Optional[discord.Member] = None,
) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    try:
        raid = edit_raid(
            raid_id,
            actor,
            title=title,
            starts_at=starts_at,
            difficulty=difficulty.value if difficulty else None,
            loot_type=loot_type.value if loot_type else None,
            bosses=bosses,
            preset=preset,
            lead_id=lead.id if lead else None,
        )
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return

    log.info("Raid %s edited by %s", raid_id, interaction.user.id)
    await interaction.response.send_message("Событие обновлено.", ephemeral=True)
    try:
        await refresh_message(interaction.client, raid)
    except discord.HTTPException:
        log.warning("Could not refresh message of edited raid %s", raid_id)


@raid_group.command(name="view", description="Показать событие")
@app_commands.describe(raid_id="ID события")
async def raid_view(interaction: discord.Interaction, raid_id: int) -> None:
    raid = db.fetch_raid(raid_id)
    if not raid:
        await interaction.response.send_message("Событие не найдено.", ephemeral=True)
        return
    await interaction.response.send_message(embed=build_raid_embed(raid), view=RosterView(raid.id))


@raid_group.command(name="cycle", description="Рейды текущего или следующего цикла")
@app_commands.describe(upcoming="Показать следующий цикл вместо текущего")
async def raid_cycle(interaction: discord.Interaction, upcoming: bool = False) -> None:
    now = datetime.now(tz=timezone.utc)
    window = next_window(now) if upcoming else current_window(now)
    raids = db.raids_in_window(window)
    header = f"**{format_window_label(window)}**"
    if not raids:
        await interaction.response.send_message(f"{header}\nРейдов нет.", ephemeral=True)
        return
    lines = [header]
    for raid in raids:
        counts = db.count_signups_by_status(raid.id)
        lines.append(
            f"`{raid.id}` • {format_ts(raid.starts_at)} • {raid.title}"
            f" • {raid.difficulty.value.title()} • {raid.loot_type.value.title()}"
            f" • состав {counts[SignupStatus.PICKED]}, заявок {counts[SignupStatus.REGISTERED]}"
        )
    await interaction.response.send_message("\n".join(lines), ephemeral=True)


# -------------------------------------------------------------------- /signup


@signup_group.command(name="join", description="Записаться на рейд")
@app_commands.describe(
    raid_id="ID события",
    role="Роль",
    character="Имя персонажа (для лутбадди можно без персонажа)",
    realm="Сервер персонажа (если имя неоднозначно)",
    saved="Персонаж сохранён (saved)",
    note="Комментарий",
    member="Записать другого игрока (только для лидера)",
)
@app_commands.choices(role=ROLE_CHOICES)
async def signup_join(
    interaction: discord.Interaction,
    raid_id: int,
    role: app_commands.Choice[str],
    character: Optional[str] = None,
    realm: Optional[str] = None,
    saved: bool = False,
    note: Optional[str] = None,
    member: Optional[discord.Member] = None,
) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    target_id = member.id if member else interaction.user.id
    try:
        character_id = None
        if character:
            character_id = _resolve_character(target_id, character, realm).id
        signup = manager_for(interaction.client).create(
            raid_id,
            actor=actor,
            role=role.value,
            character_id=character_id,
            user_id=target_id,
            note=note,
            saved=saved,
        )
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"Заявка #{signup.id} принята: **{role.name}**.", ephemeral=True
    )


@signup_group.command(name="pick", description="Взять заявку в состав")
@app_commands.describe(signup_id="ID заявки")
async def signup_pick(interaction: discord.Interaction, signup_id: int) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    try:
        signup = manager_for(interaction.client).pick(signup_id, actor)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"<@{signup.user_id}> взят в состав (заявка #{signup.id}).", ephemeral=True
    )


@signup_group.command(name="unpick", description="Вернуть заявку из состава")
@app_commands.describe(signup_id="ID заявки")
async def signup_unpick(interaction: discord.Interaction, signup_id: int) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    try:
        signup = manager_for(interaction.client).unpick(signup_id, actor)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"Заявка #{signup.id} возвращена в список ожидания.", ephemeral=True
    )


@signup_group.command(name="remove", description="Удалить заявку по ID")
@app_commands.describe(signup_id="ID заявки (виден в составе события)")
async def signup_remove(interaction: discord.Interaction, signup_id: int) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    try:
        manager_for(interaction.client).remove(signup_id, actor)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(f"Заявка #{signup_id} удалена.", ephemeral=True)


@signup_group.command(name="mine", description="Показать ваши заявки")
async def signup_mine(interaction: discord.Interaction) -> None:
    text, _ = describe_user_signups(interaction.user.id)
    await interaction.response.send_message(text, ephemeral=True)


@signup_group.command(name="leave", description="Снять запись с рейда")
@app_commands.describe(
    raid_id="ID события",
    character="Персонаж (без него снимаются все ваши заявки в ожидании)",
    realm="Сервер персонажа",
)
async def signup_leave(
    interaction: discord.Interaction,
    raid_id: int,
    character: Optional[str] = None,
    realm: Optional[str] = None,
) -> None:
    if not character:
        await handle_leave(interaction, raid_id)
        return
    actor = actor_from_member(interaction.user, interaction.guild)
    try:
        resolved = _resolve_character(interaction.user.id, character, realm)
        manager_for(interaction.client).remove_for_character(raid_id, resolved.id, actor)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"Персонаж **{resolved.display_name}** снят с рейда.", ephemeral=True
    )


# ---------------------------------------------------------------------- /char


@char_group.command(name="add", description="Добавить персонажа")
@app_commands.describe(
    name="Имя персонажа",
    realm="Сервер",
    char_class="Класс (опционально)",
    spec="Специализация (опционально)",
    item_level="Уровень предметов (опционально)",
)
async def char_add(
    interaction: discord.Interaction,
    name: str,
    realm: str,
    char_class: Optional[str] = None,
    spec: Optional[str] = None,
    item_level: Optional[app_commands.Range[int, 1, 1000]] = None,
) -> None:
    try:
        db.create_character(
            user_id=interaction.user.id,
            name=name,
            realm=realm,
            char_class=char_class,
            spec=spec,
            item_level=int(item_level) if item_level is not None else None,
        )
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"Персонаж **{name.strip()}** добавлен.", ephemeral=True
    )


@char_group.command(name="list", description="Показать ваших персонажей")
async def char_list(interaction: discord.Interaction) -> None:
    characters = db.list_characters(interaction.user.id)
    if not characters:
        await interaction.response.send_message("У вас пока нет персонажей.", ephemeral=True)
        return
    lines = []
    for character in characters:
        details = " ".join(part for part in (character.spec, character.char_class) if part)
        ilvl = f" • ilvl {character.item_level}" if character.item_level else ""
        lines.append(f"`{character.id}` • {character.display_name} {details}{ilvl}".rstrip())
    await interaction.response.send_message("\n".join(lines), ephemeral=True)


@char_group.command(name="edit", description="Изменить данные персонажа")
@app_commands.describe(
    name="Имя персонажа",
    realm="Сервер (если персонажей с таким именем несколько)",
    char_class="Класс",
    spec="Специализация",
    item_level="Уровень предметов",
)
async def char_edit(
    interaction: discord.Interaction,
    name: str,
    realm: Optional[str] = None,
    char_class: Optional[str] = None,
    spec: Optional[str] = None,
    item_level: Optional[app_commands.Range[int, 0, 1000]] = None,
) -> None:
    try:
        character = _resolve_character(interaction.user.id, name, realm)
        db.update_character(
            character.id, char_class=char_class, spec=spec, item_level=item_level
        )
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"Персонаж **{character.display_name}** обновлён.", ephemeral=True
    )


@char_group.command(name="delete", description="Удалить персонажа и его заявки")
@app_commands.describe(
    name="Имя персонажа",
    realm="Сервер (если персонажей с таким именем несколько)",
)
async def char_delete(
    interaction: discord.Interaction, name: str, realm: Optional[str] = None
) -> None:
    try:
        character = _resolve_character(interaction.user.id, name, realm)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return

    raid_ids = {
        signup.raid_id
        for signup in db.list_user_signups(interaction.user.id)
        if signup.character_id == character.id
    }
    db.delete_character(character.id)
    log.info("Character %s deleted by %s", character.id, interaction.user.id)
    await interaction.response.send_message(
        f"Персонаж **{character.display_name}** удалён вместе с заявками.", ephemeral=True
    )

    notifier = DiscordRaidNotifier(interaction.client)
    for raid_id in sorted(raid_ids):
        notifier.notify(raid_id)


# -------------------------------------------------------------------- /preset


def _can_edit_presets(interaction: discord.Interaction) -> bool:
    actor = actor_from_member(interaction.user, interaction.guild)
    return actor.role_level >= 2


@preset_group.command(name="create", description="Создать или обновить пресет")
@app_commands.describe(
    name="Название пресета",
    roles="Роли и лимиты в формате tank:2, heal:4, dps:14, loot:4",
)
async def preset_create(interaction: discord.Interaction, name: str, roles: str) -> None:
    if not _can_edit_presets(interaction):
        await interaction.response.send_message(PERMISSION_ERROR, ephemeral=True)
        return
    try:
        preset = create_or_update_preset(name, roles)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        f"Пресет **{preset.name}** сохранён ({preset.total} мест).", ephemeral=True
    )


@preset_group.command(name="list", description="Показать пресеты")
async def preset_list(interaction: discord.Interaction) -> None:
    description, _ = list_presets_description()
    await interaction.response.send_message(description, ephemeral=True)


@preset_group.command(name="delete", description="Удалить пресет")
@app_commands.describe(name="Название пресета")
async def preset_delete(interaction: discord.Interaction, name: str) -> None:
    if not _can_edit_presets(interaction):
        await interaction.response.send_message(PERMISSION_ERROR, ephemeral=True)
        return
    try:
        message = delete_preset(name)
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(message, ephemeral=True)


__all__ = [
    "char_group",
    "preset_group",
    "raid_group",
    "signup_group",
]
