"""Discord UI components and the roster message notifier."""
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Set

import discord

import db
from config import log
from errors import RaidBotError
from models import Character, Raid, Signup, SignupRole, SignupStatus
from signups import SignupManager
from utils import actor_from_member, describe_error, make_embed


def load_characters(signups: Iterable[Signup]) -> Dict[int, Character]:
    characters: Dict[int, Character] = {}
    for signup in signups:
        character_id = signup.character_id
        if character_id is None or character_id in characters:
            continue
        character = db.fetch_character(character_id)
        if character is not None:
            characters[character_id] = character
    return characters


def build_raid_embed(raid: Raid) -> discord.Embed:
    picked, registered = SignupManager.roster(raid.id)
    preset = db.fetch_preset_by_id(raid.preset_id) if raid.preset_id else None
    characters = load_characters([*picked, *registered])
    return make_embed(raid, picked, registered, characters, preset)


class DiscordRaidNotifier:
    """Refreshes the raid's roster message after a committed change.

    ``notify`` is called synchronously by the signup core. The refresh is
    scheduled on the running event loop and never awaited by the caller.
    """

    def __init__(self, client: discord.Client):
        self.client = client
        self._tasks: Set[asyncio.Task] = set()

    def notify(self, raid_id: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running loop, skipping refresh of raid %s", raid_id)
            return
        task = loop.create_task(self._refresh(raid_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self, raid_id: int) -> None:
        # Detached task: every failure is logged here and never re-raised
        try:
            raid = db.fetch_raid(raid_id)
            if raid is None:
                return
            await refresh_message(self.client, raid)
        except Exception:
            log.exception("Failed to refresh roster message for raid %s", raid_id)


def manager_for(client: discord.Client) -> SignupManager:
    return SignupManager(notifier=DiscordRaidNotifier(client))


class RosterView(discord.ui.View):
    def __init__(self, raid_id: int):
        super().__init__(timeout=None)
        self.raid_id = raid_id
        self.add_item(LootbuddyButton(raid_id))
        self.add_item(LeaveButton(raid_id))


class LootbuddyButton(discord.ui.Button):
    def __init__(self, raid_id: int):
        super().__init__(
            label="Записаться лутбадди",
            style=discord.ButtonStyle.primary,
            custom_id=f"raid:{raid_id}:loot",
        )
        self.raid_id = raid_id

    async def callback(self, interaction: discord.Interaction) -> None:  # pragma: no cover - UI callback
        await handle_lootbuddy(interaction, self.raid_id)


class LeaveButton(discord.ui.Button):
    def __init__(self, raid_id: int):
        super().__init__(
            label="Снять запись",
            style=discord.ButtonStyle.secondary,
            custom_id=f"raid:{raid_id}:leave",
        )
        self.raid_id = raid_id

    async def callback(self, interaction: discord.Interaction) -> None:  # pragma: no cover - UI callback
        await handle_leave(interaction, self.raid_id)


async def handle_lootbuddy(interaction: discord.Interaction, raid_id: int) -> None:
    actor = actor_from_member(interaction.user, interaction.guild)
    try:
        manager_for(interaction.client).create(
            raid_id, actor=actor, role=SignupRole.LOOTBUDDY
        )
    except RaidBotError as exc:
        await interaction.response.send_message(describe_error(exc), ephemeral=True)
        return
    await interaction.response.send_message(
        "Вы записались как **лутбадди**.", ephemeral=True
    )


async def handle_leave(interaction: discord.Interaction, raid_id: int) -> None:
    """Remove the user's not yet picked signups from the raid."""
    manager = manager_for(interaction.client)
    own = [
        signup
        for signup in manager.list_for_user(interaction.user.id)
        if signup.raid_id == raid_id and signup.status is SignupStatus.REGISTERED
    ]
    if not own:
        await interaction.response.send_message(
            "У вас нет заявок на этот рейд, которые можно снять.", ephemeral=True
        )
        return
    for signup in own:
        try:
            manager.remove(signup.id)
        except RaidBotError as exc:
            await interaction.response.send_message(describe_error(exc), ephemeral=True)
            return
    await interaction.response.send_message("Запись снята.", ephemeral=True)


async def refresh_message(client: discord.Client, raid: Raid) -> None:
    if not raid.message_id or not raid.channel_id:
        return
    channel = client.get_channel(raid.channel_id)
    if not isinstance(channel, (discord.TextChannel, discord.Thread)):
        return
    try:
        msg = await channel.fetch_message(raid.message_id)
    except discord.NotFound:
        return
    await msg.edit(embed=build_raid_embed(raid), view=RosterView(raid.id))


__all__ = [
    "DiscordRaidNotifier",
    "LeaveButton",
    "LootbuddyButton",
    "RosterView",
    "build_raid_embed",
    "handle_leave",
    "handle_lootbuddy",
    "load_characters",
    "manager_for",
    "refresh_message",
]
