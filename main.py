"""Entrypoint for the raid roster bot."""
from __future__ import annotations

import discord
from discord.ext import commands

import db
from commands import char_group, preset_group, raid_group, signup_group
from config import TOKEN, log
from views import RosterView

intents = discord.Intents.default()
intents.members = True
bot = commands.Bot(command_prefix="!", intents=intents)

for group in (raid_group, signup_group, char_group, preset_group):
    bot.tree.add_command(group)


@bot.event
async def on_ready() -> None:
    db.init_db()
    await bot.tree.sync()
    log.info("Logged in as %s (ID: %s)", bot.user, bot.user.id if bot.user else "?")
    # Re-register persistent views for existing raid messages
    for raid_id in db.list_raid_ids():
        bot.add_view(RosterView(raid_id))


def main() -> None:
    if not TOKEN:
        raise SystemExit(
            "Не найден токен: укажите DISCORD_TOKEN в .env/окружении или положите его в token.txt",
        )
    bot.run(TOKEN)


if __name__ == "__main__":
    main()
