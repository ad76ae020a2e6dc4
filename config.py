"""Application configuration and environment loading for the raid roster bot."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("RAIDBOT_DB", "raids.db")
DB_TIMEOUT = float(os.getenv("RAIDBOT_DB_TIMEOUT", "10"))
TOKEN = os.getenv("DISCORD_TOKEN")

if not TOKEN:
    token_file = Path("token.txt")
    if token_file.exists():
        TOKEN = token_file.read_text(encoding="utf-8").strip()

TIME_FMT = "%H:%M %d.%m.%y"  # e.g. 20:00 08.10.25

# Weekly cycle: Wednesday 08:00 local time, the raid reset.
CYCLE_TIMEZONE = os.getenv("RAIDBOT_TZ", "Europe/Berlin")
CYCLE_ANCHOR_WEEKDAY = int(os.getenv("RAIDBOT_CYCLE_WEEKDAY", "2"))
CYCLE_ANCHOR_HOUR = int(os.getenv("RAIDBOT_CYCLE_HOUR", "8"))

PICK_COLLISION_MINUTES = int(os.getenv("RAIDBOT_PICK_WINDOW_MINUTES", "90"))

# Members with this guild role count as raid leads.
RAIDLEAD_ROLE = os.getenv("RAIDBOT_RAIDLEAD_ROLE", "Raidlead")

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
)

log = logging.getLogger("raidbot")

__all__ = [
    "CYCLE_ANCHOR_HOUR",
    "CYCLE_ANCHOR_WEEKDAY",
    "CYCLE_TIMEZONE",
    "DB_PATH",
    "DB_TIMEOUT",
    "PICK_COLLISION_MINUTES",
    "RAIDLEAD_ROLE",
    "TIME_FMT",
    "TOKEN",
    "log",
]
