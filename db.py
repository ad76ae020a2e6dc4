"""Database access layer for the raid roster bot.

Every function accepts an optional ``conn``. Without one it opens its own
connection and commits on exit. Inside ``transaction()`` the caller's
connection is used as is and the transaction decides about commit/rollback.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

import config
from errors import DuplicateSignupError, ValidationError
from models import (
    Binding,
    Character,
    CycleWindow,
    Difficulty,
    LootType,
    PickedEntry,
    Preset,
    Raid,
    Signup,
    SignupRole,
    SignupStatus,
    binding_character_id,
    binding_for,
)


def _now_ts() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp())


def _connect(**kwargs) -> sqlite3.Connection:
    conn = sqlite3.connect(config.DB_PATH, timeout=config.DB_TIMEOUT, **kwargs)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def with_conn() -> sqlite3.Connection:
    return _connect()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a block as one write transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so the
    picked-state read and the writes that follow cannot interleave with
    another lifecycle operation.
    """
    conn = _connect(isolation_level=None)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def _use(conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
    if conn is not None:
        yield conn
        return
    own = with_conn()
    try:
        with own:
            yield own
    finally:
        own.close()


def init_db() -> None:
    with _use(None) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS presets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                tanks INTEGER NOT NULL DEFAULT 0,
                healers INTEGER NOT NULL DEFAULT 0,
                dps INTEGER NOT NULL DEFAULT 0,
                lootbuddies INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS raids (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                difficulty TEXT NOT NULL,
                loot_type TEXT NOT NULL,
                bosses INTEGER NOT NULL DEFAULT 0,
                starts_at INTEGER NOT NULL,
                lead_id INTEGER,
                preset_id INTEGER,
                channel_id INTEGER,
                message_id INTEGER,
                created_at INTEGER NOT NULL,
                FOREIGN KEY (preset_id) REFERENCES presets(id) ON DELETE SET NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS characters (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL COLLATE NOCASE,
                realm TEXT NOT NULL,
                char_class TEXT,
                spec TEXT,
                item_level INTEGER,
                created_at INTEGER NOT NULL,
                UNIQUE (user_id, name, realm)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS signups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                raid_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                character_id INTEGER,
                role TEXT NOT NULL,
                saved INTEGER NOT NULL DEFAULT 0,
                note TEXT,
                status TEXT NOT NULL DEFAULT 'REGISTERED',
                created_at INTEGER NOT NULL,
                UNIQUE (raid_id, character_id),
                FOREIGN KEY (raid_id) REFERENCES raids(id) ON DELETE CASCADE,
                FOREIGN KEY (character_id) REFERENCES characters(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_signups_user_status
                ON signups (user_id, status)
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_signups_character_status
                ON signups (character_id, status)
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_raids_starts_at ON raids (starts_at)")


# --------------------------------------------------------------------- raids


def _row_to_raid(row: sqlite3.Row) -> Raid:
    return Raid(
        id=int(row["id"]),
        title=str(row["title"]),
        difficulty=Difficulty(row["difficulty"]),
        loot_type=LootType(row["loot_type"]),
        bosses=int(row["bosses"]),
        starts_at=int(row["starts_at"]),
        lead_id=int(row["lead_id"]) if row["lead_id"] is not None else None,
        preset_id=int(row["preset_id"]) if row["preset_id"] is not None else None,
        channel_id=int(row["channel_id"]) if row["channel_id"] is not None else None,
        message_id=int(row["message_id"]) if row["message_id"] is not None else None,
        created_at=int(row["created_at"]),
    )


def create_raid(
    *,
    title: str,
    difficulty: Difficulty | str,
    loot_type: LootType | str,
    starts_at: int,
    bosses: int = 0,
    lead_id: Optional[int] = None,
    preset_id: Optional[int] = None,
    channel_id: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    if not title or not title.strip():
        raise ValidationError("Raid title is required")
    if not 0 <= int(bosses) <= 8:
        raise ValidationError("Boss count must be between 0 and 8")
    with _use(conn) as c:
        cur = c.execute(
            """
            INSERT INTO raids (
                title,
                difficulty,
                loot_type,
                bosses,
                starts_at,
                lead_id,
                preset_id,
                channel_id,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                title.strip(),
                Difficulty.parse(difficulty).value,
                LootType.parse(loot_type).value,
                int(bosses),
                int(starts_at),
                lead_id,
                preset_id,
                channel_id,
                _now_ts(),
            ),
        )
        return int(cur.lastrowid)


def update_raid(
    raid_id: int,
    *,
    title: Optional[str] = None,
    difficulty: Difficulty | str | None = None,
    loot_type: LootType | str | None = None,
    bosses: Optional[int] = None,
    starts_at: Optional[int] = None,
    lead_id: Optional[int] = None,
    preset_id: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> None:
    fields: List[str] = []
    params: List[object] = []
    if title is not None:
        fields.append("title = ?")
        params.append(title.strip())
    if difficulty is not None:
        fields.append("difficulty = ?")
        params.append(Difficulty.parse(difficulty).value)
    if loot_type is not None:
        fields.append("loot_type = ?")
        params.append(LootType.parse(loot_type).value)
    if bosses is not None:
        if not 0 <= int(bosses) <= 8:
            raise ValidationError("Boss count must be between 0 and 8")
        fields.append("bosses = ?")
        params.append(int(bosses))
    if starts_at is not None:
        fields.append("starts_at = ?")
        params.append(int(starts_at))
    if lead_id is not None:
        fields.append("lead_id = ?")
        params.append(lead_id)
    if preset_id is not None:
        fields.append("preset_id = ?")
        params.append(preset_id)
    if not fields:
        return
    with _use(conn) as c:
        c.execute(
            f"UPDATE raids SET {', '.join(fields)} WHERE id = ?",
            (*params, raid_id),
        )


def delete_raid(raid_id: int, *, conn: Optional[sqlite3.Connection] = None) -> bool:
    with _use(conn) as c:
        c.execute("DELETE FROM signups WHERE raid_id = ?", (raid_id,))
        cur = c.execute("DELETE FROM raids WHERE id = ?", (raid_id,))
    return cur.rowcount > 0


def update_message_id(
    raid_id: int, channel_id: int, message_id: int, *, conn: Optional[sqlite3.Connection] = None
) -> None:
    with _use(conn) as c:
        c.execute(
            "UPDATE raids SET channel_id = ?, message_id = ? WHERE id = ?",
            (channel_id, message_id, raid_id),
        )


def fetch_raid(raid_id: int, *, conn: Optional[sqlite3.Connection] = None) -> Optional[Raid]:
    with _use(conn) as c:
        row = c.execute("SELECT * FROM raids WHERE id = ?", (raid_id,)).fetchone()
    if not row:
        return None
    return _row_to_raid(row)


def list_raids_between(
    start_ts: int, end_ts: int, *, conn: Optional[sqlite3.Connection] = None
) -> List[Raid]:
    """Raids starting in ``[start_ts, end_ts)``."""
    with _use(conn) as c:
        rows = c.execute(
            """
            SELECT *
            FROM raids
            WHERE starts_at >= ? AND starts_at < ?
            ORDER BY starts_at, id
            """,
            (int(start_ts), int(end_ts)),
        ).fetchall()
    return [_row_to_raid(row) for row in rows]


def raids_in_window(
    window: CycleWindow, *, conn: Optional[sqlite3.Connection] = None
) -> List[Raid]:
    return list_raids_between(window.start_ts, window.end_ts, conn=conn)


def list_raid_ids(*, conn: Optional[sqlite3.Connection] = None) -> List[int]:
    with _use(conn) as c:
        rows = c.execute("SELECT id FROM raids").fetchall()
    return [int(row["id"]) for row in rows]


# ---------------------------------------------------------------- characters


def _row_to_character(row: sqlite3.Row) -> Character:
    return Character(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        name=str(row["name"]),
        realm=str(row["realm"]),
        char_class=row["char_class"],
        spec=row["spec"],
        item_level=int(row["item_level"]) if row["item_level"] is not None else None,
        created_at=int(row["created_at"]),
    )


def normalize_realm(realm: str) -> str:
    return "-".join(realm.strip().lower().replace("'", "").split())


def create_character(
    *,
    user_id: int,
    name: str,
    realm: str,
    char_class: Optional[str] = None,
    spec: Optional[str] = None,
    item_level: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    if not name or not name.strip() or not realm or not realm.strip():
        raise ValidationError("Character name and realm are required")
    try:
        with _use(conn) as c:
            cur = c.execute(
                """
                INSERT INTO characters (
                    user_id, name, realm, char_class, spec, item_level, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    name.strip(),
                    normalize_realm(realm),
                    char_class,
                    spec,
                    item_level,
                    _now_ts(),
                ),
            )
    except sqlite3.IntegrityError as exc:
        raise ValidationError(f"Character {name}-{realm} is already registered") from exc
    return int(cur.lastrowid)


def fetch_character(
    character_id: int, *, conn: Optional[sqlite3.Connection] = None
) -> Optional[Character]:
    with _use(conn) as c:
        row = c.execute("SELECT * FROM characters WHERE id = ?", (character_id,)).fetchone()
    if not row:
        return None
    return _row_to_character(row)


def find_character(
    user_id: int, name: str, realm: str, *, conn: Optional[sqlite3.Connection] = None
) -> Optional[Character]:
    with _use(conn) as c:
        row = c.execute(
            "SELECT * FROM characters WHERE user_id = ? AND name = ? AND realm = ?",
            (user_id, name.strip(), normalize_realm(realm)),
        ).fetchone()
    if not row:
        return None
    return _row_to_character(row)


def list_characters(user_id: int, *, conn: Optional[sqlite3.Connection] = None) -> List[Character]:
    with _use(conn) as c:
        rows = c.execute(
            "SELECT * FROM characters WHERE user_id = ? ORDER BY name, realm",
            (user_id,),
        ).fetchall()
    return [_row_to_character(row) for row in rows]


def update_character(
    character_id: int,
    *,
    char_class: Optional[str] = None,
    spec: Optional[str] = None,
    item_level: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> None:
    fields: List[str] = []
    params: List[object] = []
    if char_class is not None:
        fields.append("char_class = ?")
        params.append(char_class.strip() or None)
    if spec is not None:
        fields.append("spec = ?")
        params.append(spec.strip() or None)
    if item_level is not None:
        if int(item_level) < 0:
            raise ValidationError("Item level must not be negative")
        fields.append("item_level = ?")
        params.append(int(item_level))
    if not fields:
        return
    with _use(conn) as c:
        c.execute(
            f"UPDATE characters SET {', '.join(fields)} WHERE id = ?",
            (*params, character_id),
        )


def delete_character(character_id: int, *, conn: Optional[sqlite3.Connection] = None) -> bool:
    """Delete a character together with every signup bound to it."""
    with _use(conn) as c:
        c.execute("DELETE FROM signups WHERE character_id = ?", (character_id,))
        cur = c.execute("DELETE FROM characters WHERE id = ?", (character_id,))
    return cur.rowcount > 0


# ------------------------------------------------------------------- presets


def _row_to_preset(row: sqlite3.Row) -> Preset:
    return Preset(
        id=int(row["id"]),
        name=str(row["name"]),
        tanks=int(row["tanks"]),
        healers=int(row["healers"]),
        dps=int(row["dps"]),
        lootbuddies=int(row["lootbuddies"]),
    )


def save_preset(
    name: str,
    *,
    tanks: int = 0,
    healers: int = 0,
    dps: int = 0,
    lootbuddies: int = 0,
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    with _use(conn) as c:
        c.execute(
            """
            INSERT INTO presets (name, tanks, healers, dps, lootbuddies)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                tanks = excluded.tanks,
                healers = excluded.healers,
                dps = excluded.dps,
                lootbuddies = excluded.lootbuddies
            """,
            (name, int(tanks), int(healers), int(dps), int(lootbuddies)),
        )
        row = c.execute("SELECT id FROM presets WHERE name = ?", (name,)).fetchone()
    if not row:
        raise RuntimeError("Failed to save preset")
    return int(row["id"])


def fetch_preset(name: str, *, conn: Optional[sqlite3.Connection] = None) -> Optional[Preset]:
    with _use(conn) as c:
        row = c.execute("SELECT * FROM presets WHERE name = ?", (name,)).fetchone()
    if not row:
        return None
    return _row_to_preset(row)


def fetch_preset_by_id(
    preset_id: int, *, conn: Optional[sqlite3.Connection] = None
) -> Optional[Preset]:
    with _use(conn) as c:
        row = c.execute("SELECT * FROM presets WHERE id = ?", (preset_id,)).fetchone()
    if not row:
        return None
    return _row_to_preset(row)


def list_presets(*, conn: Optional[sqlite3.Connection] = None) -> List[Preset]:
    with _use(conn) as c:
        rows = c.execute("SELECT * FROM presets ORDER BY name").fetchall()
    return [_row_to_preset(row) for row in rows]


def delete_preset(name: str, *, conn: Optional[sqlite3.Connection] = None) -> bool:
    with _use(conn) as c:
        cur = c.execute("DELETE FROM presets WHERE name = ?", (name,))
    return cur.rowcount > 0


# ------------------------------------------------------------------- signups


def _row_to_signup(row: sqlite3.Row) -> Signup:
    return Signup(
        id=int(row["id"]),
        raid_id=int(row["raid_id"]),
        user_id=int(row["user_id"]),
        binding=binding_for(row["character_id"]),
        role=SignupRole(row["role"]),
        saved=bool(row["saved"]),
        note=row["note"],
        status=SignupStatus(row["status"]),
        created_at=int(row["created_at"]),
    )


def _row_to_picked(row: sqlite3.Row) -> PickedEntry:
    return PickedEntry(
        signup_id=int(row["id"]),
        raid_id=int(row["raid_id"]),
        user_id=int(row["user_id"]),
        binding=binding_for(row["character_id"]),
        starts_at=int(row["starts_at"]),
        difficulty=Difficulty(row["difficulty"]),
    )


def insert_signup(
    *,
    raid_id: int,
    user_id: int,
    binding: Binding,
    role: SignupRole | str,
    status: SignupStatus | str = SignupStatus.REGISTERED,
    saved: bool = False,
    note: Optional[str] = None,
    created_at: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    try:
        with _use(conn) as c:
            cur = c.execute(
                """
                INSERT INTO signups (
                    raid_id, user_id, character_id, role, saved, note, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    raid_id,
                    user_id,
                    binding_character_id(binding),
                    SignupRole.parse(role).value,
                    int(bool(saved)),
                    note,
                    SignupStatus.parse(status).value,
                    created_at or _now_ts(),
                ),
            )
    except sqlite3.IntegrityError as exc:
        if "UNIQUE" in str(exc):
            raise DuplicateSignupError("Character is already signed up for this raid") from exc
        raise ValidationError(f"Invalid signup reference: {exc}") from exc
    return int(cur.lastrowid)


def fetch_signup(signup_id: int, *, conn: Optional[sqlite3.Connection] = None) -> Optional[Signup]:
    with _use(conn) as c:
        row = c.execute("SELECT * FROM signups WHERE id = ?", (signup_id,)).fetchone()
    if not row:
        return None
    return _row_to_signup(row)


def find_signup_by_raid_and_character(
    raid_id: int, character_id: int, *, conn: Optional[sqlite3.Connection] = None
) -> Optional[Signup]:
    with _use(conn) as c:
        row = c.execute(
            "SELECT * FROM signups WHERE raid_id = ? AND character_id = ?",
            (raid_id, character_id),
        ).fetchone()
    if not row:
        return None
    return _row_to_signup(row)


def list_signups(raid_id: int, *, conn: Optional[sqlite3.Connection] = None) -> List[Signup]:
    with _use(conn) as c:
        rows = c.execute(
            "SELECT * FROM signups WHERE raid_id = ? ORDER BY created_at, id",
            (raid_id,),
        ).fetchall()
    return [_row_to_signup(row) for row in rows]


def list_user_signups(user_id: int, *, conn: Optional[sqlite3.Connection] = None) -> List[Signup]:
    with _use(conn) as c:
        rows = c.execute(
            "SELECT * FROM signups WHERE user_id = ? ORDER BY created_at DESC, id DESC",
            (user_id,),
        ).fetchall()
    return [_row_to_signup(row) for row in rows]


def set_signup_status(
    signup_id: int, status: SignupStatus, *, conn: Optional[sqlite3.Connection] = None
) -> None:
    with _use(conn) as c:
        c.execute(
            "UPDATE signups SET status = ? WHERE id = ?",
            (status.value, signup_id),
        )


def delete_signup(signup_id: int, *, conn: Optional[sqlite3.Connection] = None) -> bool:
    with _use(conn) as c:
        cur = c.execute("DELETE FROM signups WHERE id = ?", (signup_id,))
    return cur.rowcount > 0


def list_picked_for_user(
    user_id: int,
    start_from: int,
    start_to: int,
    *,
    conn: Optional[sqlite3.Connection] = None,
) -> List[PickedEntry]:
    """Picked signups of a user whose raid starts in ``[start_from, start_to]``."""
    with _use(conn) as c:
        rows = c.execute(
            """
            SELECT s.id, s.raid_id, s.user_id, s.character_id, r.starts_at, r.difficulty
            FROM signups AS s
            JOIN raids AS r ON r.id = s.raid_id
            WHERE s.user_id = ?
              AND s.status = ?
              AND r.starts_at >= ?
              AND r.starts_at <= ?
            ORDER BY r.starts_at, s.id
            """,
            (user_id, SignupStatus.PICKED.value, int(start_from), int(start_to)),
        ).fetchall()
    return [_row_to_picked(row) for row in rows]


def list_picked_for_character(
    character_id: int,
    start_from: int,
    start_to: int,
    *,
    conn: Optional[sqlite3.Connection] = None,
) -> List[PickedEntry]:
    """Picked signups of a character whose raid starts in ``[start_from, start_to)``."""
    with _use(conn) as c:
        rows = c.execute(
            """
            SELECT s.id, s.raid_id, s.user_id, s.character_id, r.starts_at, r.difficulty
            FROM signups AS s
            JOIN raids AS r ON r.id = s.raid_id
            WHERE s.character_id = ?
              AND s.status = ?
              AND r.starts_at >= ?
              AND r.starts_at < ?
            ORDER BY r.starts_at, s.id
            """,
            (character_id, SignupStatus.PICKED.value, int(start_from), int(start_to)),
        ).fetchall()
    return [_row_to_picked(row) for row in rows]


def delete_registered_for_character(
    character_id: int,
    start_from: int,
    start_to: int,
    *,
    exclude_signup_id: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> List[int]:
    """Delete REGISTERED signups of a character in raids starting in ``[start_from, start_to)``.

    Returns the deleted signup ids.
    """
    with _use(conn) as c:
        rows = c.execute(
            """
            SELECT s.id
            FROM signups AS s
            JOIN raids AS r ON r.id = s.raid_id
            WHERE s.character_id = ?
              AND s.status = ?
              AND s.id != ?
              AND r.starts_at >= ?
              AND r.starts_at < ?
            """,
            (
                character_id,
                SignupStatus.REGISTERED.value,
                exclude_signup_id if exclude_signup_id is not None else -1,
                int(start_from),
                int(start_to),
            ),
        ).fetchall()
        ids = [int(row["id"]) for row in rows]
        if ids:
            c.executemany("DELETE FROM signups WHERE id = ?", [(i,) for i in ids])
    return ids


def count_signups_by_status(
    raid_id: int, *, conn: Optional[sqlite3.Connection] = None
) -> Dict[SignupStatus, int]:
    with _use(conn) as c:
        rows = c.execute(
            "SELECT status, COUNT(*) AS total FROM signups WHERE raid_id = ? GROUP BY status",
            (raid_id,),
        ).fetchall()
    counts = {status: 0 for status in SignupStatus}
    for row in rows:
        counts[SignupStatus(row["status"])] = int(row["total"])
    return counts


__all__ = [
    "count_signups_by_status",
    "create_character",
    "create_raid",
    "delete_character",
    "delete_preset",
    "delete_raid",
    "delete_registered_for_character",
    "delete_signup",
    "fetch_character",
    "fetch_preset",
    "fetch_preset_by_id",
    "fetch_raid",
    "fetch_signup",
    "find_character",
    "find_signup_by_raid_and_character",
    "init_db",
    "insert_signup",
    "list_characters",
    "list_picked_for_character",
    "list_picked_for_user",
    "list_presets",
    "list_raid_ids",
    "list_raids_between",
    "list_signups",
    "list_user_signups",
    "normalize_realm",
    "raids_in_window",
    "save_preset",
    "set_signup_status",
    "transaction",
    "update_character",
    "update_message_id",
    "update_raid",
    "with_conn",
]
