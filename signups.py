"""Signup lifecycle: create, pick, unpick and remove signups.

Each operation runs inside a single ``db.transaction()``. The raid's notifier
is called only after the transaction committed, and its failures are logged
and dropped.
"""
from __future__ import annotations

import sqlite3
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import db
from config import log
from cycles import window_containing
from errors import DuplicateSignupError, ForbiddenError, NotFoundError, ValidationError
from models import (
    Actor,
    CharacterBound,
    Raid,
    Signup,
    SignupRole,
    SignupStatus,
    binding_for,
)
from rules import assert_can_pick, collision_bounds
from utils import may_manage as default_may_manage


class EventNotifier(Protocol):
    def notify(self, raid_id: int) -> None:
        ...


class NullNotifier:
    def notify(self, raid_id: int) -> None:
        return None


AuthorityResolver = Callable[[Actor, Raid], bool]


class SignupManager:
    """Applies the roster rules to signup state changes."""

    def __init__(
        self,
        notifier: Optional[EventNotifier] = None,
        may_manage: AuthorityResolver = default_may_manage,
    ) -> None:
        self.notifier = notifier or NullNotifier()
        self.may_manage = may_manage

    # ------------------------------------------------------------- helpers

    def _notify(self, raid_id: int) -> None:
        try:
            self.notifier.notify(raid_id)
        except Exception:
            log.exception("Failed to notify about raid %s", raid_id)

    @staticmethod
    def _load_signup(conn: sqlite3.Connection, signup_id: int) -> Signup:
        signup = db.fetch_signup(signup_id, conn=conn)
        if signup is None:
            raise NotFoundError(f"Signup {signup_id} not found")
        return signup

    @staticmethod
    def _load_raid(conn: sqlite3.Connection, raid_id: int) -> Raid:
        raid = db.fetch_raid(raid_id, conn=conn)
        if raid is None:
            raise NotFoundError(f"Raid {raid_id} not found")
        return raid

    def _require_manage(self, actor: Actor, raid: Raid) -> None:
        if not self.may_manage(actor, raid):
            raise ForbiddenError(f"User {actor.user_id} may not manage raid {raid.id}")

    def _validate_pick(self, conn: sqlite3.Connection, signup: Signup, raid: Raid) -> None:
        lower, upper = collision_bounds(raid.starts_at)
        user_picks = db.list_picked_for_user(signup.user_id, lower, upper, conn=conn)
        character_picks = []
        if isinstance(signup.binding, CharacterBound):
            window = window_containing(raid.starts_at)
            character_picks = db.list_picked_for_character(
                signup.binding.character_id, window.start_ts, window.end_ts, conn=conn
            )
        assert_can_pick(
            signup, raid, user_picks=user_picks, character_picks=character_picks
        )

    def cleanup_registrations(
        self, conn: sqlite3.Connection, signup: Signup, raid: Raid
    ) -> List[int]:
        """Drop the character's other REGISTERED signups in the raid's cycle.

        Picked signups and raids outside the window are left alone. Returns
        the deleted signup ids.
        """
        if not isinstance(signup.binding, CharacterBound):
            return []
        window = window_containing(raid.starts_at)
        return db.delete_registered_for_character(
            signup.binding.character_id,
            window.start_ts,
            window.end_ts,
            exclude_signup_id=signup.id,
            conn=conn,
        )

    # ---------------------------------------------------------- operations

    def create(
        self,
        raid_id: int,
        *,
        actor: Actor,
        role: SignupRole | str,
        character_id: Optional[int] = None,
        user_id: Optional[int] = None,
        note: Optional[str] = None,
        saved: bool = False,
        status: SignupStatus | str | None = SignupStatus.REGISTERED,
    ) -> Signup:
        role = SignupRole.parse(role)
        requested = SignupStatus.parse(status)
        if role.is_booster and character_id is None:
            raise ValidationError(f"A {role.value} signup needs a character")
        owner_id = actor.user_id if user_id is None else int(user_id)
        binding = binding_for(character_id)
        note = note.strip() if note and note.strip() else None

        with db.transaction() as conn:
            raid = self._load_raid(conn, raid_id)
            authority = self.may_manage(actor, raid)
            if owner_id != actor.user_id and not authority:
                raise ForbiddenError("Only raid managers may sign up other users")
            if isinstance(binding, CharacterBound):
                character = db.fetch_character(binding.character_id, conn=conn)
                if character is None:
                    raise NotFoundError(f"Character {binding.character_id} not found")
                if character.user_id != owner_id:
                    raise ForbiddenError("Character belongs to another user")
                if db.find_signup_by_raid_and_character(
                    raid.id, binding.character_id, conn=conn
                ):
                    raise DuplicateSignupError("Character is already signed up for this raid")

            effective = requested
            if requested is SignupStatus.PICKED and not authority:
                log.info(
                    "Downgrading PICKED signup request by %s for raid %s",
                    actor.user_id,
                    raid.id,
                )
                effective = SignupStatus.REGISTERED

            if effective is SignupStatus.PICKED:
                candidate = Signup(
                    id=0,
                    raid_id=raid.id,
                    user_id=owner_id,
                    binding=binding,
                    role=role,
                    saved=saved,
                    note=note,
                    status=SignupStatus.REGISTERED,
                    created_at=0,
                )
                self._validate_pick(conn, candidate, raid)

            signup_id = db.insert_signup(
                raid_id=raid.id,
                user_id=owner_id,
                binding=binding,
                role=role,
                status=effective,
                saved=saved,
                note=note,
                conn=conn,
            )
            created = self._load_signup(conn, signup_id)

        log.info(
            "Signup %s created for raid %s (user %s, %s, %s)",
            created.id,
            raid.id,
            owner_id,
            role.value,
            effective.value,
        )
        if isinstance(binding, CharacterBound) or effective is SignupStatus.PICKED:
            self._notify(raid.id)
        return created

    def pick(self, signup_id: int, actor: Actor) -> Signup:
        with db.transaction() as conn:
            signup = self._load_signup(conn, signup_id)
            raid = self._load_raid(conn, signup.raid_id)
            self._require_manage(actor, raid)
            self._validate_pick(conn, signup, raid)
            db.set_signup_status(signup.id, SignupStatus.PICKED, conn=conn)
            removed = self.cleanup_registrations(conn, signup, raid)
            refreshed = self._load_signup(conn, signup.id)

        log.info("Signup %s picked for raid %s by %s", signup_id, raid.id, actor.user_id)
        if removed:
            log.info(
                "Removed registrations %s of character %s in the same cycle",
                removed,
                signup.character_id,
            )
        self._notify(raid.id)
        return refreshed

    def unpick(self, signup_id: int, actor: Actor) -> Signup:
        with db.transaction() as conn:
            signup = self._load_signup(conn, signup_id)
            raid = self._load_raid(conn, signup.raid_id)
            self._require_manage(actor, raid)
            db.set_signup_status(signup.id, SignupStatus.REGISTERED, conn=conn)
            refreshed = self._load_signup(conn, signup.id)

        log.info("Signup %s unpicked for raid %s by %s", signup_id, raid.id, actor.user_id)
        self._notify(raid.id)
        return refreshed

    def remove(self, signup_id: int, actor: Optional[Actor] = None) -> Dict[str, bool]:
        """Delete a signup.

        Without an actor the removal is unconditional. With one, only the
        signup's own user or someone who may manage the raid can remove it.
        """
        with db.transaction() as conn:
            signup = self._load_signup(conn, signup_id)
            if actor is not None and signup.user_id != actor.user_id:
                self._require_manage(actor, self._load_raid(conn, signup.raid_id))
            db.delete_signup(signup.id, conn=conn)

        log.info("Signup %s removed from raid %s", signup_id, signup.raid_id)
        self._notify(signup.raid_id)
        return {"deleted": True}

    def remove_for_character(
        self, raid_id: int, character_id: int, actor: Actor
    ) -> Dict[str, bool]:
        with db.transaction() as conn:
            signup = db.find_signup_by_raid_and_character(raid_id, character_id, conn=conn)
            if signup is None:
                raise NotFoundError(
                    f"Character {character_id} is not signed up for raid {raid_id}"
                )
            raid = self._load_raid(conn, raid_id)
            if signup.user_id != actor.user_id:
                self._require_manage(actor, raid)
            db.delete_signup(signup.id, conn=conn)

        log.info("Character %s removed from raid %s", character_id, raid_id)
        self._notify(raid_id)
        return {"deleted": True}

    # --------------------------------------------------------------- reads

    @staticmethod
    def roster(raid_id: int) -> Tuple[List[Signup], List[Signup]]:
        """Return ``(picked, registered)`` signups of a raid."""
        if db.fetch_raid(raid_id) is None:
            raise NotFoundError(f"Raid {raid_id} not found")
        picked: List[Signup] = []
        registered: List[Signup] = []
        for signup in db.list_signups(raid_id):
            (picked if signup.is_picked else registered).append(signup)
        return picked, registered

    @staticmethod
    def list_for_user(user_id: int) -> List[Signup]:
        return db.list_user_signups(user_id)


__all__ = ["AuthorityResolver", "EventNotifier", "NullNotifier", "SignupManager"]
