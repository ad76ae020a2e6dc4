"""Domain models used by the raid roster bot."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from errors import ValidationError


class SignupStatus(str, Enum):
    REGISTERED = "REGISTERED"
    PICKED = "PICKED"

    @classmethod
    def parse(cls, value: Union["SignupStatus", str, None]) -> "SignupStatus":
        if value is None:
            return cls.REGISTERED
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        try:
            return cls(text)
        except ValueError:
            raise ValidationError(f"Unknown signup status '{value}'") from None


class SignupRole(str, Enum):
    TANK = "TANK"
    HEAL = "HEAL"
    DPS = "DPS"
    LOOTBUDDY = "LOOTBUDDY"

    @property
    def is_booster(self) -> bool:
        return self is not SignupRole.LOOTBUDDY

    @classmethod
    def parse(cls, value: Union["SignupRole", str]) -> "SignupRole":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        text = _ROLE_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise ValidationError(f"Unknown signup role '{value}'") from None


_ROLE_ALIASES = {
    "HEALER": "HEAL",
    "LOOT": "LOOTBUDDY",
    "LOOTBUDDIES": "LOOTBUDDY",
}


class Difficulty(str, Enum):
    NORMAL = "NORMAL"
    HEROIC = "HEROIC"
    MYTHIC = "MYTHIC"

    @classmethod
    def parse(cls, value: Union["Difficulty", str]) -> "Difficulty":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        text = _DIFFICULTY_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise ValidationError(f"Unknown difficulty '{value}'") from None


_DIFFICULTY_ALIASES = {
    "NHC": "NORMAL",
    "NH": "NORMAL",
    "HC": "HEROIC",
    "M": "MYTHIC",
}


class LootType(str, Enum):
    SAVED = "SAVED"
    UNSAVED = "UNSAVED"
    VIP = "VIP"

    @classmethod
    def parse(cls, value: Union["LootType", str]) -> "LootType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown loot type '{value}'") from None


@dataclass(frozen=True, slots=True)
class CharacterBound:
    character_id: int


@dataclass(frozen=True, slots=True)
class Flexible:
    pass


Binding = Union[CharacterBound, Flexible]

FLEXIBLE = Flexible()


def binding_for(character_id: Optional[int]) -> Binding:
    if character_id is None:
        return FLEXIBLE
    try:
        return CharacterBound(int(character_id))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid character id: {character_id!r}") from None


def binding_character_id(binding: Binding) -> Optional[int]:
    if isinstance(binding, CharacterBound):
        return binding.character_id
    return None


@dataclass(slots=True)
class Actor:
    user_id: int
    is_raidlead: bool = False
    is_admin: bool = False
    is_owner: bool = False

    @property
    def role_level(self) -> int:
        if self.is_owner:
            return 3
        if self.is_admin:
            return 2
        if self.is_raidlead:
            return 1
        return 0


@dataclass(slots=True)
class Raid:
    id: int
    title: str
    difficulty: Difficulty
    loot_type: LootType
    bosses: int
    starts_at: int
    lead_id: Optional[int]
    preset_id: Optional[int]
    channel_id: Optional[int]
    message_id: Optional[int]
    created_at: int


@dataclass(slots=True)
class Character:
    id: int
    user_id: int
    name: str
    realm: str
    char_class: Optional[str]
    spec: Optional[str]
    item_level: Optional[int]
    created_at: int

    @property
    def display_name(self) -> str:
        return f"{self.name}-{self.realm}"


@dataclass(slots=True)
class Signup:
    id: int
    raid_id: int
    user_id: int
    binding: Binding
    role: SignupRole
    saved: bool
    note: Optional[str]
    status: SignupStatus
    created_at: int

    @property
    def character_id(self) -> Optional[int]:
        return binding_character_id(self.binding)

    @property
    def is_picked(self) -> bool:
        return self.status is SignupStatus.PICKED


@dataclass(frozen=True, slots=True)
class PickedEntry:
    """A picked signup joined with the start and difficulty of its raid."""

    signup_id: int
    raid_id: int
    user_id: int
    binding: Binding
    starts_at: int
    difficulty: Difficulty

    @property
    def character_id(self) -> Optional[int]:
        return binding_character_id(self.binding)


@dataclass(slots=True)
class Preset:
    id: int
    name: str
    tanks: int
    healers: int
    dps: int
    lootbuddies: int

    @property
    def capacity(self) -> dict[SignupRole, int]:
        return {
            SignupRole.TANK: self.tanks,
            SignupRole.HEAL: self.healers,
            SignupRole.DPS: self.dps,
            SignupRole.LOOTBUDDY: self.lootbuddies,
        }

    @property
    def total(self) -> int:
        return self.tanks + self.healers + self.dps + self.lootbuddies


@dataclass(frozen=True, slots=True)
class CycleWindow:
    """Half-open ``[start, end)`` weekly window in the cycle time zone."""

    start: datetime
    end: datetime

    @property
    def start_ts(self) -> int:
        return int(self.start.timestamp())

    @property
    def end_ts(self) -> int:
        return int(self.end.timestamp())

    def contains(self, ts: int | float) -> bool:
        return self.start_ts <= ts < self.end_ts


__all__ = [
    "Actor",
    "Binding",
    "Character",
    "CharacterBound",
    "CycleWindow",
    "Difficulty",
    "FLEXIBLE",
    "Flexible",
    "LootType",
    "PickedEntry",
    "Preset",
    "Raid",
    "Signup",
    "SignupRole",
    "SignupStatus",
    "binding_character_id",
    "binding_for",
]
