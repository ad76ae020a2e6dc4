"""Shared helpers for working with roster presets."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

import db
from errors import NotFoundError, ValidationError
from models import Preset, SignupRole
from utils import ROLE_LABELS, parse_role_capacities


def _parse_name(value: Optional[str]) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError("Preset name is required")
    return text


def preset_capacity(preset: Optional[Preset]) -> Dict[SignupRole, int]:
    if preset is None:
        return {role: 0 for role in SignupRole}
    return preset.capacity


def describe_capacity(preset: Preset) -> str:
    return ", ".join(
        f"{ROLE_LABELS[role]}:{count}" for role, count in preset.capacity.items() if count
    )


def create_or_update_preset(name: str, roles: str) -> Preset:
    preset_name = _parse_name(name)
    capacities = parse_role_capacities(roles)
    if not capacities:
        raise ValidationError("At least one role must be specified")
    db.save_preset(
        preset_name,
        tanks=capacities.get(SignupRole.TANK, 0),
        healers=capacities.get(SignupRole.HEAL, 0),
        dps=capacities.get(SignupRole.DPS, 0),
        lootbuddies=capacities.get(SignupRole.LOOTBUDDY, 0),
    )
    preset = db.fetch_preset(preset_name)
    if preset is None:
        raise NotFoundError(f"Preset '{preset_name}' not found")
    return preset


def resolve_preset(name: Optional[str]) -> Optional[Preset]:
    if name is None or not name.strip():
        return None
    preset = db.fetch_preset(name.strip())
    if preset is None:
        raise NotFoundError(f"Preset '{name.strip()}' not found")
    return preset


def list_presets_description() -> Tuple[str, bool]:
    presets = db.list_presets()
    if not presets:
        return ("Пресетов пока нет.", False)
    lines = [
        f"**{preset.name}** • мест {preset.total} • роли: {describe_capacity(preset) or '—'}"
        for preset in presets
    ]
    return ("\n".join(lines), True)


def delete_preset(name: str) -> str:
    preset_name = _parse_name(name)
    if db.delete_preset(preset_name):
        return f"Пресет **{preset_name}** удалён."
    raise NotFoundError(f"Preset '{preset_name}' not found")


__all__ = [
    "create_or_update_preset",
    "delete_preset",
    "describe_capacity",
    "list_presets_description",
    "preset_capacity",
    "resolve_preset",
]
