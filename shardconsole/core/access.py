"""Ordered access tiers shared by operators, sessions and simulation actors."""

from __future__ import annotations

from enum import IntEnum


class AccessTier(IntEnum):
    PLAYER = 0
    COUNSELOR = 1
    GAMEMASTER = 2
    SEER = 3
    ADMINISTRATOR = 4
    DEVELOPER = 5
    OWNER = 6

    @property
    def label(self) -> str:
        return _LABELS[self]

    def __str__(self) -> str:
        return self.label


_LABELS = {
    AccessTier.PLAYER: "Player",
    AccessTier.COUNSELOR: "Counselor",
    AccessTier.GAMEMASTER: "GameMaster",
    AccessTier.SEER: "Seer",
    AccessTier.ADMINISTRATOR: "Administrator",
    AccessTier.DEVELOPER: "Developer",
    AccessTier.OWNER: "Owner",
}

_ALIASES = {
    "gm": AccessTier.GAMEMASTER,
    "game_master": AccessTier.GAMEMASTER,
    "admin": AccessTier.ADMINISTRATOR,
    "dev": AccessTier.DEVELOPER,
}


def parse_tier(raw: object) -> AccessTier:
    """Resolve a tier from a name (any case), a known alias or its integer value."""
    if isinstance(raw, AccessTier):
        return raw
    if isinstance(raw, bool):
        raise ValueError(f"invalid access tier '{raw}'")
    if isinstance(raw, int):
        try:
            return AccessTier(raw)
        except ValueError as exc:
            raise ValueError(f"invalid access tier '{raw}'") from exc
    token = str(raw).strip()
    if not token:
        raise ValueError("access tier must not be empty")
    if token.lstrip("-").isdigit():
        return parse_tier(int(token))
    normalized = token.lower().replace("-", "_")
    if normalized in _ALIASES:
        return _ALIASES[normalized]
    for tier, label in _LABELS.items():
        if label.lower() == normalized or tier.name.lower() == normalized:
            return tier
    raise ValueError(f"invalid access tier '{raw}'")


def tier_names() -> list[str]:
    return [_LABELS[tier] for tier in AccessTier]
