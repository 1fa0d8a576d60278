from __future__ import annotations

from enum import StrEnum
from typing import Any


class Role(StrEnum):
    ADMINISTRATOR = "administrator"
    TRUSTED = "trusted"
    COMMON = "common"
    FLAGGED = "flagged"


_LEGACY_CODES: dict[int, Role] = {
    0: Role.ADMINISTRATOR,
    1: Role.TRUSTED,
    2: Role.COMMON,
    3: Role.FLAGGED,
}

_LABELS: dict[str, Role] = {
    "admin": Role.ADMINISTRATOR,
    "superadmin": Role.ADMINISTRATOR,
    "administrator": Role.ADMINISTRATOR,
    "trusted": Role.TRUSTED,
    "trusted_user": Role.TRUSTED,
    "trusteduser": Role.TRUSTED,
    "user": Role.COMMON,
    "common": Role.COMMON,
    "common_user": Role.COMMON,
    "commonuser": Role.COMMON,
    "guest": Role.COMMON,
    "flagged": Role.FLAGGED,
    "betrug": Role.FLAGGED,
    "betrug_user": Role.FLAGGED,
    "betruguser": Role.FLAGGED,
    "fraud": Role.FLAGGED,
    "fraud_user": Role.FLAGGED,
    "untrusted": Role.FLAGGED,
}

_RANK: dict[Role, int] = {
    Role.FLAGGED: 0,
    Role.COMMON: 1,
    Role.TRUSTED: 2,
    Role.ADMINISTRATOR: 3,
}


def normalize_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    if isinstance(value, bool):
        return Role.COMMON
    if isinstance(value, int):
        return _LEGACY_CODES.get(value, Role.COMMON)
    if isinstance(value, str):
        label = value.strip().lower()
        if label.isdigit():
            return _LEGACY_CODES.get(int(label), Role.COMMON)
        return _LABELS.get(label, Role.COMMON)
    return Role.COMMON


def promote_role(current: Any, target: Any) -> Role:
    current_role = normalize_role(current)
    target_role = normalize_role(target)
    if _RANK[target_role] > _RANK[current_role]:
        return target_role
    return current_role
