# services/access.py
"""
Authorization policy.

Pure functions over facts the caller already has (the authenticated
account and, where needed, relationship facts fetched by a service). Keeping
them free of store access lets the guards be tested without a database.

`user` is the account summary attached to the request:
    {"id", "email", "identityType", "pseudonymId"}
"""

from typing import Any, Dict, Optional

PLAYER = "player"
COACH = "coach"
ADMIN = "admin"
STAFF_ROLES = (COACH, ADMIN)


def role_of(user: Optional[Dict[str, Any]]) -> Optional[str]:
    if not user:
        return None
    return user.get("identityType")


def is_staff(user) -> bool:
    return role_of(user) in STAFF_ROLES


def has_role(user, *roles: str) -> bool:
    return role_of(user) in roles


def is_self(user, player_pseudonym_id: Optional[str]) -> bool:
    return bool(user) and player_pseudonym_id is not None and user.get("pseudonymId") == player_pseudonym_id


def can_update_player_status(user, player_pseudonym_id: str) -> bool:
    """Players update only their own status; coaches and admins anyone's."""
    if is_staff(user):
        return True
    return role_of(user) == PLAYER and is_self(user, player_pseudonym_id)


def can_view_player(user, player_pseudonym_id: str) -> bool:
    return can_update_player_status(user, player_pseudonym_id)


def can_report_injury(user, player_pseudonym_id: str) -> bool:
    return can_update_player_status(user, player_pseudonym_id)


def can_view_injury(user, injured_player_pseudonym_id: Optional[str]) -> bool:
    if is_staff(user):
        return True
    return role_of(user) == PLAYER and is_self(user, injured_player_pseudonym_id)


def can_access_team_roster(role: Optional[str], manages_team: bool) -> bool:
    """
    Admins see every roster, coaches only the teams they manage, players
    none. `manages_team` must already be fail-closed (False on lookup errors).
    """
    if role == ADMIN:
        return True
    if role == COACH:
        return bool(manages_team)
    return False
