# services/identities.py
"""
Relational identity store.

Real names live only here; the graph refers to people by pseudonymous id.
This module defines the account/identity tables and the batch name lookup
used by every service that needs to show a display name.
"""

import logging
from typing import Dict, Iterable

from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Boolean, Date, DateTime,
    select, func,
)
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

UNKNOWN_FIRST_NAME = "Unknown"
UNKNOWN_LAST_NAME = "Player"

metadata = MetaData()

player_identities = Table(
    "player_identities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pseudonym_id", String(64), nullable=False, unique=True),
    Column("neo4j_player_id", String(64), nullable=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("date_of_birth", Date, nullable=True),
    Column("email", String(255), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("gdpr_consent_given", Boolean, nullable=False, default=False),
    Column("gdpr_consent_date", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

coach_identities = Table(
    "coach_identities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pseudonym_id", String(64), nullable=False, unique=True),
    Column("neo4j_coach_id", String(64), nullable=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("specialization", String(255), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

admin_identities = Table(
    "admin_identities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pseudonym_id", String(64), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

user_accounts = Table(
    "user_accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("identity_type", String(20), nullable=False),
    Column("pseudonym_id", String(64), nullable=False, unique=True),
    Column("identity_id", Integer, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_locked", Boolean, nullable=False, default=False),
    Column("failed_login_attempts", Integer, nullable=False, default=0),
    Column("last_login_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

IDENTITY_TABLES = {
    "player": player_identities,
    "coach": coach_identities,
    "admin": admin_identities,
}


def create_tables(engine) -> None:
    metadata.create_all(engine)


def display_name(names: Dict[str, Dict[str, str]], pseudonym_id) -> Dict[str, str]:
    """Name for one id out of a resolve_names() mapping, with placeholders."""
    found = names.get(pseudonym_id) or {}
    return {
        "firstName": found.get("firstName") or UNKNOWN_FIRST_NAME,
        "lastName": found.get("lastName") or UNKNOWN_LAST_NAME,
    }


class IdentityRepository:
    """
    Batch lookup of real names by pseudonymous id.

    Lookups degrade instead of failing: a database error is logged and an
    empty mapping comes back, so the graph-side data still renders with
    placeholder names.
    """

    def __init__(self, engine):
        self._engine = engine

    def resolve_names(
        self, pseudonym_ids: Iterable[str], identity_type: str = "player"
    ) -> Dict[str, Dict[str, str]]:
        wanted = sorted({pid for pid in pseudonym_ids if pid})
        if not wanted:
            return {}

        tbl = IDENTITY_TABLES[identity_type]
        stmt = (
            select(tbl.c.pseudonym_id, tbl.c.first_name, tbl.c.last_name)
            .where(tbl.c.pseudonym_id.in_(wanted))
            .where(tbl.c.deleted_at.is_(None))
        )

        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError:
            logger.exception("identity lookup failed for %d ids", len(wanted))
            return {}

        names = {
            row.pseudonym_id: {"firstName": row.first_name, "lastName": row.last_name}
            for row in rows
        }
        logger.debug("resolved %d of %d %s identities", len(names), len(wanted), identity_type)
        return names
