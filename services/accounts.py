# services/accounts.py
"""
Account registration, credential checks and lockout tracking against the
relational identity store. Token signing stays in the auth blueprint.
"""

import logging
import random
import re
import string
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from services.errors import BadRequestError, UnauthorizedError
from services.identities import (
    IDENTITY_TABLES, admin_identities, coach_identities, player_identities,
    user_accounts,
)

logger = logging.getLogger(__name__)

IDENTITY_TYPES = ("player", "coach", "admin")
DEFAULT_MAX_LOGIN_ATTEMPTS = 5
PASSWORD_MIN_LENGTH = 8

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def _random_suffix(length: int = 8) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def generate_pseudonym_id(identity_type: str) -> str:
    """PSY-PLAYER-3FJ9K2QX style identifier; carries no personal data."""
    return f"PSY-{identity_type.upper()}-{_random_suffix()}"


def account_summary(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "identityType": row["identity_type"],
        "pseudonymId": row["pseudonym_id"],
    }


def _validate_registration(payload: Dict[str, Any]) -> Dict[str, Any]:
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    first_name = (payload.get("firstName") or "").strip()
    last_name = (payload.get("lastName") or "").strip()
    identity_type = (payload.get("identityType") or "").strip().lower()
    raw_dob = payload.get("dateOfBirth")

    if not email or not password or not first_name or not last_name or not identity_type:
        raise BadRequestError(
            "email, password, firstName, lastName and identityType are required"
        )
    if not _EMAIL_RE.match(email):
        raise BadRequestError("Invalid email format")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise BadRequestError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
        )
    if identity_type not in IDENTITY_TYPES:
        raise BadRequestError("identityType must be one of player, coach, admin")

    date_of_birth = None
    if raw_dob:
        try:
            date_of_birth = date.fromisoformat(str(raw_dob)[:10])
        except ValueError:
            raise BadRequestError("dateOfBirth must be an ISO date (YYYY-MM-DD)")
    elif identity_type == "player":
        raise BadRequestError("dateOfBirth is required for players")

    return {
        "email": email,
        "password": password,
        "first_name": first_name,
        "last_name": last_name,
        "identity_type": identity_type,
        "date_of_birth": date_of_birth,
    }


def register(engine, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create the identity row and the account row in one transaction.

    A duplicate email is reported as unauthorized rather than as a
    validation error so the endpoint does not confirm which emails exist
    beyond what the status code already says.
    """
    data = _validate_registration(payload)
    pseudonym_id = generate_pseudonym_id(data["identity_type"])
    now = datetime.now(timezone.utc)

    with engine.begin() as conn:
        existing = conn.execute(
            select(user_accounts.c.id).where(user_accounts.c.email == data["email"])
        ).first()
        if existing:
            raise UnauthorizedError("Email already exists")

        if data["identity_type"] == "player":
            identity_stmt = player_identities.insert().values(
                pseudonym_id=pseudonym_id,
                neo4j_player_id=f"PLAYER-{_random_suffix()}",
                first_name=data["first_name"],
                last_name=data["last_name"],
                date_of_birth=data["date_of_birth"],
                email=data["email"],
                is_active=True,
                gdpr_consent_given=True,
                gdpr_consent_date=now,
            )
        elif data["identity_type"] == "coach":
            identity_stmt = coach_identities.insert().values(
                pseudonym_id=pseudonym_id,
                neo4j_coach_id=f"COACH-{_random_suffix()}",
                first_name=data["first_name"],
                last_name=data["last_name"],
                email=data["email"],
                is_active=True,
            )
        else:
            identity_stmt = admin_identities.insert().values(
                pseudonym_id=pseudonym_id,
                first_name=data["first_name"],
                last_name=data["last_name"],
                email=data["email"],
                is_active=True,
            )

        identity_id = conn.execute(identity_stmt).inserted_primary_key[0]

        account_id = conn.execute(
            user_accounts.insert().values(
                email=data["email"],
                password_hash=generate_password_hash(data["password"]),
                identity_type=data["identity_type"],
                pseudonym_id=pseudonym_id,
                identity_id=identity_id,
                is_active=True,
                is_locked=False,
                failed_login_attempts=0,
            )
        ).inserted_primary_key[0]

    logger.info("registered %s account %s", data["identity_type"], pseudonym_id)
    return {
        "id": account_id,
        "email": data["email"],
        "identityType": data["identity_type"],
        "pseudonymId": pseudonym_id,
    }


def login(engine, email: str, password: str,
          max_attempts: int = DEFAULT_MAX_LOGIN_ATTEMPTS) -> Dict[str, Any]:
    """
    Verify credentials and return the account summary.

    Every wrong password bumps failed_login_attempts; once it reaches
    max_attempts the account is locked and stays locked (even for the right
    password) until unlock_account() is run.
    """
    email = (email or "").strip().lower()
    if not email or not password:
        raise BadRequestError("Email and password are required")

    with engine.connect() as conn:
        row = conn.execute(
            select(user_accounts).where(user_accounts.c.email == email)
        ).mappings().first()

    if row is None:
        raise UnauthorizedError("Invalid credentials")
    if not row["is_active"]:
        raise UnauthorizedError("Account is inactive")
    if row["is_locked"]:
        raise UnauthorizedError("Account is locked")

    if not check_password_hash(row["password_hash"], password):
        # Increment in SQL so parallel failures all count; commit before raising
        with engine.begin() as conn:
            conn.execute(
                user_accounts.update()
                .where(user_accounts.c.id == row["id"])
                .values(failed_login_attempts=user_accounts.c.failed_login_attempts + 1)
            )
            failed = conn.execute(
                select(user_accounts.c.failed_login_attempts)
                .where(user_accounts.c.id == row["id"])
            ).scalar_one()
            if failed >= max_attempts:
                conn.execute(
                    user_accounts.update()
                    .where(user_accounts.c.id == row["id"])
                    .values(is_locked=True)
                )
        if failed >= max_attempts:
            logger.warning("account %s locked after %d failed logins", row["pseudonym_id"], failed)
        raise UnauthorizedError("Invalid credentials")

    with engine.begin() as conn:
        conn.execute(
            user_accounts.update()
            .where(user_accounts.c.id == row["id"])
            .values(failed_login_attempts=0, last_login_at=datetime.now(timezone.utc))
        )

    return account_summary(row)


def get_active_account(engine, account_id) -> Optional[Dict[str, Any]]:
    """Account summary for a token subject, or None if it may no longer log in."""
    try:
        account_id = int(account_id)
    except (TypeError, ValueError):
        return None

    try:
        with engine.connect() as conn:
            row = conn.execute(
                select(user_accounts).where(user_accounts.c.id == account_id)
            ).mappings().first()
    except SQLAlchemyError:
        logger.exception("account lookup failed for id %s", account_id)
        raise

    if row is None or not row["is_active"] or row["is_locked"]:
        return None
    return account_summary(row)


def get_profile(engine, account: Dict[str, Any]) -> Dict[str, Any]:
    """Account summary plus the real name from the matching identity table."""
    tbl = IDENTITY_TABLES[account["identityType"]]
    with engine.connect() as conn:
        row = conn.execute(
            select(tbl.c.first_name, tbl.c.last_name, tbl.c.email)
            .where(tbl.c.pseudonym_id == account["pseudonymId"])
        ).first()

    profile = dict(account)
    profile["firstName"] = row.first_name if row else None
    profile["lastName"] = row.last_name if row else None
    return profile


def unlock_account(engine, email: str) -> bool:
    with engine.begin() as conn:
        result = conn.execute(
            user_accounts.update()
            .where(user_accounts.c.email == email.strip().lower())
            .values(is_locked=False, failed_login_attempts=0)
        )
    return result.rowcount > 0
