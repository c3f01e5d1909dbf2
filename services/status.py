# services/status.py
"""
Daily wellness status (GREEN / ORANGE / RED) reported per player.

A player's current status is the newest (Player)-[:HAS_STATUS]->(StatusUpdate)
node dated today; earlier days do not carry over.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.access import ADMIN, COACH, role_of
from services.errors import BadRequestError, ForbiddenError, NotFoundError
from services.graph import graph_operation, to_plain
from services.identities import display_name

logger = logging.getLogger(__name__)

STATUS_VALUES = ("GREEN", "ORANGE", "RED")
UNKNOWN_STATUS = "UNKNOWN"

# Appended after a MATCH that binds t (team) and p (player, may be null).
# Leaves t, p, latest (today's newest status or null) and activeInjuries.
TODAY_STATUS_AND_ACTIVE_INJURIES = """
OPTIONAL MATCH (p)-[:HAS_STATUS]->(s:StatusUpdate)
WHERE s.date = date()
WITH t, p, s
ORDER BY s.timestamp DESC
WITH t, p, head(collect(s)) AS latest
OPTIONAL MATCH (p)-[:SUSTAINED]->(i:Injury)
WHERE i.status <> 'Recovered'
WITH t, p, latest, count(i) AS activeInjuries
"""

PLAYER_ROW_COLUMNS = """
       p.playerId AS playerId,
       p.pseudonymId AS pseudonymId,
       p.position AS position,
       p.jerseyNumber AS jerseyNumber,
       latest.status AS status,
       latest.notes AS statusNotes,
       latest.timestamp AS lastStatusUpdate,
       activeInjuries
"""

_PLAYER = """
MATCH (p:Player {pseudonymId: $playerId})
RETURN p.playerId AS playerId, p.pseudonymId AS pseudonymId
"""

_CREATE_STATUS = """
MATCH (p:Player {pseudonymId: $playerId})
CREATE (s:StatusUpdate {
  id: $statusId,
  status: $status,
  notes: $notes,
  date: date(),
  timestamp: datetime()
})
CREATE (p)-[:HAS_STATUS]->(s)
RETURN properties(s) AS status
"""

_TEAM_SCOPES = {
    COACH: "MATCH (c:Coach {pseudonymId: $callerId})-[:MANAGES]->(t:Team)",
    ADMIN: "MATCH (t:Team)",
}

_HISTORY = """
MATCH (p:Player {pseudonymId: $playerId})
OPTIONAL MATCH (p)-[:HAS_STATUS]->(s:StatusUpdate)
WITH p, s
ORDER BY s.timestamp DESC
RETURN p.playerId AS playerId, collect(properties(s)) AS history
"""


def parse_status(value) -> str:
    status = (value or "").strip().upper() if isinstance(value, str) else ""
    if status not in STATUS_VALUES:
        raise BadRequestError(f"status must be one of {', '.join(STATUS_VALUES)}")
    return status


def parse_notes(value) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadRequestError("notes must be a string")
    return value.strip() or None


def full_name(names, pseudonym_id) -> str:
    name = display_name(names, pseudonym_id)
    return f"{name['firstName']} {name['lastName']}"


def player_row(record, names) -> Dict[str, Any]:
    """Shape one per-player row produced with PLAYER_ROW_COLUMNS."""
    pid = record["pseudonymId"]
    row = {
        "playerId": record["playerId"],
        "pseudonymId": pid,
        "position": record["position"],
        "jerseyNumber": record["jerseyNumber"],
        "currentStatus": record["status"] or UNKNOWN_STATUS,
        "statusNotes": record["statusNotes"],
        "lastStatusUpdate": to_plain(record["lastStatusUpdate"]),
        "reportedToday": record["status"] is not None,
        "activeInjuryCount": record["activeInjuries"] or 0,
    }
    row.update(display_name(names, pid))
    return row


def status_counts(players: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "green": len([p for p in players if p["currentStatus"] == "GREEN"]),
        "orange": len([p for p in players if p["currentStatus"] == "ORANGE"]),
        "red": len([p for p in players if p["currentStatus"] == "RED"]),
        "noStatus": len([p for p in players if p["currentStatus"] == UNKNOWN_STATUS]),
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@graph_operation("update player status")
def update_player_status(session, identities, player_id: str, status: str,
                         notes: Optional[str] = None) -> Dict[str, Any]:
    player = session.run(_PLAYER, playerId=player_id).single()
    if player is None:
        raise NotFoundError(f"Player {player_id} not found")

    record = session.run(
        _CREATE_STATUS,
        playerId=player_id,
        statusId=str(uuid.uuid4()),
        status=status,
        notes=notes,
    ).single()
    if record is None:
        raise NotFoundError(f"Player {player_id} not found")

    created = to_plain(record["status"])
    names = identities.resolve_names([player_id])
    logger.info("status %s recorded for %s", status, player_id)

    return {
        "success": True,
        "message": "Status updated successfully",
        "data": {
            "playerId": player["playerId"],
            "pseudonymId": player_id,
            "playerName": full_name(names, player_id),
            "status": created.get("status"),
            "notes": created.get("notes"),
            "date": created.get("date"),
            "timestamp": created.get("timestamp"),
        },
    }


@graph_operation("retrieve latest statuses")
def latest_team_statuses(session, identities, user) -> Dict[str, Any]:
    role = role_of(user)
    if role not in _TEAM_SCOPES:
        raise ForbiddenError("Only coaches and admins can view team statuses")

    query = (
        f"{_TEAM_SCOPES[role]}\n"
        "OPTIONAL MATCH (t)<-[:PLAYS_FOR]-(p:Player)\n"
        f"{TODAY_STATUS_AND_ACTIVE_INJURIES}"
        "OPTIONAL MATCH (t)-[:PLAYS]->(sp:Sport)\n"
        "RETURN t.teamId AS teamId, t.name AS teamName, sp.name AS sport,\n"
        f"{PLAYER_ROW_COLUMNS}"
        "ORDER BY teamName"
    )
    records = list(session.run(query, callerId=user.get("pseudonymId")))
    names = identities.resolve_names(r["pseudonymId"] for r in records)

    teams: Dict[str, Dict[str, Any]] = {}
    for record in records:
        team = teams.setdefault(record["teamId"], {
            "teamId": record["teamId"],
            "teamName": record["teamName"],
            "sport": record["sport"],
            "players": [],
        })
        # teams without players still come back once with a null player
        if record["pseudonymId"] is not None:
            team["players"].append(player_row(record, names))

    for team in teams.values():
        team["players"].sort(key=lambda p: (p["lastName"], p["firstName"]))
        team["totalPlayers"] = len(team["players"])
        team["statusCounts"] = status_counts(team["players"])

    return {"teams": list(teams.values()), "retrievedAt": _now_iso()}


@graph_operation("retrieve status history")
def status_history(session, identities, player_id: str) -> Dict[str, Any]:
    record = session.run(_HISTORY, playerId=player_id).single()
    if record is None:
        raise NotFoundError(f"Player {player_id} not found")

    history = [to_plain(entry) for entry in record["history"] if entry]
    names = identities.resolve_names([player_id])
    return {
        "playerId": record["playerId"],
        "pseudonymId": player_id,
        "playerName": full_name(names, player_id),
        "statusHistory": history,
        "total": len(history),
    }
