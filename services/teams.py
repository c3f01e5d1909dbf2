# services/teams.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from services.access import ADMIN, COACH, role_of
from services.errors import ForbiddenError, NotFoundError
from services.graph import graph_operation, to_plain
from services.identities import display_name
from services.status import (
    PLAYER_ROW_COLUMNS, TODAY_STATUS_AND_ACTIVE_INJURIES, player_row,
)

logger = logging.getLogger(__name__)

_ROSTER = (
    "MATCH (t:Team {teamId: $teamId})\n"
    "OPTIONAL MATCH (t)<-[:PLAYS_FOR]-(p:Player)\n"
    f"{TODAY_STATUS_AND_ACTIVE_INJURIES}"
    "RETURN t.teamId AS teamId, t.name AS teamName,\n"
    f"{PLAYER_ROW_COLUMNS}"
)

_DETAILS = """
MATCH (t:Team {teamId: $teamId})-[:BELONGS_TO]->(o:Organization)
OPTIONAL MATCH (t)-[:PLAYS]->(s:Sport)
OPTIONAL MATCH (c:Coach)-[:MANAGES]->(t)
WITH t, o, s, collect(DISTINCT c {.coachId, .pseudonymId, .specialization}) AS coaches
OPTIONAL MATCH (p:Player)-[:PLAYS_FOR]->(t)
RETURN properties(t) AS team,
       o.organizationId AS organizationId,
       o.name AS organizationName,
       s.name AS sport,
       coaches,
       count(DISTINCT p) AS playerCount
"""

_TEAM_SUMMARY_TAIL = """
OPTIONAL MATCH (t)-[:BELONGS_TO]->(o:Organization)
OPTIONAL MATCH (t)-[:PLAYS]->(s:Sport)
OPTIONAL MATCH (t)<-[:PLAYS_FOR]-(p:Player)
RETURN t.teamId AS teamId,
       t.name AS name,
       t.ageGroup AS ageGroup,
       t.gender AS gender,
       o.name AS organizationName,
       s.name AS sport,
       count(DISTINCT p) AS playerCount
ORDER BY name
"""

_TEAM_SCOPES = {
    COACH: "MATCH (c:Coach {pseudonymId: $callerId})-[:MANAGES]->(t:Team)",
    ADMIN: "MATCH (t:Team)",
}

_MANAGES = """
OPTIONAL MATCH (c:Coach {pseudonymId: $coachId})-[m:MANAGES]->(t:Team {teamId: $teamId})
RETURN count(m) > 0 AS manages
"""


@graph_operation("retrieve team roster")
def team_roster(session, identities, team_id: str) -> Dict[str, Any]:
    records = list(session.run(_ROSTER, teamId=team_id))
    if not records:
        raise NotFoundError(f"Team {team_id} not found")

    names = identities.resolve_names(r["pseudonymId"] for r in records)
    players = [player_row(r, names) for r in records if r["pseudonymId"] is not None]
    players.sort(key=lambda p: (p["lastName"], p["firstName"]))

    return {
        "teamId": records[0]["teamId"],
        "teamName": records[0]["teamName"],
        "players": players,
        "totalPlayers": len(players),
        "playersReportedToday": len([p for p in players if p["reportedToday"]]),
        "retrievedAt": datetime.now(timezone.utc).isoformat(),
    }


@graph_operation("retrieve team details")
def team_details(session, identities, team_id: str) -> Dict[str, Any]:
    record = session.run(_DETAILS, teamId=team_id).single()
    if record is None:
        raise NotFoundError(f"Team {team_id} not found")

    team = to_plain(record["team"]) or {}
    # the optional coach match yields placeholder entries with no id
    coaches: List[Dict[str, Any]] = [
        dict(c) for c in record["coaches"] if c and c.get("pseudonymId")
    ]
    coach_names = identities.resolve_names((c["pseudonymId"] for c in coaches), "coach")
    for coach in coaches:
        coach.update(display_name(coach_names, coach["pseudonymId"]))

    return {
        "teamId": team.get("teamId"),
        "name": team.get("name"),
        "ageGroup": team.get("ageGroup"),
        "gender": team.get("gender"),
        "seasonStart": team.get("seasonStart"),
        "seasonEnd": team.get("seasonEnd"),
        "organizationId": record["organizationId"],
        "organizationName": record["organizationName"],
        "sport": record["sport"],
        "coaches": coaches,
        "playerCount": record["playerCount"],
    }


@graph_operation("retrieve coach teams")
def coach_teams(session, user) -> List[Dict[str, Any]]:
    role = role_of(user)
    if role not in _TEAM_SCOPES:
        raise ForbiddenError("Only coaches and admins have teams")

    records = session.run(_TEAM_SCOPES[role] + _TEAM_SUMMARY_TAIL, callerId=user.get("pseudonymId"))
    return [dict(r) for r in records]


def verify_coach_access(session, coach_pseudonym_id: str, team_id: str) -> bool:
    """
    True only when a MANAGES edge links the coach to the team. Any failure
    answers False so a broken lookup denies access instead of erroring.
    """
    try:
        record = session.run(_MANAGES, coachId=coach_pseudonym_id, teamId=team_id).single()
        return bool(record and record["manages"])
    except Exception:
        logger.exception("coach access check failed for %s on team %s", coach_pseudonym_id, team_id)
        return False
