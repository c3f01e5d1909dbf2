# services/players.py
"""Read-only player views; writes go through the injuries and status services."""

import logging
from typing import Any, Dict

from services.errors import NotFoundError
from services.graph import graph_operation, to_plain
from services.identities import display_name
from services.injuries import INJURY_FIELDS

logger = logging.getLogger(__name__)

_LIST_PLAYERS = """
MATCH (p:Player)
OPTIONAL MATCH (p)-[:PLAYS_FOR]->(t:Team)
WITH p, head(collect(t)) AS t
RETURN p.playerId AS playerId,
       p.pseudonymId AS pseudonymId,
       p.position AS position,
       p.jerseyNumber AS jerseyNumber,
       p.isActive AS isActive,
       t.teamId AS teamId,
       t.name AS teamName
"""

_GET_PLAYER = """
MATCH (p:Player {pseudonymId: $playerId})
OPTIONAL MATCH (p)-[:PLAYS_FOR]->(t:Team)
OPTIONAL MATCH (t)-[:PLAYS]->(s:Sport)
RETURN properties(p) AS player,
       t.teamId AS teamId,
       t.name AS teamName,
       s.name AS sport
LIMIT 1
"""

_PLAYER_INJURIES = """
MATCH (p:Player {pseudonymId: $playerId})
OPTIONAL MATCH (p)-[r:SUSTAINED]->(i:Injury)
RETURN p.playerId AS playerId,
       properties(i) AS injury,
       r.diagnosedDate AS diagnosedDate,
       r.reportedBy AS reportedBy
ORDER BY i.injuryDate DESC
"""


@graph_operation("retrieve players")
def list_players(session, identities) -> Dict[str, Any]:
    records = list(session.run(_LIST_PLAYERS))
    names = identities.resolve_names(r["pseudonymId"] for r in records)

    players = []
    for record in records:
        player = {
            "playerId": record["playerId"],
            "pseudonymId": record["pseudonymId"],
            "position": record["position"],
            "jerseyNumber": record["jerseyNumber"],
            "isActive": record["isActive"],
            "teamId": record["teamId"],
            "teamName": record["teamName"],
        }
        player.update(display_name(names, record["pseudonymId"]))
        players.append(player)

    players.sort(key=lambda p: (p["lastName"], p["firstName"]))
    return {"players": players, "total": len(players)}


@graph_operation("retrieve player")
def get_player(session, identities, player_id: str) -> Dict[str, Any]:
    record = session.run(_GET_PLAYER, playerId=player_id).single()
    if record is None:
        raise NotFoundError(f"Player {player_id} not found")

    node = to_plain(record["player"]) or {}
    player = {
        "playerId": node.get("playerId"),
        "pseudonymId": node.get("pseudonymId"),
        "position": node.get("position"),
        "jerseyNumber": node.get("jerseyNumber"),
        "isActive": node.get("isActive"),
        "team": {
            "teamId": record["teamId"],
            "name": record["teamName"],
            "sport": record["sport"],
        } if record["teamId"] else None,
    }
    player.update(display_name(identities.resolve_names([player_id]), player_id))
    return player


@graph_operation("retrieve player injuries")
def player_injuries(session, player_id: str) -> Dict[str, Any]:
    records = list(session.run(_PLAYER_INJURIES, playerId=player_id))
    if not records:
        raise NotFoundError(f"Player {player_id} not found")

    injuries = []
    for record in records:
        # a player without injuries still yields one row with nulls
        if record["injury"] is None:
            continue
        injury = to_plain(record["injury"])
        dto = {key: injury.get(key) for key in INJURY_FIELDS}
        dto["diagnosedDate"] = to_plain(record["diagnosedDate"])
        dto["reportedBy"] = record["reportedBy"]
        injuries.append(dto)

    return {
        "playerId": records[0]["playerId"],
        "pseudonymId": player_id,
        "injuries": injuries,
        "total": len(injuries),
    }
