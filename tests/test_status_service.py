"""Tests for daily status reporting and team status overviews."""

from datetime import date, datetime, timezone

import pytest
from neo4j.exceptions import ServiceUnavailable

from services import status
from services.errors import BadRequestError, ForbiddenError, NotFoundError

ANA = "PSY-PLAYER-AAAA1111"
BEN = "PSY-PLAYER-BBBB2222"
COACH = {"id": 2, "identityType": "coach", "pseudonymId": "PSY-COACH-CCCC3333"}
ADMIN = {"id": 3, "identityType": "admin", "pseudonymId": "PSY-ADMIN-DDDD4444"}


def _row(team_id, team_name, pid, current=None, injuries=0):
    return {
        "teamId": team_id,
        "teamName": team_name,
        "sport": "Football",
        "playerId": f"PLAYER-{pid[-4:]}" if pid else None,
        "pseudonymId": pid,
        "position": "Midfielder" if pid else None,
        "jerseyNumber": 8 if pid else None,
        "status": current,
        "statusNotes": None,
        "lastStatusUpdate": datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc) if current else None,
        "activeInjuries": injuries,
    }


class TestParsing:
    def test_status_is_normalised(self):
        assert status.parse_status(" green ") == "GREEN"

    @pytest.mark.parametrize("value", [None, "", "BLUE", 3])
    def test_status_rejects_unknown(self, value):
        with pytest.raises(BadRequestError):
            status.parse_status(value)

    def test_notes(self):
        assert status.parse_notes(None) is None
        assert status.parse_notes("  sore calf ") == "sore calf"
        with pytest.raises(BadRequestError):
            status.parse_notes(["x"])


class TestUpdatePlayerStatus:
    def test_creates_status(self, graph, identities):
        graph.on(status._PLAYER, [{"playerId": "PLAYER-1111", "pseudonymId": ANA}])
        graph.on(status._CREATE_STATUS, lambda q, p: [{"status": {
            "id": p["statusId"],
            "status": p["status"],
            "notes": p["notes"],
            "date": date(2024, 1, 10),
            "timestamp": datetime(2024, 1, 10, 9, 30, tzinfo=timezone.utc),
        }}])

        result = status.update_player_status(graph, identities, ANA, "ORANGE", "tight hamstring")

        assert result["success"] is True
        assert result["data"] == {
            "playerId": "PLAYER-1111",
            "pseudonymId": ANA,
            "playerName": "Ana Silva",
            "status": "ORANGE",
            "notes": "tight hamstring",
            "date": "2024-01-10",
            "timestamp": "2024-01-10T09:30:00+00:00",
        }
        _, params = graph.queries_matching(status._CREATE_STATUS)[0]
        assert len(params["statusId"]) == 36

    def test_unknown_player(self, graph, identities):
        with pytest.raises(NotFoundError):
            status.update_player_status(graph, identities, "PSY-PLAYER-NOPE0000", "GREEN")
        assert not graph.queries_matching(status._CREATE_STATUS)

    def test_driver_error_wrapped(self, graph, identities):
        graph.on(status._PLAYER, error=ServiceUnavailable("down"))
        with pytest.raises(BadRequestError, match="^Failed to update player status"):
            status.update_player_status(graph, identities, ANA, "GREEN")


class TestLatestTeamStatuses:
    def test_groups_and_counts_per_team(self, graph, identities):
        graph.on("head(collect(s)) AS latest", [
            _row("TEAM-A", "Alpha", ANA, "GREEN", injuries=1),
            _row("TEAM-A", "Alpha", BEN, None),
            _row("TEAM-B", "Bravo", "PSY-PLAYER-CCCC3333", "RED", injuries=2),
            _row("TEAM-C", "Charlie", None),
        ])

        result = status.latest_team_statuses(graph, identities, COACH)
        teams = {t["teamId"]: t for t in result["teams"]}

        alpha = teams["TEAM-A"]
        assert alpha["totalPlayers"] == 2
        assert alpha["statusCounts"] == {"green": 1, "orange": 0, "red": 0, "noStatus": 1}
        # sorted by last name: Adams before Silva
        assert [p["lastName"] for p in alpha["players"]] == ["Adams", "Silva"]
        assert alpha["players"][0]["currentStatus"] == "UNKNOWN"
        assert alpha["players"][1]["activeInjuryCount"] == 1

        bravo = teams["TEAM-B"]
        assert bravo["statusCounts"]["red"] == 1
        assert bravo["players"][0]["firstName"] == "Unknown"

        assert teams["TEAM-C"]["players"] == []
        assert teams["TEAM-C"]["statusCounts"] == {"green": 0, "orange": 0, "red": 0, "noStatus": 0}
        assert "retrievedAt" in result

    def test_coach_scope_uses_manages(self, graph, identities):
        status.latest_team_statuses(graph, identities, COACH)
        query, params = graph.calls[0]
        assert "(c:Coach {pseudonymId: $callerId})-[:MANAGES]->(t:Team)" in query
        assert params["callerId"] == COACH["pseudonymId"]

    def test_admin_sees_every_team(self, graph, identities):
        status.latest_team_statuses(graph, identities, ADMIN)
        query, _ = graph.calls[0]
        assert query.startswith("MATCH (t:Team)")

    def test_players_forbidden(self, graph, identities):
        with pytest.raises(ForbiddenError):
            status.latest_team_statuses(graph, identities, {"identityType": "player", "pseudonymId": ANA})


class TestStatusHistory:
    def test_history_newest_first(self, graph, identities):
        graph.on(status._HISTORY, [{"playerId": "PLAYER-1111", "history": [
            {"id": "s2", "status": "GREEN", "date": date(2024, 1, 11)},
            {"id": "s1", "status": "RED", "date": date(2024, 1, 10)},
        ]}])

        result = status.status_history(graph, identities, ANA)

        assert result["total"] == 2
        assert result["playerName"] == "Ana Silva"
        assert [s["id"] for s in result["statusHistory"]] == ["s2", "s1"]
        assert result["statusHistory"][0]["date"] == "2024-01-11"

    def test_player_without_history(self, graph, identities):
        graph.on(status._HISTORY, [{"playerId": "PLAYER-1111", "history": []}])
        assert status.status_history(graph, identities, ANA)["total"] == 0

    def test_unknown_player(self, graph, identities):
        with pytest.raises(NotFoundError):
            status.status_history(graph, identities, ANA)


def test_status_counts_tally_each_bucket():
    players = [{"currentStatus": s} for s in ("GREEN", "GREEN", "ORANGE", "RED", "UNKNOWN")]
    assert status.status_counts(players) == {"green": 2, "orange": 1, "red": 1, "noStatus": 1}
