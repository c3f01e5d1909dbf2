"""Tests for the authorization policy functions."""

import pytest

from services import access

PLAYER = {"id": 1, "identityType": "player", "pseudonymId": "PSY-PLAYER-AAAA1111"}
COACH = {"id": 2, "identityType": "coach", "pseudonymId": "PSY-COACH-CCCC3333"}
ADMIN = {"id": 3, "identityType": "admin", "pseudonymId": "PSY-ADMIN-DDDD4444"}


class TestPlayerStatusOwnership:
    def test_player_may_update_own_status(self):
        assert access.can_update_player_status(PLAYER, "PSY-PLAYER-AAAA1111")

    def test_player_may_not_update_someone_else(self):
        assert not access.can_update_player_status(PLAYER, "PSY-PLAYER-BBBB2222")

    @pytest.mark.parametrize("user", [COACH, ADMIN])
    def test_staff_may_update_anyone(self, user):
        assert access.can_update_player_status(user, "PSY-PLAYER-BBBB2222")

    def test_anonymous_is_denied(self):
        assert not access.can_update_player_status(None, "PSY-PLAYER-AAAA1111")
        assert not access.can_view_injury({}, "PSY-PLAYER-AAAA1111")


class TestInjuryVisibility:
    def test_owner_sees_injury(self):
        assert access.can_view_injury(PLAYER, "PSY-PLAYER-AAAA1111")

    def test_other_player_does_not(self):
        assert not access.can_view_injury(PLAYER, "PSY-PLAYER-BBBB2222")

    def test_unlinked_injury_hidden_from_players(self):
        assert not access.can_view_injury(PLAYER, None)
        assert access.can_view_injury(COACH, None)

    def test_players_report_only_for_themselves(self):
        assert access.can_report_injury(PLAYER, "PSY-PLAYER-AAAA1111")
        assert not access.can_report_injury(PLAYER, "PSY-PLAYER-BBBB2222")
        assert access.can_report_injury(COACH, "PSY-PLAYER-BBBB2222")


class TestRosterAccess:
    def test_admin_always(self):
        assert access.can_access_team_roster("admin", False)

    def test_coach_only_when_managing(self):
        assert access.can_access_team_roster("coach", True)
        assert not access.can_access_team_roster("coach", False)

    @pytest.mark.parametrize("role", ["player", None, "physio"])
    def test_everyone_else_denied(self, role):
        assert not access.can_access_team_roster(role, True)
