# teams/__init__.py
from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from auth.guards import ensure, login_required, roles_required
from db import graph_session, identity_repository
from services import teams as team_service
from services.access import ADMIN, COACH, can_access_team_roster, role_of

teams_bp = Blueprint("teams", __name__)


@teams_bp.get("/teams/coach/my-teams")
@roles_required(COACH, ADMIN)
def my_teams():
    with graph_session() as session:
        teams = team_service.coach_teams(session, get_current_user())
    return jsonify(teams), 200


@teams_bp.get("/teams/<team_id>/players")
@login_required
def team_roster(team_id):
    """
    Admins see any roster; a coach only rosters of teams they manage.
    """
    user = get_current_user()
    role = role_of(user)
    with graph_session() as session:
        manages = role == COACH and team_service.verify_coach_access(
            session, user["pseudonymId"], team_id
        )
        ensure(
            can_access_team_roster(role, manages),
            "You do not have access to this team's roster",
        )
        roster = team_service.team_roster(session, identity_repository(), team_id)
    return jsonify(roster), 200


@teams_bp.get("/teams/<team_id>")
@login_required
def team_details(team_id):
    with graph_session() as session:
        team = team_service.team_details(session, identity_repository(), team_id)
    return jsonify(team), 200
