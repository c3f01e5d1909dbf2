# status/__init__.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_current_user

from auth.guards import ensure, login_required, roles_required
from db import graph_session, identity_repository
from services import status as status_service
from services.access import ADMIN, COACH, can_update_player_status, can_view_player

status_bp = Blueprint("status", __name__)


@status_bp.patch("/status/players/<player_id>/status")
@login_required
def update_status(player_id):
    ensure(
        can_update_player_status(get_current_user(), player_id),
        "Players can only update their own status",
    )
    payload = request.get_json(silent=True) or {}
    status = status_service.parse_status(payload.get("status"))
    notes = status_service.parse_notes(payload.get("notes"))

    with graph_session() as session:
        result = status_service.update_player_status(
            session, identity_repository(), player_id, status, notes
        )
    return jsonify(result), 200


@status_bp.get("/status/latest")
@roles_required(COACH, ADMIN)
def latest_statuses():
    with graph_session() as session:
        result = status_service.latest_team_statuses(
            session, identity_repository(), get_current_user()
        )
    return jsonify(result), 200


@status_bp.get("/status/players/<player_id>/history")
@login_required
def status_history(player_id):
    ensure(can_view_player(get_current_user(), player_id))
    with graph_session() as session:
        result = status_service.status_history(session, identity_repository(), player_id)
    return jsonify(result), 200
