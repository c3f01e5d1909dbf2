# players/__init__.py
from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user

from auth.guards import ensure, login_required, roles_required
from db import graph_session, identity_repository
from services import players as player_service
from services.access import ADMIN, COACH, can_view_player

players_bp = Blueprint("players", __name__)


@players_bp.get("/players")
@roles_required(COACH, ADMIN)
def list_players():
    with graph_session() as session:
        result = player_service.list_players(session, identity_repository())
    return jsonify(result), 200


@players_bp.get("/players/<player_id>")
@login_required
def get_player(player_id):
    ensure(can_view_player(get_current_user(), player_id))
    with graph_session() as session:
        player = player_service.get_player(session, identity_repository(), player_id)
    return jsonify(player), 200


@players_bp.get("/players/<player_id>/injuries")
@login_required
def player_injuries(player_id):
    ensure(can_view_player(get_current_user(), player_id))
    with graph_session() as session:
        result = player_service.player_injuries(session, player_id)
    return jsonify(result), 200
