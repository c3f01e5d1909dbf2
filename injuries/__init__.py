# injuries/__init__.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_current_user

from auth.guards import ensure, login_required, roles_required
from db import graph_session, identity_repository
from services import injuries as injury_service
from services.access import ADMIN, COACH, can_report_injury, can_view_injury

injuries_bp = Blueprint("injuries", __name__)


@injuries_bp.get("/injuries")
@login_required
def list_injuries():
    query = injury_service.InjuryQuery.from_args(request.args)
    with graph_session() as session:
        result = injury_service.list_injuries(
            session, identity_repository(), get_current_user(), query
        )
    return jsonify(result), 200


@injuries_bp.post("/injuries")
@login_required
def create_injury():
    user = get_current_user()
    new_injury = injury_service.NewInjury.from_payload(request.get_json(silent=True) or {})
    ensure(
        can_report_injury(user, new_injury.player_id),
        "Players can only report their own injuries",
    )
    with graph_session() as session:
        injury = injury_service.create_injury(
            session, identity_repository(), new_injury, reported_by=user["pseudonymId"]
        )
    return jsonify(injury), 201


@injuries_bp.get("/injuries/<injury_id>")
@login_required
def get_injury(injury_id):
    with graph_session() as session:
        injury = injury_service.find_injury(session, identity_repository(), injury_id)
    owner = (injury.get("player") or {}).get("pseudonymId")
    ensure(can_view_injury(get_current_user(), owner))
    return jsonify(injury), 200


@injuries_bp.patch("/injuries/<injury_id>")
@roles_required(COACH, ADMIN)
def update_injury(injury_id):
    changes = injury_service.InjuryUpdate.from_payload(request.get_json(silent=True) or {})
    with graph_session() as session:
        injury = injury_service.update_injury(
            session, identity_repository(), injury_id, changes,
            updated_by=get_current_user()["pseudonymId"],
        )
    return jsonify(injury), 200


@injuries_bp.post("/injuries/<injury_id>/resolve")
@roles_required(COACH, ADMIN)
def resolve_injury(injury_id):
    resolution = injury_service.Resolution.from_payload(request.get_json(silent=True) or {})
    with graph_session() as session:
        injury = injury_service.resolve_injury(
            session, identity_repository(), injury_id, resolution,
            resolved_by=get_current_user()["pseudonymId"],
        )
    return jsonify(injury), 200
