# auth/__init__.py
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, get_current_user

from auth.guards import login_required
from db import get_engine
from services import accounts

auth_bp = Blueprint("auth", __name__)
log = logging.getLogger("app")


def _issue_token(account):
    return create_access_token(
        identity=str(account["id"]),
        additional_claims={
            "email": account["email"],
            "identityType": account["identityType"],
            "pseudonymId": account["pseudonymId"],
        },
    )


@auth_bp.post("/register")
def register():
    payload = request.get_json(silent=True) or {}
    account = accounts.register(get_engine(), payload)
    return jsonify(accessToken=_issue_token(account), user=account), 201


@auth_bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    account = accounts.login(
        get_engine(),
        payload.get("email"),
        payload.get("password"),
        max_attempts=current_app.config["MAX_LOGIN_ATTEMPTS"],
    )
    log.info("login ok for %s", account["pseudonymId"])
    return jsonify(accessToken=_issue_token(account), user=account), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(accounts.get_profile(get_engine(), get_current_user())), 200
