from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    runtime = current_app.extensions["map_runtime"]
    return jsonify({"ok": True, "runtime": runtime.running})
