from flask import Blueprint, current_app, jsonify

bp = Blueprint("radars", __name__)


@bp.get("/radars")
def radars():
    """
    Radar clusters for the last submitted viewport.
    Response:
      { "clusters": [...], "too_many": bool, "hidden": bool, "total": int }
    """
    return jsonify(current_app.extensions["map_runtime"].radars())
