from flask import Blueprint, current_app, jsonify

bp = Blueprint("warnings", __name__)


@bp.get("/warnings")
def warnings():
    return jsonify(current_app.extensions["map_runtime"].warnings())
