from flask import Blueprint, current_app, jsonify, request

from config import ENV_MODE
from services.planner import plan_for_bounds
from services.waze import ENV_MODES
from utils.geo import Bounds, Viewport

bp = Blueprint("alerts", __name__)


def parse_viewport(data):
    """
    Viewport from a mapping with north/south/west/east/zoom and an optional
    env (auto, na or row); raises ValueError.
    """
    try:
        bounds = Bounds(
            north=float(data["north"]),
            south=float(data["south"]),
            west=float(data["west"]),
            east=float(data["east"]),
        )
        zoom = float(data["zoom"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("north, south, west, east and zoom are required numbers")

    env = data.get("env")
    if env is not None and env not in ENV_MODES:
        raise ValueError(f"env must be one of {', '.join(ENV_MODES)}")
    return Viewport(bounds, zoom, env)


@bp.post("/viewport")
def viewport_changed():
    """
    Hands a new map viewport to the live session. The alert refresh is
    debounced; the radar view is recomputed right away.
    """
    data = request.get_json(silent=True) or {}
    try:
        viewport = parse_viewport(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    runtime = current_app.extensions["map_runtime"]
    return jsonify(runtime.submit_viewport(viewport)), 202


@bp.get("/alerts")
def alerts():
    return jsonify(current_app.extensions["map_runtime"].alerts())


@bp.get("/plan")
def plan():
    # debug overlay: the boxes a refresh for this viewport would query
    try:
        viewport = parse_viewport(request.args)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    qp = plan_for_bounds(viewport.bounds, viewport.zoom)
    return jsonify({**qp.to_dict(), "env_mode": viewport.env or ENV_MODE})
