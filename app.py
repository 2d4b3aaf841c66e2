import atexit
import logging

from flask import Flask
from flask_cors import CORS

from config import LOG_LEVEL
from services.runtime import MapRuntime


def create_app(runtime=None, start_runtime=True):
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = Flask(__name__)
    CORS(app)

    runtime = runtime or MapRuntime()
    app.extensions["map_runtime"] = runtime
    if start_runtime:
        runtime.start()
        atexit.register(runtime.stop)

    # Register blueprints
    from routes.health import bp as health_bp
    from routes.alerts import bp as alerts_bp
    from routes.radars import bp as radars_bp
    from routes.warnings import bp as warnings_bp
    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(alerts_bp, url_prefix="/api")
    app.register_blueprint(radars_bp, url_prefix="/api")
    app.register_blueprint(warnings_bp, url_prefix="/api")

    @app.get("/")
    def root():
        return {"ok": True, "app": "Hazard map backend"}

    return app

if __name__ == "__main__":
    app = create_app()
    app.run(port=5001, debug=False)
