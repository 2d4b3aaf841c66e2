# Basic config / constants
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
HTTP_TIMEOUT_S = 15

# Live alert feed (Waze live map)
WAZE_URL = os.getenv("WAZE_URL", "https://www.waze.com/live-map/api/georss")
WAZE_USER_AGENT = os.getenv("WAZE_USER_AGENT", "Mozilla/5.0")  # feed answers 500 without one
ENV_MODE = os.getenv("ENV_MODE", "auto")  # auto | na | row

# Primary warning feed
WARNINGS_URL = os.getenv(
    "WARNINGS_URL", "https://app.driverschat.com/api/messages/warning-messages"
)
WARNINGS_AUTH_TOKEN = os.getenv("X_AUTH", "")
WARNINGS_POLL_INTERVAL_S = 60

# Static radar dataset: local path or http(s) url, empty disables it
RADARS_SOURCE = os.getenv("RADARS_SOURCE", "")

# Tile query planning
MAX_TILES = 24
MAX_ZOOM = 22

# Rate limiting / dedup
MIN_FETCH_INTERVAL_MS = 2500
DEFAULT_BACKOFF_MS = 30_000
KEY_PRECISION = 5
DEBOUNCE_S = 0.65

# Clustering and the radar view
ALERT_CLUSTER_RADIUS_M = 250
RADAR_CLUSTER_RADIUS_M = 400
RADAR_PADDING_M = 2000         # extra margin around the viewport
RADAR_MIN_ZOOM = 9             # below this the dataset is too dense to show
RADAR_MAX_VISIBLE = 800

# Default map view when there are no warnings (Europe-wide)
DEFAULT_CENTER = (54.0, 15.0)
DEFAULT_ZOOM = 4
WARNING_ZOOM = 8
