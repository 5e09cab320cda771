"""Project-wide configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(os.environ.get("MPW_PROJECT_ROOT", Path.cwd()))

load_dotenv(PROJECT_ROOT / ".env")

DB_PATH = Path(os.environ.get("MPW_DB_PATH", PROJECT_ROOT / "missing_persons.duckdb"))

# Face detection – InsightFace
INSIGHTFACE_MODEL_NAME = "buffalo_l"
FACE_EMBEDDING_DIM = 512
DETECTION_SIZE = (640, 640)

# Matching
MATCH_DISTANCE_THRESHOLD = float(os.environ.get("MATCH_DISTANCE_THRESHOLD", "0.6"))
CONFIDENCE_THRESHOLD = float(os.environ.get("CONFIDENCE_THRESHOLD", "0.6"))

# Camera capture (fixed preference, not negotiated)
CAMERA_WIDTH = 1280
CAMERA_HEIGHT = 720
CAPTURE_PADDING = 30
CAPTURE_JPEG_QUALITY = 90

# Geolocation – empty URL disables lookups
GEOLOCATION_URL = os.environ.get("GEOLOCATION_URL", "")
GEOLOCATION_TIMEOUT = 5.0

# Record store initialization wait: 50 x 100ms
STORE_INIT_POLL_INTERVAL = 0.1
STORE_INIT_MAX_ATTEMPTS = 50

# Shared database file: connections are opened per operation so that the
# watcher and the admin CLI can use the same file. A locked file is retried.
STORE_LOCK_RETRY_INTERVAL = 0.1
STORE_LOCK_MAX_ATTEMPTS = 50

# How often the watcher checks the gallery revision marker
GALLERY_REFRESH_INTERVAL = float(os.environ.get("GALLERY_REFRESH_INTERVAL", "2.0"))
