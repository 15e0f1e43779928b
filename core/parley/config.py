"""Configuration settings for Parley."""

import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.environ.get("PARLEY_DATA_DIR", BASE_DIR / "data"))
STATE_DB_PATH = Path(os.environ.get("PARLEY_STATE_DB", DATA_DIR / "state.db"))

# Server
HOST = "127.0.0.1"
PORT = 7878

# API
API_PREFIX = "/api"
API_VERSION = "0.1.0"

# Workspace roots, in priority order
WORKSPACE_ROOTS = [
    p for p in os.environ.get("PARLEY_WORKSPACE_ROOTS", os.getcwd()).split(os.pathsep) if p
]
DEFAULT_SCOPE = "default"
SUGGESTION_LIMIT = 10
EXCLUDED_DIRS = {"node_modules", "dist", "out"}
# Larger files are treated as unreadable
MAX_FILE_BYTES = int(os.environ.get("PARLEY_MAX_FILE_BYTES", 1024 * 1024))

# Browser origins allowed to call the API (the panel is served locally)
ALLOWED_ORIGIN_REGEX = os.environ.get(
    "PARLEY_ALLOWED_ORIGINS", r"^(https?://(localhost|127\.0\.0\.1)(:\d+)?|vscode-webview://.*)$"
)

# Session persistence
SESSIONS_KEY = "parley.chatSessions"

# Panel handshake
HISTORY_READY_TIMEOUT = float(os.environ.get("PARLEY_READY_TIMEOUT", "2.0"))

# Model backend
GEMINI_BASE_URL = os.environ.get(
    "PARLEY_GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_MODEL = os.environ.get("PARLEY_GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_KEY = os.environ.get("PARLEY_API_KEY") or os.environ.get("GEMINI_API_KEY", "")
BACKEND_TIMEOUT = 60.0
