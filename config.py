import os

# Server configuration
SERVER_PORT = 5001
CORS_ALLOWED_ORIGINS = "*"
DEBUG_MODE = False

# Presence: a user with no activity for this long is marked offline.
INACTIVITY_TIMEOUT_SECONDS = 300

# Whiteboard snapshots are coalesced over this window before being relayed.
WHITEBOARD_DEBOUNCE_SECONDS = 0.1

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200

# When True, a second authenticate for the same user logs the older connection out.
SINGLE_SESSION_PER_USER = False

# Storage
CHROMA_DB_PATH = os.path.join(os.path.dirname(__file__), ".sandbox", "chroma_db")
STORE_CONNECT_ATTEMPTS = 5

AUDIT_LOG_PATH = os.path.join(os.path.dirname(__file__), ".sandbox", "audit_trail.csv")
