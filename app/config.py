import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Use SQLite by default; override with DATABASE_URL env
# Path with forward slashes so SQLite URL works on Windows
_db_path = (BASE_DIR / "data" / "app.db").resolve()
_default_url = f"sqlite+aiosqlite:///{_db_path.as_posix()}"
DATABASE_URL = os.getenv("DATABASE_URL", _default_url)

# Sync URL for Alembic and scripts
SYNC_DATABASE_URL = DATABASE_URL.replace("+aiosqlite", "").replace("+asyncpg", "")

SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production-secret-key-32chars")
SESSION_COOKIE_NAME = "session"
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", str(86400 * 7)))
# For HTTPS: set SECURE_COOKIES=true so the cookie is only sent over HTTPS
SECURE_COOKIES = os.getenv("SECURE_COOKIES", "false").lower() in ("true", "1", "yes")

# Realtime notification collaborator (chat/socket server). Empty URL disables the push.
NOTIFY_URL = os.getenv("NOTIFY_URL", "")
NOTIFY_SECRET = os.getenv("SOCKET_INTERNAL_SECRET", "")
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5"))

# Condition label that keeps a returned unit out of available stock
DAMAGED_CONDITION = os.getenv("DAMAGED_CONDITION", "damaged")

DATA_DIR = BASE_DIR / "data"
