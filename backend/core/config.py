import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=True)

LOG_LEVEL = str(os.getenv("LOG_LEVEL") or "INFO").strip().upper()
COACHING_DATA_DIR = Path(str(os.getenv("COACHING_DATA_DIR") or (_BACKEND_ROOT / "data")).strip())
COACHING_INSTANCE_ID = str(os.getenv("COACHING_INSTANCE_ID") or "instance-local").strip()


def env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}

SESSION_CLEANUP_TTL_SEC = max(60, int(os.getenv("SESSION_CLEANUP_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))
