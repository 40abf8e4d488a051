# env vars + constants
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


PORT = int(os.getenv("PORT", "5000"))

# "one_shot": one vote per identity per poll, ever
# "rate_limit": one vote per identity per poll every VOTE_WINDOW seconds
ABUSE_MODE = os.getenv("ABUSE_MODE", "rate_limit")
VOTE_WINDOW = float(os.getenv("VOTE_WINDOW", "60"))
SWEEP_INTERVAL = float(os.getenv("SWEEP_INTERVAL", "300"))

STORAGE_TIMEOUT = float(os.getenv("STORAGE_TIMEOUT", "5.0"))
SEND_TIMEOUT = float(os.getenv("SEND_TIMEOUT", "2.0"))

TRUST_PROXY_HEADERS = _flag("TRUST_PROXY_HEADERS", "1")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

POLL_ID_LENGTH = 10
MIN_OPTIONS = 2
