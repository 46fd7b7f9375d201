# config.py
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ===== Configuration =====
RELAY_HOST = os.getenv("RELAY_HOST", "0.0.0.0")
RELAY_PORT = int(os.getenv("RELAY_PORT", 3001))
RELAY_DEBUG = _flag("RELAY_DEBUG", False)

UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", "uploads")
ENCRYPTED_FOLDER = os.getenv("ENCRYPTED_FOLDER", "uploads_encrypted")
MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 50 * 1024 * 1024))

# Empty string disables the file log
LOG_FILE = os.path.expanduser(os.getenv("LOG_FILE", "~/relay_logs/relay.log"))

# Initial values of the toggleable vault settings
ENCRYPTION_AT_REST = _flag("ENCRYPTION_AT_REST", True)
P2P_DISCOVERY = _flag("P2P_DISCOVERY", False)


def as_dict():
    """Snapshot of the module-level settings, the shape create_app() expects."""
    return {
        "UPLOAD_FOLDER": UPLOAD_FOLDER,
        "ENCRYPTED_FOLDER": ENCRYPTED_FOLDER,
        "MAX_CONTENT_LENGTH": MAX_CONTENT_LENGTH,
        "LOG_FILE": LOG_FILE,
        "ENCRYPTION_AT_REST": ENCRYPTION_AT_REST,
        "P2P_DISCOVERY": P2P_DISCOVERY,
    }
