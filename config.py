"""Environment settings for the event API, and the logging setup every module relies on."""
import os
import logging

LOG_FORMAT = "%(asctime)s | [%(request_id)s] | %(name)s | %(levelname)-8s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
NO_REQUEST_ID = "no-request-id"


class RequestIDLoggingFilter(logging.Filter):
    """Stamps each record with the id of the request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            # Imported lazily: the middleware module logs through this config
            from request_id_middleware import _request_id_context
            record.request_id = _request_id_context.get(None) or NO_REQUEST_ID
        except (ImportError, AttributeError, RuntimeError):
            record.request_id = NO_REQUEST_ID
        return True


class SafeRequestIDFormatter(logging.Formatter):
    """Formats records that bypassed the filter (third-party handlers) without a KeyError."""

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = getattr(record, "request_id", NO_REQUEST_ID)
        return super().format(record)


def _install_request_id_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    request_filter = RequestIDLoggingFilter()
    formatter = SafeRequestIDFormatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Re-importing this module must not stack a second filter
    root = logging.getLogger()
    root.filters = [f for f in root.filters if not isinstance(f, RequestIDLoggingFilter)]
    root.addFilter(request_filter)
    for handler in root.handlers:
        handler.filters = [f for f in handler.filters if not isinstance(f, RequestIDLoggingFilter)]
        handler.addFilter(request_filter)
        handler.setFormatter(formatter)


_install_request_id_logging()
logger = logging.getLogger("event_api.config")

# --- MongoDB ---
MONGO_URI = os.getenv("MONGO_URI", "mongodb://mongo:27017/")
DB_NAME = os.getenv("MONGO_DB", "event_app")

# --- Authentication ---
_DEV_JWT_SECRET = "a_very_insecure_default_dev_secret_123!"
JWT_SECRET = os.getenv("JWT_SECRET", _DEV_JWT_SECRET)
if JWT_SECRET == _DEV_JWT_SECRET:
    logger.critical("⚠️ SECURITY WARNING: JWT_SECRET is not set, tokens are signed with the development secret.")
JWT_ALGORITHM = "HS256"
TOKEN_EXPIRY_DAYS = int(os.getenv("TOKEN_EXPIRY_DAYS", "30"))

# Seeded on startup when no admin exists
ADMIN_NAME_DEFAULT = os.getenv("ADMIN_NAME", "Administrator")
ADMIN_EMAIL_DEFAULT = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD_DEFAULT = os.getenv("ADMIN_PASSWORD", "password123")
if ADMIN_PASSWORD_DEFAULT == "password123":
    logger.warning("⚠️ ADMIN_PASSWORD is not set, the seeded admin uses the default password.")

# --- Audit trail ---
# Recent entries kept inside each document; change_history holds everything.
HISTORY_EMBED_LIMIT = int(os.getenv("HISTORY_EMBED_LIMIT", "50"))

# --- Object storage (Backblaze B2) for logos, photos and files ---
try:
    from b2sdk.v2 import InMemoryAccountInfo, B2Api
    from b2sdk.v2.exception import B2Error
    B2SDK_AVAILABLE = True
except ImportError:
    B2SDK_AVAILABLE = False
    logger.warning("b2sdk is not installed (pip install 'event-management-api[storage]'). Uploads are disabled.")
    B2Error = None
    InMemoryAccountInfo = None
    B2Api = None

B2_APPLICATION_KEY_ID = os.getenv("B2_APPLICATION_KEY_ID") or os.getenv("B2_ACCESS_KEY_ID")
B2_APPLICATION_KEY = os.getenv("B2_APPLICATION_KEY") or os.getenv("B2_SECRET_ACCESS_KEY")
B2_BUCKET_NAME = os.getenv("B2_BUCKET_NAME")

_b2_requirements = {
    "B2_APPLICATION_KEY_ID": B2_APPLICATION_KEY_ID,
    "B2_APPLICATION_KEY": B2_APPLICATION_KEY,
    "B2_BUCKET_NAME": B2_BUCKET_NAME,
    "b2sdk": B2SDK_AVAILABLE,
}
B2_ENABLED = all(_b2_requirements.values())

if B2_ENABLED:
    logger.info(f"Object storage ENABLED on B2 bucket '{B2_BUCKET_NAME}'.")
else:
    missing = [name for name, value in _b2_requirements.items() if not value]
    logger.warning(f"Object storage DISABLED (missing: {', '.join(missing)}). Upload endpoints will return 503.")
