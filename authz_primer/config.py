import datetime
import logging
import os
import re
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, ValidationError, ConfigDict
from pydantic_settings import BaseSettings

from .constants import BUNDLED_LESSONS_DIR, DEFAULT_DATABASE_URL, DEFAULT_EXEMPT_ENDPOINTS, DEFAULT_INDEX_DIR

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_ignore_empty=False,
        case_sensitive=False  # Make env vars case-insensitive
    )

    logging_level: str = "INFO"
    timezone: str = "UTC"

    lessons_dir: str = BUNDLED_LESSONS_DIR
    database_url: str = DEFAULT_DATABASE_URL
    index_dir: str = DEFAULT_INDEX_DIR
    seed_demo_data: bool = True

    # Session cookie
    session_cookie_name: str = "session_id"
    session_expiry_seconds: int = 86400
    session_cookie_secure: bool = False  # Set to True behind HTTPS

    # Endpoint names that skip the login check
    exempt_endpoints: str = ",".join(DEFAULT_EXEMPT_ENDPOINTS)

    @field_validator("session_expiry_seconds")
    @classmethod
    def validate_session_expiry(cls, v):
        if int(v) < 60:
            raise ValueError("session_expiry_seconds must be >= 60")
        if int(v) > 30 * 86400:
            raise ValueError("session_expiry_seconds must be <= 2592000 (30 days)")
        return int(v)

    @field_validator("session_cookie_name")
    @classmethod
    def validate_cookie_name(cls, v):
        if v is None or not re.fullmatch(r"[A-Za-z0-9_\-]+", str(v)):
            raise ValueError("session_cookie_name must be a non-empty token of letters, digits, '-' or '_'")
        return v

    @field_validator("exempt_endpoints", mode="before")
    @classmethod
    def split_exempt_endpoints(cls, v):
        """Accept a comma-separated string (env var) or a list of endpoint names."""
        if v is None:
            return ""
        names = v.split(",") if isinstance(v, str) else v
        return ",".join(str(name).strip() for name in names if str(name).strip())

    @field_validator("lessons_dir")
    @classmethod
    def validate_lessons_dir(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("lessons_dir cannot be empty")
        return str(v)

    @field_validator("database_url", mode="before")
    @classmethod
    def _prefer_docker_secret(cls, v, info):
        """
        Prefer Docker secrets mounted at /run/secrets/<NAME> over environment variables.
        Tries secret files with the field name upper-cased and as-is.
        """
        secret = None
        try:
            candidates = [info.field_name.upper(), info.field_name]
            for name in candidates:
                path = f"/run/secrets/{name}"
                if os.path.isfile(path):
                    with open(path, "r", encoding="utf-8") as f:
                        data = f.read().strip()
                    if data:
                        secret = data
                        break
        except (OSError, UnicodeDecodeError):
            secret = None
        if secret:
            logger.debug("Using docker secret for %s", info.field_name)
            return secret
        return v

    @property
    def exempt_endpoint_set(self) -> frozenset:
        return frozenset(name for name in self.exempt_endpoints.split(",") if name)


def load_settings(exit_code: int = 1) -> Settings:
    """Load settings from the environment, exiting with `exit_code` when they are invalid."""
    try:
        settings = Settings()
        return settings
    except ValidationError as e:
        logger.error("Configuration error:")
        for err in e.errors():
            logger.error(" - %s: %s", err.get('loc'), err.get('msg'))
        sys.exit(exit_code)


class LocalISOFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, tz_name: str | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._tz = None
        self._tz_name = tz_name
        if tz_name:
            try:
                self._tz = ZoneInfo(tz_name)
            except ZoneInfoNotFoundError:
                self._tz = None

    def formatTime(self, record, datefmt=None):
        if self._tz is not None:
            dt = datetime.datetime.fromtimestamp(record.created, tz=self._tz)
        else:
            dt = datetime.datetime.fromtimestamp(record.created).astimezone()
        return dt.isoformat(timespec='milliseconds')


def configure_logging(settings: Settings | None = None):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        tzname = getattr(settings, 'timezone', None) if settings is not None else None
        formatter = LocalISOFormatter('%(asctime)s %(levelname)s %(name)s %(message)s', tz_name=tzname)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if settings is not None:
        lvl = str(getattr(settings, 'logging_level', 'INFO')).strip().upper()
        numeric = getattr(logging, lvl, None)
        if not isinstance(numeric, int):
            root.setLevel(logging.INFO)
        else:
            root.setLevel(numeric)
    else:
        root.setLevel(logging.INFO)

    logger.info("Logging configured; root level=%s", logging.getLevelName(root.level))

    # Python-Markdown logs under the upper-case name
    noisy = ['httpx', 'httpcore', 'urllib3', 'MARKDOWN']
    for n in noisy:
        logging.getLogger(n).setLevel(logging.WARNING)

    for logger_name in ['uvicorn', 'uvicorn.error', 'uvicorn.access']:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    if root.level <= logging.DEBUG:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.INFO)
    else:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
