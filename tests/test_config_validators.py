import io
import builtins
import os
import logging

import pytest
from pydantic import ValidationError

import authz_primer.config as config
from authz_primer.config import Settings
from authz_primer.constants import BUNDLED_LESSONS_DIR

from tests._helpers import make_fake_open


def test_defaults_point_at_bundled_lessons():
    s = Settings()
    assert s.lessons_dir == BUNDLED_LESSONS_DIR
    assert s.exempt_endpoint_set == frozenset({"document_list"})


def test_session_expiry_too_short_raises():
    with pytest.raises(ValidationError):
        Settings(session_expiry_seconds=59)


def test_session_expiry_too_long_raises():
    with pytest.raises(ValidationError):
        Settings(session_expiry_seconds=31 * 86400)


def test_session_expiry_string_is_int():
    s = Settings(session_expiry_seconds="120")
    assert isinstance(s.session_expiry_seconds, int)
    assert s.session_expiry_seconds == 120


def test_session_expiry_non_numeric_raises():
    with pytest.raises(ValidationError):
        Settings(session_expiry_seconds="abc")


@pytest.mark.parametrize("name", ["", "has space", "semi;colon"])
def test_cookie_name_rejects_invalid_tokens(name):
    with pytest.raises(ValidationError):
        Settings(session_cookie_name=name)


def test_exempt_endpoints_from_comma_string():
    s = Settings(exempt_endpoints=" document_list , document_detail ,")
    assert s.exempt_endpoint_set == frozenset({"document_list", "document_detail"})


def test_exempt_endpoints_from_list():
    s = Settings(exempt_endpoints=["document_list", " health "])
    assert s.exempt_endpoint_set == frozenset({"document_list", "health"})


def test_exempt_endpoints_empty_string_exempts_nothing():
    s = Settings(exempt_endpoints="")
    assert s.exempt_endpoint_set == frozenset()


def test_exempt_endpoints_from_env(monkeypatch):
    monkeypatch.setenv("EXEMPT_ENDPOINTS", "document_list,check_session")
    s = Settings()
    assert s.exempt_endpoint_set == frozenset({"document_list", "check_session"})


def test_lessons_dir_rejects_whitespace():
    with pytest.raises(ValidationError):
        Settings(lessons_dir="   ")


def test_database_url_prefers_docker_secret(monkeypatch):
    secret_path = "/run/secrets/DATABASE_URL"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))
    monkeypatch.setattr(builtins, "open", make_fake_open(secret_path, "sqlite:///secret.db\n"))

    s = Settings(database_url="sqlite:///env.db")
    assert s.database_url == "sqlite:///secret.db"


def test_empty_secret_falls_back_to_value(monkeypatch):
    upper_path = "/run/secrets/DATABASE_URL"
    lower_path = "/run/secrets/database_url"

    def isfile(p):
        return os.path.normpath(p) in (os.path.normpath(upper_path), os.path.normpath(lower_path))

    real_open = builtins.open

    def fake_open(path, mode='r', encoding=None, *args, **kwargs):
        if os.path.normpath(path) in (os.path.normpath(upper_path), os.path.normpath(lower_path)):
            return io.StringIO("   \n")
        return real_open(path, mode, encoding=encoding, *args, **kwargs)

    monkeypatch.setattr(os.path, "isfile", isfile)
    monkeypatch.setattr(builtins, "open", fake_open)

    s = Settings(database_url="sqlite:///env.db")
    assert s.database_url == "sqlite:///env.db"


def test_secret_read_unicode_error_fallback(monkeypatch):
    secret_path = "/run/secrets/DATABASE_URL"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))

    class BadReader:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def read(self):
            raise UnicodeDecodeError("utf-8", b"", 0, 1, "invalid")

    real_open = builtins.open

    def fake_open(path, mode='r', encoding=None, *args, **kwargs):
        if os.path.normpath(path) == os.path.normpath(secret_path):
            return BadReader()
        return real_open(path, mode, encoding=encoding, *args, **kwargs)

    monkeypatch.setattr(builtins, "open", fake_open)
    s = Settings(database_url="sqlite:///env.db")
    assert s.database_url == "sqlite:///env.db"


def test_load_settings_exits_on_validation_error(monkeypatch, caplog):
    monkeypatch.setenv('SESSION_EXPIRY_SECONDS', '1')

    caplog.set_level(logging.ERROR)
    with pytest.raises(SystemExit) as exc:
        config.load_settings()
    assert exc.value.code == 1
    assert any('Configuration error' in r.message for r in caplog.records)

    with pytest.raises(SystemExit) as exc:
        config.load_settings(exit_code=2)
    assert exc.value.code == 2


def test_local_iso_formatter_uses_timezone():
    fmt = config.LocalISOFormatter(tz_name='UTC')
    record = logging.LogRecord(name="test", level=logging.INFO, pathname=__file__, lineno=1, msg="x", args=(), exc_info=None)
    record.created = 0.0
    s = fmt.formatTime(record)
    assert s.startswith('1970-01-01T00:00:00.')
    assert s.endswith('+00:00')


def test_local_iso_formatter_unknown_timezone_uses_local():
    fmt = config.LocalISOFormatter(tz_name='Not/AZone')
    record = logging.LogRecord(name="test", level=logging.INFO, pathname=__file__, lineno=1, msg="x", args=(), exc_info=None)
    assert 'T' in fmt.formatTime(record)
