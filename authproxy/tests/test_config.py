"""
Configuration and Startup Tests

Settings validation, BIND_ADDR parsing, the error status table, and the
refuse-to-start behaviour of the console entry point.

Run tests:
----------
    pytest authproxy/tests/test_config.py -v
"""

from unittest.mock import patch

import httpx
import pytest
from pydantic import ValidationError

from authproxy.config import Settings, get_settings, parse_bind_addr
from authproxy.errors import (
    ERROR_STATUS,
    AuthError,
    BadRequestError,
    BodyTooLargeError,
    MidStreamError,
    UpstreamConnectError,
    UpstreamTimeoutError,
    status_for,
)
from authproxy.main import main
from authproxy.proxy.forwarder import translate_upstream_error
from authproxy.tests.helpers import TEST_SECRET, TEST_UPSTREAM, make_settings

SETTINGS_ENV_VARS = [name for name in Settings.model_fields]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No settings in the environment and no .env file in the working directory"""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


# ============================================================================
# Settings Tests
# ============================================================================

def test_defaults():
    settings = make_settings()

    assert settings.BIND_ADDR == "127.0.0.1:3000"
    assert settings.AUTH_HEADER == "Authorization"
    assert settings.HEALTH_PATH == "/__authproxy/health"
    assert settings.LOG_LEVEL == "INFO"
    assert settings.MAX_BODY_BYTES == 0
    assert settings.upstream_timeout == httpx.Timeout(connect=5.0, read=30.0, write=30.0, pool=5.0)


def test_settings_loaded_from_environment(clean_env):
    clean_env.setenv("AUTH_TOKEN", TEST_SECRET)
    clean_env.setenv("UPSTREAM_URL", "http://backend:9000/")
    clean_env.setenv("BIND_ADDR", "0.0.0.0:8081")
    clean_env.setenv("LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.AUTH_TOKEN == TEST_SECRET
    assert settings.upstream_base_url_str == "http://backend:9000"
    assert settings.bind_host == "0.0.0.0"
    assert settings.bind_port == 8081
    assert settings.LOG_LEVEL == "DEBUG"


def test_settings_loaded_from_env_file(clean_env, tmp_path):
    (tmp_path / ".env").write_text(f"AUTH_TOKEN={TEST_SECRET}\nUPSTREAM_URL={TEST_UPSTREAM}\n")

    settings = get_settings()

    assert settings.AUTH_TOKEN == TEST_SECRET
    assert settings.upstream_authority == "upstream.test:8080"


def test_missing_secret_is_rejected(clean_env):
    clean_env.setenv("UPSTREAM_URL", TEST_UPSTREAM)

    with pytest.raises(ValidationError) as exc_info:
        Settings()

    assert any(error["loc"] == ("AUTH_TOKEN",) for error in exc_info.value.errors())


@pytest.mark.parametrize("secret", ["", "   ", "\t", " padded", "padded "])
def test_unusable_secret_is_rejected(secret):
    with pytest.raises(ValidationError):
        make_settings(AUTH_TOKEN=secret)


def test_missing_upstream_is_rejected(clean_env):
    clean_env.setenv("AUTH_TOKEN", TEST_SECRET)

    with pytest.raises(ValidationError):
        Settings()


@pytest.mark.parametrize(
    "url",
    ["not a url", "ftp://backend", "http://backend?debug=1", "http://backend/#frag", "backend:9000"],
)
def test_invalid_upstream_url_is_rejected(url):
    with pytest.raises(ValidationError):
        make_settings(UPSTREAM_URL=url)


@pytest.mark.parametrize(
    "url, authority",
    [
        ("http://upstream.test:8080", "upstream.test:8080"),
        ("http://upstream.test", "upstream.test"),
        ("https://upstream.test/base/", "upstream.test"),
        ("http://127.0.0.1:9000", "127.0.0.1:9000"),
    ],
)
def test_upstream_authority(url, authority):
    assert make_settings(UPSTREAM_URL=url).upstream_authority == authority


@pytest.mark.parametrize("header", ["X Token", "X-Token:", "", "Host", "hOsT"])
def test_invalid_auth_header_is_rejected(header):
    with pytest.raises(ValidationError):
        make_settings(AUTH_HEADER=header)


def test_health_path_must_be_absolute():
    with pytest.raises(ValidationError):
        make_settings(HEALTH_PATH="health")

    assert make_settings(HEALTH_PATH="").HEALTH_PATH == ""


def test_invalid_log_level_is_rejected():
    with pytest.raises(ValidationError):
        make_settings(LOG_LEVEL="VERBOSE")


def test_settings_are_immutable():
    settings = make_settings()

    with pytest.raises(ValidationError):
        settings.AUTH_TOKEN = "changed"


# ============================================================================
# Bind Address Tests
# ============================================================================

@pytest.mark.parametrize(
    "value, expected",
    [
        ("127.0.0.1:3000", ("127.0.0.1", 3000)),
        ("0.0.0.0:80", ("0.0.0.0", 80)),
        ("localhost:8080", ("localhost", 8080)),
        ("[::1]:3000", ("::1", 3000)),
        ("[::]:0", ("::", 0)),
    ],
)
def test_parse_bind_addr(value, expected):
    assert parse_bind_addr(value) == expected


@pytest.mark.parametrize(
    "value",
    ["3000", "127.0.0.1", "127.0.0.1:", ":3000", "127.0.0.1:http", "127.0.0.1:70000", "::1:3000", "[::1:3000", "[nope]:3000"],
)
def test_parse_bind_addr_rejects_malformed(value):
    with pytest.raises(ValueError):
        parse_bind_addr(value)


def test_malformed_bind_addr_fails_settings():
    with pytest.raises(ValidationError):
        make_settings(BIND_ADDR="localhost")


# ============================================================================
# Error Taxonomy Tests
# ============================================================================

@pytest.mark.parametrize(
    "error, status_code",
    [
        (AuthError(), 401),
        (UpstreamConnectError(), 502),
        (UpstreamTimeoutError(), 504),
        (BadRequestError(), 400),
        (BodyTooLargeError(), 413),
        (MidStreamError(), None),
    ],
)
def test_status_for(error, status_code):
    assert status_for(error) == status_code


def test_every_error_has_a_generic_message():
    for error_class in ERROR_STATUS:
        error = error_class()
        assert error.code
        assert error.message == str(error)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (httpx.ConnectError("refused"), UpstreamConnectError),
        (httpx.ConnectTimeout("timed out"), UpstreamConnectError),
        (httpx.ReadTimeout("timed out"), UpstreamTimeoutError),
        (httpx.WriteTimeout("timed out"), UpstreamTimeoutError),
        (httpx.PoolTimeout("timed out"), UpstreamTimeoutError),
        (httpx.RemoteProtocolError("garbage"), UpstreamConnectError),
    ],
)
def test_translate_upstream_error(exc, expected):
    assert type(translate_upstream_error(exc)) is expected


# ============================================================================
# Startup Tests
# ============================================================================

def test_main_refuses_to_start_without_secret(clean_env):
    clean_env.setenv("UPSTREAM_URL", TEST_UPSTREAM)

    with patch("authproxy.main.setup_logging"), patch("authproxy.main.uvicorn.run") as run:
        with pytest.raises(SystemExit) as exc_info:
            main()

    assert exc_info.value.code == 1
    run.assert_not_called()


def test_main_does_not_log_rejected_secret(clean_env, caplog):
    clean_env.setenv("AUTH_TOKEN", " leaked-value ")
    clean_env.setenv("UPSTREAM_URL", TEST_UPSTREAM)

    with patch("authproxy.main.setup_logging"), patch("authproxy.main.uvicorn.run") as run:
        with pytest.raises(SystemExit):
            main()

    run.assert_not_called()
    assert "AUTH_TOKEN" in caplog.text
    assert "leaked-value" not in caplog.text


def test_main_serves_on_bind_addr(clean_env, caplog):
    clean_env.setenv("AUTH_TOKEN", TEST_SECRET)
    clean_env.setenv("UPSTREAM_URL", TEST_UPSTREAM)
    clean_env.setenv("BIND_ADDR", "0.0.0.0:8081")
    caplog.set_level("INFO", logger="authproxy.main")

    with patch("authproxy.main.setup_logging"), patch("authproxy.main.uvicorn.run") as run:
        main()

    run.assert_called_once()
    kwargs = run.call_args.kwargs
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 8081
    assert kwargs["server_header"] is False
    assert "Listening on http://0.0.0.0:8081" in caplog.text
    assert TEST_SECRET not in caplog.text
