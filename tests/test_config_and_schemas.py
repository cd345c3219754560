import importlib.util
from pathlib import Path

import pytest
from argon2 import PasswordHasher
from pydantic import ValidationError

from contactdesk.api import schemas
from contactdesk.config import CsrfBinding, Settings, get_settings, reset_settings_cache
from contactdesk.logging import _redact_secrets
from contactdesk.storage.errors import StoreError, StoreErrorKind
from contactdesk.storage.models import AdminClaims, SessionRecord

ROOT = Path(__file__).resolve().parent.parent


def _load_hash_script():
    spec = importlib.util.spec_from_file_location(
        "hash_admin_password", ROOT / "scripts" / "hash_admin_password.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.access_token_ttl_seconds == 3600
        assert settings.refresh_token_ttl_seconds == 604800
        assert settings.csrf_token_ttl_seconds == 900
        assert settings.max_login_attempts == 5
        assert settings.login_attempt_window_seconds == 900
        assert settings.csrf_binding is CsrfBinding.SESSION
        assert settings.request_timeout_seconds == 30.0

    def test_from_env_reads_declared_names(self, monkeypatch):
        monkeypatch.setenv("CSRF_BINDING", " Global ")
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
        monkeypatch.setenv("JWT_SECRET", "   ")
        settings = Settings.from_env()
        assert settings.csrf_binding is CsrfBinding.GLOBAL
        assert settings.max_login_attempts == 3
        assert settings.jwt_secret is None

    def test_invalid_binding_rejected(self):
        with pytest.raises(ValidationError):
            Settings(csrf_binding="per-request")

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValidationError):
            Settings(access_token_ttl_seconds=0)

    def test_settings_cache_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first
        monkeypatch.setenv("ADMIN_DASHBOARD_URL", "/admin/inbox")
        reset_settings_cache()
        assert get_settings().admin_dashboard_url == "/admin/inbox"


class TestSchemas:
    def test_login_request_defaults_to_empty_strings(self):
        req = schemas.LoginRequest()
        assert req.username == ""
        assert req.password == ""

    def test_login_request_rejects_non_string(self):
        with pytest.raises(ValidationError):
            schemas.LoginRequest(username=5, password="x")

    def test_login_response_uses_camel_case(self):
        resp = schemas.LoginResponse(redirect_url="/admin/dashboard", expires_in=3600)
        assert resp.model_dump(by_alias=True) == {
            "redirectUrl": "/admin/dashboard",
            "expiresIn": 3600,
        }


class TestModels:
    def test_claims_payload_round_trip(self):
        claims = AdminClaims(
            subject="id", issued_at=1, expires_at=2, token_id="t", role="admin", session_id="s"
        )
        assert AdminClaims.from_payload(claims.to_payload()) == claims

    @pytest.mark.parametrize(
        "payload",
        [
            {"sub": "id", "iat": 1, "exp": 2, "jti": "t", "role": "admin"},
            {"sub": "id", "iat": "1", "exp": 2, "jti": "t", "role": "admin", "session_id": "s"},
            {"sub": "", "iat": 1, "exp": 2, "jti": "t", "role": "admin", "session_id": "s"},
            {"sub": "id", "iat": True, "exp": 2, "jti": "t", "role": "admin", "session_id": "s"},
        ],
    )
    def test_claims_reject_bad_payloads(self, payload):
        with pytest.raises(ValueError):
            AdminClaims.from_payload(payload)

    def test_session_record_json_uses_snake_case_keys(self):
        record = SessionRecord("id", "admin", "admin", "acc", "ref", 10, 20)
        assert record.to_json() == (
            '{"admin_id":"id","username":"admin","role":"admin","access_token":"acc",'
            '"refresh_token":"ref","created_at":10,"last_activity":20}'
        )
        assert SessionRecord.from_json(record.to_json()) == record

    @pytest.mark.parametrize("raw", ["{not json", "[]", '{"admin_id": "id"}'])
    def test_session_record_corruption_is_serialization_error(self, raw):
        with pytest.raises(StoreError) as excinfo:
            SessionRecord.from_json(raw)
        assert excinfo.value.kind is StoreErrorKind.SERIALIZATION


class TestLogRedaction:
    def test_secret_values_are_masked(self):
        event = _redact_secrets(
            None,
            "info",
            {
                "event": "x",
                "password": "hunter2-long",
                "csrf_token": "abcd",
                "session_cookie": None,
                "username": "admin",
            },
        )
        assert event["password"] == "***"
        assert event["csrf_token"] == "***"
        assert event["session_cookie"] is None
        assert event["username"] == "admin"


class TestHashScript:
    def test_hash_verifies_with_argon2(self):
        module = _load_hash_script()
        digest = module.hash_password("Another-Password-1", time_cost=1, memory_cost=8, parallelism=1)
        assert digest.startswith("$argon2id$")
        assert PasswordHasher().verify(digest, "Another-Password-1")

    def test_weak_password_rejected(self, capsys):
        module = _load_hash_script()
        assert module.main(["--password", "short"]) == 1
        assert "Error" in capsys.readouterr().err

    def test_prints_hash(self, capsys):
        module = _load_hash_script()
        exit_code = module.main(
            ["--password", "Str0ng-Enough-Pass", "--time-cost", "1", "--memory-cost", "8", "--parallelism", "1"]
        )
        assert exit_code == 0
        assert capsys.readouterr().out.strip().startswith("$argon2id$")
