"""
Tests: identity decoding, structured logging and request timing.
"""

import json
import logging

import jwt
import pytest
from flask import g

from phaseflow.core.exceptions import AuthenticationError
from phaseflow.middleware.identity import current_actor, decode_actor
from phaseflow.middleware.logging_config import JSONFormatter, RequestIdFilter


class TestIdentity:
    def test_decode_actor(self, app):
        token = jwt.encode({"sub": "12", "role": "client"}, "phaseflow-test-secret", algorithm="HS256")
        actor = decode_actor(token)
        assert actor.id == 12
        assert actor.role == "client"
        assert actor.is_admin is False

    def test_missing_sub_is_invalid(self, app):
        token = jwt.encode({"role": "admin"}, "phaseflow-test-secret", algorithm="HS256")
        with pytest.raises(jwt.InvalidTokenError):
            decode_actor(token)

    def test_current_actor_requires_identity(self, app):
        with app.test_request_context("/api/v1/phases"):
            g.actor = None
            with pytest.raises(AuthenticationError):
                current_actor()


class TestLogging:
    def _record(self, **extra):
        record = logging.LogRecord("phaseflow.test", logging.INFO, __file__, 1, "Proof %s approved", (7,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_emits_extras(self):
        line = JSONFormatter().format(self._record(project_id=3, proof_id=7, event_type="proof_approved"))
        payload = json.loads(line)
        assert payload["message"] == "Proof 7 approved"
        assert payload["level"] == "INFO"
        assert payload["project_id"] == 3
        assert payload["proof_id"] == 7
        assert payload["event_type"] == "proof_approved"
        assert "actor_id" not in payload

    def test_request_id_filter(self, app):
        record = self._record()
        with app.test_request_context("/api/v1/phases"):
            g.request_id = "abc123"
            assert RequestIdFilter().filter(record) is True
        assert record.request_id == "abc123"

    def test_request_id_filter_without_request_id(self):
        record = self._record()
        assert RequestIdFilter().filter(record) is True
        assert getattr(record, "request_id", None) is None


class TestTiming:
    def test_generated_request_id(self, client):
        res = client.get("/api/v1/health/live")
        assert len(res.headers["X-Request-ID"]) == 12
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0
