"""Pytest shared fixtures: isolated audit trail and a fake Authentik API."""
import json
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from scripts import audit


TEST_TOKEN = "ak-test-token-0123456789"
TEST_URL = "https://auth.example.com"


class StubResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        return self._payload


class HtmlResponse:
    """A 2xx answer whose body is an HTML page (e.g. from a reverse proxy)."""

    def __init__(self, status_code: int = 200, text: str = "<html><body>Gateway login</body></html>"):
        self.status_code = status_code
        self.text = text

    def json(self):
        raise requests.exceptions.JSONDecodeError("Expecting value", self.text, 0)


class FakeAuthentik:
    """Routes requests.<method> calls to canned responses by (method, path).

    A route holds a queue of responses; the last one repeats. A response may
    be a StubResponse, an exception instance (raised), or a callable taking
    the request kwargs and returning a StubResponse.
    """

    def __init__(self):
        self.routes: dict = {}
        self.calls: list = []

    def add(self, method: str, path: str, payload=None, status: int = 200):
        self.routes.setdefault((method, path), []).append(StubResponse(payload, status))
        return self

    def add_raw(self, method: str, path: str, response):
        self.routes.setdefault((method, path), []).append(response)
        return self

    def dispatch(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        path = url.split("/api/v3", 1)[1]
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(**kwargs)
        return response

    def calls_for(self, method: str, path: str | None = None) -> list:
        return [
            call for call in self.calls
            if call[0] == method and (path is None or call[1].endswith(f"/api/v3{path}"))
        ]


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Unit tests never reach a real Authentik; use the fake_authentik fixture."""
    def _blocked(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected network access in tests: {url}")

    for method in ("get", "post", "patch", "delete"):
        monkeypatch.setattr(requests, method, _blocked)


@pytest.fixture(autouse=True)
def temp_audit_dir(monkeypatch, tmp_path):
    """Provide an isolated, signed audit trail for each test."""
    audit_dir = tmp_path / "audit"
    audit_file = audit_dir / "module-calls.jsonl"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_file)
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    monkeypatch.delenv("AUDIT_LOG_SIGNING_KEY_FILE", raising=False)
    return audit_dir, audit_file


@pytest.fixture()
def audit_events(temp_audit_dir):
    """Callable returning the audit events written so far."""
    _, audit_file = temp_audit_dir

    def _read():
        if not audit_file.exists():
            return []
        with audit_file.open("r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    return _read


@pytest.fixture()
def fake_authentik(monkeypatch):
    """Install a FakeAuthentik behind requests.get/post/patch/delete."""
    fake = FakeAuthentik()
    for method in ("get", "post", "patch", "delete"):
        verb = method.upper()
        monkeypatch.setattr(
            requests, method,
            lambda url, _verb=verb, **kwargs: fake.dispatch(_verb, url, **kwargs),
        )
    return fake
