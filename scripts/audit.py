"""Audit trail for Authentik module calls (request/response pairs)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterable, Optional

MODULE_NAME = "authentik"
MASK = "***"
SENSITIVE_KEYS = frozenset({
    "password",
    "api_token",
    "token",
    "authorization",
    "configoption2",
})

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "module-calls.jsonl"
_default_secret_paths: list[Path] = [
    Path(".runtime/secrets/audit_log_signing_key"),
    Path("/run/secrets/audit_log_signing_key"),
]


def _get_signing_key() -> bytes:
    """Get the audit signing key (environment first, then key files)."""
    env_key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    if env_key_file:
        path = Path(env_key_file)
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                pass
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")
    for path in _default_secret_paths:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return b""


def mask_sensitive(data: Any, replace_vars: Optional[Iterable[str]] = None) -> Any:
    """Return a copy of ``data`` with credentials masked.

    Values stored under a sensitive key are replaced wholesale; every
    occurrence of a ``replace_vars`` string inside other values is replaced
    in place (so ``Bearer <token>`` becomes ``Bearer ***``).
    """
    secrets_to_hide = [value for value in (replace_vars or []) if value]

    def _mask(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: (MASK if str(key).lower() in SENSITIVE_KEYS and value_ is not None else _mask(value_))
                for key, value_ in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [_mask(item) for item in value]
        if isinstance(value, str):
            for secret in secrets_to_hide:
                value = value.replace(secret, MASK)
            return value
        return value

    return _mask(data)


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for an audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_module_call(
    action: str,
    request: Any,
    response: Any,
    *,
    processed: Any = None,
    replace_vars: Optional[Iterable[str]] = None,
    success: bool = True,
) -> None:
    """Append one module call to the audit trail.

    Args:
        action: Name of the interaction (e.g. CreateUser, Suspend_Error)
        request: Outbound request data (URL, params, body)
        response: Raw response data (status, body, transport error)
        processed: Optional interpreted result
        replace_vars: Secret strings to mask wherever they appear
        success: Whether the interaction succeeded
    """
    _ensure_audit_dir()
    replace_vars = list(replace_vars or [])

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "module": MODULE_NAME,
        "action": action,
        "success": success,
        "request": mask_sensitive(request, replace_vars),
        "response": mask_sensitive(response, replace_vars),
        "processed": mask_sensitive(processed, replace_vars),
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_module_call(
    action: str,
    request: Any,
    response: Any,
    *,
    processed: Any = None,
    replace_vars: Optional[Iterable[str]] = None,
    success: bool = True,
) -> bool:
    """Log a module call without ever raising.

    Audit failures are reported on stderr so they never break provisioning.

    Returns:
        True if the call was logged, False if logging failed
    """
    try:
        log_module_call(
            action,
            request,
            response,
            processed=processed,
            replace_vars=replace_vars,
            success=success,
        )
        return True
    except Exception as e:
        print(f"[audit] Warning: Failed to log {action}: {e}", file=sys.stderr)
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid


if __name__ == "__main__":
    total, valid = verify_audit_log()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    sys.exit(0 if total == valid else 1)
