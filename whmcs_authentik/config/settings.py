"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).
    
    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)
    
    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback
    
    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name
    
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")
    
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value
    
    return None


def _env_bool(var_name: str, default: bool = False) -> bool:
    return os.environ.get(var_name, str(default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ModuleSettings:
    """Module configuration container."""
    # Authentik defaults (the host normally supplies URL/token per call)
    authentik_url: str = ""
    authentik_api_token: str = ""
    default_group_name: str = "stash"
    
    # Network
    request_timeout: float = 10.0
    
    # Username allocation
    max_username_attempts: int = 50
    
    # Activation behaviour
    idempotent_activate: bool = False
    
    # Persistence for the CLI account store
    account_store_path: str = ".runtime/accounts.json"
    
    # HTTP bridge
    bridge_token: str = ""
    
    # Audit
    audit_log_signing_key: str = ""


def load_settings() -> ModuleSettings:
    """Load module settings from environment and /run/secrets."""
    authentik_api_token = _load_secret_from_file("authentik_api_token", "AUTHENTIK_API_TOKEN") or ""
    bridge_token = _load_secret_from_file("bridge_token", "BRIDGE_TOKEN") or ""
    
    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    else:
        print("[settings] WARNING: AUDIT_LOG_SIGNING_KEY not set; audit events will be unsigned")
    
    try:
        request_timeout = float(os.environ.get("AUTHENTIK_REQUEST_TIMEOUT", "10"))
    except ValueError as exc:
        raise RuntimeError("AUTHENTIK_REQUEST_TIMEOUT must be a number of seconds") from exc
    if request_timeout <= 0:
        raise RuntimeError("AUTHENTIK_REQUEST_TIMEOUT must be positive")
    
    try:
        max_username_attempts = int(os.environ.get("AUTHENTIK_MAX_USERNAME_ATTEMPTS", "50"))
    except ValueError as exc:
        raise RuntimeError("AUTHENTIK_MAX_USERNAME_ATTEMPTS must be an integer") from exc
    if max_username_attempts < 1:
        raise RuntimeError("AUTHENTIK_MAX_USERNAME_ATTEMPTS must be at least 1")
    
    cfg = ModuleSettings(
        authentik_url=os.environ.get("AUTHENTIK_URL", "").strip(),
        authentik_api_token=authentik_api_token,
        default_group_name=os.environ.get("AUTHENTIK_DEFAULT_GROUP", "stash").strip() or "stash",
        request_timeout=request_timeout,
        max_username_attempts=max_username_attempts,
        idempotent_activate=_env_bool("AUTHENTIK_IDEMPOTENT_ACTIVATE"),
        account_store_path=os.environ.get("ACCOUNT_STORE_PATH", ".runtime/accounts.json"),
        bridge_token=bridge_token,
        audit_log_signing_key=audit_log_signing_key,
    )
    
    print(
        f"[settings] url={cfg.authentik_url or '<per-request>'}; group={cfg.default_group_name}; "
        f"timeout={cfg.request_timeout}s; token={'***' if cfg.authentik_api_token else 'EMPTY'}"
    )
    return cfg
