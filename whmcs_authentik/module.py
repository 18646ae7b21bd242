"""Host framework entry points.

The billing host calls one function per lifecycle transition with a flat
params map and reads back a single string: ``"success"`` or an error
message. This is the only place where structured results become strings.

Usage:
    from whmcs_authentik import module

    result = module.create_account(params)
    if result != "success":
        ...
"""
from __future__ import annotations
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping, Optional

from scripts import audit
from whmcs_authentik.config import ModuleSettings, load_settings
from whmcs_authentik.core.provisioning_service import (
    AccountStore,
    AccountSynchronizer,
    HostParamsStore,
    ProvisioningRequest,
    ProvisioningResult,
    QueuedNotifier,
)

logger = logging.getLogger(__name__)

ACTIONS = {
    "create": ("CreateAccount", "activate"),
    "suspend": ("SuspendAccount", "suspend"),
    "unsuspend": ("UnsuspendAccount", "unsuspend"),
    "terminate": ("TerminateAccount", "terminate"),
}


class ModuleConfigError(ValueError):
    """Required host configuration is missing or malformed."""
    pass


def config_options() -> dict:
    """Configuration fields shown on the host's product setup page."""
    return {
        "authentik_url": {
            "FriendlyName": "Authentik URL",
            "Type": "text",
            "Size": "255",
            "Description": "Enter your Authentik instance URL (e.g., https://authentik.example.com)",
        },
        "api_token": {
            "FriendlyName": "API Token",
            "Type": "password",
            "Size": "255",
            "Description": "Enter your Authentik API token",
        },
        "group_name": {
            "FriendlyName": "Group Name",
            "Type": "text",
            "Size": "50",
            "Default": "stash",
            "Description": "Enter the Authentik group name to add users to",
        },
    }


def _first(params: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = params.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def request_from_params(params: Mapping[str, Any], settings: Optional[ModuleSettings] = None) -> ProvisioningRequest:
    """Build a ProvisioningRequest from the host's flat params map.

    Accepts the host's positional ``configoptionN`` keys or the named keys
    from ``config_options()``; settings fill in anything the host omits.

    Raises:
        ModuleConfigError: URL, token or service id missing
    """
    settings = settings or ModuleSettings()
    client = params.get("clientsdetails") or {}

    base_url = _first(params, "configoption1", "authentik_url") or settings.authentik_url
    token = _first(params, "configoption2", "api_token") or settings.authentik_api_token
    group_name = _first(params, "configoption3", "group_name") or settings.default_group_name
    service_id = _first(params, "serviceid", "service_id")

    if not base_url:
        raise ModuleConfigError("Authentik URL is not configured")
    if not token:
        raise ModuleConfigError("Authentik API token is not configured")
    if not service_id:
        raise ModuleConfigError("Service id is missing from the request")

    return ProvisioningRequest(
        base_url=base_url,
        api_token=token,
        service_id=service_id,
        group_name=group_name,
        email=_first(client, "email"),
        first_name=_first(client, "firstname"),
        last_name=_first(client, "lastname"),
        client_id=_first(client, "userid", "client_id") or None,
        timeout=settings.request_timeout,
    )


@dataclass
class ModuleResponse:
    """What the host gets back: the result string plus state to persist."""
    result: str
    username: Optional[str] = None
    notifications: list = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.result == "success"

    def to_dict(self) -> dict:
        return {
            "result": self.result,
            "username": self.username,
            "notifications": self.notifications,
        }


def dispatch(
    action: str,
    params: MutableMapping[str, Any],
    *,
    settings: Optional[ModuleSettings] = None,
    store: Optional[AccountStore] = None,
) -> ModuleResponse:
    """Run one lifecycle action and convert the outcome for the host.

    Args:
        action: create, suspend, unsuspend or terminate
        params: Host params map (``username`` is updated on activation)
        settings: Module settings (loaded from environment when omitted)
        store: Username store (defaults to the host params map)
    """
    if action not in ACTIONS:
        raise KeyError(f"Unknown action '{action}'")
    host_name, method_name = ACTIONS[action]
    settings = settings or load_settings()
    notifier = QueuedNotifier()

    try:
        request = request_from_params(params, settings)
        synchronizer = AccountSynchronizer(
            store or HostParamsStore(params),
            notifier,
            max_username_attempts=settings.max_username_attempts,
            idempotent_activate=settings.idempotent_activate,
        )
        result: ProvisioningResult = getattr(synchronizer, method_name)(request)
    except ModuleConfigError as exc:
        logger.warning("%s rejected: %s", host_name, exc)
        audit.safe_log_module_call(f"{host_name}_Error", params, {"error": str(exc)}, success=False)
        return ModuleResponse(result=f"Error: {exc}")
    except Exception as exc:
        logger.exception("%s raised unexpectedly", host_name)
        audit.safe_log_module_call(
            f"{host_name}_Error",
            params,
            {"error": str(exc), "trace": traceback.format_exc()},
            success=False,
        )
        return ModuleResponse(result=f"Error: {exc}")

    return ModuleResponse(
        result=result.to_host_string(),
        username=result.username,
        notifications=[
            {"template": notice.template, "clientId": notice.client_id, "vars": notice.template_vars()}
            for notice in notifier.sent
        ],
    )


def create_account(params: MutableMapping[str, Any], **kwargs) -> str:
    """Provision an Authentik account for a newly activated service."""
    return dispatch("create", params, **kwargs).result


def suspend_account(params: MutableMapping[str, Any], **kwargs) -> str:
    """Deactivate the service's Authentik account."""
    return dispatch("suspend", params, **kwargs).result


def unsuspend_account(params: MutableMapping[str, Any], **kwargs) -> str:
    """Reactivate the service's Authentik account."""
    return dispatch("unsuspend", params, **kwargs).result


def terminate_account(params: MutableMapping[str, Any], **kwargs) -> str:
    """Delete the service's Authentik account."""
    return dispatch("terminate", params, **kwargs).result


def test_connection(params: Mapping[str, Any], *, settings: Optional[ModuleSettings] = None) -> dict:
    """Check URL, token and group from the host's server settings page."""
    settings = settings or load_settings()
    try:
        request = request_from_params({"serviceid": "connection-test", **params}, settings)
        result = AccountSynchronizer(HostParamsStore({})).test_connection(request)
    except ModuleConfigError as exc:
        return {"success": False, "error": str(exc)}
    except Exception as exc:
        logger.exception("TestConnection raised unexpectedly")
        return {"success": False, "error": f"Error: {exc}"}
    return {"success": result.success, "error": "" if result.success else result.to_host_string()}
