"""
Provisioning Service Layer — Account Lifecycle Synchronization

This module translates subscription lifecycle events coming from the billing
host into calls against the Authentik API, and reports a structured result.

Architecture:
    Host entry points (module.py) ──┐
    HTTP bridge (/module/<action>) ─┼──> provisioning_service.py ──> core.authentik ──> Authentik
    Operator CLI ───────────────────┘

Behaviour:
    - Activate: allocate username, create active user, link group, notify
    - Suspend / Unsuspend: flip the user's is_active flag
    - Terminate: delete the user
    - No rollback: an account created before a later step fails stays in place
    - Every outcome is written to the audit trail
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, MutableMapping, Optional, Protocol

from scripts import audit
from whmcs_authentik.core.authentik import (
    AuthentikAPIError,
    AuthentikClient,
    AuthentikError,
    GroupNotFoundError,
    GroupService,
    InvalidResponseError,
    NetworkError,
    UserNotFoundError,
    UserService,
)
from whmcs_authentik.core.passwords import generate_strong_password
from whmcs_authentik.core.usernames import (
    MAX_ATTEMPTS,
    AllocationExhaustedError,
    allocate_unique_username,
)

logger = logging.getLogger(__name__)

CREDENTIAL_TEMPLATE = "Authentik Account Created"


# ─────────────────────────────────────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────────────────────────────────────

class FailureKind(str, Enum):
    """Why a lifecycle operation failed."""
    CREATE_FAILED = "CreateFailed"
    GROUP_NOT_FOUND = "GroupNotFound"
    LINK_FAILED = "LinkFailed"
    USERNAME_MISSING = "UsernameMissing"
    ACCOUNT_NOT_FOUND = "AccountNotFound"
    UPDATE_FAILED = "UpdateFailed"
    DELETE_FAILED = "DeleteFailed"
    LOOKUP_FAILED = "LookupFailed"
    ALLOCATION_EXHAUSTED = "AllocationExhausted"
    NETWORK_ERROR = "NetworkError"

    @property
    def category(self) -> str:
        """Coarse error class: MissingLocalState, NotFound, UpstreamError, ..."""
        return _CATEGORIES[self]


_CATEGORIES = {
    FailureKind.CREATE_FAILED: "UpstreamError",
    FailureKind.LINK_FAILED: "UpstreamError",
    FailureKind.UPDATE_FAILED: "UpstreamError",
    FailureKind.DELETE_FAILED: "UpstreamError",
    FailureKind.LOOKUP_FAILED: "UpstreamError",
    FailureKind.GROUP_NOT_FOUND: "NotFound",
    FailureKind.ACCOUNT_NOT_FOUND: "NotFound",
    FailureKind.USERNAME_MISSING: "MissingLocalState",
    FailureKind.ALLOCATION_EXHAUSTED: "AllocationExhausted",
    FailureKind.NETWORK_ERROR: "NetworkError",
}


@dataclass(frozen=True)
class ProvisioningResult:
    """Outcome of one lifecycle operation.

    ``status_code`` and ``body`` carry the upstream HTTP response when the
    failure came from Authentik.
    """
    success: bool
    kind: Optional[FailureKind] = None
    detail: str = ""
    status_code: Optional[int] = None
    body: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def ok(cls, username: Optional[str] = None) -> "ProvisioningResult":
        return cls(success=True, username=username)

    @classmethod
    def failure(
        cls,
        kind: FailureKind,
        detail: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        username: Optional[str] = None,
    ) -> "ProvisioningResult":
        return cls(
            success=False,
            kind=kind,
            detail=detail,
            status_code=status_code,
            body=body,
            username=username,
        )

    @classmethod
    def from_exception(
        cls,
        kind: FailureKind,
        exc: AuthentikError,
        *,
        message: str,
        username: Optional[str] = None,
    ) -> "ProvisioningResult":
        """Build a failure from a client exception.

        Transport errors always map to NETWORK_ERROR regardless of ``kind``.
        """
        if isinstance(exc, NetworkError):
            return cls.failure(
                FailureKind.NETWORK_ERROR,
                f"{message}. Network error: {exc.message}",
                username=username,
            )
        if isinstance(exc, AuthentikAPIError):
            return cls.failure(
                kind,
                message,
                status_code=exc.status_code,
                body=exc.message,
                username=username,
            )
        return cls.failure(kind, f"{message}: {exc}", username=username)

    def to_host_string(self) -> str:
        """Render for the host's string-only result channel."""
        if self.success:
            return "success"
        if self.status_code is not None:
            return f"{self.detail}. HTTP Code: {self.status_code}. Response: {self.body}"
        return self.detail

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "kind": self.kind.value if self.kind else None,
            "category": self.kind.category if self.kind else None,
            "detail": self.detail,
            "httpCode": self.status_code,
            "response": self.body,
            "username": self.username,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Request
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class ProvisioningRequest:
    """Per-invocation input: where to connect and who the customer is."""
    base_url: str
    api_token: str = field(repr=False)
    service_id: str
    group_name: str = "stash"
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    client_id: Optional[str] = None
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        self.service_id = str(self.service_id)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ─────────────────────────────────────────────────────────────────────────────
# Username persistence (one username per subscription)
# ─────────────────────────────────────────────────────────────────────────────

class AccountStore(Protocol):
    def get_username(self, service_id: str) -> Optional[str]: ...

    def save_username(self, service_id: str, username: str) -> None: ...


class InMemoryAccountStore:
    """Dict-backed store, mostly for tests and one-off runs."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.usernames: dict[str, str] = dict(initial or {})

    def get_username(self, service_id: str) -> Optional[str]:
        return self.usernames.get(str(service_id))

    def save_username(self, service_id: str, username: str) -> None:
        self.usernames[str(service_id)] = username


class JsonFileAccountStore:
    """Service-id → username map persisted as a JSON file."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Account store {self.path} must contain a JSON object")
        return data

    def get_username(self, service_id: str) -> Optional[str]:
        return self._load().get(str(service_id))

    def save_username(self, service_id: str, username: str) -> None:
        data = self._load()
        data[str(service_id)] = username
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        tmp_path.chmod(0o600)
        os.replace(tmp_path, self.path)


class HostParamsStore:
    """Reads and writes the ``username`` field of the host's params map.

    The host persists whatever ends up in ``params["username"]`` against the
    subscription record.
    """

    def __init__(self, params: MutableMapping[str, Any]):
        self.params = params

    def get_username(self, service_id: str) -> Optional[str]:
        username = str(self.params.get("username") or "").strip()
        return username or None

    def save_username(self, service_id: str, username: str) -> None:
        self.params["username"] = username


# ─────────────────────────────────────────────────────────────────────────────
# Credential notification
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CredentialNotice:
    """Email template data sent to the customer after activation."""
    client_id: Optional[str]
    client_name: str
    username: str
    password: str = field(repr=False)
    authentik_url: str
    template: str = CREDENTIAL_TEMPLATE

    def template_vars(self) -> dict:
        return {
            "client_name": self.client_name,
            "username": self.username,
            "password": self.password,
            "authentik_url": self.authentik_url,
        }


class CredentialNotifier(Protocol):
    def send(self, notice: CredentialNotice) -> None: ...


class QueuedNotifier:
    """Collects notices so the host can deliver them with its own mailer."""

    def __init__(self):
        self.sent: list[CredentialNotice] = []

    def send(self, notice: CredentialNotice) -> None:
        self.sent.append(notice)


# ─────────────────────────────────────────────────────────────────────────────
# Synchronizer
# ─────────────────────────────────────────────────────────────────────────────

class AccountSynchronizer:
    """Apply lifecycle transitions to Authentik accounts.

    Each operation runs a strictly sequential chain of blocking calls and
    never raises for expected failures; it returns a ProvisioningResult.
    """

    def __init__(
        self,
        store: AccountStore,
        notifier: Optional[CredentialNotifier] = None,
        *,
        max_username_attempts: int = MAX_ATTEMPTS,
        idempotent_activate: bool = False,
        password_factory: Callable[[], str] = generate_strong_password,
        username_allocator: Callable[..., str] = allocate_unique_username,
        client_factory: Callable[..., AuthentikClient] = AuthentikClient,
    ):
        self.store = store
        self.notifier = notifier or QueuedNotifier()
        self.max_username_attempts = max_username_attempts
        self.idempotent_activate = idempotent_activate
        self.password_factory = password_factory
        self.username_allocator = username_allocator
        self.client_factory = client_factory

    def _client(self, request: ProvisioningRequest) -> AuthentikClient:
        return self.client_factory(request.base_url, request.api_token, timeout=request.timeout)

    # ── Activate ────────────────────────────────────────────────────────────

    def activate(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Create the account, link it to the group and notify the customer."""
        client = self._client(request)
        users = UserService(client)
        groups = GroupService(client)

        if self.idempotent_activate:
            stored = self.store.get_username(request.service_id)
            if stored:
                try:
                    existing = self._resolve_account(users, stored)
                except UserNotFoundError:
                    existing = None
                except AuthentikError as exc:
                    return self._finish("CreateAccount", request, ProvisioningResult.from_exception(
                        FailureKind.LOOKUP_FAILED, exc, message=f"Failed to find user '{stored}'", username=stored,
                    ))
                if existing is not None:
                    logger.info("Service %s already provisioned as '%s'", request.service_id, stored)
                    result = self._link_group(groups, request, existing["pk"], stored)
                    return self._finish("CreateAccount", request, result)

        try:
            username = self.username_allocator(users, max_attempts=self.max_username_attempts)
        except AllocationExhaustedError as exc:
            return self._finish("CreateAccount", request, ProvisioningResult.failure(
                FailureKind.ALLOCATION_EXHAUSTED, str(exc),
            ))
        password = self.password_factory()

        try:
            created = users.create_user(username, request.email, request.display_name, password)
        except InvalidResponseError as exc:
            # Authentik accepted the create; only the body was unreadable
            self.store.save_username(request.service_id, username)
            return self._finish("CreateAccount", request, ProvisioningResult.from_exception(
                FailureKind.CREATE_FAILED, exc,
                message=f"User '{username}' was created but the response could not be read",
                username=username,
            ))
        except AuthentikError as exc:
            return self._finish("CreateAccount", request, ProvisioningResult.from_exception(
                FailureKind.CREATE_FAILED, exc, message="Failed to create user", username=username,
            ))

        # Persist before linking so a half-provisioned account stays reachable
        self.store.save_username(request.service_id, username)

        user_pk = created.get("pk")
        if user_pk is None:
            return self._finish("CreateAccount", request, ProvisioningResult.failure(
                FailureKind.CREATE_FAILED, "Failed to create user: response has no pk",
                body=json.dumps(created), username=username,
            ))

        result = self._link_group(groups, request, user_pk, username)
        if result.success:
            self._notify(client, request, username, password)
        return self._finish("CreateAccount", request, result)

    def _link_group(
        self,
        groups: GroupService,
        request: ProvisioningRequest,
        user_pk: int,
        username: str,
    ) -> ProvisioningResult:
        try:
            group = self._resolve_group(groups, request.group_name)
        except GroupNotFoundError:
            return ProvisioningResult.failure(
                FailureKind.GROUP_NOT_FOUND, f"Group '{request.group_name}' not found", username=username,
            )
        except AuthentikError as exc:
            return ProvisioningResult.from_exception(
                FailureKind.LOOKUP_FAILED, exc,
                message=f"Failed to find group '{request.group_name}'", username=username,
            )

        try:
            groups.add_user_to_group(group["pk"], user_pk)
        except AuthentikError as exc:
            return ProvisioningResult.from_exception(
                FailureKind.LINK_FAILED, exc,
                message=f"Failed to add user to group '{request.group_name}'", username=username,
            )
        return ProvisioningResult.ok(username)

    def _notify(self, client: AuthentikClient, request: ProvisioningRequest, username: str, password: str) -> None:
        notice = CredentialNotice(
            client_id=request.client_id,
            client_name=request.display_name,
            username=username,
            password=password,
            authentik_url=client.instance_url,
        )
        record = {"templateName": notice.template, "clientId": notice.client_id, "username": username}
        try:
            self.notifier.send(notice)
        except Exception as exc:
            # The account is live at this point; report instead of failing activation
            logger.exception("Credential notification for '%s' failed", username)
            audit.safe_log_module_call("SendEmail_Error", record, {"error": str(exc)}, success=False)
            return
        audit.safe_log_module_call("SendEmail", record, "Email notification queued for client")

    # ── Suspend / Unsuspend ─────────────────────────────────────────────────

    def suspend(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Deactivate the subscription's account."""
        return self._set_active(request, active=False, action="SuspendAccount")

    def unsuspend(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Reactivate the subscription's account."""
        return self._set_active(request, active=True, action="UnsuspendAccount")

    def _set_active(self, request: ProvisioningRequest, *, active: bool, action: str) -> ProvisioningResult:
        username = self.store.get_username(request.service_id)
        if not username:
            return self._finish(action, request, self._missing_username(request))

        users = UserService(self._client(request))
        lookup_failure, user = self._lookup(users, username)
        if lookup_failure is not None:
            return self._finish(action, request, lookup_failure)

        try:
            users.set_active(user["pk"], active)
        except AuthentikError as exc:
            verb = "unsuspend" if active else "suspend"
            return self._finish(action, request, ProvisioningResult.from_exception(
                FailureKind.UPDATE_FAILED, exc, message=f"Failed to {verb} user '{username}'", username=username,
            ))
        return self._finish(action, request, ProvisioningResult.ok(username))

    # ── Terminate ───────────────────────────────────────────────────────────

    def terminate(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Delete the subscription's account."""
        action = "TerminateAccount"
        username = self.store.get_username(request.service_id)
        if not username:
            return self._finish(action, request, self._missing_username(request))

        users = UserService(self._client(request))
        lookup_failure, user = self._lookup(users, username)
        if lookup_failure is not None:
            return self._finish(action, request, lookup_failure)

        try:
            users.delete_user(user["pk"])
        except AuthentikError as exc:
            return self._finish(action, request, ProvisioningResult.from_exception(
                FailureKind.DELETE_FAILED, exc, message=f"Failed to delete user '{username}'", username=username,
            ))
        return self._finish(action, request, ProvisioningResult.ok(username))

    # ── Connection check ────────────────────────────────────────────────────

    def test_connection(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Prove that URL, token and configured group are usable."""
        groups = GroupService(self._client(request))
        try:
            self._resolve_group(groups, request.group_name)
        except GroupNotFoundError:
            result = ProvisioningResult.failure(
                FailureKind.GROUP_NOT_FOUND, f"Group '{request.group_name}' not found",
            )
        except AuthentikError as exc:
            result = ProvisioningResult.from_exception(
                FailureKind.LOOKUP_FAILED, exc, message=f"Failed to find group '{request.group_name}'",
            )
        else:
            result = ProvisioningResult.ok()
        return self._finish("TestConnection", request, result)

    # ── Helpers ─────────────────────────────────────────────────────────────

    @staticmethod
    def _resolve_account(users: UserService, username: str) -> dict:
        user = users.get_user_by_username(username)
        if user is None:
            raise UserNotFoundError(username)
        return user

    @staticmethod
    def _resolve_group(groups: GroupService, name: str) -> dict:
        group = groups.get_group_by_name(name)
        if group is None:
            raise GroupNotFoundError(name)
        return group

    def _lookup(self, users: UserService, username: str) -> tuple[Optional[ProvisioningResult], Optional[dict]]:
        """Resolve a stored username; returns (failure, None) or (None, user)."""
        try:
            return None, self._resolve_account(users, username)
        except UserNotFoundError:
            return ProvisioningResult.failure(
                FailureKind.ACCOUNT_NOT_FOUND, f"User '{username}' not found", username=username,
            ), None
        except AuthentikError as exc:
            return ProvisioningResult.from_exception(
                FailureKind.LOOKUP_FAILED, exc, message=f"Failed to find user '{username}'", username=username,
            ), None

    @staticmethod
    def _missing_username(request: ProvisioningRequest) -> ProvisioningResult:
        return ProvisioningResult.failure(
            FailureKind.USERNAME_MISSING,
            f"No Authentik username on record for service {request.service_id}",
        )

    @staticmethod
    def _finish(action: str, request: ProvisioningRequest, result: ProvisioningResult) -> ProvisioningResult:
        suffix = "Success" if result.success else "Error"
        audit.safe_log_module_call(
            f"{action}_{suffix}",
            {
                "serviceid": request.service_id,
                "username": result.username,
                "groupName": request.group_name,
                "email": request.email,
            },
            result.to_dict(),
            processed=result.to_host_string(),
            replace_vars=[request.api_token],
            success=result.success,
        )
        if result.success:
            logger.info("%s succeeded for service %s (%s)", action, request.service_id, result.username)
        else:
            logger.warning("%s failed for service %s: %s", action, request.service_id, result.to_host_string())
        return result
