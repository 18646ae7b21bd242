"""Authentik API client library.

Architecture:
- client.py: HTTP client with bearer auth, timeouts and audit trail
- users.py: User lifecycle operations (lookup, create, activate, delete)
- groups.py: Group lookup and membership
- exceptions.py: Typed exceptions for error handling

Usage:
    from whmcs_authentik.core.authentik import AuthentikClient, UserService

    client = AuthentikClient("https://auth.example.com", "api-token")
    user = UserService(client).get_user_by_username("swiftnode4821")
"""
from .client import AuthentikClient, REQUEST_TIMEOUT, normalize_base_url
from .exceptions import (
    AuthentikError,
    AuthentikAPIError,
    InvalidResponseError,
    NetworkError,
    UserNotFoundError,
    GroupNotFoundError,
)
from .users import UserService
from .groups import GroupService

__all__ = [
    "AuthentikClient",
    "REQUEST_TIMEOUT",
    "normalize_base_url",
    "AuthentikError",
    "AuthentikAPIError",
    "InvalidResponseError",
    "NetworkError",
    "UserNotFoundError",
    "GroupNotFoundError",
    "UserService",
    "GroupService",
]
