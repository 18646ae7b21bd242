"""Authentik-specific exceptions for error handling."""


class AuthentikError(Exception):
    """Base exception for all Authentik operations."""
    pass


class AuthentikAPIError(AuthentikError):
    """Unexpected HTTP status from the Authentik API.
    
    Attributes:
        status_code: HTTP status code
        message: Response body returned by Authentik
        endpoint: API endpoint that failed
    """
    
    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class NetworkError(AuthentikError):
    """Transport-level failure (DNS, connection refused, timeout, TLS).
    
    Attributes:
        message: Low-level transport error text
        endpoint: API endpoint that was being called
    """
    
    def __init__(self, message: str, endpoint: str):
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"Network error calling {endpoint}: {message}")


class UserNotFoundError(AuthentikError):
    """User lookup failed - username does not exist."""
    pass


class GroupNotFoundError(AuthentikError):
    """Group lookup failed - no group with that name."""
    pass


class InvalidResponseError(AuthentikAPIError):
    """Authentik answered with an accepted status but an unreadable body.
    
    The call itself went through, so for writes the change may already
    exist upstream.
    """
    pass
