"""Authentik user management operations."""
from __future__ import annotations
import logging
from typing import Optional

from .client import AuthentikClient

logger = logging.getLogger(__name__)


class UserService:
    """Service for managing Authentik users."""
    
    def __init__(self, client: AuthentikClient):
        """Initialize user service.
        
        Args:
            client: Configured Authentik client
        """
        self.client = client
    
    def _search(self, username: str, action: str) -> list:
        resp = self.client.get("/core/users/", params={"username": username}, action=action)
        return self.client.read_json(resp, "/core/users/").get("results") or []
    
    def get_user_by_username(self, username: str) -> Optional[dict]:
        """Return the user whose username matches exactly, or None.
        
        Raises:
            AuthentikAPIError: Lookup did not return HTTP 200
        """
        for user in self._search(username, "GetUser"):
            if user.get("username") == username:
                return user
        return None
    
    def username_exists(self, username: str) -> bool:
        """True iff the filtered user list returns at least one result.
        
        Raises:
            AuthentikAPIError: Lookup did not return HTTP 200
        """
        return bool(self._search(username, "CheckUsername"))
    
    def create_user(
        self,
        username: str,
        email: str,
        name: str,
        password: str,
        is_active: bool = True,
    ) -> dict:
        """Create a user and return its representation (including ``pk``).
        
        Args:
            username: Username (immutable once created)
            email: Email address
            name: Display name
            password: Initial password
            is_active: Initial active flag
            
        Raises:
            AuthentikAPIError: Creation did not return HTTP 201
            InvalidResponseError: HTTP 201 but the body could not be read
                (the user exists upstream)
        """
        payload = {
            "username": username,
            "email": email,
            "name": name,
            "password": password,
            "is_active": is_active,
        }
        resp = self.client.post("/core/users/", json=payload, action="CreateUser", expected=(201,))
        user = self.client.read_json(resp, "/core/users/")
        logger.info("Created Authentik user '%s' (pk=%s)", username, user.get("pk"))
        return user
    
    def set_active(self, user_pk: int, active: bool) -> dict:
        """Flip the ``is_active`` flag on a user."""
        action = "ActivateUser" if active else "DeactivateUser"
        resp = self.client.patch(f"/core/users/{user_pk}/", json={"is_active": active}, action=action)
        logger.info("Set is_active=%s on Authentik user pk=%s", active, user_pk)
        return self.client.read_json(resp, f"/core/users/{user_pk}/")
    
    def delete_user(self, user_pk: int) -> None:
        """Delete a user by primary key."""
        self.client.delete(f"/core/users/{user_pk}/", action="DeleteUser")
        logger.info("Deleted Authentik user pk=%s", user_pk)
