"""Authentik group management operations."""
from __future__ import annotations
import logging
from typing import Optional

from .client import AuthentikClient

logger = logging.getLogger(__name__)


class GroupService:
    """Service for managing Authentik groups and memberships."""
    
    def __init__(self, client: AuthentikClient):
        """Initialize group service.
        
        Args:
            client: Configured Authentik client
        """
        self.client = client
    
    def get_group_by_name(self, name: str) -> Optional[dict]:
        """Resolve a group by name.
        
        Prefers an exact name match among the results and falls back to the
        first result the API returned.
        
        Returns:
            Group representation or None if the result list is empty
        """
        resp = self.client.get("/core/groups/", params={"name": name}, action="GetGroup")
        groups = self.client.read_json(resp, "/core/groups/").get("results") or []
        for group in groups:
            if group.get("name") == name:
                return group
        return groups[0] if groups else None
    
    def add_user_to_group(self, group_pk, user_pk: int) -> None:
        """Link a user to a group."""
        self.client.post(
            f"/core/groups/{group_pk}/add_user/",
            json={"pk": user_pk},
            action="AddToGroup",
            expected=(200, 201, 204),
        )
        logger.info("Added user pk=%s to group %s", user_pk, group_pk)
    