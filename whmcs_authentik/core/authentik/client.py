"""Low-level HTTP client for the Authentik REST API.

Handles bearer authentication, timeouts, status checks and the audit trail
for every outbound call.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, Optional

import requests

from scripts import audit
from .exceptions import AuthentikAPIError, InvalidResponseError, NetworkError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0
API_PREFIX = "/api/v3"


def normalize_base_url(base_url: str) -> str:
    """Strip trailing slashes and make sure the URL points at /api/v3."""
    url = (base_url or "").strip().rstrip("/")
    if not url:
        raise ValueError("Authentik base URL is required")
    if not url.endswith(API_PREFIX):
        url = f"{url}{API_PREFIX}"
    return url


class AuthentikClient:
    """HTTP client for the Authentik API.
    
    Features:
    - Bearer token authentication on every request
    - Configurable timeout, transport errors wrapped in NetworkError
    - Unexpected statuses raised as AuthentikAPIError
    - One audit record per interaction (credentials masked)
    
    Usage:
        client = AuthentikClient("https://auth.example.com", "api-token")
        resp = client.get("/core/users/", params={"username": "swiftnode4821"})
    """
    
    def __init__(self, base_url: str, token: str, timeout: Optional[float] = None):
        """Initialize Authentik client.
        
        Args:
            base_url: Authentik instance URL (with or without /api/v3)
            token: API token used as bearer credential
            timeout: Connect/read timeout in seconds (defaults to REQUEST_TIMEOUT)
        """
        if not token:
            raise ValueError("Authentik API token is required")
        self.base_url = normalize_base_url(base_url)
        self.token = token
        self.timeout = timeout if timeout is not None else REQUEST_TIMEOUT
    
    @property
    def instance_url(self) -> str:
        """Public instance URL without the API prefix."""
        return self.base_url[: -len(API_PREFIX)]
    
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
    
    def get(self, path: str, params: Optional[Dict] = None, *, action: str = "GET",
            expected: Iterable[int] = (200,)) -> requests.Response:
        """Execute GET request.
        
        Raises:
            NetworkError: On transport failure
            AuthentikAPIError: When status is not in ``expected``
        """
        return self._request("GET", path, params=params, action=action, expected=expected)
    
    def post(self, path: str, json: Optional[Dict] = None, *, action: str = "POST",
             expected: Iterable[int] = (200, 201)) -> requests.Response:
        """Execute POST request with a JSON body."""
        return self._request("POST", path, json=json, action=action, expected=expected)
    
    def patch(self, path: str, json: Optional[Dict] = None, *, action: str = "PATCH",
              expected: Iterable[int] = (200,)) -> requests.Response:
        """Execute PATCH request with a JSON body."""
        return self._request("PATCH", path, json=json, action=action, expected=expected)
    
    def delete(self, path: str, *, action: str = "DELETE",
               expected: Iterable[int] = (204, 200)) -> requests.Response:
        """Execute DELETE request."""
        return self._request("DELETE", path, action=action, expected=expected)
    
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict] = None,
        json: Optional[Dict] = None,
        action: str,
        expected: Iterable[int],
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        request_record: Dict[str, Any] = {"method": method, "url": url, "headers": self._headers()}
        if params:
            request_record["params"] = params
        if json is not None:
            request_record["data"] = json
        
        sender = getattr(requests, method.lower())
        kwargs: Dict[str, Any] = {"headers": self._headers(), "timeout": self.timeout}
        if params is not None:
            kwargs["params"] = params
        if json is not None:
            kwargs["json"] = json
        
        try:
            resp = sender(url, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            audit.safe_log_module_call(
                action,
                request_record,
                {"error": str(exc)},
                replace_vars=[self.token],
                success=False,
            )
            raise NetworkError(str(exc), url) from exc
        
        ok = resp.status_code in tuple(expected)
        audit.safe_log_module_call(
            action,
            request_record,
            {"httpCode": resp.status_code, "response": resp.text},
            replace_vars=[self.token],
            success=ok,
        )
        if not ok:
            logger.info("%s %s returned HTTP %s", method, url, resp.status_code)
            raise AuthentikAPIError(resp.status_code, resp.text, url)
        return resp

    def read_json(self, resp: requests.Response, path: str) -> Dict[str, Any]:
        """Decode a response body that must be a JSON object.

        Raises:
            InvalidResponseError: Body is not JSON or not an object
        """
        url = f"{self.base_url}{path}"
        try:
            data = resp.json()
        except ValueError as exc:
            logger.warning("%s returned HTTP %s with a non-JSON body", url, resp.status_code)
            raise InvalidResponseError(resp.status_code, resp.text, url) from exc
        if not isinstance(data, dict):
            logger.warning("%s returned HTTP %s with a non-object body", url, resp.status_code)
            raise InvalidResponseError(resp.status_code, resp.text, url)
        return data
