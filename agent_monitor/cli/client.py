"""HTTP client for the Agent Monitor API."""

import os
from typing import Optional
import urllib.request
import urllib.error
import json

# Default API endpoint
DEFAULT_API_URL = "http://127.0.0.1:8421"
API_TIMEOUT = 5  # seconds


class AgentMonitorClient:
    """Client for the Agent Monitor API."""

    def __init__(self, api_url: Optional[str] = None):
        """
        Initialize client.

        Args:
            api_url: Base URL for API (default: http://127.0.0.1:8421)
        """
        self.api_url = api_url or os.environ.get("AGENT_MONITOR_API_URL", DEFAULT_API_URL)

    def _request(self, method: str, path: str, data: Optional[dict] = None, timeout: Optional[int] = None) -> tuple[Optional[dict], bool, bool]:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, DELETE)
            path: API path
            data: Optional JSON data
            timeout: Optional timeout in seconds (default: API_TIMEOUT)

        Returns:
            Tuple of (response_data, success, unavailable)
            - success=True, unavailable=False: Request succeeded
            - success=False, unavailable=True: Connection error (monitor not running)
            - success=False, unavailable=False: API error (4xx, 5xx response)
        """
        url = f"{self.api_url}{path}"
        request_timeout = timeout if timeout is not None else API_TIMEOUT

        try:
            headers = {"Content-Type": "application/json"}
            body = json.dumps(data).encode() if data else None

            req = urllib.request.Request(url, data=body, headers=headers, method=method)
            with urllib.request.urlopen(req, timeout=request_timeout) as response:
                if response.status in (200, 201):
                    return json.loads(response.read().decode()), True, False
                return None, False, False

        except urllib.error.HTTPError:
            # API responded with an error status
            return None, False, False
        except urllib.error.URLError:
            # Connection refused, timeout, etc.
            return None, False, True
        except Exception:
            return None, False, True

    def list_sessions(self) -> Optional[dict]:
        """List visible sessions (with selection info)."""
        data, success, _ = self._request("GET", "/sessions")
        return data if success else None

    def get_session(self, session_id: str) -> Optional[dict]:
        data, success, _ = self._request("GET", f"/sessions/{session_id}")
        return data if success else None

    def select_session(self, session_id: str) -> tuple[Optional[dict], bool, bool]:
        return self._request("POST", f"/sessions/{session_id}/select")

    def get_activation(self) -> Optional[dict]:
        """Pid and project path of the selected session."""
        data, success, _ = self._request("GET", "/selection/activation")
        return data if success else None

    def delete_session(self, session_id: str) -> tuple[bool, bool]:
        """
        Delete a session's log.

        Returns:
            Tuple of (success, unavailable)
        """
        _, success, unavailable = self._request("DELETE", f"/sessions/{session_id}")
        return success, unavailable

    def clean_ended(self) -> Optional[list]:
        data, success, _ = self._request("POST", "/sessions/clean-ended")
        if success and data:
            return data.get("removed", [])
        return None

    def delete_all_logs(self) -> Optional[int]:
        data, success, _ = self._request("DELETE", "/logs")
        if success and data:
            return data.get("deleted", 0)
        return None

    def reload(self) -> Optional[dict]:
        data, success, _ = self._request("POST", "/reload")
        return data if success else None

    def get_productivity(self) -> Optional[dict]:
        # Large event streams can take a while to scan
        data, success, _ = self._request("GET", "/analytics/productivity", timeout=30)
        return data if success else None
