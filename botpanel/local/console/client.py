import json
import logging
import requests
from pathlib import Path
from urllib.parse import quote
from typing import Any, Dict, List, Optional

from botpanel.local.config import effective_settings as config

log = logging.getLogger(__name__)


class PanelClientError(Exception):
    """A request to the panel server failed or was rejected."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


def default_base_url() -> str:
    host = config.WEB_SERVER_HOST
    # A wildcard bind is reachable locally through the loopback address.
    if host in ("0.0.0.0", "::", ""):
        host = "127.0.0.1"
    return f"http://{host}:{config.WEB_SERVER_PORT}"


class PanelClient:
    """
    Thin `requests` client for the panel's HTTP API, used by the console
    to drive a server running in another process.
    """

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None, timeout: float = 30):
        """
        :param base_url: The server root, e.g. 'http://127.0.0.1:3000'. Defaults to the configured bind.
        :param session: An optional requests session, mainly for testing.
        :param timeout: Per-request timeout in seconds.
        """
        self.base_url = (base_url or default_base_url()).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            log.debug(f"{method} {url} failed: {e}")
            raise PanelClientError(f"Bot panel server unreachable at {self.base_url}. Is it running ('serve')?")

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            payload = None

        if not response.ok:
            if isinstance(payload, dict) and "error" in payload:
                detail = payload.get("detail") or payload["error"]
                raise PanelClientError(f"{payload['error']}: {detail}", code=payload["error"])
            raise PanelClientError(f"Server returned HTTP {response.status_code}.")
        return payload

    def list_bots(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/bots")

    def lifecycle(self, action: str, name: str) -> Dict[str, Any]:
        """Calls one of start/stop/restart/install/delete for a bot."""
        return self._request("POST", f"/api/{action}/{quote(name, safe='')}")

    def deploy(self, archive_path: Path) -> Dict[str, Any]:
        """Uploads a zip archive; the bot is named after the file."""
        with archive_path.open("rb") as f:
            files = {"botfile": (archive_path.name, f, "application/zip")}
            return self._request("POST", "/api/upload", files=files)

    def get_env(self, name: str) -> Dict[str, str]:
        return self._request("GET", f"/api/env/{quote(name, safe='')}")["env"]

    def set_env_var(self, name: str, key: str, value: str) -> Dict[str, Any]:
        path = f"/api/env/{quote(name, safe='')}/{quote(key, safe='')}"
        return self._request("PUT", path, json={"value": value})

    def delete_env_var(self, name: str, key: str) -> Dict[str, Any]:
        path = f"/api/env/{quote(name, safe='')}/{quote(key, safe='')}"
        return self._request("DELETE", path)
