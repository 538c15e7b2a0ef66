"""HTTP client for communicating with the agent."""

from pathlib import Path
from typing import Any, Dict, Optional

import httpx


DEFAULT_SOCKET = "./state/kaspa-aio-agent.sock"
DEFAULT_TIMEOUT = 10.0


class AgentError(Exception):
    """Error reported by the agent, or failure to reach it."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.remediation = remediation
        self.details = details or {}
        self.data = data


class AgentClient:
    """Client for the agent API over a unix socket or TCP."""

    def __init__(self, socket_path: Optional[str] = None, host: Optional[str] = None):
        self.socket_path = Path(socket_path) if socket_path else None
        self.host = host

        if not self.socket_path and not self.host:
            self.socket_path = Path(DEFAULT_SOCKET)

        if self.host:
            self.base_url = f"http://{self.host}"
            self.transport = None
        else:
            self.base_url = "http://localhost"
            self.transport = httpx.HTTPTransport(uds=str(self.socket_path))

    def request(
        self,
        command: str,
        args: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ) -> Dict[str, Any]:
        """Send a command to the agent and return its data.

        Reconfiguration commands can run for a long time; pass ``timeout=None``
        to wait for them.
        """
        if self.socket_path and not self.socket_path.exists() and not self.host:
            raise AgentError(f"Agent socket not found at {self.socket_path}")

        payload = {
            "command": command,
            "args": args or {}
        }

        try:
            with httpx.Client(transport=self.transport, base_url=self.base_url, timeout=timeout) as client:
                response = client.post("/api/v1/command", json=payload)
                data = response.json()
        except httpx.RequestError as e:
            raise AgentError(f"Connection error: {e}") from e
        except ValueError as e:
            raise AgentError(f"HTTP error {response.status_code}: {response.text}") from e

        if not data.get("success"):
            raise AgentError(
                data.get("error") or "Unknown agent error",
                kind=data.get("kind"),
                remediation=data.get("remediation"),
                details=data.get("details"),
                data=data.get("data"),
            )
        return data.get("data", {})
