"""Per-request caller context handed to every registry call."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    client_ip: str = "N/A"
    username: Optional[str] = None
    authenticated: bool = False

    @classmethod
    def system(cls) -> "RequestContext":
        """Context for start-up maintenance and command-line tools."""
        return cls(client_ip="local", username="system", authenticated=True)
