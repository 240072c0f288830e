"""HTTP gateway in front of the photoflow stages and the services they call."""

from .app import create_app
from .state import GatewayConfig

__all__ = ["GatewayConfig", "create_app"]
