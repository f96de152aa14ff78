"""Control-plane clients."""

from .base import ResourceClient
from .ubi_cli import UbiCliClient

__all__ = ["ResourceClient", "UbiCliClient"]
