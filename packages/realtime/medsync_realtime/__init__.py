"""
MedSync realtime subscription core

Keeps one live change channel per signed-in staff member, fans change events
out to any number of consumers, and reconnects transparently after network or
server failures.
"""

from .client import RealtimeClient
from .manager import ConnectionStatus
from .payloads import ChangeEvent, ChangeType

__all__ = ["ChangeEvent", "ChangeType", "ConnectionStatus", "RealtimeClient"]

__version__ = "0.1.0"
