"""pyespresense - Room-level presence tracking from ESPresense MQTT readings."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyespresense")
except PackageNotFoundError:
    __version__ = "0+local"
from pyespresense._mqtt import ConnectionStatus, ConnectionStatusKind, PahoTransport, Transport
from pyespresense._scheduler import AsyncioScheduler, Scheduler
from pyespresense.config import TrackerConfig
from pyespresense.decoder import DecodedReading, decode_message
from pyespresense.exceptions import (
    EspresenseConfigError,
    EspresenseDecodeError,
    EspresenseError,
    EspresenseTransportError,
)
from pyespresense.state.events import PresenceChange, PresenceUpdate, ResolvedState, RoomReading
from pyespresense.state.store import ProximityResolver, ReadingTable
from pyespresense.supervisor import ConnectionPhase, ConnectionState, ConnectionSupervisor
from pyespresense.tracker import PresenceTracker

__all__ = [
    "__version__",
    "AsyncioScheduler",
    "ConnectionPhase",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectionStatusKind",
    "ConnectionSupervisor",
    "DecodedReading",
    "EspresenseConfigError",
    "EspresenseDecodeError",
    "EspresenseError",
    "EspresenseTransportError",
    "PahoTransport",
    "PresenceChange",
    "PresenceTracker",
    "PresenceUpdate",
    "ProximityResolver",
    "ReadingTable",
    "ResolvedState",
    "RoomReading",
    "Scheduler",
    "TrackerConfig",
    "Transport",
    "decode_message",
]
