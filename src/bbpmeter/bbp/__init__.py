"""
BBP launcher protocol: packet types, configuration and the reassembly codec.

The transport (BLE scanning, pairing, notifications) lives outside this
package; it hands raw notification bytes to :class:`BbpProtocol` and receives
:class:`ShotSnapshot` values or :class:`ProtocolError` exceptions back.
"""

from .config import (
    AggregateGrid,
    DecaySettings,
    EstimatorConfig,
    FirstPeakOptions,
    LaunchMarkerConfig,
    MeterConfig,
    PeakRobustOptions,
    ScoreSettings,
    load_config,
)
from .packets import (
    ChecksumDebug,
    ErrorCode,
    Packet,
    ParserStatus,
    ProfilePoint,
    ProtocolError,
    ShotProfile,
    ShotSnapshot,
)
from .codec import BbpProtocol, estimate_launch_marker, estimate_peak, reconstruct_profile
from .rawlog import RawPacketLog, read_capture, write_capture

__all__ = [
    "AggregateGrid",
    "DecaySettings",
    "EstimatorConfig",
    "FirstPeakOptions",
    "LaunchMarkerConfig",
    "MeterConfig",
    "PeakRobustOptions",
    "ScoreSettings",
    "load_config",
    "ChecksumDebug",
    "ErrorCode",
    "Packet",
    "ParserStatus",
    "ProfilePoint",
    "ProtocolError",
    "ShotProfile",
    "ShotSnapshot",
    "BbpProtocol",
    "estimate_launch_marker",
    "estimate_peak",
    "reconstruct_profile",
    "RawPacketLog",
    "read_capture",
    "write_capture",
]
