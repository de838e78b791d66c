"""Wire-level constants and value types of the BBP launcher protocol."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

HEADER_ATTACH = 0xA0
HEADER_LIST_FIRST = 0xB0
HEADER_LIST_LAST = 0xB6
HEADER_CHECKSUM = 0xB7
HEADER_PROF_FIRST = 0x70
HEADER_PROF_LAST = 0x73

LIST_HEADERS = tuple(range(HEADER_LIST_FIRST, HEADER_LIST_LAST + 1))
PROFILE_HEADERS = tuple(range(HEADER_PROF_FIRST, HEADER_PROF_LAST + 1))

# Fixed slot per reassembled header: LIST 0-6, CHECKSUM 7, PROFILE 8-11.
HEADER_SLOTS = {header: slot for slot, header in enumerate(LIST_HEADERS + (HEADER_CHECKSUM,) + PROFILE_HEADERS)}
SLOT_COUNT = len(HEADER_SLOTS)
LIST_MASK = sum(1 << HEADER_SLOTS[h] for h in LIST_HEADERS + (HEADER_CHECKSUM,))
PROFILE_MASK = sum(1 << HEADER_SLOTS[h] for h in PROFILE_HEADERS)
REQUIRED_MASK = LIST_MASK | PROFILE_MASK

ATTACHED_CODES = frozenset({0x04, 0x14})
DETACHED_CODE = 0x00

CHECKSUM_OFFSET = 16
SHOT_COUNT_OFFSET = 11
SHOT_COUNT_MIN = 1
SHOT_COUNT_MAX = 50
SPEEDS_PER_LIST = 8

TICKS_PER_MS = 125.0
SP_NUMERATOR = 7_500_000


def is_supported_header(header: int) -> bool:
    if header == HEADER_ATTACH:
        return True
    if HEADER_LIST_FIRST <= header <= HEADER_CHECKSUM:
        return True
    return HEADER_PROF_FIRST <= header <= HEADER_PROF_LAST


def read_u16le(data: bytes, offset: int) -> int:
    """Little-endian u16 at *offset*, or 0 when the field runs past the buffer."""

    if offset < 0 or offset + 1 >= len(data):
        return 0
    return data[offset] | (data[offset + 1] << 8)


def hex_dump(data: bytes) -> str:
    return " ".join(f"{byte:02X}" for byte in data)


class ErrorCode(str, enum.Enum):
    UNSUPPORTED_HEADER = "UNSUPPORTED_HEADER"
    INVALID_PACKET_LENGTH = "INVALID_PACKET_LENGTH"
    MISSING_HEADERS = "MISSING_HEADERS"
    CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"
    INVALID_SHOT_COUNT = "INVALID_SHOT_COUNT"
    PACKET_TOO_SHORT = "PACKET_TOO_SHORT"


class ProtocolError(Exception):
    """Validation failure raised while parsing or reassembling packets."""

    def __init__(self, code: ErrorCode, message: str, detail: Optional[str] = None) -> None:
        super().__init__(f"{code.value}: {message}" + (f" ({detail})" if detail else ""))
        self.code = code
        self.message = message
        self.detail = detail

    def as_dict(self) -> dict[str, Optional[str]]:
        return {"code": self.code.value, "message": self.message, "detail": self.detail}


@dataclass(frozen=True)
class Packet:
    timestamp: float
    header: int
    bytes: bytes
    length: int
    hex: str


@dataclass(frozen=True)
class ProfilePoint:
    t_ms: float
    sp: int
    n_refs: int
    dt_ms: float


@dataclass(frozen=True)
class ShotProfile:
    """Reconstructed speed series; all arrays share one length and ``t_ms`` increases strictly."""

    t_ms: List[float]
    sp: List[int]
    n_refs: List[int]
    points: List[ProfilePoint] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not (len(self.t_ms) == len(self.sp) == len(self.n_refs)):
            raise ValueError("profile arrays must have identical length")
        if not self.points:
            points = []
            previous = 0.0
            for t, sp, n_refs in zip(self.t_ms, self.sp, self.n_refs):
                points.append(ProfilePoint(t_ms=t, sp=sp, n_refs=n_refs, dt_ms=t - previous))
                previous = t
            object.__setattr__(self, "points", points)

    def __len__(self) -> int:
        return len(self.sp)

    @classmethod
    def from_points(cls, points: List[ProfilePoint]) -> "ShotProfile":
        return cls(
            t_ms=[p.t_ms for p in points],
            sp=[p.sp for p in points],
            n_refs=[p.n_refs for p in points],
            points=list(points),
        )

    @classmethod
    def from_n_refs(cls, n_refs: List[int]) -> "ShotProfile":
        """Build a profile from raw tick counts; zero entries are gaps."""

        points: List[ProfilePoint] = []
        elapsed = 0.0
        for value in n_refs:
            if value == 0:
                continue
            dt_ms = value / TICKS_PER_MS
            if dt_ms <= 0:
                continue
            elapsed += dt_ms
            points.append(ProfilePoint(t_ms=elapsed, sp=SP_NUMERATOR // value, n_refs=value, dt_ms=dt_ms))
        return cls.from_points(points)

    def head(self, end_index: int) -> "ShotProfile":
        """Samples ``0..end_index`` inclusive."""

        return ShotProfile.from_points(self.points[: end_index + 1])

    def as_dict(self) -> dict[str, list]:
        return {"t_ms": list(self.t_ms), "sp": list(self.sp), "n_refs": list(self.n_refs)}


@dataclass(frozen=True)
class ShotSnapshot:
    your_sp: int
    est_sp: int
    max_sp: int
    shot_count: int
    profile: Optional[ShotProfile]
    launch_marker_ms: Optional[float]
    est_reason: str
    received_at: float
    release_event_at: Optional[float] = None
    peak_index: Optional[int] = None


@dataclass(frozen=True)
class ChecksumDebug:
    checksum_byte: int
    sum_b0_to_b6: int
    sum_b0_to_b7: int
    match_b0_to_b6: bool
    match_b0_to_b7: bool


@dataclass(frozen=True)
class ParserStatus:
    expected_length: Optional[int]
    last_length: Optional[int]
    last_trigger_header: Optional[int]
    last_checksum: Optional[ChecksumDebug]
