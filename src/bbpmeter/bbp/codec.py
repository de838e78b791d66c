from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .. import peaks
from .config import EstimatorConfig, FirstPeakOptions, LaunchMarkerConfig
from .packets import (
    ATTACHED_CODES,
    CHECKSUM_OFFSET,
    DETACHED_CODE,
    HEADER_ATTACH,
    HEADER_CHECKSUM,
    HEADER_LIST_FIRST,
    HEADER_LIST_LAST,
    HEADER_PROF_FIRST,
    HEADER_PROF_LAST,
    HEADER_SLOTS,
    LIST_HEADERS,
    LIST_MASK,
    PROFILE_HEADERS,
    PROFILE_MASK,
    REQUIRED_MASK,
    SHOT_COUNT_MAX,
    SHOT_COUNT_MIN,
    SHOT_COUNT_OFFSET,
    SLOT_COUNT,
    SPEEDS_PER_LIST,
    ChecksumDebug,
    ErrorCode,
    Packet,
    ParserStatus,
    ProtocolError,
    ShotProfile,
    ShotSnapshot,
    hex_dump,
    is_supported_header,
    read_u16le,
)

REASON_SAME = "same_as_your"
REASON_SHORT = "profile_short_fallback"
REASON_EARLY = "peak_early_fallback"
REASON_EST_GT_YOUR = "est_gt_your_fallback"
REASON_LAST = "peak_last_use_max"
REASON_NO_EDGE = "no_falling_edge_use_max"
REASON_ESTIMATED = "estimated_from_profile"


@dataclass(frozen=True)
class PeakEstimate:
    est_sp: int
    peak_index: int
    reason: str


@dataclass(frozen=True)
class LaunchMarker:
    t_ms: float
    source: str


def _now_ms() -> float:
    return time.time() * 1000.0


def reconstruct_profile(payloads: Sequence[Optional[bytes]]) -> Tuple[Optional[ShotProfile], int]:
    """Concatenate the tick counts of the profile packets in header order.

    Returns the profile (``None`` when it holds no samples) and the raw maximum speed.
    """
    n_refs: List[int] = []
    for data in payloads:
        if not data:
            continue
        for offset in range(1, len(data), 2):
            n_refs.append(read_u16le(data, offset))
    profile = ShotProfile.from_n_refs(n_refs)
    if len(profile) == 0:
        return None, 0
    return profile, max(profile.sp)


def estimate_peak(profile: Optional[ShotProfile], declared_sp: int, cfg: Optional[EstimatorConfig] = None) -> PeakEstimate:
    """
    Extrapolate the true launch peak from the early part of the profile.

    The sensor lags the true speed near the peak, so the first confirmed
    falling edge is checked against a linear projection of the rise scaled by
    ``cfg.margin``. Fallbacks are evaluated in a fixed order and each one is
    reported through ``PeakEstimate.reason``.
    """
    cfg = cfg or EstimatorConfig()
    size = len(profile) if profile is not None else 0
    if profile is None or size < cfg.min_points:
        return PeakEstimate(est_sp=declared_sp, peak_index=0, reason=REASON_SHORT)

    sp = profile.sp
    t = profile.t_ms
    length = min(size, cfg.early_window)
    max_index = length - 1
    start = cfg.scan_start

    true_sp = 0
    peak_index = max_index
    local_max = 0
    found_edge = False
    for i in range(start, length):
        sp0 = sp[i]
        sp_m1 = sp[i - 1]
        if sp0 > local_max:
            local_max = sp0
        if sp_m1 <= sp0:
            continue

        if i + 2 <= max_index:
            confirmed = sp0 > sp[i + 1] > sp[i + 2]
        elif i + 1 <= max_index:
            confirmed = sp0 > sp[i + 1]
        else:
            confirmed = False

        if confirmed:
            denom = t[i - 2] - t[i - 4]
            slope = 0.0 if denom == 0 else (sp[i - 2] - sp[i - 4]) / denom
            extrapolated = math.floor(cfg.margin * (slope * (t[i - 1] - t[i - 2]) + sp[i - 2]))
            if extrapolated < sp_m1:
                true_sp, peak_index = sp[i - 2], i - 2
            else:
                true_sp, peak_index = sp_m1, i - 1
        else:
            true_sp, peak_index = sp_m1, i - 1
        found_edge = True
        break

    reason = REASON_SAME
    if not found_edge:
        true_sp = local_max
        reason = REASON_NO_EDGE

    if peak_index == size - 1:
        true_sp = local_max
        reason = REASON_LAST
    elif peak_index < start:
        true_sp = declared_sp
        reason = REASON_EARLY
    elif true_sp > declared_sp:
        true_sp = declared_sp
        reason = REASON_EST_GT_YOUR
    elif reason == REASON_SAME and true_sp != declared_sp:
        reason = REASON_ESTIMATED

    return PeakEstimate(est_sp=int(true_sp), peak_index=peak_index, reason=reason)


def estimate_launch_marker(
    profile: Optional[ShotProfile],
    *,
    shot_at: float,
    release_at: Optional[float],
    first_profile_at: Optional[float],
    last_profile_at: Optional[float],
    cfg: Optional[LaunchMarkerConfig] = None,
    peak_options: Optional[FirstPeakOptions] = None,
) -> Optional[LaunchMarker]:
    """Place the physical release on the profile time axis, falling back to the first peak."""
    if profile is None or len(profile) == 0:
        return None
    cfg = cfg or LaunchMarkerConfig()
    first_peak_ms = float(profile.t_ms[peaks.find_first_peak_index(profile.t_ms, profile.sp, peak_options)])
    fallback = LaunchMarker(t_ms=first_peak_ms, source="first_peak")

    if release_at is None or not (shot_at - cfg.release_window_ms <= release_at <= shot_at):
        return fallback
    if first_profile_at is None or last_profile_at is None:
        return fallback

    span = last_profile_at - first_profile_at
    if span == 0:
        return fallback
    last_t = float(profile.t_ms[-1])
    mapped = (release_at - first_profile_at) / span * last_t
    if not math.isfinite(mapped):
        return fallback
    mapped = min(max(mapped, 0.0), last_t)
    if mapped > cfg.max_marker_ms:
        return fallback
    if abs(mapped - first_peak_ms) > cfg.max_peak_gap_ms:
        return fallback
    return LaunchMarker(t_ms=mapped, source="release_event")


class BbpProtocol:
    """
    Reassembly state machine for one BLE connection.

    Packets are fed one at a time; the latest payload per header is kept in a
    fixed slot table and a bitmask records which slots were filled since the
    last reset. The device sends LIST, then CHECKSUM, then PROFILE: a CHECKSUM
    that closes a complete LIST group waits for the profile, and the last
    PROFILE header emits the shot. Any other incomplete trigger clears the
    table and raises ``MISSING_HEADERS``.
    """

    def __init__(
        self,
        estimator: Optional[EstimatorConfig] = None,
        launch_marker: Optional[LaunchMarkerConfig] = None,
        first_peak: Optional[FirstPeakOptions] = None,
    ) -> None:
        self.estimator = estimator or EstimatorConfig()
        self.launch_marker = launch_marker or LaunchMarkerConfig()
        self.first_peak = first_peak or FirstPeakOptions()
        self._slots: List[Optional[bytes]] = [None] * SLOT_COUNT
        self._arrivals: List[Optional[float]] = [None] * SLOT_COUNT
        self._seen = 0
        self._expected_length: Optional[int] = None
        self._last_length: Optional[int] = None
        self._last_trigger: Optional[int] = None
        self._last_checksum: Optional[ChecksumDebug] = None
        self._bey_attached = False
        self._total_shots: Optional[int] = None
        self._release_at: Optional[float] = None
        self._stats: Dict[str, int] = {"packets": 0, "shots": 0}
        self._stats.update({code.value.lower(): 0 for code in ErrorCode})
        self._log = logging.getLogger(__name__)

    @property
    def bey_attached(self) -> bool:
        return self._bey_attached

    @property
    def total_shots(self) -> Optional[int]:
        return self._total_shots

    @property
    def release_event_at(self) -> Optional[float]:
        return self._release_at

    def parse_packet(self, raw: bytes | bytearray | memoryview, timestamp: Optional[float] = None) -> Packet:
        data = bytes(raw)
        self._last_length = len(data)
        try:
            if len(data) < 2:
                raise ProtocolError(ErrorCode.PACKET_TOO_SHORT, "packet too short", f"length={len(data)}")
            if self._expected_length is None:
                self._expected_length = len(data)
            elif len(data) != self._expected_length:
                raise ProtocolError(
                    ErrorCode.INVALID_PACKET_LENGTH,
                    "packet length mismatch",
                    f"expected={self._expected_length}, actual={len(data)}",
                )
            header = data[0]
            if not is_supported_header(header):
                raise ProtocolError(ErrorCode.UNSUPPORTED_HEADER, "unsupported header", f"header=0x{header:02x}")
        except ProtocolError as exc:
            self._count_error(exc)
            raise
        self._stats["packets"] += 1
        return Packet(
            timestamp=_now_ms() if timestamp is None else float(timestamp),
            header=header,
            bytes=data,
            length=len(data),
            hex=hex_dump(data),
        )

    def update(self, packet: Packet) -> Optional[ShotSnapshot]:
        """Store *packet*; return a snapshot when it completes a valid shot."""
        if packet.header == HEADER_ATTACH:
            self._update_attach(packet)
            return None

        if packet.header == HEADER_LIST_FIRST and self._seen & PROFILE_MASK:
            # profile packets left over from an earlier, broken shot
            self._log.debug("dropping stale profile packets on 0x%02x", packet.header)
            self._drop_profile()

        slot = HEADER_SLOTS[packet.header]
        self._slots[slot] = packet.bytes
        self._arrivals[slot] = packet.timestamp
        self._seen |= 1 << slot

        if packet.header not in (HEADER_CHECKSUM, HEADER_PROF_LAST):
            return None
        self._last_trigger = packet.header

        try:
            if self._seen != REQUIRED_MASK:
                if self._awaiting_profile(packet.header):
                    return None
                missing = [f"0x{h:02x}" for h, s in HEADER_SLOTS.items() if not self._seen & (1 << s)]
                raise ProtocolError(ErrorCode.MISSING_HEADERS, "missing headers at trigger", "missing=" + ",".join(missing))
            snapshot = self._analyze(packet.timestamp)
        except ProtocolError as exc:
            self.clear()
            self._count_error(exc)
            raise
        self.clear()
        self._stats["shots"] += 1
        self._log.debug(
            "shot n=%d your_sp=%d est_sp=%d reason=%s", snapshot.shot_count, snapshot.your_sp, snapshot.est_sp, snapshot.est_reason
        )
        return snapshot

    def feed(self, raw: bytes | bytearray | memoryview, timestamp: Optional[float] = None) -> Optional[ShotSnapshot]:
        return self.update(self.parse_packet(raw, timestamp))

    def iter_shots(self, packets: Iterable[Tuple[Optional[float], bytes]]) -> Iterator[ShotSnapshot | ProtocolError]:
        """Replay ``(timestamp, raw)`` pairs, yielding snapshots and the errors raised along the way."""
        for timestamp, raw in packets:
            try:
                snapshot = self.feed(raw, timestamp)
            except ProtocolError as exc:
                yield exc
                continue
            if snapshot is not None:
                yield snapshot

    def status(self) -> ParserStatus:
        return ParserStatus(
            expected_length=self._expected_length,
            last_length=self._last_length,
            last_trigger_header=self._last_trigger,
            last_checksum=self._last_checksum,
        )

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def clear(self) -> None:
        self._slots = [None] * SLOT_COUNT
        self._arrivals = [None] * SLOT_COUNT
        self._seen = 0

    def reset(self) -> None:
        """Forget everything learnt on this connection, including the packet length."""
        self.clear()
        self._expected_length = None
        self._last_length = None
        self._last_trigger = None
        self._last_checksum = None
        self._bey_attached = False
        self._total_shots = None
        self._release_at = None

    def _count_error(self, exc: ProtocolError) -> None:
        self._stats[exc.code.value.lower()] += 1
        self._log.debug("protocol error %s: %s (%s)", exc.code.value, exc.message, exc.detail or "")

    def _update_attach(self, packet: Packet) -> None:
        data = packet.bytes
        code = data[3] if len(data) > 3 else DETACHED_CODE
        self._bey_attached = code in ATTACHED_CODES
        if code == DETACHED_CODE:
            self._release_at = packet.timestamp
        if len(data) > 10:
            self._total_shots = read_u16le(data, 9)

    def _awaiting_profile(self, trigger: int) -> bool:
        return trigger == HEADER_CHECKSUM and self._seen & LIST_MASK == LIST_MASK and self._seen & PROFILE_MASK == 0

    def _drop_profile(self) -> None:
        for header in PROFILE_HEADERS:
            slot = HEADER_SLOTS[header]
            self._slots[slot] = None
            self._arrivals[slot] = None
        self._seen &= ~PROFILE_MASK

    def _payload(self, header: int) -> bytes:
        data = self._slots[HEADER_SLOTS[header]]
        assert data is not None
        return data

    def _analyze(self, shot_at: float) -> ShotSnapshot:
        b7 = self._payload(HEADER_CHECKSUM)
        if len(b7) <= CHECKSUM_OFFSET:
            raise ProtocolError(ErrorCode.PACKET_TOO_SHORT, "checksum packet too short", f"offset {CHECKSUM_OFFSET} is required")

        checksum = b7[CHECKSUM_OFFSET]
        sum_b0_to_b6 = sum(sum(self._payload(h)[1:]) for h in LIST_HEADERS)
        sum_b0_to_b7 = sum_b0_to_b6 + sum(b7[1:])
        self._last_checksum = ChecksumDebug(
            checksum_byte=checksum,
            sum_b0_to_b6=sum_b0_to_b6 & 0xFF,
            sum_b0_to_b7=sum_b0_to_b7 & 0xFF,
            match_b0_to_b6=(sum_b0_to_b6 & 0xFF) == checksum,
            match_b0_to_b7=(sum_b0_to_b7 & 0xFF) == checksum,
        )
        if not self._last_checksum.match_b0_to_b6:
            raise ProtocolError(
                ErrorCode.CHECKSUM_MISMATCH,
                "checksum mismatch",
                f"b0-b6={sum_b0_to_b6 & 0xFF}, b0-b7={sum_b0_to_b7 & 0xFF}, checksum={checksum}",
            )

        b6 = self._payload(HEADER_LIST_LAST)
        if len(b6) <= SHOT_COUNT_OFFSET:
            raise ProtocolError(ErrorCode.PACKET_TOO_SHORT, "B6 packet too short", f"offset {SHOT_COUNT_OFFSET} is required")
        count = b6[SHOT_COUNT_OFFSET]
        if not SHOT_COUNT_MIN <= count <= SHOT_COUNT_MAX:
            raise ProtocolError(ErrorCode.INVALID_SHOT_COUNT, "invalid shot count", f"n={count}")

        list_header = HEADER_LIST_FIRST + (count - 1) // SPEEDS_PER_LIST
        offset = 1 + ((count - 1) % SPEEDS_PER_LIST) * 2
        list_data = self._payload(list_header)
        if offset + 1 >= len(list_data):
            raise ProtocolError(ErrorCode.PACKET_TOO_SHORT, "latest SP offset is out of range", f"header=0x{list_header:02x}, offset={offset}")
        your_sp = read_u16le(list_data, offset)

        profile, max_sp = reconstruct_profile([self._payload(h) for h in PROFILE_HEADERS])
        estimate = estimate_peak(profile, your_sp, self.estimator)
        marker = estimate_launch_marker(
            profile,
            shot_at=shot_at,
            release_at=self._release_at,
            first_profile_at=self._arrivals[HEADER_SLOTS[HEADER_PROF_FIRST]],
            last_profile_at=self._arrivals[HEADER_SLOTS[HEADER_PROF_LAST]],
            cfg=self.launch_marker,
            peak_options=self.first_peak,
        )
        return ShotSnapshot(
            your_sp=your_sp,
            est_sp=estimate.est_sp,
            max_sp=max_sp,
            shot_count=count,
            profile=profile,
            launch_marker_ms=marker.t_ms if marker else None,
            est_reason=estimate.reason,
            received_at=shot_at,
            release_event_at=self._release_at,
            peak_index=estimate.peak_index if profile is not None and len(profile) >= self.estimator.min_points else None,
        )
