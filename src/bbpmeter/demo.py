"""Synthetic packet streams for demos and tests."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .bbp.packets import (
    CHECKSUM_OFFSET,
    HEADER_ATTACH,
    HEADER_CHECKSUM,
    LIST_HEADERS,
    PROFILE_HEADERS,
    SHOT_COUNT_OFFSET,
    SP_NUMERATOR,
    SPEEDS_PER_LIST,
    hex_dump,
)

PACKET_LENGTH = 20


def profile_capacity(packet_length: int = PACKET_LENGTH) -> int:
    """Number of tick counts the four profile packets can carry."""
    return len(PROFILE_HEADERS) * ((packet_length - 1) // 2)


def build_list_packets(
    speeds: Sequence[int],
    shot_count: int,
    packet_length: int = PACKET_LENGTH,
) -> List[bytearray]:
    """LIST packets 0xB0..0xB6 holding *speeds*; ``speeds[k]`` belongs to shot ``k + 1``."""
    packets = [bytearray(packet_length) for _ in LIST_HEADERS]
    for packet, header in zip(packets, LIST_HEADERS):
        packet[0] = header
    for k, speed in enumerate(speeds):
        packet = packets[k // SPEEDS_PER_LIST]
        offset = 1 + (k % SPEEDS_PER_LIST) * 2
        packet[offset : offset + 2] = int(speed).to_bytes(2, "little")
    packets[-1][SHOT_COUNT_OFFSET] = shot_count
    return packets


def build_checksum_packet(list_packets: Sequence[bytes], packet_length: int = PACKET_LENGTH, *, delta: int = 0) -> bytearray:
    packet = bytearray(packet_length)
    packet[0] = HEADER_CHECKSUM
    if packet_length > CHECKSUM_OFFSET:
        packet[CHECKSUM_OFFSET] = (sum(sum(p[1:]) for p in list_packets) + delta) & 0xFF
    return packet


def build_profile_packets(n_refs: Sequence[int], packet_length: int = PACKET_LENGTH) -> List[bytearray]:
    per_packet = (packet_length - 1) // 2
    if len(n_refs) > per_packet * len(PROFILE_HEADERS):
        raise ValueError(f"At most {per_packet * len(PROFILE_HEADERS)} samples fit in {packet_length}-byte packets")
    packets = []
    for idx, header in enumerate(PROFILE_HEADERS):
        packet = bytearray(packet_length)
        packet[0] = header
        for k, value in enumerate(n_refs[idx * per_packet : (idx + 1) * per_packet]):
            offset = 1 + 2 * k
            packet[offset : offset + 2] = int(value).to_bytes(2, "little")
        packets.append(packet)
    return packets


def build_attach_packet(code: int, total_shots: Optional[int] = None, packet_length: int = PACKET_LENGTH) -> bytearray:
    packet = bytearray(packet_length)
    packet[0] = HEADER_ATTACH
    packet[3] = code
    if total_shots is not None:
        packet[9:11] = int(total_shots).to_bytes(2, "little")
    return packet


def build_shot_packets(
    n_refs: Sequence[int],
    declared_sp: int,
    shot_count: int = 1,
    *,
    history: Optional[Sequence[int]] = None,
    packet_length: int = PACKET_LENGTH,
    checksum_delta: int = 0,
) -> List[bytes]:
    """Packets for one shot in device order: LIST, CHECKSUM, then PROFILE.

    *history* supplies the earlier shots' speeds; the declared speed is stored
    in the slot of shot ``shot_count``.
    """
    speeds = list(history or [0] * (shot_count - 1))[: shot_count - 1]
    speeds += [0] * (shot_count - 1 - len(speeds))
    speeds.append(declared_sp)
    lists = build_list_packets(speeds, shot_count, packet_length)
    checksum = build_checksum_packet(lists, packet_length, delta=checksum_delta)
    profile = build_profile_packets(n_refs, packet_length)
    return [bytes(p) for p in lists + [checksum] + profile]


def synthetic_n_refs(
    peak_sp: float = 8000.0,
    rise_ms: float = 180.0,
    decay_per_ms: float = 6.0,
    points: int = 36,
    seed: Optional[int] = None,
) -> List[int]:
    """Tick counts for a pull that ramps to *peak_sp* and then coasts down linearly."""
    rng = np.random.default_rng(seed)
    n_refs: List[int] = []
    t = 0.0
    for _ in range(points):
        if t < rise_ms:
            speed = 1000.0 + (peak_sp - 1000.0) * np.sin(0.5 * np.pi * t / rise_ms)
        else:
            speed = peak_sp - decay_per_ms * (t - rise_ms)
        speed = max(speed, 500.0)
        if seed is not None:
            speed *= 1.0 + rng.normal(scale=0.003)
        ticks = int(round(SP_NUMERATOR / speed))
        n_refs.append(ticks)
        t += ticks / 125.0
    return n_refs


def create_demo_capture(shots: int = 5, start_ms: float = 1_000.0, seed: int = 42) -> List[Tuple[float, bytes]]:
    """Timestamped packet stream for *shots* consecutive launches."""
    rng = np.random.default_rng(seed)
    stream: List[Tuple[float, bytes]] = []
    history: List[int] = []
    now = start_ms
    for shot in range(1, shots + 1):
        peak = float(rng.uniform(6000.0, 10000.0))
        n_refs = synthetic_n_refs(peak_sp=peak, rise_ms=float(rng.uniform(140.0, 220.0)), seed=seed + shot)
        declared = int(SP_NUMERATOR // min(n_refs))
        stream.append((now, bytes(build_attach_packet(0x04, total_shots=shot - 1))))
        now += 500.0
        stream.append((now, bytes(build_attach_packet(0x00, total_shots=shot - 1))))
        now += 300.0
        for packet in build_shot_packets(n_refs, declared, shot, history=history):
            stream.append((now, packet))
            now += 15.0
        history.append(declared)
        now += 3_000.0
    return stream


def write_demo_capture(path: Path, shots: int = 5, seed: int = 42) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        fh.write("# synthetic BBP capture: timestamp_ms hex\n")
        for timestamp, raw in create_demo_capture(shots, seed=seed):
            fh.write(f"{timestamp:.3f} {hex_dump(raw)}\n")
    return path


def run_demo(out_dir: Path, shots: int = 5) -> None:
    from .pipeline import decode_capture
    from .plotting import generate_plots
    from .reporting import export_results

    out_dir.mkdir(parents=True, exist_ok=True)
    capture_path = write_demo_capture(out_dir / "demo_capture.txt", shots=shots)
    result = decode_capture(capture_path)
    figure_path = None
    try:
        figure_path = generate_plots(result, out_dir)
    except RuntimeError as exc:
        print(f"[warning] plotting skipped: {exc}")
    export_results(result, out_dir, figure_path=figure_path, input_path=capture_path)


__all__ = [
    "PACKET_LENGTH",
    "build_attach_packet",
    "build_checksum_packet",
    "build_list_packets",
    "build_profile_packets",
    "build_shot_packets",
    "create_demo_capture",
    "profile_capacity",
    "run_demo",
    "synthetic_n_refs",
    "write_demo_capture",
]
