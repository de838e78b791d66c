from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Iterable, Iterator, List, Optional, TextIO, Tuple

from .packets import Packet

logger = logging.getLogger(__name__)

DEFAULT_MAXLEN = 3000


class RawPacketLog:
    """
    Bounded, newest-first record of parsed packets for diagnostics.

    One instance is owned by whoever drives the transport; the codec never
    reaches it directly.
    """

    def __init__(self, maxlen: int = DEFAULT_MAXLEN) -> None:
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self._packets: Deque[Packet] = deque(maxlen=maxlen)
        self._listeners: List[Callable[[], None]] = []

    def push(self, packet: Packet) -> None:
        self._packets.appendleft(packet)
        self._emit()

    def clear(self) -> None:
        self._packets.clear()
        self._emit()

    def packets(self) -> List[Packet]:
        return list(self._packets)

    def __len__(self) -> int:
        return len(self._packets)

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener()


def parse_capture_line(line: str) -> Optional[Tuple[Optional[float], bytes]]:
    """Decode ``<timestamp_ms> <hex bytes>`` or bare hex; ``None`` for blank and comment lines.

    The timestamp is written with a decimal point (``1250.000``) so it is never
    confused with a hex group.
    """

    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    tokens = stripped.replace(",", " ").split()
    timestamp: Optional[float] = None
    if len(tokens) > 1 and "." in tokens[0]:
        try:
            timestamp = float(tokens[0])
        except ValueError:
            timestamp = None
        else:
            tokens = tokens[1:]
    payload = "".join(tokens).replace(":", "").replace("-", "")
    if len(payload) % 2 != 0:
        raise ValueError(f"Capture line has odd hex length: {stripped!r}")
    return timestamp, bytes.fromhex(payload)


def iterate_capture(handle: Iterable[str]) -> Iterator[Tuple[Optional[float], bytes]]:
    for number, line in enumerate(handle, start=1):
        try:
            item = parse_capture_line(line)
        except ValueError as exc:
            logger.warning("Skipping capture line %d: %s", number, exc)
            continue
        if item is not None:
            yield item


def read_capture(path: Path | str) -> List[Tuple[Optional[float], bytes]]:
    with Path(path).open("r", encoding="utf-8") as fh:
        return list(iterate_capture(fh))


def write_capture(packets: Iterable[Packet], path: Path | str) -> Path:
    """Write packets oldest-first in the format understood by :func:`read_capture`."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        _write_lines(fh, packets)
    return path


def _write_lines(fh: TextIO, packets: Iterable[Packet]) -> None:
    fh.write("# timestamp_ms hex\n")
    for packet in packets:
        fh.write(f"{packet.timestamp:.3f} {packet.hex}\n")
