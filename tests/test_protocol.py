from __future__ import annotations

import pytest

from bbpmeter.bbp import BbpProtocol, ErrorCode, ProtocolError
from bbpmeter.demo import build_attach_packet, build_shot_packets


def feed_all(protocol: BbpProtocol, packets, start: float = 1000.0, step: float = 10.0):
    shots = []
    for idx, raw in enumerate(packets):
        snapshot = protocol.feed(raw, start + idx * step)
        if snapshot is not None:
            shots.append(snapshot)
    return shots


def test_short_profile_speeds_and_fallback():
    protocol = BbpProtocol()
    shots = feed_all(protocol, build_shot_packets([1000, 1200, 800], declared_sp=9000, shot_count=1))
    assert len(shots) == 1
    shot = shots[0]
    assert shot.profile.sp == [7500, 6250, 9375]
    assert shot.profile.n_refs == [1000, 1200, 800]
    assert shot.profile.t_ms == pytest.approx([8.0, 17.6, 24.0])
    assert shot.max_sp == 9375
    assert shot.your_sp == 9000
    assert shot.est_sp == 9000
    assert shot.est_reason == "profile_short_fallback"
    assert shot.shot_count == 1


def test_list_group_waits_for_profile_packets():
    protocol = BbpProtocol()
    packets = build_shot_packets([1000, 1100, 1200], declared_sp=7000)
    results = [protocol.feed(raw, 1000.0 + i) for i, raw in enumerate(packets)]
    # LIST + CHECKSUM first: the checksum trigger must not emit on its own
    assert all(r is None for r in results[:-1])
    assert results[-1] is not None


def test_profile_without_list_group_is_rejected():
    protocol = BbpProtocol()
    packets = build_shot_packets([1000, 1100, 1200], declared_sp=7000)
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, packets[8:])
    assert excinfo.value.code is ErrorCode.MISSING_HEADERS
    assert "0xb0" in excinfo.value.detail
    assert protocol.status().last_trigger_header == 0x73

    # the rejected profile must not be reused by the next shot
    shots = feed_all(protocol, build_shot_packets([2000, 2100, 2200], declared_sp=3500))
    assert [s.profile.n_refs for s in shots] == [[2000, 2100, 2200]]


def test_dropped_list_packet_does_not_shift_profiles():
    protocol = BbpProtocol()
    first = build_shot_packets([1000, 1100, 1200], declared_sp=7000, shot_count=1)
    stream = first[:3] + first[4:]
    stream += build_shot_packets([2000, 2100, 2200], declared_sp=3500, shot_count=2)
    stream += build_shot_packets([3000, 3100, 3200], declared_sp=2400, shot_count=3)
    items = list(protocol.iter_shots((1000.0 + i, raw) for i, raw in enumerate(stream)))

    errors = [item for item in items if isinstance(item, ProtocolError)]
    shots = [item for item in items if not isinstance(item, ProtocolError)]
    assert [e.code for e in errors] == [ErrorCode.MISSING_HEADERS, ErrorCode.MISSING_HEADERS]
    assert [(s.shot_count, s.profile.n_refs) for s in shots] == [
        (2, [2000, 2100, 2200]),
        (3, [3000, 3100, 3200]),
    ]
    assert protocol.stats()["missing_headers"] == 2


def test_new_list_group_discards_partial_profile():
    protocol = BbpProtocol()
    first = build_shot_packets([1000, 1100, 1200], declared_sp=7000, shot_count=1)
    second = build_shot_packets([2000, 2100, 2200], declared_sp=3500, shot_count=2)
    shots = feed_all(protocol, first[:-1] + second)
    assert len(shots) == 1
    assert shots[0].shot_count == 2
    assert shots[0].profile.n_refs == [2000, 2100, 2200]


def test_checksum_debug_reports_match():
    protocol = BbpProtocol()
    feed_all(protocol, build_shot_packets([1000, 1100, 1200], declared_sp=7000, history=[5000, 6000], shot_count=3))
    checksum = protocol.status().last_checksum
    assert checksum is not None
    assert checksum.match_b0_to_b6
    assert checksum.checksum_byte == checksum.sum_b0_to_b6


def test_checksum_mismatch_resets_and_recovers():
    protocol = BbpProtocol()
    bad = build_shot_packets([1000, 1100, 1200], declared_sp=7000, checksum_delta=1)
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, bad)
    assert excinfo.value.code is ErrorCode.CHECKSUM_MISMATCH
    assert not protocol.status().last_checksum.match_b0_to_b6
    assert protocol.stats()["checksum_mismatch"] == 1

    shots = feed_all(protocol, build_shot_packets([1000, 1100, 1200], declared_sp=7000))
    assert len(shots) == 1


def test_length_mismatch_is_rejected():
    protocol = BbpProtocol()
    protocol.feed(bytes(build_attach_packet(0x04)), 0.0)
    with pytest.raises(ProtocolError) as excinfo:
        protocol.feed(bytes(build_attach_packet(0x04, packet_length=19)), 1.0)
    assert excinfo.value.code is ErrorCode.INVALID_PACKET_LENGTH
    assert protocol.status().expected_length == 20
    assert protocol.status().last_length == 19
    assert protocol.stats()["invalid_packet_length"] == 1

    protocol.reset()
    protocol.feed(bytes(build_attach_packet(0x04, packet_length=19)), 2.0)
    assert protocol.status().expected_length == 19


def test_unsupported_and_short_packets():
    protocol = BbpProtocol()
    with pytest.raises(ProtocolError) as excinfo:
        protocol.feed(b"\xA0", 0.0)
    assert excinfo.value.code is ErrorCode.PACKET_TOO_SHORT

    with pytest.raises(ProtocolError) as excinfo:
        protocol.feed(bytes([0x42] + [0] * 19), 0.0)
    assert excinfo.value.code is ErrorCode.UNSUPPORTED_HEADER
    assert excinfo.value.as_dict()["detail"] == "header=0x42"


@pytest.mark.parametrize("count", [0, 51])
def test_invalid_shot_count(count):
    protocol = BbpProtocol()
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, build_shot_packets([1000, 1100], declared_sp=5000, shot_count=count))
    assert excinfo.value.code is ErrorCode.INVALID_SHOT_COUNT


def test_declared_speed_is_read_from_shot_slot():
    history = [4000 + 100 * i for i in range(9)]
    protocol = BbpProtocol()
    shots = feed_all(protocol, build_shot_packets([1000, 1100, 1200], declared_sp=7777, shot_count=10, history=history))
    assert shots[0].shot_count == 10
    assert shots[0].your_sp == 7777


def test_missing_list_header_raises_and_clears():
    protocol = BbpProtocol()
    packets = build_shot_packets([1000, 1100, 1200], declared_sp=7000)
    without_b6 = packets[:6] + packets[7:8]
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, without_b6)
    assert excinfo.value.code is ErrorCode.MISSING_HEADERS
    assert "0xb6" in excinfo.value.detail

    # earlier packets were discarded, so the profile alone cannot complete a shot
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, packets[8:])
    assert excinfo.value.code is ErrorCode.MISSING_HEADERS
    assert protocol.stats()["missing_headers"] == 2


def test_attach_packets_update_session_state():
    protocol = BbpProtocol()
    assert protocol.feed(bytes(build_attach_packet(0x14, total_shots=3)), 100.0) is None
    assert protocol.bey_attached
    assert protocol.total_shots == 3
    assert protocol.release_event_at is None

    protocol.feed(bytes(build_attach_packet(0x00, total_shots=3)), 250.0)
    assert not protocol.bey_attached
    assert protocol.release_event_at == 250.0

    protocol.reset()
    assert protocol.total_shots is None
    assert protocol.release_event_at is None


def test_iter_shots_yields_errors_and_snapshots():
    protocol = BbpProtocol()
    stream = [(0.0, bytes([0x42] + [0] * 19))]
    stream += [(10.0 + i, raw) for i, raw in enumerate(build_shot_packets([1000, 1100, 1200], declared_sp=7000))]
    items = list(protocol.iter_shots(stream))
    assert isinstance(items[0], ProtocolError)
    assert items[1].your_sp == 7000
    stats = protocol.stats()
    assert stats["shots"] == 1
    assert stats["unsupported_header"] == 1
    assert stats["packets"] == 12


@pytest.mark.parametrize("header_index, offset", [(0, 1), (3, 9), (6, 11), (6, 19)])
def test_flipped_list_byte_breaks_checksum(header_index, offset):
    packets = [bytearray(p) for p in build_shot_packets([1000, 1100, 1200], declared_sp=7000, shot_count=1)]
    packets[header_index][offset] ^= 0x01
    protocol = BbpProtocol()
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, [bytes(p) for p in packets])
    assert excinfo.value.code is ErrorCode.CHECKSUM_MISMATCH


def test_checksum_packet_must_reach_offset_16():
    protocol = BbpProtocol()
    with pytest.raises(ProtocolError) as excinfo:
        feed_all(protocol, build_shot_packets([1000, 1100, 1200], declared_sp=7000, packet_length=16))
    assert excinfo.value.code is ErrorCode.PACKET_TOO_SHORT
    assert protocol.stats()["packet_too_short"] == 1
