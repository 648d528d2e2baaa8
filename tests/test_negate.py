import pytest

from framestages.negate import negate


def test_negate_inverts_bits():
    assert negate(b"\x00\xff\x0f\xf0") == b"\xff\x00\xf0\x0f"


def test_negate_round_trip():
    data = bytes(range(256))
    assert negate(negate(data)) == data


def test_negate_accepts_bytearray_and_memoryview():
    data = bytearray(b"\x01\x02\x03\x04")
    assert negate(data) == negate(memoryview(data))
    assert all(a ^ b == 0xFF for a, b in zip(negate(data), data))


def test_negate_empty():
    assert negate(b"") == b""


def test_negate_rejects_unaligned_length():
    with pytest.raises(ValueError):
        negate(b"\x00\x01\x02")