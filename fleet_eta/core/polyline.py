"""
Encoded polyline codec.

Each coordinate is stored as the signed delta from the previous one, scaled
by 1e5, zig-zag encoded and written as 5-bit chunks offset by 63.
"""

from typing import List, Tuple

PRECISION = 1e5


def _decode_value(encoded: str, index: int) -> Tuple[int, int]:
    """Read one signed varint starting at index. Returns (value, next_index)."""
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise ValueError("Truncated polyline")
        b = ord(encoded[index]) - 63
        index += 1
        if b < 0 or b > 0x3f:
            raise ValueError(f"Invalid polyline character at {index - 1}")
        result |= (b & 0x1f) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(encoded: str) -> List[Tuple[float, float]]:
    """
    Decode an encoded polyline string into (lat, lon) pairs.

    Empty or malformed input yields an empty list.
    """
    if not encoded:
        return []

    points = []
    index = 0
    lat = 0
    lon = 0

    try:
        while index < len(encoded):
            dlat, index = _decode_value(encoded, index)
            dlon, index = _decode_value(encoded, index)
            lat += dlat
            lon += dlon
            points.append((lat / PRECISION, lon / PRECISION))
    except ValueError:
        return []

    return points


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1f)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(points: List[Tuple[float, float]]) -> str:
    """Encode (lat, lon) pairs into a polyline string."""
    encoded = []
    prev_lat = 0
    prev_lon = 0

    for lat, lon in points:
        lat_i = int(round(lat * PRECISION))
        lon_i = int(round(lon * PRECISION))
        encoded.append(_encode_value(lat_i - prev_lat))
        encoded.append(_encode_value(lon_i - prev_lon))
        prev_lat = lat_i
        prev_lon = lon_i

    return "".join(encoded)
