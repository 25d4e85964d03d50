"""
Mapbox Vector Tile (MVT) protobuf message reader.

Turns raw (already decompressed) tile bytes into plain dataclasses:

    Tile
      └── layers: [Layer(name, extent, keys, values, features, version)]
                                          │       │
                                          │       └── [Feature(id, type, tags, geometry)]
                                          └── [Value(kind, value)]

Geometry and tag arrays are left as raw uint32 words; interpreting them is
the job of ``vtdecode.geometry`` and ``vtdecode.attributes``.
"""

import struct
from dataclasses import dataclass, field
from typing import Any, List, Optional

DEFAULT_EXTENT = 4096


class ParseError(ValueError):
    """Raised when the bytes are not a valid vector tile message."""


# ── Protobuf wire-format helpers (no external dependency) ────────────────

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LENGTH = 2
_WIRE_FIXED32 = 5

_MAX_VARINT_BYTES = 10


def _read_varint(buf, pos, end):
    result = 0
    shift = 0
    for _ in range(_MAX_VARINT_BYTES):
        if pos >= end:
            raise ParseError("Truncated varint")
        b = buf[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if (b & 0x80) == 0:
            return result, pos
        shift += 7
    raise ParseError("Varint longer than %d bytes" % _MAX_VARINT_BYTES)


def _parse_message(buf, start=0, end=None):
    """Yield (field_number, wire_type, value) tuples.

    Length-delimited values are returned as ``memoryview`` slices, fixed32 and
    fixed64 values as their raw little-endian bytes.
    """
    if end is None:
        end = len(buf)
    pos = start
    while pos < end:
        tag, pos = _read_varint(buf, pos, end)
        field_num = tag >> 3
        wtype = tag & 0x07
        if field_num == 0:
            raise ParseError("Invalid field number 0")
        if wtype == _WIRE_VARINT:
            val, pos = _read_varint(buf, pos, end)
            yield field_num, wtype, val
        elif wtype == _WIRE_LENGTH:
            length, pos = _read_varint(buf, pos, end)
            if pos + length > end:
                raise ParseError("Length-delimited field %d runs past end of buffer" % field_num)
            yield field_num, wtype, buf[pos : pos + length]
            pos += length
        elif wtype == _WIRE_FIXED32:
            if pos + 4 > end:
                raise ParseError("Truncated fixed32 field %d" % field_num)
            yield field_num, wtype, buf[pos : pos + 4]
            pos += 4
        elif wtype == _WIRE_FIXED64:
            if pos + 8 > end:
                raise ParseError("Truncated fixed64 field %d" % field_num)
            yield field_num, wtype, buf[pos : pos + 8]
            pos += 8
        else:
            raise ParseError("Unsupported wire type %d for field %d" % (wtype, field_num))


def _expect(field_num, wtype, expected):
    if wtype != expected:
        raise ParseError(
            "Field %d has wire type %d, expected %d" % (field_num, wtype, expected)
        )


def _decode_packed_uint32(buf):
    """Decode a packed repeated uint32 field."""
    values = []
    pos = 0
    end = len(buf)
    while pos < end:
        v, pos = _read_varint(buf, pos, end)
        values.append(v & 0xFFFFFFFF)
    return values


def _read_repeated_uint32(out, field_num, wtype, val):
    # Repeated scalars may arrive packed or one element per tag.
    if wtype == _WIRE_LENGTH:
        out.extend(_decode_packed_uint32(val))
    else:
        _expect(field_num, wtype, _WIRE_VARINT)
        out.append(val & 0xFFFFFFFF)


def _decode_string(val):
    try:
        return bytes(val).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError("Invalid UTF-8 in string field: %s" % e) from e


# ── Messages ─────────────────────────────────────────────────────────────

# Feature.type
GEOM_UNKNOWN = 0
GEOM_POINT = 1
GEOM_LINESTRING = 2
GEOM_POLYGON = 3

# Value arms, in the order they are checked when more than one is present.
VALUE_STRING = "string"
VALUE_FLOAT = "float"
VALUE_DOUBLE = "double"
VALUE_INT = "int"
VALUE_UINT = "uint"
VALUE_SINT = "sint"
VALUE_BOOL = "bool"

VALUE_KINDS = (
    VALUE_STRING,
    VALUE_FLOAT,
    VALUE_DOUBLE,
    VALUE_INT,
    VALUE_UINT,
    VALUE_SINT,
    VALUE_BOOL,
)


@dataclass(frozen=True)
class Value:
    """One entry of a layer's value pool.

    ``kind`` names the active arm (one of ``VALUE_KINDS``) or is ``None`` when
    the entry carries no value at all.
    """

    kind: Optional[str]
    value: Any = None


@dataclass
class Feature:
    id: int = 0
    type: int = GEOM_UNKNOWN
    tags: List[int] = field(default_factory=list)
    geometry: List[int] = field(default_factory=list)


@dataclass
class Layer:
    name: str
    extent: int = DEFAULT_EXTENT
    version: int = 1
    keys: List[str] = field(default_factory=list)
    values: List[Value] = field(default_factory=list)
    features: List[Feature] = field(default_factory=list)


@dataclass
class Tile:
    layers: List[Layer] = field(default_factory=list)


# Protobuf field numbers from the MVT specification
_TILE_LAYER = 3

_LAYER_NAME = 1
_LAYER_FEATURE = 2
_LAYER_KEY = 3
_LAYER_VALUE = 4
_LAYER_EXTENT = 5
_LAYER_VERSION = 15

_FEATURE_ID = 1
_FEATURE_TAGS = 2
_FEATURE_TYPE = 3
_FEATURE_GEOMETRY = 4

_VALUE_FIELDS = {
    1: (VALUE_STRING, _WIRE_LENGTH),
    2: (VALUE_FLOAT, _WIRE_FIXED32),
    3: (VALUE_DOUBLE, _WIRE_FIXED64),
    4: (VALUE_INT, _WIRE_VARINT),
    5: (VALUE_UINT, _WIRE_VARINT),
    6: (VALUE_SINT, _WIRE_VARINT),
    7: (VALUE_BOOL, _WIRE_VARINT),
}


def _decode_value(data):
    """Decode a protobuf Value message into a tagged ``Value``."""
    arms = {}
    for field_num, wtype, val in _parse_message(data):
        if field_num not in _VALUE_FIELDS:
            continue
        kind, expected = _VALUE_FIELDS[field_num]
        _expect(field_num, wtype, expected)
        if kind == VALUE_STRING:
            arms[kind] = _decode_string(val)
        elif kind == VALUE_FLOAT:
            arms[kind] = struct.unpack("<f", val)[0]
        elif kind == VALUE_DOUBLE:
            arms[kind] = struct.unpack("<d", val)[0]
        elif kind == VALUE_INT:
            val &= 0xFFFFFFFFFFFFFFFF
            arms[kind] = val - (1 << 64) if val >= (1 << 63) else val
        elif kind == VALUE_UINT:
            arms[kind] = val & 0xFFFFFFFFFFFFFFFF
        elif kind == VALUE_SINT:
            arms[kind] = (val >> 1) ^ -(val & 1)
        else:
            arms[kind] = bool(val)

    for kind in VALUE_KINDS:
        if kind in arms:
            return Value(kind, arms[kind])
    return Value(None)


def _decode_feature(data):
    feature = Feature()
    for field_num, wtype, val in _parse_message(data):
        if field_num == _FEATURE_ID:
            _expect(field_num, wtype, _WIRE_VARINT)
            feature.id = val & 0xFFFFFFFFFFFFFFFF
        elif field_num == _FEATURE_TAGS:
            _read_repeated_uint32(feature.tags, field_num, wtype, val)
        elif field_num == _FEATURE_TYPE:
            _expect(field_num, wtype, _WIRE_VARINT)
            feature.type = val
        elif field_num == _FEATURE_GEOMETRY:
            _read_repeated_uint32(feature.geometry, field_num, wtype, val)
    return feature


def _decode_layer(data):
    name = None
    layer = Layer(name="")

    for field_num, wtype, val in _parse_message(data):
        if field_num == _LAYER_NAME:
            _expect(field_num, wtype, _WIRE_LENGTH)
            name = _decode_string(val)
        elif field_num == _LAYER_KEY:
            _expect(field_num, wtype, _WIRE_LENGTH)
            layer.keys.append(_decode_string(val))
        elif field_num == _LAYER_VALUE:
            _expect(field_num, wtype, _WIRE_LENGTH)
            layer.values.append(_decode_value(val))
        elif field_num == _LAYER_EXTENT:
            _expect(field_num, wtype, _WIRE_VARINT)
            layer.extent = val
        elif field_num == _LAYER_VERSION:
            _expect(field_num, wtype, _WIRE_VARINT)
            layer.version = val
        elif field_num == _LAYER_FEATURE:
            _expect(field_num, wtype, _WIRE_LENGTH)
            layer.features.append(_decode_feature(val))

    if name is None:
        raise ParseError("Layer is missing its required name")
    if layer.extent <= 0:
        raise ParseError("Layer %r has a non-positive extent" % name)
    layer.name = name
    return layer


def parse_tile(tile_bytes) -> Tile:
    """
    Parse raw MVT bytes into a ``Tile``.

    Raises ``ParseError`` when the payload is not a valid tile message.
    Empty input is a valid tile without layers.
    """
    buf = memoryview(bytes(tile_bytes))
    tile = Tile()
    for field_num, wtype, val in _parse_message(buf):
        if field_num == _TILE_LAYER:
            _expect(field_num, wtype, _WIRE_LENGTH)
            tile.layers.append(_decode_layer(val))
    return tile
