"""
Field schemas and tag decoding for vector tile features.

A feature's ``tags`` are consecutive (key index, value index) pairs into the
layer's shared key and value pools.  Only keys that the caller's schema
declares are captured; everything else in the tile is skipped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from shapely.geometry import mapping

from vtdecode import vector_tile as vt

logger = logging.getLogger(__name__)

GEOM_TYPE_FIELD = "_geom_type"

FIELD_TYPES = ("string", "double", "int", "bool")


@dataclass(frozen=True)
class Field:
    name: str
    type: Optional[str] = None

    def __post_init__(self):
        if self.type is not None and self.type not in FIELD_TYPES:
            raise ValueError(f"unknown field type {self.type!r}")


class Fields:
    """Ordered, immutable set of output fields."""

    def __init__(self, fields: Iterable[Field] = ()):
        self._fields = tuple(fields)
        self._index = {}
        for i, f in enumerate(self._fields):
            if f.name in self._index:
                raise ValueError(f"duplicate field name {f.name!r}")
            self._index[f.name] = i

    @classmethod
    def from_names(cls, names):
        return cls(Field(name) for name in names)

    def index_of(self, name) -> int:
        return self._index.get(name, -1)

    def names(self) -> List[str]:
        return [f.name for f in self._fields]

    def __len__(self):
        return len(self._fields)

    def __iter__(self):
        return iter(self._fields)

    def __getitem__(self, i):
        return self._fields[i]

    def __eq__(self, other):
        return isinstance(other, Fields) and self._fields == other._fields

    def __repr__(self):
        return f"Fields({list(self._fields)!r})"


EMPTY_FIELDS = Fields()


@dataclass
class VectorTileFeature:
    """A decoded feature: id, schema-aligned attributes and geometry."""

    id: int
    fields: Fields
    attributes: List[Any] = field(default_factory=list)
    geom_type: str = ""
    geometry: Any = None

    def __post_init__(self):
        if not self.attributes:
            self.attributes = [None] * len(self.fields)

    def attribute(self, name):
        if name == GEOM_TYPE_FIELD:
            return self.geom_type
        i = self.fields.index_of(name)
        if i == -1:
            raise KeyError(name)
        return self.attributes[i]

    def set_attribute(self, index, value):
        self.attributes[index] = value

    @property
    def properties(self):
        props = {
            f.name: value
            for f, value in zip(self.fields, self.attributes)
            if value is not None
        }
        props[GEOM_TYPE_FIELD] = self.geom_type
        return props

    @property
    def __geo_interface__(self):
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": mapping(self.geometry) if self.geometry is not None else None,
            "properties": self.properties,
        }


def key_to_field_index(keys, fields):
    """Map positions in the layer's key pool to field indexes of ``fields``."""
    index = {}
    for key_idx, key in enumerate(keys):
        field_idx = fields.index_of(key)
        if field_idx != -1:
            index[key_idx] = field_idx
    return index


def to_int32(v):
    """Truncate an integer to signed 32 bits (two's complement wrap)."""
    v &= 0xFFFFFFFF
    return v - (1 << 32) if v & 0x80000000 else v


def convert_value(value, narrow_integers=True):
    """
    Returns the attribute value for a pool entry, or raises ``ValueError``
    when the entry has no active arm.
    """
    kind = value.kind
    if kind == vt.VALUE_STRING:
        return value.value
    if kind in (vt.VALUE_FLOAT, vt.VALUE_DOUBLE):
        return float(value.value)
    if kind in (vt.VALUE_INT, vt.VALUE_UINT, vt.VALUE_SINT):
        return to_int32(value.value) if narrow_integers else int(value.value)
    if kind == vt.VALUE_BOOL:
        return bool(value.value)
    raise ValueError("value entry has no active variant")


def coerce_to_field(value, field_type):
    """
    Convert a decoded value to the declared type of its field; untyped fields
    take the value as decoded.  Raises ``ValueError`` when it cannot convert.
    """
    if field_type is None:
        return value
    if field_type == "string":
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if field_type == "double":
        return float(value)
    if field_type == "int":
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{value!r} is not an integer")
        return int(value)
    if isinstance(value, str):
        raise ValueError(f"cannot read {value!r} as bool")
    return bool(value)


def resolve_attributes(feature, tags, layer, key_fields, narrow_integers=True):
    """Assign the tagged values of ``tags`` onto ``feature`` (in place)."""
    # An odd trailing entry has no value index and is ignored.
    for i in range(0, len(tags) - 1, 2):
        field_idx = key_fields.get(tags[i], -1)
        if field_idx == -1:
            continue

        value_idx = tags[i + 1]
        if value_idx >= len(layer.values):
            logger.warning(
                "Invalid value index %d for attribute in layer %r (pool size %d)",
                value_idx, layer.name, len(layer.values),
            )
            continue

        try:
            value = convert_value(layer.values[value_idx], narrow_integers)
        except ValueError:
            logger.warning("Unexpected attribute value at index %d in layer %r", value_idx, layer.name)
            continue

        out_field = feature.fields[field_idx]
        try:
            feature.set_attribute(field_idx, coerce_to_field(value, out_field.type))
        except ValueError:
            logger.warning(
                "Cannot store %r in %s field %r of layer %r", value, out_field.type, out_field.name, layer.name
            )
