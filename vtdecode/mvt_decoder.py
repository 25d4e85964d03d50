"""
Mapbox Vector Tile (MVT) decoder.

``MVTDecoder`` holds one parsed tile and turns its layers into
``VectorTileFeature`` objects whose geometries are shapely objects in the
caller's CRS:

    decoder = MVTDecoder()
    if decoder.decode(TileId(14, 8185, 5448), tile_bytes):
        features = decoder.layer_features(
            {"roads": Fields([Field("class", "string")])},
            transform="EPSG:4326",
        )
        # {"roads": [VectorTileFeature(...), ...], "water": [...], ...}

A decoder is single-owner state; use one instance per thread.
"""

import logging

from vtdecode import crs
from vtdecode.attributes import (
    EMPTY_FIELDS,
    VectorTileFeature,
    key_to_field_index,
    resolve_attributes,
)
from vtdecode.coords import TileId, TileToWorld
from vtdecode.geometry import decode_geometry, geom_type_name
from vtdecode.vector_tile import ParseError, parse_tile

logger = logging.getLogger(__name__)


class MVTDecoder:
    def __init__(self, narrow_integers=True):
        # 64-bit tile integers are cut to signed 32 bits unless disabled.
        self.narrow_integers = narrow_integers
        self.tile_id = None
        self._tile = None
        self._layer_name_to_index = {}

    def decode(self, tile_id, tile_bytes) -> bool:
        """
        Parse ``tile_bytes`` as the tile ``tile_id`` (a ``TileId`` or a
        ``(z, x, y)`` tuple).

        Returns False when the bytes are not a valid tile; the previously
        decoded tile, if any, stays in place.
        """
        if not isinstance(tile_id, TileId):
            tile_id = TileId(*tile_id)
        try:
            tile = parse_tile(tile_bytes)
        except ParseError as e:
            logger.warning("Failed to parse vector tile %s: %s", tile_id, e)
            return False

        self._tile = tile
        self.tile_id = tile_id
        self._layer_name_to_index = {
            layer.name: i for i, layer in enumerate(tile.layers)
        }
        return True

    def layers(self):
        """Layer names in tile order."""
        if self._tile is None:
            return []
        return [layer.name for layer in self._tile.layers]

    def field_names(self, layer_name):
        """Keys of the layer's key pool, or [] when the layer is absent."""
        layer = self._layer(layer_name)
        if layer is None:
            return []
        return list(layer.keys)

    def _layer(self, layer_name):
        index = self._layer_name_to_index.get(layer_name)
        if index is None:
            return None
        return self._tile.layers[index]

    def layer_features(self, per_layer_fields=None, transform=None):
        """
        Decode every layer of the tile.

        ``per_layer_fields`` maps layer names to ``Fields``; layers without an
        entry only get ``_geom_type``.  ``transform`` is applied to every
        geometry (see ``vtdecode.crs.resolve_transform``).

        Returns a dict of layer name -> list of ``VectorTileFeature``.
        """
        if self._tile is None:
            return {}
        per_layer_fields = per_layer_fields or {}
        transform = crs.resolve_transform(transform)

        features = {}
        for layer in self._tile.layers:
            fields = per_layer_fields.get(layer.name, EMPTY_FIELDS)
            features[layer.name] = self._decode_layer(layer, fields, transform)
        return features

    def _decode_layer(self, layer, fields, transform):
        key_fields = key_to_field_index(layer.keys, fields)
        to_world = TileToWorld(self.tile_id, layer.extent)

        out = []
        for feature in layer.features:
            f = VectorTileFeature(feature.id, fields)
            resolve_attributes(f, feature.tags, layer, key_fields, self.narrow_integers)

            f.geom_type = geom_type_name(feature.type)
            geom = decode_geometry(feature.type, feature.geometry, to_world)
            f.geometry = crs.apply_transform(geom, transform)
            out.append(f)
        return out
