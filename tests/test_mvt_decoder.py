import logging

import pytest
from pyproj import Transformer
from shapely.geometry import LineString, MultiPolygon, Point, Polygon

from vtdecode.attributes import Field, Fields
from vtdecode.coords import WEB_MERCATOR_LIMIT as W, TileId, TileToWorld
from vtdecode.mvt_decoder import MVTDecoder
from vtdecode.vector_tile import GEOM_LINESTRING, GEOM_POINT, GEOM_POLYGON, GEOM_UNKNOWN

from tile_builder import encode_tile, polygon_commands

OUTER = [(0, 0), (100, 0), (100, 100), (0, 100)]
HOLE = [(20, 20), (20, 80), (80, 80), (80, 20)]
OTHER = [(200, 0), (300, 0), (300, 100), (200, 100)]


def only_feature(decoder, fields=None, transform=None):
    features = decoder.layer_features(fields, transform=transform)["test"]
    assert len(features) == 1
    return features[0]


def test_decode_builds_layer_index(decoder):
    raw = encode_tile(
        dict(name="water", keys=["class"]),
        dict(name="roads", keys=["class", "oneway", "name"]),
    )
    assert decoder.decode(TileId(2, 1, 3), raw)
    assert decoder.tile_id == TileId(2, 1, 3)
    assert decoder.layers() == ["water", "roads"]
    assert decoder.field_names("roads") == ["class", "oneway", "name"]
    assert decoder.field_names("missing") == []


def test_decode_accepts_tuple_tile_id(decoder):
    assert decoder.decode((0, 0, 0), b"")
    assert decoder.tile_id == TileId(0, 0, 0)
    assert decoder.layers() == []


def test_failed_decode_keeps_previous_tile(decoder, caplog):
    assert decoder.decode((0, 0, 0), encode_tile(dict(name="kept")))
    with caplog.at_level(logging.WARNING, logger="vtdecode"):
        assert not decoder.decode((1, 0, 0), b"\x1a\x05ab")
    assert decoder.layers() == ["kept"]
    assert decoder.tile_id == TileId(0, 0, 0)
    assert "Failed to parse vector tile 1/0/0" in caplog.text


def test_no_tile_decoded_yet():
    decoder = MVTDecoder()
    assert decoder.layers() == []
    assert decoder.field_names("x") == []
    assert decoder.layer_features({}) == {}


def test_single_point_zoom_zero(decode_layer):
    # Cursor (4096, 4096) is the south-east corner of the world.
    decoder = decode_layer([dict(geom_type=GEOM_POINT, geometry=[9, 8192, 8192])])
    feature = only_feature(decoder)
    assert isinstance(feature.geometry, Point)
    assert (feature.geometry.x, feature.geometry.y) == pytest.approx((W, -W))
    assert feature.geom_type == "Point"


def test_point_at_tile_centre_is_world_origin(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_POINT, geometry=[9, 4096, 4096])])
    geom = only_feature(decoder).geometry
    assert (geom.x, geom.y) == pytest.approx((0.0, 0.0))


def test_linestring_two_segments(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_LINESTRING, geometry=[9, 0, 0, 18, 10, 0, 0, 10])])
    feature = only_feature(decoder)
    to_world = TileToWorld(TileId(0, 0, 0), 4096)
    assert isinstance(feature.geometry, LineString)
    expected = [to_world(0, 0), to_world(5, 0), to_world(5, 5)]
    for got, want in zip(feature.geometry.coords, expected):
        assert got == pytest.approx(want)
    assert len(feature.geometry.coords) == 3
    assert feature.geom_type == "LineString"


def test_polygon_with_hole(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_POLYGON, geometry=polygon_commands(OUTER, HOLE))])
    feature = only_feature(decoder)
    assert isinstance(feature.geometry, Polygon)
    assert len(feature.geometry.interiors) == 1
    assert feature.properties == {"_geom_type": "Polygon"}
    for ring in [feature.geometry.exterior, *feature.geometry.interiors]:
        assert ring.coords[0] == ring.coords[-1]


def test_multipolygon(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_POLYGON, geometry=polygon_commands(OUTER, OTHER))])
    geom = only_feature(decoder).geometry
    assert isinstance(geom, MultiPolygon)
    assert len(geom.geoms) == 2
    assert [len(p.interiors) for p in geom.geoms] == [0, 0]
    # decode order is kept: the first polygon lies west of the second
    assert geom.geoms[0].bounds[0] < geom.geoms[1].bounds[0]


def test_out_of_range_tag_value(decode_layer, caplog):
    decoder = decode_layer(
        [dict(geom_type=GEOM_POINT, geometry=[9, 2, 2], tags=[0, 1, 1, 0], fid=5)],
        keys=["kind", "name"],
        values=[("string", "cafe")],
    )
    fields = {"test": Fields([Field("kind", "string"), Field("name", "string")])}
    with caplog.at_level(logging.WARNING, logger="vtdecode"):
        feature = only_feature(decoder, fields)
    assert feature.id == 5
    assert feature.attribute("kind") is None
    assert feature.attribute("name") == "cafe"
    assert isinstance(feature.geometry, Point)
    assert "Invalid value index 1" in caplog.text


def test_malformed_count_keeps_feature(decode_layer, caplog):
    geometry = [9, 0, 0, 10, 10, 0, 82, 2, 2, 4, 4]
    decoder = decode_layer([
        dict(geom_type=GEOM_LINESTRING, geometry=geometry),
        dict(geom_type=GEOM_POINT, geometry=[9, 2, 2]),
    ])
    with caplog.at_level(logging.WARNING, logger="vtdecode"):
        features = decoder.layer_features()["test"]
    assert len(features) == 2
    to_world = TileToWorld(TileId(0, 0, 0), 4096)
    line = features[0].geometry
    assert isinstance(line, LineString)
    assert len(line.coords) == 2
    assert line.coords[0] == pytest.approx(to_world(0, 0))
    assert line.coords[1] == pytest.approx(to_world(5, 0))
    assert "Malformed geometry" in caplog.text


def test_cursor_resets_between_features(decode_layer):
    decoder = decode_layer([
        dict(geom_type=GEOM_POINT, geometry=[9, 4096, 4096]),
        dict(geom_type=GEOM_LINESTRING, geometry=[9, 100, 6, 10, 7, 9]),
        dict(geom_type=GEOM_POINT, geometry=[9, 4096, 4096]),
        dict(geom_type=GEOM_POLYGON, geometry=polygon_commands(OTHER)),
        dict(geom_type=GEOM_POINT, geometry=[9, 4096, 4096]),
    ])
    features = decoder.layer_features()["test"]
    for i in (0, 2, 4):
        assert (features[i].geometry.x, features[i].geometry.y) == pytest.approx((0.0, 0.0))


def test_unknown_geometry_type(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_UNKNOWN, geometry=[9, 2, 2])])
    feature = only_feature(decoder)
    assert feature.geometry is None
    assert feature.geom_type == ""
    assert feature.properties == {"_geom_type": ""}


def test_linestring_without_commands_is_empty(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_LINESTRING, geometry=[])])
    geom = only_feature(decoder).geometry
    assert geom.is_empty


def test_layer_missing_from_schema_only_has_geom_type(decode_layer):
    decoder = decode_layer(
        [dict(geom_type=GEOM_POINT, geometry=[9, 2, 2], tags=[0, 0])],
        keys=["kind"],
        values=[("string", "cafe")],
    )
    feature = only_feature(decoder, {"other": Fields([Field("kind")])})
    assert feature.properties == {"_geom_type": "Point"}


def test_integer_narrowing_option():
    raw = encode_tile(dict(
        name="test",
        keys=["big"],
        values=[("uint", 2 ** 32 + 9)],
        features=[dict(geom_type=GEOM_POINT, geometry=[9, 2, 2], tags=[0, 0])],
    ))
    fields = {"test": Fields([Field("big", "int")])}

    narrow = MVTDecoder()
    assert narrow.decode((0, 0, 0), raw)
    assert only_feature(narrow, fields).attribute("big") == 9

    wide = MVTDecoder(narrow_integers=False)
    assert wide.decode((0, 0, 0), raw)
    assert only_feature(wide, fields).attribute("big") == 2 ** 32 + 9


def test_extent_and_tile_position(decode_layer):
    decoder = decode_layer(
        [dict(geom_type=GEOM_POINT, geometry=[9, 512, 512])],
        extent=512,
        tile_id=(1, 1, 0),
    )
    geom = only_feature(decoder).geometry
    # centre of the north-east quadrant
    assert (geom.x, geom.y) == pytest.approx((W / 2, W / 2))


def test_crs_transform_to_wgs84(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_POINT, geometry=[9, 6144, 2048])])
    geom = only_feature(decoder, transform="EPSG:4326").geometry
    assert geom.x == pytest.approx(90.0)
    assert geom.y == pytest.approx(66.51326044311186)


def test_crs_transform_accepts_transformer_and_callable(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_POLYGON, geometry=polygon_commands(OUTER, HOLE))], tile_id=(2, 1, 1))
    transformer = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)
    geom = only_feature(decoder, transform=transformer).geometry
    assert isinstance(geom, Polygon)
    assert -180 <= geom.bounds[0] <= geom.bounds[2] <= 180

    shifted = only_feature(decoder, transform=lambda x, y: (x + 1.0, y)).geometry
    plain = only_feature(decoder).geometry
    assert shifted.bounds[0] == pytest.approx(plain.bounds[0] + 1.0)


def test_scalar_callable_transform_runs_per_coordinate(decode_layer):
    square = [(0, 0), (10, 0), (10, 10), (0, 10)]
    decoder = decode_layer([
        dict(geom_type=GEOM_POINT, geometry=[9, 4096, 4096]),
        dict(geom_type=GEOM_POINT, geometry=[9, 0, 0]),
        dict(geom_type=GEOM_POLYGON, geometry=polygon_commands(square)),
    ])
    features = decoder.layer_features(None, transform=lambda x, y: (x * 2, y * 2))["test"]

    assert (features[0].geometry.x, features[0].geometry.y) == pytest.approx((0.0, 0.0))
    assert (features[1].geometry.x, features[1].geometry.y) == pytest.approx((-2 * W, 2 * W))

    ring = features[2].geometry.exterior.coords
    assert len(ring) == 5
    assert ring[0] == pytest.approx((-2 * W, 2 * W))
    to_world = TileToWorld(TileId(0, 0, 0), 4096)
    wx, wy = to_world(10, 10)
    assert ring[2] == pytest.approx((2 * wx, 2 * wy))


def test_bound_transformer_method_is_used_directly(decode_layer):
    decoder = decode_layer([dict(geom_type=GEOM_POINT, geometry=[9, 6144, 2048])])
    transformer = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)
    geom = only_feature(decoder, transform=transformer.transform).geometry
    assert (geom.x, geom.y) == pytest.approx((90.0, 66.51326044311186))
