import json
import logging
import sys

from vtdecode import coords, tiles
from vtdecode.attributes import Fields
from vtdecode.mvt_decoder import MVTDecoder

START_LAT = 43.6446
START_LON = -79.3849
START_ZOOM = 13


def _str_arg(name, default=None):
    token = f"--{name}="
    for arg in sys.argv:
        if arg.startswith(token):
            return arg.split("=", 1)[1]
    return default


def _float_arg(name, default):
    try:
        return float(_str_arg(name, default))
    except ValueError:
        return float(default)


def _int_arg(name, default):
    value = _str_arg(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _tile_from_args():
    zoom = _int_arg("z", _int_arg("zoom", START_ZOOM))
    x = _int_arg("x", None)
    y = _int_arg("y", None)
    if x is None or y is None:
        lat = _float_arg("lat", START_LAT)
        lon = _float_arg("lon", START_LON)
        x, y = coords.get_tile_coords(lat, lon, zoom)
    return coords.TileId(zoom, x, y)


def dump_tile(tile_id, tile_bytes, crs=None):
    """Returns {layer: GeoJSON FeatureCollection} for one tile."""
    decoder = MVTDecoder()
    if not decoder.decode(tile_id, tile_bytes):
        return None
    fields = {name: Fields.from_names(decoder.field_names(name)) for name in decoder.layers()}
    decoded = decoder.layer_features(fields, transform=crs)
    return {
        name: {
            "type": "FeatureCollection",
            "features": [f.__geo_interface__ for f in features],
        }
        for name, features in decoded.items()
    }


def main():
    logging.basicConfig(
        level=logging.DEBUG if "--verbose" in sys.argv else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    try:
        tile_id = _tile_from_args()
    except ValueError as e:
        print(f"Invalid tile: {e}", file=sys.stderr)
        return 2

    path = _str_arg("file")
    if path:
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except OSError as e:
            print(f"Could not read {path}: {e}", file=sys.stderr)
            return 1
    else:
        raw = tiles.fetch_tile(tile_id.z, tile_id.x, tile_id.y)
        if raw is None:
            print(f"Could not fetch tile {tile_id}", file=sys.stderr)
            return 1

    result = dump_tile(tile_id, raw, crs=_str_arg("crs"))
    if result is None:
        print(f"Tile {tile_id} is not a valid vector tile", file=sys.stderr)
        return 1
    json.dump(result, sys.stdout)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
