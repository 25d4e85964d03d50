import math
from dataclasses import dataclass

# Web Mercator constants
WEB_MERCATOR_LIMIT = 20037508.3427892
MAX_LATITUDE = 85.05112878
# Deepest zoom accepted by TileId.
MAX_ZOOM = 30


@dataclass(frozen=True)
class TileId:
    """XYZ tile address, origin at the north-west corner (row grows south)."""

    z: int
    x: int
    y: int

    def __post_init__(self):
        if not 0 <= self.z <= MAX_ZOOM:
            raise ValueError(f"zoom {self.z} outside 0..{MAX_ZOOM}")
        n = 1 << self.z
        if not (0 <= self.x < n and 0 <= self.y < n):
            raise ValueError(f"tile {self.x}/{self.y} outside the {n}x{n} grid at zoom {self.z}")

    def __str__(self):
        return f"{self.z}/{self.x}/{self.y}"


def tile_size_meters(zoom):
    """Side length of one tile at ``zoom`` in Web Mercator meters."""
    return 2 * WEB_MERCATOR_LIMIT / (2 ** zoom)


def tile_bounds(z, x, y):
    """
    Returns the Web Mercator bounds of tile (z, x, y).
    Returns (minx, miny, maxx, maxy).
    """
    size = tile_size_meters(z)
    minx = -WEB_MERCATOR_LIMIT + x * size
    maxy = WEB_MERCATOR_LIMIT - y * size
    return minx, maxy - size, minx + size, maxy


class TileToWorld:
    """
    Maps integer tile-local coordinates of one tile to Web Mercator meters.

    Tile-local Y grows downward while world Y grows upward, so the row axis
    is inverted.
    """

    def __init__(self, tile_id, extent):
        if extent <= 0:
            raise ValueError(f"extent must be positive, got {extent}")
        self.tile_id = tile_id
        self.extent = extent
        self.tile_dx = self.tile_dy = tile_size_meters(tile_id.z)
        self.tile_x_min = -WEB_MERCATOR_LIMIT + tile_id.x * self.tile_dx
        self.tile_y_max = WEB_MERCATOR_LIMIT - tile_id.y * self.tile_dy

    def __call__(self, cx, cy):
        return (
            self.tile_x_min + self.tile_dx * cx / self.extent,
            self.tile_y_max - self.tile_dy * cy / self.extent,
        )

    def map_points(self, points):
        return [self(cx, cy) for cx, cy in points]


def get_tile_coords(lat, lon, zoom):
    """
    Returns the tile (x, y) containing the given lat/lon at zoom.
    """
    lat = max(min(lat, MAX_LATITUDE), -MAX_LATITUDE)
    n = 2 ** zoom
    xtile = int((lon + 180.0) / 360.0 * n)
    ytile = int((1.0 - math.asinh(math.tan(math.radians(lat))) / math.pi) / 2.0 * n)
    return min(max(xtile, 0), n - 1), min(max(ytile, 0), n - 1)
