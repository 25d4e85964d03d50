"""
MVT geometry command decoding.

A feature's geometry is a flat array of uint32 words.  A command word keeps
the command id in its low 3 bits and a repetition count in the upper 29;
MoveTo and LineTo are followed by ``2 * count`` zig-zag encoded deltas, and
the cursor those deltas move starts at (0, 0) for every feature.

Decoding happens in two steps:

* ``interpret`` walks the commands in tile-local integer coordinates and
  returns points, lines or polygons (rings already closed and classified);
* ``assemble`` maps those to Web Mercator and builds the shapely geometry,
  collapsing to the single variant when only one part was produced.
"""

import logging

from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)

from vtdecode.vector_tile import GEOM_LINESTRING, GEOM_POINT, GEOM_POLYGON

logger = logging.getLogger(__name__)

CMD_MOVE_TO = 1
CMD_LINE_TO = 2
CMD_CLOSE_PATH = 7

GEOM_TYPE_NAMES = {
    GEOM_POINT: "Point",
    GEOM_LINESTRING: "LineString",
    GEOM_POLYGON: "Polygon",
}


def geom_type_name(geom_type):
    """Value of the synthetic ``_geom_type`` attribute ("" for UNKNOWN)."""
    return GEOM_TYPE_NAMES.get(geom_type, "")


# ── Command words ────────────────────────────────────────────────────────

def zigzag_decode(p):
    return (p >> 1) ^ -(p & 1)


def zigzag_encode(n):
    return ((n << 1) ^ (n >> 31)) & 0xFFFFFFFF


def command_word(cmd_id, count):
    return (count << 3) | (cmd_id & 0x7)


def split_command(word):
    """Returns (command id, repetition count) of a command word."""
    return word & 0x7, word >> 3


# ── Ring classification ──────────────────────────────────────────────────

def signed_area(ring):
    """
    Shoelace area of a closed ring (first point == last point).

    Computed with X to the right and Y downward, as tile-local coordinates
    are, so clockwise-on-screen rings come out positive.
    """
    total = 0
    for (x0, y0), (x1, y1) in zip(ring, ring[1:]):
        total += x0 * y1 - x1 * y0
    return total / 2.0


def is_exterior_ring(ring):
    # Zero-area rings count as exterior.
    return signed_area(ring) >= 0


# ── Command interpreter ──────────────────────────────────────────────────

def interpret(geom_type, commands):
    """
    Run the command tape of one feature in tile-local coordinates.

    Returns, depending on ``geom_type``:
        POINT       [(x, y), ...]
        LINESTRING  [[(x, y), ...], ...]
        POLYGON     [[exterior, hole, hole, ...], ...]  (rings closed)

    Malformed input stops the walk; parts emitted up to that point are kept.
    """
    points = []
    lines = []
    polygons = []
    current = []
    cx, cy = 0, 0

    idx = 0
    n = len(commands)
    while idx < n:
        cmd_id, cmd_count = split_command(commands[idx])
        idx += 1

        if cmd_id in (CMD_MOVE_TO, CMD_LINE_TO):
            if idx + 2 * cmd_count > n:
                logger.warning(
                    "Malformed geometry: command %d declares %d repetitions but only %d words remain",
                    cmd_id, cmd_count, n - idx,
                )
                break
            for _ in range(cmd_count):
                cx += zigzag_decode(commands[idx])
                cy += zigzag_decode(commands[idx + 1])
                idx += 2
                if cmd_id == CMD_MOVE_TO:
                    if geom_type == GEOM_POINT:
                        points.append((cx, cy))
                        continue
                    if current:
                        if geom_type == GEOM_LINESTRING:
                            lines.append(current)
                        else:
                            logger.warning("Malformed geometry: ring started before the previous one was closed")
                    current = [(cx, cy)]
                elif geom_type == GEOM_POINT:
                    logger.debug("Ignoring LineTo in point geometry")
                else:
                    current.append((cx, cy))

        elif cmd_id == CMD_CLOSE_PATH:
            if geom_type != GEOM_POLYGON:
                logger.debug("Ignoring ClosePath in non-polygon geometry")
                continue
            if not current:
                logger.warning("Malformed geometry: ClosePath without an open ring")
                continue
            current.append(current[0])
            _attach_ring(polygons, current)
            current = []

        else:
            logger.warning("Malformed geometry: unexpected command id %d", cmd_id)
            break

    if geom_type == GEOM_POINT:
        return points
    if geom_type == GEOM_LINESTRING:
        if current:
            lines.append(current)
        return lines
    if current:
        logger.warning("Malformed geometry: dropping unclosed polygon ring")
    return polygons


def _attach_ring(polygons, ring):
    # Degenerate exteriors still open a polygon so their holes stay with
    # them; assemble() drops both.
    if is_exterior_ring(ring):
        polygons.append([ring])
    elif polygons:
        polygons[-1].append(ring)
    else:
        logger.warning("Malformed geometry: first ring of a polygon is interior ring")


# ── Assembly ─────────────────────────────────────────────────────────────

def assemble(geom_type, parts, to_world):
    """
    Build the shapely geometry for the parts returned by ``interpret``.

    ``to_world`` maps a tile-local (x, y) to output coordinates.  One part
    gives a single geometry, several give the Multi variant in decode order,
    none gives an empty Multi geometry.  Returns ``None`` for UNKNOWN.
    """
    if geom_type == GEOM_POINT:
        points = [Point(to_world(x, y)) for x, y in parts]
        if len(points) == 1:
            return points[0]
        return MultiPoint(points)

    if geom_type == GEOM_LINESTRING:
        lines = []
        for line in parts:
            if len(line) < 2:
                logger.warning("Malformed geometry: dropping linestring with %d vertices", len(line))
                continue
            lines.append(LineString([to_world(x, y) for x, y in line]))
        if len(lines) == 1:
            return lines[0]
        return MultiLineString(lines)

    if geom_type == GEOM_POLYGON:
        polygons = []
        for rings in parts:
            exterior, holes = rings[0], rings[1:]
            if len(exterior) < 4:
                logger.warning(
                    "Malformed geometry: dropping polygon with %d-coordinate exterior and %d holes",
                    len(exterior), len(holes),
                )
                continue
            polygons.append(
                Polygon(
                    [to_world(x, y) for x, y in exterior],
                    [[to_world(x, y) for x, y in hole] for hole in holes],
                )
            )
        if len(polygons) == 1:
            return polygons[0]
        return MultiPolygon(polygons)

    return None


def decode_geometry(geom_type, commands, to_world):
    """Interpret and assemble one feature's geometry."""
    if geom_type not in GEOM_TYPE_NAMES:
        return None
    return assemble(geom_type, interpret(geom_type, commands), to_world)
