"""
Coordinate transforms applied to decoded geometries.

Decoded coordinates are Web Mercator (EPSG:3857) meters.  Internally a
transform takes two coordinate arrays ``(xs, ys)`` and returns the
transformed pair, which is what ``shapely.transform(..., interleaved=False)``
expects.  pyproj transformers work on arrays directly; plain callables
``(x, y) -> (x, y)`` are run once per coordinate.
"""

import numpy as np
import shapely
from pyproj import CRS, Transformer

SOURCE_CRS = "EPSG:3857"


def identity(xs, ys):
    return xs, ys


def transform_to(dst_crs, src_crs=SOURCE_CRS):
    """Returns a pyproj transformer from ``src_crs`` to ``dst_crs``."""
    return Transformer.from_crs(src_crs, dst_crs, always_xy=True)


def per_point(func):
    """Lift a scalar ``(x, y) -> (x, y)`` function to coordinate arrays."""

    def transform(xs, ys):
        out = [func(float(x), float(y)) for x, y in zip(xs, ys)]
        if not out:
            return xs, ys
        new_xs, new_ys = zip(*out)
        return np.asarray(new_xs, dtype=float), np.asarray(new_ys, dtype=float)

    return transform


def resolve_transform(transform):
    """
    Normalise what callers may pass as a transform: ``None`` (identity), a
    pyproj ``Transformer`` or its bound ``transform`` method, a plain
    ``(x, y) -> (x, y)`` callable, or anything ``pyproj.CRS`` accepts.
    """
    if transform is None:
        return identity
    if isinstance(transform, Transformer):
        return transform.transform
    if isinstance(getattr(transform, "__self__", None), Transformer):
        return transform
    if callable(transform):
        return per_point(transform)
    return transform_to(CRS.from_user_input(transform)).transform


def apply_transform(geom, transform):
    """Apply a transform returned by ``resolve_transform`` to ``geom``."""
    if geom is None or transform is identity:
        return geom
    return shapely.transform(geom, transform, interleaved=False)
