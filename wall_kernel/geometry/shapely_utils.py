"""
Conversion between kernel Polygons and shapely geometries.
"""

from typing import Iterable, List

from shapely.geometry import GeometryCollection, MultiPolygon
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from ..models.geometry import Polygon
from ..units import EPS_MM


def iter_polygons(geom: BaseGeometry) -> Iterable[ShapelyPolygon]:
    """Yield the non-empty polygonal parts of any shapely geometry."""
    if geom is None or geom.is_empty:
        return
    if isinstance(geom, ShapelyPolygon):
        yield geom
    elif isinstance(geom, (MultiPolygon, GeometryCollection)):
        for part in geom.geoms:
            yield from iter_polygons(part)


def polygons_from_geometry(
    geom: BaseGeometry,
    creation_method: str = "shapely",
    tolerance: float = EPS_MM,
) -> List[Polygon]:
    """Kernel polygons for every polygonal part of geom; lines and points are dropped."""
    return [
        Polygon.from_shapely(part, creation_method=creation_method, tolerance=tolerance)
        for part in iter_polygons(geom)
        if part.area > 0
    ]


def repair_geometry(geom: BaseGeometry) -> BaseGeometry:
    """Valid polygonal version of geom (buffer(0) first, make_valid when that loses area)."""
    if geom.is_empty or geom.is_valid:
        return geom
    repaired = geom.buffer(0)
    if repaired.is_empty or repaired.area < geom.area * 0.5:
        repaired = make_valid(geom)
    return repaired
