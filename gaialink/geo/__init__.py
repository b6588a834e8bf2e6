"""Geometry helpers: WKB codec, reprojection, geodetic buffering and the named
spatial predicates used by the exposure join.

All geometries handed to the exposure join are in WGS84 (EPSG:4326),
longitude first.
"""

from gaialink.errors import MalformedInput

import enum
import functools
import pyproj
import shapely
from shapely.errors import GEOSException, ShapelyError
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform as shapely_transform
from shapely.strtree import STRtree
from shapely.validation import explain_validity

WGS84_EPSG = 4326

class SpatialPredicate(str, enum.Enum):
    """Relations evaluated as ``predicate(location_geom, variable_geom)``."""
    WITHIN = 'within'
    INTERSECTS = 'intersects'
    CONTAINS = 'contains'
    CONTAINS_PROPERLY = 'contains_properly'
    COVERS = 'covers'
    COVERED_BY = 'covered_by'
    TOUCHES = 'touches'
    CROSSES = 'crosses'
    OVERLAPS = 'overlaps'

    @classmethod
    def parse(cls, value):
        """Accepts the bare name or the PostGIS spelling (``ST_Within``)."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name.startswith('st_'):
            name = name[3:]
        try:
            return cls(name)
        except ValueError:
            allowed = ', '.join(p.value for p in cls)
            raise MalformedInput(f'Unsupported spatial predicate {value!r}. '
                    f'Allowed values: {allowed}')


_HEX = set('0123456789abcdefABCDEF')

def load_geometry(value, *, what='geometry'):
    """Decode a stored geometry.

    Accepts WKB / EWKB as bytes or memoryview, hex-encoded (E)WKB text as
    returned by PostGIS, WKT text, or a shapely geometry. Empty, unparsable
    and invalid geometries raise :class:`MalformedInput`.
    """
    if value is None:
        raise MalformedInput(f'{what} is NULL')
    if isinstance(value, BaseGeometry):
        geom = value
    else:
        if isinstance(value, memoryview):
            value = value.tobytes()
        try:
            if isinstance(value, (bytes, bytearray)):
                geom = shapely.from_wkb(bytes(value))
            elif isinstance(value, str):
                text = value.strip()
                if set(text) <= _HEX:
                    geom = shapely.from_wkb(text)
                else:
                    geom = shapely.from_wkt(text)
            else:
                raise MalformedInput(
                        f'{what} has unsupported type {type(value).__name__}')
        except (GEOSException, ShapelyError) as e:
            raise MalformedInput(f'{what} could not be decoded: {e}')

    if geom is None or geom.is_empty:
        raise MalformedInput(f'{what} is empty')
    if not geom.is_valid:
        raise MalformedInput(f'{what} is invalid: {explain_validity(geom)}')
    return geom


def dump_geometry(geom):
    """Encode `geom` as plain WKB for storage."""
    return shapely.to_wkb(geom)


def geometry_srid(value):
    """SRID embedded in an EWKB value, or None if there is none."""
    if isinstance(value, memoryview):
        value = value.tobytes()
    try:
        if isinstance(value, str):
            geom = shapely.from_wkb(value.strip())
        elif isinstance(value, (bytes, bytearray)):
            geom = shapely.from_wkb(bytes(value))
        else:
            return None
    except (GEOSException, ShapelyError):
        return None
    return shapely.get_srid(geom) or None


@functools.lru_cache(maxsize=64)
def _transformer(src_epsg, dst_epsg):
    return pyproj.Transformer.from_crs(src_epsg, dst_epsg, always_xy=True)


def reproject(geom, src_epsg, dst_epsg=WGS84_EPSG):
    """Return `geom` transformed from `src_epsg` to `dst_epsg`."""
    if src_epsg == dst_epsg:
        return geom
    try:
        transformer = _transformer(int(src_epsg), int(dst_epsg))
    except pyproj.exceptions.CRSError:
        raise MalformedInput(f'Unknown reference frame EPSG:{src_epsg}')
    return shapely_transform(transformer.transform, geom)


def point(longitude, latitude):
    return Point(longitude, latitude)


def geodetic_buffer(geom, meters):
    """Buffer a WGS84 geometry by `meters` measured on the ground.

    The geometry is projected to an azimuthal equidistant frame centred on its
    own centroid, buffered there in metres, and projected back. Distances from
    the centre are exact in that frame, so the error stays small for features
    up to a few hundred kilometres across.
    """
    if meters <= 0:
        return geom
    c = geom.centroid
    local = pyproj.CRS.from_proj4(
            f'+proj=aeqd +lat_0={c.y} +lon_0={c.x} +datum=WGS84 +units=m')
    to_local = pyproj.Transformer.from_crs(WGS84_EPSG, local, always_xy=True)
    to_wgs84 = pyproj.Transformer.from_crs(local, WGS84_EPSG, always_xy=True)
    buffered = shapely_transform(to_local.transform, geom).buffer(meters)
    return shapely_transform(to_wgs84.transform, buffered)


def match_geometries(locations, shapes, predicate):
    """All index pairs ``(i, j)`` with ``predicate(locations[i], shapes[j])``,
    sorted.

    Candidate pairs come from an STR-tree over `shapes`; the tree applies the
    exact predicate, so the result has no false positives and no duplicates.
    """
    if not locations or not shapes:
        return []
    tree = STRtree(list(shapes))
    loc_idx, shape_idx = tree.query(list(locations), predicate=predicate.value)
    return sorted(zip(loc_idx.tolist(), shape_idx.tolist()))


def evaluate(predicate, location, shape):
    """Evaluate one predicate directly, without a tree."""
    return bool(getattr(shapely, predicate.value)(location, shape))
