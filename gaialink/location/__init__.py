"""Locations and location history: loading, the merged history view, and
checks over both.

The merged view is :class:`gaialink.db.schema.LocationMerge`; it is composed
fresh by each query and never stored.
"""

from gaialink.errors import MalformedInput
from gaialink.ingest.util import date_field_resolve
import gaialink.db.schema as sch
import gaialink.geo as geo

import dataclasses
import logging
import math
import sqlalchemy as sa

_log = logging.getLogger(__name__)

_LOCATION_FIELDS = ['address_1', 'address_2', 'city', 'state', 'zip', 'county',
        'location_source_value', 'country_concept_id', 'country_source_value']


@dataclasses.dataclass(frozen=True)
class CheckResult:
    """One validation check, as shown on monitoring dashboards."""
    check_name: str
    status: str  # PASS, WARN or FAIL
    details: str

    @classmethod
    def count_check(cls, check_name, count, detail_fmt, *, severity='WARN'):
        """PASS if `count` is zero, otherwise `severity`."""
        return cls(check_name, 'PASS' if count == 0 else severity,
                detail_fmt.format(count))


def _blank(v):
    if v is None:
        return True
    if isinstance(v, float) and math.isnan(v):
        return True
    return isinstance(v, str) and not v.strip()


def _or_none(v):
    return None if _blank(v) else v


def _optional_int(row, key):
    v = row.get(key)
    if _blank(v):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        raise MalformedInput(f'{key} must be an integer, got {v!r}')


def load_locations(sess, rows):
    """Insert or update :class:`Location` rows keyed by `location_id`.

    Each row is a mapping with the location columns; the point geometry is
    built from `longitude` / `latitude`. Rows without coordinates are skipped
    (they can be listed by :func:`locations_missing_geometry` once stored by
    other means). Returns the number of rows written.
    """
    count = 0
    for row in rows:
        location_id = _optional_int(row, 'location_id')
        if location_id is None:
            raise MalformedInput(f'Location row without location_id: {row}')
        lat, lon = row.get('latitude'), row.get('longitude')
        if _blank(lat) or _blank(lon):
            continue
        try:
            lat, lon = float(lat), float(lon)
        except (TypeError, ValueError):
            raise MalformedInput(
                    f'Location {location_id}: bad coordinates {lat!r}, {lon!r}')

        values = {k: (None if _blank(row.get(k)) else row.get(k))
                for k in _LOCATION_FIELDS}
        values['country_concept_id'] = _optional_int(row, 'country_concept_id')
        for k in ['zip', 'address_1', 'address_2', 'city', 'state', 'county']:
            if values[k] is not None:
                values[k] = str(values[k])
        sess.merge(sch.Location(location_id=location_id, latitude=lat,
                longitude=lon, geom=geo.dump_geometry(geo.point(lon, lat)),
                **values))
        count += 1
    sess.flush()
    _log.info('Loaded %d location records', count)
    return count


def load_location_history(sess, rows):
    """Insert :class:`LocationHistory` intervals. Dates are parsed strictly;
    an interval ending before it starts raises :class:`MalformedInput`.
    Returns the number of rows inserted.
    """
    batch = []
    for row in rows:
        start = date_field_resolve(_or_none(row.get('start_date')))
        end = date_field_resolve(_or_none(row.get('end_date')))
        if end < start:
            raise MalformedInput(
                    f'Location history row ends ({end}) before it starts '
                    f'({start}): {row}')
        batch.append({
                'location_id': _optional_int(row, 'location_id'),
                'relationship_type_concept_id': _optional_int(row,
                    'relationship_type_concept_id'),
                'domain_id': _optional_int(row, 'domain_id'),
                'entity_id': _optional_int(row, 'entity_id'),
                'start_date': start,
                'end_date': end,
        })
    if batch:
        sess.execute(sa.insert(sch.LocationHistory), batch)
    _log.info('Loaded %d location history records', len(batch))
    return len(batch)


def location_merge_query(*, start=None, end=None):
    """Select over :class:`LocationMerge`, optionally limited to intervals
    overlapping ``[start, end]`` (inclusive) and having a geometry.
    """
    LM = sch.LocationMerge
    q = sa.select(LM).order_by(LM.location_history_id)
    if start is not None:
        q = q.where(LM.end_date >= start)
    if end is not None:
        q = q.where(LM.start_date <= end)
    if start is not None or end is not None:
        q = q.where(LM.geom.isnot(None))
    return q


def full_address(loc):
    return ', '.join(str(p) for p in [loc.address_1, loc.address_2, loc.city,
            loc.state, loc.zip] if not _blank(p))


def locations_missing_geometry(sess):
    """``(location_id, address)`` of stored locations which still need
    geocoding."""
    locs = sess.execute(sa.select(sch.Location)
            .where(sch.Location.geom.is_(None))
            .where(sch.Location.address_1.isnot(None))
            .order_by(sch.Location.location_id)).scalars()
    return [(loc.location_id, full_address(loc)) for loc in locs]


def validate_location_data(sess):
    """Checks over locations and history; returns a list of
    :class:`CheckResult`."""
    L, LH = sch.Location, sch.LocationHistory
    count = lambda q: sess.execute(q).scalar()

    return [
            CheckResult.count_check('Missing Geometry',
                count(sa.select(sa.func.count()).select_from(L)
                    .where(L.geom.is_(None))),
                '{} locations missing geometry'),
            CheckResult.count_check('Invalid Coordinates',
                count(sa.select(sa.func.count()).select_from(L)
                    .where(sa.not_(L.latitude.between(-90, 90))
                        | sa.not_(L.longitude.between(-180, 180)))),
                '{} locations with invalid coordinates', severity='FAIL'),
            CheckResult.count_check('Orphaned History Records',
                count(sa.select(sa.func.count()).select_from(LH)
                    .outerjoin(L, LH.location_id == L.location_id)
                    .where(L.location_id.is_(None))),
                '{} history records with no matching location'),
            CheckResult.count_check('Invalid Date Ranges',
                count(sa.select(sa.func.count()).select_from(LH)
                    .where(LH.end_date < LH.start_date)),
                '{} records where end_date < start_date', severity='FAIL'),
    ]


def location_statistics(sess):
    """Summary counts over locations and history, as ``{metric: value}``."""
    L, LH = sch.Location, sch.LocationHistory
    one = lambda q: sess.execute(q).scalar()
    return {
            'Total Locations': one(sa.select(sa.func.count()).select_from(L)),
            'Geocoded Locations': one(sa.select(sa.func.count()).select_from(L)
                .where(L.geom.isnot(None))),
            'Total Location History Records': one(
                sa.select(sa.func.count()).select_from(LH)),
            'Unique Entities': one(sa.select(
                sa.func.count(sa.distinct(LH.entity_id)))),
            'Unique Locations Used': one(sa.select(
                sa.func.count(sa.distinct(LH.location_id)))),
    }
