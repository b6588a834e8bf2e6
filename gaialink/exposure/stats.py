"""Read-only summaries of :class:`ExternalExposure`, and bulk clearing."""

from gaialink.db.locks import variable_lock
from gaialink.location import CheckResult
import gaialink.db.schema as sch

import logging
import sqlalchemy as sa

_log = logging.getLogger(__name__)

def exposure_statistics(sess):
    """Summary metrics as ``{metric: value}``. `Date Range (days)` is None
    when there are no exposure records.
    """
    E = sch.ExternalExposure
    row = sess.execute(sa.select(
            sa.func.count(),
            sa.func.count(sa.distinct(E.person_id)).filter(E.person_id > 0),
            sa.func.count(sa.distinct(E.location_id)),
            sa.func.count(sa.distinct(E.exposure_source_value)),
            sa.func.min(E.exposure_start_date),
            sa.func.max(E.exposure_end_date),
            )).one()
    total, persons, locations, variables, first, last = row
    return {
            'Total Exposure Records': total,
            'Unique Persons Exposed': persons,
            'Unique Locations': locations,
            'Unique Exposure Variables': variables,
            'Date Range (days)': (None if first is None or last is None
                else (last - first).days),
    }


def clear_exposure_data(sess, variable_name=None):
    """Delete the exposure records of `variable_name`, or every record if it
    is None. Returns the number of rows deleted.

    Each variable's records are deleted under that variable's lock, so a
    clear waits for a running join of the same variable.
    """
    E = sch.ExternalExposure
    if variable_name is not None:
        with variable_lock(sess, variable_name):
            n = E.cls_clear(variable_name, sess)
        _log.info('Cleared %d exposure records for %s', n, variable_name)
        return n

    names = list(sess.execute(sa.select(sa.distinct(E.exposure_source_value))
            .where(E.exposure_source_value.isnot(None))).scalars())
    n = 0
    for name in sorted(names):
        with variable_lock(sess, name):
            n += E.cls_clear(name, sess)
    n += sess.execute(sa.delete(E)
            .where(E.exposure_source_value.is_(None))).rowcount
    _log.info('Cleared all %d exposure records', n)
    return n


def validate_exposure_data(sess):
    """Checks over the exposure records; returns a list of
    :class:`gaialink.location.CheckResult`."""
    E, L = sch.ExternalExposure, sch.Location
    count = lambda q: sess.execute(q).scalar()

    return [
            CheckResult.count_check('Invalid Exposure Windows',
                count(sa.select(sa.func.count()).select_from(E)
                    .where(E.exposure_end_date < E.exposure_start_date)),
                '{} records where end_date < start_date', severity='FAIL'),
            CheckResult.count_check('Unassigned Persons',
                count(sa.select(sa.func.count()).select_from(E)
                    .where(sa.or_(E.person_id.is_(None), E.person_id == 0))),
                '{} records with unassigned person_id'),
            CheckResult.count_check('Orphaned Locations',
                count(sa.select(sa.func.count()).select_from(E)
                    .outerjoin(L, E.location_id == L.location_id)
                    .where(L.location_id.is_(None))),
                '{} records with invalid location_id'),
    ]
