"""Exposure join engine.

For a variable, every (location history interval, observation) pair that
overlaps in time and satisfies the spatial predicate produces one
:class:`gaialink.db.schema.ExternalExposure` row, tagged with the variable's
name in `exposure_source_value`.

The temporal prefilter runs in SQL over
:class:`gaialink.db.schema.LocationMerge`; the spatial predicate is evaluated
with shapely over an STR-tree of the observation shapes. Joins for one
variable are serialized with :func:`gaialink.exposure.stats.clear_exposure_data`
for the same variable.

.. mermaid::

    flowchart LR
        var[VariableSource] -->|window, concepts| join[join_exposure]
        plan[JoinPlan] -->|value, geom| join
        merge[LocationMerge] -->|overlapping intervals| join
        join -->|bulk insert| out[ExternalExposure]
"""

from gaialink.config import get_config
from gaialink.db.locks import variable_lock
from gaialink.errors import JoinCancelled, MalformedInput, NotFound
from gaialink.exposure.plan import (Indexed, JoinPlan, OnePoint, TwoPoint,
        describe, observation_query, plan_for)
from gaialink.exposure.stats import (clear_exposure_data,
        exposure_statistics, validate_exposure_data)
from gaialink.location import location_merge_query
import gaialink.catalog as catalog
import gaialink.db.schema as sch
import gaialink.geo as geo

import dataclasses
import datetime
import logging
import math
import sqlalchemy as sa
import time
import tqdm
from typing import Optional
import uuid

_log = logging.getLogger(__name__)

INSERT_CHUNK = 1000

@dataclasses.dataclass(frozen=True)
class VariableMeta:
    """What a join needs to know about a variable."""
    variable_name: str
    concept_id: Optional[int]
    unit_concept_id: Optional[int]
    value_as_concept_id: Optional[int]
    start_date: datetime.date
    end_date: datetime.date


@dataclasses.dataclass
class VariableJoinResult:
    """Outcome of one variable within :func:`spatial_join_all_variables`."""
    variable_name: str
    records_created: int
    error: Optional[str] = None

    @property
    def ok(self):
        return self.error is None


def intervals_overlap(a_start, a_end, b_start, b_end):
    """Whether closed intervals ``[a_start, a_end]`` and ``[b_start, b_end]``
    share at least one day. Touching endpoints count as overlapping.
    """
    return a_start <= b_end and b_start <= a_end


def resolve_variable(sess, variable_name, *, data_source_uuid=None,
        table_id=None):
    """Look up the join metadata for `variable_name`.

    The :class:`VariableSource` registered by ingestion is authoritative. If
    there is none and `table_id` is given, the metadata recorded in the
    attribute catalog when the variable was linked is used instead.

    Raises:
        NotFound: The variable is unknown.
        MalformedInput: The variable has no complete validity window.
    """
    q = (sa.select(sch.VariableSource)
            .where(sch.VariableSource.variable_name == variable_name)
            .order_by(sch.VariableSource.variable_source_id)
            .limit(1))
    if data_source_uuid is not None:
        q = q.where(sch.VariableSource.data_source_uuid
                == _as_uuid(data_source_uuid))
    var = sess.execute(q).scalar()
    if var is not None:
        meta = VariableMeta(variable_name, var.attr_concept_id,
                var.unit_concept_id, var.value_as_concept_id,
                var.effective_start_date, var.effective_end_date)
    else:
        entry = None
        if table_id is not None:
            entry = catalog.lookup_attr(sess, table_id, variable_name)
        if entry is None:
            raise NotFound(f'Unknown variable: {variable_name}')
        meta = VariableMeta(variable_name, entry.attr_concept_id,
                entry.unit_concept_id, None, entry.attr_start_date,
                entry.attr_end_date)

    if meta.start_date is None or meta.end_date is None:
        raise MalformedInput(f'Variable {variable_name} has no validity window')
    if meta.end_date < meta.start_date:
        raise MalformedInput(
                f'Variable {variable_name}: end date {meta.end_date} precedes '
                f'start date {meta.start_date}')
    return meta


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise MalformedInput(f'Not a data source uuid: {value!r}')


def _as_number(raw, variable_name):
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            raise MalformedInput(
                    f'Variable {variable_name}: non-numeric value {raw!r}')
    return None if math.isnan(value) else value


def _check_deadline(deadline, variable_name):
    if deadline is not None and time.monotonic() > deadline:
        raise JoinCancelled(f'Join for {variable_name} ran past its deadline')


def _load_observations(sess, plan, variable_name, buffer_meters):
    """``(values, shapes)`` for every observation row of `plan`."""
    values, shapes = [], []
    for row in sess.execute(observation_query(sess, plan, variable_name)):
        shape = geo.load_geometry(row.geom,
                what=f'{variable_name} observation geometry')
        if buffer_meters > 0:
            shape = geo.geodetic_buffer(shape, buffer_meters)
        values.append(_as_number(row.value, variable_name))
        shapes.append(shape)
    return values, shapes


def _set_statement_timeout(sess, timeout):
    """On PostgreSQL, bound each statement of the current transaction by the
    remaining time. Returns the previous setting, or None if unchanged.
    """
    if timeout is None or sess.get_bind().dialect.name != 'postgresql':
        return None
    previous = sess.execute(sa.select(
            sa.func.current_setting('statement_timeout'))).scalar()
    ms = max(1, int(timeout * 1000))
    sess.execute(sa.select(sa.func.set_config('statement_timeout', str(ms),
            True)))
    return previous


def _exposure_row(meta, hist, value, plan, cfg):
    start = max(meta.start_date, hist.start_date)
    end = min(meta.end_date, hist.end_date)
    if hist.domain_id == cfg['person_domain_concept_id']:
        person_id = hist.entity_id
    else:
        person_id = cfg['unassigned_person_id']
    concept_id = meta.concept_id or 0
    return {
            'location_id': hist.location_id,
            'person_id': person_id,
            'exposure_concept_id': concept_id,
            'exposure_start_date': start,
            'exposure_start_datetime': datetime.datetime.combine(start,
                datetime.time()),
            'exposure_end_date': end,
            'exposure_end_datetime': datetime.datetime.combine(end,
                datetime.time()),
            'exposure_type_concept_id': 0,
            'exposure_relationship_concept_id': 0,
            'exposure_source_concept_id': (None if isinstance(plan, OnePoint)
                else concept_id),
            'exposure_source_value': meta.variable_name,
            'value_as_number': value,
            'value_as_concept_id': meta.value_as_concept_id,
            'unit_concept_id': meta.unit_concept_id,
    }


def join_exposure(sess, variable_name, primary_table=None,
        secondary_geometry_table=None, merge_columns=None,
        spatial_predicate=None, buffer_meters=0, *, plan=None,
        data_source_uuid=None, timeout=None, progress=False):
    """Link `variable_name`'s observations to location history; returns the
    number of :class:`ExternalExposure` rows inserted.

    Args:
        primary_table: Table holding a column named `variable_name`. Ignored
                if `plan` is given.
        secondary_geometry_table: If given, observation geometries come from
                this table, matched on `merge_columns` (two-point topology).
                Otherwise they are in `primary_table` (one-point topology).
        spatial_predicate: Relation between the history location and the
                observation shape, e.g. ``'within'`` or ``'st_intersects'``.
                Defaults to the configured ``join.default_predicate``.
        buffer_meters: If positive, observation shapes are first buffered by
                this geodetic distance.
        plan: An explicit :class:`JoinPlan`, e.g. :class:`Indexed` to read
                observations linked by :func:`gaialink.template.load_variable`.
        data_source_uuid: Disambiguates variables sharing a name across data
                sources.
        timeout: Seconds. Past this deadline :class:`JoinCancelled` is raised
                and nothing is written. Defaults to ``join.timeout``.
        progress: Show a tqdm bar while inserting.

    Raises:
        NotFound: Unknown variable or table.
        MalformedInput: Bad predicate, buffer, geometry or value.
        JoinCancelled: The deadline passed.
    """
    cfg = get_config()['join']
    predicate = geo.SpatialPredicate.parse(
            spatial_predicate or cfg['default_predicate'])
    try:
        buffer_meters = float(buffer_meters or 0)
    except (TypeError, ValueError):
        raise MalformedInput(f'Bad buffer distance: {buffer_meters!r}')
    if math.isnan(buffer_meters) or buffer_meters < 0:
        raise MalformedInput(f'Bad buffer distance: {buffer_meters!r}')
    if plan is None:
        plan = plan_for(primary_table, secondary_geometry_table, merge_columns)
    if timeout is None:
        timeout = cfg['timeout']
    deadline = None if timeout is None else time.monotonic() + timeout

    with variable_lock(sess, variable_name):
        meta = resolve_variable(sess, variable_name,
                data_source_uuid=data_source_uuid,
                table_id=plan.table_id if isinstance(plan, Indexed) else None)
        _log.info('Joining %s (%s, %s, buffer %sm)', variable_name,
                describe(plan), predicate.value, buffer_meters)

        previous_timeout = _set_statement_timeout(sess, timeout)
        try:
            values, shapes = _load_observations(sess, plan, variable_name,
                    buffer_meters)
            _check_deadline(deadline, variable_name)

            history = list(sess.execute(location_merge_query(
                    start=meta.start_date, end=meta.end_date)).scalars())
            history = [h for h in history if intervals_overlap(meta.start_date,
                    meta.end_date, h.start_date, h.end_date)]
            points = [geo.load_geometry(h.geom,
                    what=f'location {h.location_id} geometry') for h in history]
            _check_deadline(deadline, variable_name)

            pairs = geo.match_geometries(points, shapes, predicate)
            _check_deadline(deadline, variable_name)
        except sa.exc.OperationalError as e:
            if deadline is not None and time.monotonic() > deadline:
                raise JoinCancelled(
                        f'Join for {variable_name} ran past its deadline') from e
            raise

        records = [_exposure_row(meta, history[i], values[j], plan, cfg)
                for i, j in pairs]
        with sess.begin_nested():
            for k in tqdm.tqdm(range(0, len(records), INSERT_CHUNK),
                    desc=f'Inserting {variable_name}', disable=not progress):
                _check_deadline(deadline, variable_name)
                sess.execute(sa.insert(sch.ExternalExposure),
                        records[k:k + INSERT_CHUNK])

        if previous_timeout is not None:
            sess.execute(sa.select(sa.func.set_config('statement_timeout',
                    previous_timeout, True)))

    _log.info('Inserted %d exposure records for %s (%d locations x %d '
            'observations)', len(records), variable_name, len(history),
            len(shapes))
    return len(records)


def spatial_join_simple(sess, variable_name, table, **kwargs):
    """One-point join: `table` holds both the variable column and the
    geometry."""
    return join_exposure(sess, variable_name, table, **kwargs)


def _resolve_data_source(sess, data_source):
    if isinstance(data_source, sch.DataSource):
        return data_source
    ds = sess.execute(sa.select(sch.DataSource)
            .where(sch.DataSource.dataset_id == str(data_source))).scalar()
    if ds is None:
        try:
            ds = sess.get(sch.DataSource, _as_uuid(data_source))
        except MalformedInput:
            ds = None
    if ds is None:
        raise NotFound(f'Unknown data source: {data_source}')
    return ds


def spatial_join_all_variables(sess, data_source, primary_table=None,
        secondary_geometry_table=None, merge_columns=None, **kwargs):
    """Run :func:`join_exposure` for every variable of `data_source` (a
    :class:`DataSource`, its uuid, or its `dataset_id`).

    Each variable runs in its own savepoint. A variable that fails is logged,
    rolled back and reported with ``records_created=0``; the others still run.
    Returns one :class:`VariableJoinResult` per variable, in name order.
    """
    ds = _resolve_data_source(sess, data_source)
    names = [v.variable_name for v in ds.variables]
    results = []
    for name in names:
        try:
            with sess.begin_nested():
                n = join_exposure(sess, name, primary_table,
                        secondary_geometry_table, merge_columns,
                        data_source_uuid=ds.data_source_uuid, **kwargs)
        except Exception as e:
            _log.warning('Error processing variable %s: %s', name, e,
                    exc_info=True)
            results.append(VariableJoinResult(name, 0, f'{type(e).__name__}: {e}'))
        else:
            results.append(VariableJoinResult(name, n))

    total = sum(r.records_created for r in results)
    failed = [r.variable_name for r in results if not r.ok]
    _log.info('Joined %d variables of %s: %d records, %d failed',
            len(results), ds.dataset_id, total, len(failed))
    return results

__all__ = [
        'Indexed',
        'JoinPlan',
        'OnePoint',
        'TwoPoint',
        'VariableJoinResult',
        'VariableMeta',
        'clear_exposure_data',
        'exposure_statistics',
        'intervals_overlap',
        'join_exposure',
        'plan_for',
        'resolve_variable',
        'spatial_join_all_variables',
        'spatial_join_simple',
        'validate_exposure_data',
]
