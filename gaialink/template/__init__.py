"""Template instantiation: turn a dataset's source table into catalog entries
plus geometry / attribute instance rows.

.. mermaid::

    flowchart LR
    source[source table<br/><div style='text-align:left'>+pk<br/>+geom (local frame)<br/>+one column per variable</div>]
    geom_index -- partitions --> geom_instance
    attr_index -- partitions --> attr_instance
    source -- reproject --> geom_instance
    source -- pk = geom_record_id --> attr_instance
    attr_instance -- geom_record_id --> geom_instance

Calling :func:`load_variable` again with the same descriptor is a no-op: the
catalogs are consulted under a per-dataset lock, and each build runs in a
savepoint together with its catalog registration, so a catalog entry exists
if and only if its instance rows were fully written.
"""

from gaialink.errors import IntegrityViolation, MalformedInput, NotFound
from gaialink.db.locks import catalog_lock
from gaialink.ingest.util import date_field_resolve, sanitize_identifier
import gaialink.catalog as catalog
import gaialink.db.schema as sch
import gaialink.geo as geo

import dataclasses
import datetime
import logging
import sqlalchemy as sa
import tqdm
from typing import Optional

_log = logging.getLogger(__name__)

# Rows per INSERT when copying instance rows
_CHUNK = 1000

@dataclasses.dataclass
class VariableDescriptor:
    """Everything needed to link one variable of one dataset.

    Attributes:
        table_id: Dataset table identifier; also the default source table.
        variable_id: Variable name, which is also its column in the source
                table.
        source_table: Table holding the dataset's rows, if not `table_id`.
        geometry_column: Source column holding local-frame geometry.
        local_srid: EPSG code of the local frame. If None, the SRID embedded
                in each EWKB value is used.
        geom_label: A source column name whose values label each geometry, or
                otherwise a literal label for all of them.
        start_date, end_date: Validity window. If absent, taken from the
                :class:`VariableSource` of the same name.
        nodata: Marker value meaning "no observation"; such rows are not
                copied.
    """
    table_id: str
    variable_id: str
    source_table: Optional[str] = None
    source_schema: Optional[str] = None
    geometry_column: str = 'geom'
    local_srid: Optional[int] = None
    geom_type: Optional[str] = None
    geom_label: Optional[str] = None
    table_description: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    concept_id: Optional[int] = None
    unit_concept_id: Optional[int] = None
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    nodata: Optional[str] = None
    source: Optional[str] = None

    _ALIASES = {'variable_nodata': 'nodata'}

    @classmethod
    def from_params(cls, params):
        """Build from a loosely typed dict (e.g. parsed JSON). Unknown keys
        and unparsable values raise :class:`MalformedInput`.
        """
        fields = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for k, v in params.items():
            k = cls._ALIASES.get(k, k)
            if k not in fields:
                raise MalformedInput(f'Unknown descriptor field {k!r}')
            kwargs[k] = v
        for k in ['table_id', 'variable_id']:
            if not kwargs.get(k):
                raise MalformedInput(f'Descriptor requires {k!r}')
        for k in ['start_date', 'end_date']:
            if kwargs.get(k) not in (None, ''):
                kwargs[k] = date_field_resolve(kwargs[k])
            else:
                kwargs[k] = None
        for k in ['concept_id', 'unit_concept_id', 'local_srid']:
            if kwargs.get(k) not in (None, ''):
                try:
                    kwargs[k] = int(kwargs[k])
                except (TypeError, ValueError):
                    raise MalformedInput(f'{k} must be an integer, got {kwargs[k]!r}')
            else:
                kwargs[k] = None
        return cls(**kwargs)

    @property
    def table_name(self):
        return sanitize_identifier(self.table_id)


@dataclasses.dataclass
class InstanceRefs:
    """Result of :func:`load_variable`."""
    geom: str
    attr: str
    geom_index_id: int
    attr_index_id: int
    geom_created: bool = False
    attr_created: bool = False
    geom_rows: int = 0
    attr_rows: int = 0


def reflect_table(sess, name, schema=None):
    """Reflect a caller-prepared table. Missing tables raise
    :class:`NotFound`."""
    try:
        return sa.Table(name, sa.MetaData(), autoload_with=sess.connection(),
                schema=schema)
    except sa.exc.NoSuchTableError:
        raise NotFound(f'Source table {name} does not exist')


def table_column(table, name):
    """Column `name` of `table`; a missing column raises
    :class:`MalformedInput`."""
    try:
        return table.c[name]
    except KeyError:
        raise MalformedInput(f'Table {table.name} has no column {name!r}')


def discover_primary_key(table):
    """The single primary-key column declared on `table`.

    No primary key, or a composite one, raises :class:`MalformedInput`.
    """
    cols = list(table.primary_key.columns)
    if not cols:
        raise MalformedInput(f'Source table {table.name} declares no primary key')
    if len(cols) > 1:
        raise MalformedInput(
                f'Source table {table.name} has a composite primary key '
                f'({", ".join(c.name for c in cols)}); one column is required')
    return cols[0]


def _record_id(value, table):
    try:
        rid = int(value)
    except (TypeError, ValueError):
        rid = None
    # int() truncates 1.7 to 1
    if rid is None or (not isinstance(value, str) and rid != value):
        raise MalformedInput(
                f'Primary key value {value!r} of {table.name} is not an integer')
    return rid


def _is_nodata(raw, nodata):
    if nodata is None:
        return False
    try:
        return float(raw) == float(nodata)
    except (TypeError, ValueError):
        return str(raw) == str(nodata)


def attribute_values(raw, nodata=None):
    """``(value_as_number, value_as_string)`` for one source value, or None if
    the value is missing or equals the nodata marker.

    Numeric values are formatted with two decimals; anything else is kept as
    text with no number.
    """
    if raw is None or _is_nodata(raw, nodata):
        return None
    if isinstance(raw, bool):
        raw = int(raw)
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None, str(raw)
    return number, f'{number:.2f}'


def _resolve_metadata(sess, descriptor):
    """Fill gaps in the descriptor from the :class:`VariableSource` of the
    same name, if one is registered.
    """
    var = sess.execute(sa.select(sch.VariableSource)
            .where(sch.VariableSource.variable_name == descriptor.variable_id)
            .order_by(sch.VariableSource.variable_source_id)
            .limit(1)).scalar()
    meta = {
            'description': descriptor.description,
            'attr_concept_id': descriptor.concept_id,
            'unit_concept_id': descriptor.unit_concept_id,
            'unit_source_value': descriptor.unit,
            'start_date': descriptor.start_date,
            'end_date': descriptor.end_date,
            'nodata': descriptor.nodata,
            'value_as_concept_id': None,
    }
    if var is not None:
        fallback = {
                'description': var.variable_description,
                'attr_concept_id': var.attr_concept_id,
                'unit_concept_id': var.unit_concept_id,
                'unit_source_value': var.unit_text or var.unit_code,
                'start_date': var.effective_start_date,
                'end_date': var.effective_end_date,
                'nodata': var.nodata_value,
                'value_as_concept_id': var.value_as_concept_id,
        }
        for k, v in fallback.items():
            if meta[k] is None:
                meta[k] = v

    if meta['start_date'] is None or meta['end_date'] is None:
        raise MalformedInput(
                f'Variable {descriptor.variable_id} has no validity window')
    if meta['end_date'] < meta['start_date']:
        raise MalformedInput(
                f'Variable {descriptor.variable_id}: end date '
                f'{meta["end_date"]} precedes start date {meta["start_date"]}')
    return meta


def _copy_geometries(sess, descriptor, entry, source, *, progress=False):
    pk = discover_primary_key(source)
    geom_col = table_column(source, descriptor.geometry_column)
    label_col = None
    if descriptor.geom_label is not None and descriptor.geom_label in source.c:
        label_col = source.c[descriptor.geom_label]

    cols = [pk, geom_col] + ([label_col] if label_col is not None else [])
    rows = sess.execute(sa.select(*cols).order_by(pk)).all()

    batch = []
    count = 0
    for row in tqdm.tqdm(rows, desc=f'Copying {entry.instance_name}',
            disable=not progress):
        rid = _record_id(row[0], source)
        raw = row[1]
        what = f'{source.name}.{geom_col.name} for {pk.name}={rid}'
        local = geo.load_geometry(raw, what=what)
        srid = descriptor.local_srid or geo.geometry_srid(raw)
        if srid is None:
            raise MalformedInput(f'{what} has no reference frame; set local_srid')
        wgs84 = geo.reproject(local, srid, geo.WGS84_EPSG)
        if label_col is not None:
            label = row[2]
        else:
            label = descriptor.geom_label
        batch.append({
                'geom_index_id': entry.geom_index_id,
                'geom_record_id': rid,
                'geom_name': None if label is None else str(label),
                'geom_source_coding': f'{source.name}.{pk.name}',
                'geom_source_value': str(row[0]),
                'geom_wgs84': geo.dump_geometry(wgs84),
                'geom_local_epsg': srid,
                'geom_local_value': geo.dump_geometry(local),
        })
        if len(batch) >= _CHUNK:
            sess.execute(sa.insert(sch.GeomInstance), batch)
            count += len(batch)
            batch = []
    if batch:
        sess.execute(sa.insert(sch.GeomInstance), batch)
        count += len(batch)
    return count


def _copy_attributes(sess, descriptor, geom_entry, attr_entry, meta, source, *,
        progress=False):
    pk = discover_primary_key(source)
    value_col = table_column(source, descriptor.variable_id)
    known = set(sess.execute(sa.select(sch.GeomInstance.geom_record_id)
            .where(sch.GeomInstance.geom_index_id == geom_entry.geom_index_id)
            ).scalars())

    rows = sess.execute(sa.select(pk, value_col).order_by(pk)).all()
    batch = []
    count = 0
    for pk_value, raw in tqdm.tqdm(rows, desc=f'Copying {attr_entry.instance_name}',
            disable=not progress):
        rid = _record_id(pk_value, source)
        if rid not in known:
            # Inner join on the geometry rows: a value without a geometry
            # cannot be located.
            continue
        values = attribute_values(raw, meta['nodata'])
        if values is None:
            continue
        number, text = values
        batch.append({
                'attr_index_id': attr_entry.attr_index_id,
                'geom_index_id': geom_entry.geom_index_id,
                'geom_record_id': rid,
                'attr_concept_id': meta['attr_concept_id'],
                'attr_start_date': meta['start_date'],
                'attr_end_date': meta['end_date'],
                'value_as_number': number,
                'value_as_string': text,
                'value_as_concept_id': meta['value_as_concept_id'],
                'unit_concept_id': meta['unit_concept_id'],
                'unit_source_value': meta['unit_source_value'],
                'attr_source_value': descriptor.source or descriptor.variable_id,
                'value_source_value': str(raw),
        })
        if len(batch) >= _CHUNK:
            sess.execute(sa.insert(sch.AttrInstance), batch)
            count += len(batch)
            batch = []
    if batch:
        sess.execute(sa.insert(sch.AttrInstance), batch)
        count += len(batch)
    return count


def load_variable(sess, descriptor, *, report=None, progress=False):
    """Ensure the catalog entries and instance rows for one dataset variable
    exist. Returns :class:`InstanceRefs` naming the (possibly pre-existing)
    geometry and attribute tables.

    Args:
        descriptor: A :class:`VariableDescriptor` or a dict accepted by
                :meth:`VariableDescriptor.from_params`.
        report: Optional :class:`gaialink.ingest.status.IngestReport` from the
                collaborators that produced the source table. A report with a
                failed step aborts before anything is read or written.
        progress: Show tqdm progress bars while copying rows.

    Raises:
        NotFound: The source table does not exist.
        MalformedInput: No single-column primary key, missing columns, bad
                geometry, or no validity window.
        IntegrityViolation: A constraint failed while copying rows. Neither
                the rows nor their catalog entry are kept.
    """
    if not isinstance(descriptor, VariableDescriptor):
        descriptor = VariableDescriptor.from_params(descriptor)
    if report is not None:
        report.require_success()

    table_name = descriptor.table_name
    refs = InstanceRefs(geom=f'geom_{table_name}', attr=f'attr_{table_name}',
            geom_index_id=None, attr_index_id=None)

    with catalog_lock(sess, table_name):
        geom_entry = catalog.lookup_geom(sess, table_name)
        attr_entry = catalog.lookup_attr(sess, table_name, descriptor.variable_id)
        if geom_entry is not None and attr_entry is not None:
            refs.geom_index_id = geom_entry.geom_index_id
            refs.attr_index_id = attr_entry.attr_index_id
            return refs

        # Everything which can be checked is checked before the first write.
        source = reflect_table(sess, descriptor.source_table or descriptor.table_id,
                schema=descriptor.source_schema)
        discover_primary_key(source)
        table_column(source, descriptor.geometry_column)
        table_column(source, descriptor.variable_id)
        meta = _resolve_metadata(sess, descriptor)

        try:
            if geom_entry is None:
                with sess.begin_nested():
                    geom_entry, created = catalog.ensure_geom(sess, table_name,
                            geom_type=descriptor.geom_type,
                            description=descriptor.table_description)
                    if created:
                        refs.geom_created = True
                        refs.geom_rows = _copy_geometries(sess, descriptor,
                                geom_entry, source, progress=progress)
                        _log.info('Built %s with %d geometries', refs.geom,
                                refs.geom_rows)

            with sess.begin_nested():
                attr_entry, created = catalog.ensure_attr(sess, geom_entry,
                        descriptor.variable_id,
                        description=meta['description'],
                        attr_concept_id=meta['attr_concept_id'],
                        unit_concept_id=meta['unit_concept_id'],
                        unit_source_value=meta['unit_source_value'],
                        start_date=meta['start_date'],
                        end_date=meta['end_date'],
                        nodata=meta['nodata'],
                        source_value=descriptor.source)
                if created:
                    refs.attr_created = True
                    refs.attr_rows = _copy_attributes(sess, descriptor,
                            geom_entry, attr_entry, meta, source,
                            progress=progress)
                    _log.info('Built %s.%s with %d values', refs.attr,
                            descriptor.variable_id, refs.attr_rows)
        except sa.exc.IntegrityError as e:
            raise IntegrityViolation(
                    f'While building instances for {table_name}.'
                    f'{descriptor.variable_id}: {e.orig}') from e

    refs.geom_index_id = geom_entry.geom_index_id
    refs.attr_index_id = attr_entry.attr_index_id
    return refs
