"""Index catalogs: which datasets / variables are already linked, and under
what names.

`geom_index` has one row per dataset, `attr_index` one row per (dataset,
variable). A row's existence is the authoritative idempotence signal used by
:mod:`gaialink.template`. Rows are only ever added here; removing a linked
dataset is a manual operation.

Dataset identifiers are normalized with
:func:`gaialink.ingest.util.sanitize_identifier` before every lookup, so
``'MA 2018 SVI'`` and ``'ma_2018_svi'`` name the same dataset.
"""

from gaialink.config import get_config
from gaialink.errors import NotFound
from gaialink.ingest.util import sanitize_identifier
import gaialink.db.schema as sch

import logging
import sqlalchemy as sa

_log = logging.getLogger(__name__)

def lookup_geom(sess, table_id):
    """The :class:`GeomIndex` entry for `table_id`, or None."""
    return sess.execute(sa.select(sch.GeomIndex)
            .where(sch.GeomIndex.table_name == sanitize_identifier(table_id))
            ).scalar()


def lookup_attr(sess, table_id, variable_id):
    """The :class:`AttrIndex` entry for (`table_id`, `variable_id`), or
    None."""
    return sess.execute(sa.select(sch.AttrIndex)
            .where(sch.AttrIndex.table_name == sanitize_identifier(table_id))
            .where(sch.AttrIndex.variable_name == variable_id)
            ).scalar()


def geom_exists(sess, table_id):
    return sess.execute(sa.select(sa.select(sch.GeomIndex)
            .where(sch.GeomIndex.table_name == sanitize_identifier(table_id))
            .exists())).scalar()


def attr_exists(sess, table_id, variable_id):
    return sess.execute(sa.select(sa.select(sch.AttrIndex)
            .where(sch.AttrIndex.table_name == sanitize_identifier(table_id))
            .where(sch.AttrIndex.variable_name == variable_id)
            .exists())).scalar()


def _insert_if_absent(sess, lookup, make):
    """Atomic registration: returns ``(entry, created)``.

    The insert runs in a savepoint. If it collides with a concurrent
    registration of the same key, the savepoint is rolled back and the
    winner's entry is returned with ``created=False``.
    """
    entry = lookup()
    if entry is not None:
        return entry, False
    try:
        with sess.begin_nested():
            entry = make()
            sess.add(entry)
    except sa.exc.IntegrityError:
        entry = lookup()
        if entry is None:
            raise
        return entry, False
    return entry, True


def ensure_geom(sess, table_id, *, geom_type=None, description=None):
    """Register the geometry table for `table_id` unless it already is.
    Returns ``(GeomIndex, created)``.
    """
    table_name = sanitize_identifier(table_id)
    def make():
        return sch.GeomIndex(
                table_name=table_name,
                geom_type_source_value=geom_type,
                table_desc=description,
                database_schema=get_config()['storage']['database_schema'])
    entry, created = _insert_if_absent(sess,
            lambda: lookup_geom(sess, table_name), make)
    if created:
        _log.info('Registered geometry table %s (id %s)', entry.instance_name,
                entry.geom_index_id)
    return entry, created


def ensure_attr(sess, geom_entry, variable_id, *, description=None,
        attr_concept_id=None, unit_concept_id=None, unit_source_value=None,
        start_date=None, end_date=None, nodata=None, source_value=None):
    """Register `variable_id` as an attribute of the dataset behind
    `geom_entry` unless it already is. Returns ``(AttrIndex, created)``.
    """
    def make():
        no_value_number = None
        if nodata is not None:
            try:
                no_value_number = float(nodata)
            except (TypeError, ValueError):
                no_value_number = None
        return sch.AttrIndex(
                geom_index_id=geom_entry.geom_index_id,
                table_name=geom_entry.table_name,
                variable_name=variable_id,
                variable_desc=description,
                attr_concept_id=attr_concept_id,
                unit_concept_id=unit_concept_id,
                unit_source_value=unit_source_value,
                attr_start_date=start_date,
                attr_end_date=end_date,
                attr_no_value_as_number=no_value_number,
                attr_no_value_as_string=None if nodata is None else str(nodata),
                attr_source_value=source_value,
                database_schema=geom_entry.database_schema)
    entry, created = _insert_if_absent(sess,
            lambda: lookup_attr(sess, geom_entry.table_name, variable_id),
            make)
    if created:
        _log.info('Registered attribute %s.%s (id %s)', entry.instance_name,
                variable_id, entry.attr_index_id)
    return entry, created


def register_geom(sess, table_id, **kwargs):
    """Like :func:`ensure_geom`, returning only the stable numeric id."""
    return ensure_geom(sess, table_id, **kwargs)[0].geom_index_id


def register_attr(sess, geom_entry, variable_id, **kwargs):
    """Like :func:`ensure_attr`, returning only the stable numeric id."""
    return ensure_attr(sess, geom_entry, variable_id, **kwargs)[0].attr_index_id


def loaded_variables(sess, table_id):
    """Names of the variables already linked for `table_id`, sorted."""
    return list(sess.execute(sa.select(sch.AttrIndex.variable_name)
            .where(sch.AttrIndex.table_name == sanitize_identifier(table_id))
            .order_by(sch.AttrIndex.variable_name)).scalars())


def linked_tables(sess):
    """Dataset table names with a registered geometry table, sorted."""
    return list(sess.execute(sa.select(sch.GeomIndex.table_name)
            .order_by(sch.GeomIndex.table_name)).scalars())


def resolve_instance(sess, ref):
    """Map a logical instance name (``geom_<table>`` or ``attr_<table>``) to
    its catalog entry: a :class:`GeomIndex`, or the list of
    :class:`AttrIndex` entries sharing that attribute table.
    """
    kind, _, table_id = str(ref).partition('_')
    if kind == 'geom' and table_id:
        entry = lookup_geom(sess, table_id)
        if entry is None:
            raise NotFound(f'No geometry table registered as {ref}')
        return entry
    if kind == 'attr' and table_id:
        entries = list(sess.execute(sa.select(sch.AttrIndex)
                .where(sch.AttrIndex.table_name == sanitize_identifier(table_id))
                .order_by(sch.AttrIndex.variable_name)).scalars())
        if not entries:
            raise NotFound(f'No attribute table registered as {ref}')
        return entries
    raise NotFound(f'Not an instance table name: {ref}')
