"""Join plans: where a variable's observations and their geometries come from.

* :class:`OnePoint` -- the geometry is a column of the table holding the
  variable.
* :class:`TwoPoint` -- the geometry lives in a separate table, matched by key
  columns.
* :class:`Indexed` -- the observations were linked by
  :func:`gaialink.template.load_variable` and are read from the instance
  storage.

Each plan is turned into a SQLAlchemy select by :func:`observation_query`;
table and column names only ever reach SQL as reflected schema objects.
"""

from gaialink.errors import MalformedInput, NotFound
from gaialink.template import reflect_table, table_column
import gaialink.catalog as catalog
import gaialink.db.schema as sch

import dataclasses
import sqlalchemy as sa
from typing import Optional, Union

DEFAULT_GEOMETRY_COLUMN = 'wgs_geom'

@dataclasses.dataclass(frozen=True)
class OnePoint:
    table: str
    geometry_column: str = DEFAULT_GEOMETRY_COLUMN
    schema: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class TwoPoint:
    table: str
    geometry_table: str
    merge_left: str
    merge_right: str
    geometry_column: str = DEFAULT_GEOMETRY_COLUMN
    schema: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Indexed:
    table_id: str


JoinPlan = Union[OnePoint, TwoPoint, Indexed]


def plan_for(primary_table, secondary_geometry_table=None, merge_columns=None,
        *, geometry_column=DEFAULT_GEOMETRY_COLUMN, schema=None):
    """Choose the plan from the arguments' shape: no geometry table means
    :class:`OnePoint`, a geometry table means :class:`TwoPoint`.

    Args:
        merge_columns: For two-point plans, ``(variable_side, geometry_side)``
                key columns, or a single name used on both sides.
    """
    if not primary_table:
        raise MalformedInput('A primary table is required')
    if secondary_geometry_table is None:
        if merge_columns:
            raise MalformedInput('merge_columns given without a geometry table')
        return OnePoint(primary_table, geometry_column=geometry_column,
                schema=schema)

    if not merge_columns:
        raise MalformedInput(
                f'Joining {primary_table} to {secondary_geometry_table} '
                f'requires merge_columns')
    if isinstance(merge_columns, str):
        left = right = merge_columns
    else:
        merge_columns = list(merge_columns)
        if len(merge_columns) == 1:
            left = right = merge_columns[0]
        elif len(merge_columns) == 2:
            left, right = merge_columns
        else:
            raise MalformedInput(
                    f'merge_columns must name one or two columns: {merge_columns}')
    return TwoPoint(primary_table, secondary_geometry_table, left, right,
            geometry_column=geometry_column, schema=schema)


def observation_query(sess, plan, variable_name):
    """Select producing ``(value, geom)`` rows, one per observation.

    Raises:
        NotFound: A referenced table or catalog entry does not exist.
        MalformedInput: A referenced column does not exist.
    """
    if isinstance(plan, OnePoint):
        t = reflect_table(sess, plan.table, schema=plan.schema)
        return sa.select(
                table_column(t, variable_name).label('value'),
                table_column(t, plan.geometry_column).label('geom'))

    if isinstance(plan, TwoPoint):
        a = reflect_table(sess, plan.table, schema=plan.schema)
        b = reflect_table(sess, plan.geometry_table, schema=plan.schema)
        if a.name == b.name and a.schema == b.schema:
            b = b.alias('geometry_side')
        return (
                sa.select(
                    table_column(a, variable_name).label('value'),
                    table_column(b, plan.geometry_column).label('geom'))
                .select_from(a)
                .join(b, table_column(a, plan.merge_left)
                    == table_column(b, plan.merge_right)))

    if isinstance(plan, Indexed):
        entry = catalog.lookup_attr(sess, plan.table_id, variable_name)
        if entry is None:
            raise NotFound(f'Variable {variable_name} is not linked for '
                    f'{plan.table_id}')
        A, G = sch.AttrInstance, sch.GeomInstance
        return (
                sa.select(A.value_as_number.label('value'),
                    G.geom_wgs84.label('geom'))
                .select_from(A)
                .join(G, (A.geom_index_id == G.geom_index_id)
                    & (A.geom_record_id == G.geom_record_id))
                .where(A.attr_index_id == entry.attr_index_id)
                .order_by(A.attr_record_id))

    raise TypeError(f'Not a join plan: {plan!r}')


def describe(plan):
    """One-line human-readable summary, for logs and CLI output."""
    if isinstance(plan, OnePoint):
        return f'one-point {plan.table}.{plan.geometry_column}'
    if isinstance(plan, TwoPoint):
        return (f'two-point {plan.table}.{plan.merge_left} = '
                f'{plan.geometry_table}.{plan.merge_right}')
    return f'indexed {plan.table_id}'
