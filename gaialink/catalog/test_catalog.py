from gaialink.errors import NotFound
from . import (attr_exists, ensure_attr, ensure_geom, geom_exists,
        linked_tables, loaded_variables, lookup_attr, lookup_geom,
        register_attr, register_geom, resolve_instance)
import gaialink.db.schema as sch

import datetime
import pytest
import sqlalchemy as sa

def _count(sess, cls):
    return sess.execute(sa.select(sa.func.count()).select_from(cls)).scalar()


def test_geom_registration_is_idempotent(sess):
    assert not geom_exists(sess, 'MA 2018 SVI')
    entry, created = ensure_geom(sess, 'MA 2018 SVI', geom_type='polygon')
    assert created
    assert entry.table_name == 'ma_2018_svi'
    assert entry.instance_name == 'geom_ma_2018_svi'

    again, created = ensure_geom(sess, 'ma_2018_svi')
    assert not created
    assert again.geom_index_id == entry.geom_index_id
    assert register_geom(sess, 'ma-2018-svi') == entry.geom_index_id
    assert geom_exists(sess, 'ma_2018_svi')
    assert _count(sess, sch.GeomIndex) == 1


def test_attr_registration_is_idempotent(sess):
    geom, _ = ensure_geom(sess, 'svi')
    attr, created = ensure_attr(sess, geom, 'EP_POV', nodata='-999',
            start_date=datetime.date(2018, 1, 1),
            end_date=datetime.date(2018, 12, 31))
    assert created
    assert attr.attr_no_value_as_number == -999.
    assert attr.attr_no_value_as_string == '-999'
    assert attr.instance_name == 'attr_svi'

    again, created = ensure_attr(sess, geom, 'EP_POV')
    assert not created
    assert again.attr_index_id == attr.attr_index_id
    assert register_attr(sess, geom, 'EP_POV') == attr.attr_index_id
    assert attr_exists(sess, 'svi', 'EP_POV')
    assert not attr_exists(sess, 'svi', 'EP_UNEMP')
    assert lookup_attr(sess, 'svi', 'EP_POV') is attr
    assert _count(sess, sch.AttrIndex) == 1


def test_lost_race_reuses_winner(sess, monkeypatch):
    """A registration colliding on the unique key falls back to the row
    which won."""
    import gaialink.catalog as catalog

    winner, _ = ensure_geom(sess, 'svi')
    calls = []
    real_lookup = catalog.lookup_geom
    def stale_lookup(s, table_id):
        # The first check misses, as if the winner had not committed yet
        calls.append(table_id)
        if len(calls) == 1:
            return None
        return real_lookup(s, table_id)
    monkeypatch.setattr(catalog, 'lookup_geom', stale_lookup)

    entry, created = ensure_geom(sess, 'svi')
    assert not created
    assert entry.geom_index_id == winner.geom_index_id
    assert _count(sess, sch.GeomIndex) == 1


def test_listing(sess):
    assert linked_tables(sess) == []
    b, _ = ensure_geom(sess, 'b_table')
    a, _ = ensure_geom(sess, 'a_table')
    ensure_attr(sess, a, 'Z')
    ensure_attr(sess, a, 'Y')
    assert linked_tables(sess) == ['a_table', 'b_table']
    assert loaded_variables(sess, 'a_table') == ['Y', 'Z']
    assert loaded_variables(sess, 'b_table') == []


def test_resolve_instance(sess):
    geom, _ = ensure_geom(sess, 'svi')
    ensure_attr(sess, geom, 'EP_POV')
    assert resolve_instance(sess, 'geom_svi') is geom
    assert [a.variable_name for a in resolve_instance(sess, 'attr_svi')] == ['EP_POV']
    for bad in ['geom_other', 'attr_other', 'svi', 'geom_']:
        with pytest.raises(NotFound):
            resolve_instance(sess, bad)
    assert lookup_geom(sess, 'other') is None
