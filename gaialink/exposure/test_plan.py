from gaialink.errors import MalformedInput, NotFound
from .plan import Indexed, OnePoint, TwoPoint, describe, observation_query, plan_for

import pytest

def test_plan_for_one_point():
    assert plan_for('aq_obs') == OnePoint('aq_obs', 'wgs_geom')
    assert plan_for('aq_obs', geometry_column='geom').geometry_column == 'geom'


def test_plan_for_two_point():
    assert plan_for('aq_values', 'aq_shapes', ['geoid', 'gid']) == TwoPoint(
            'aq_values', 'aq_shapes', 'geoid', 'gid')
    assert plan_for('aq_values', 'aq_shapes', 'geoid') == TwoPoint(
            'aq_values', 'aq_shapes', 'geoid', 'geoid')
    assert plan_for('aq_values', 'aq_shapes', ('geoid',)).merge_right == 'geoid'


def test_plan_for_bad_arguments():
    with pytest.raises(MalformedInput):
        plan_for(None)
    with pytest.raises(MalformedInput):
        plan_for('aq_values', 'aq_shapes')
    with pytest.raises(MalformedInput):
        plan_for('aq_values', None, ['geoid'])
    with pytest.raises(MalformedInput):
        plan_for('aq_values', 'aq_shapes', ['a', 'b', 'c'])


def test_describe():
    assert describe(OnePoint('t')) == 'one-point t.wgs_geom'
    assert describe(TwoPoint('t', 'g', 'k', 'j')) == 'two-point t.k = g.j'
    assert describe(Indexed('svi')) == 'indexed svi'


def test_query_is_structured(sess, world):
    """Names reach SQL only as reflected, quoted identifiers."""
    q = observation_query(sess, plan_for('aq_obs'), 'PM25')
    assert [c.name for c in q.selected_columns] == ['value', 'geom']
    rows = sess.execute(q).all()
    assert sorted(r.value for r in rows) == [10., 20., 30.]

    with pytest.raises(MalformedInput):
        observation_query(sess, plan_for('aq_obs'), 'PM25; DROP TABLE location')
    with pytest.raises(NotFound):
        observation_query(sess, plan_for('aq_obs"; --'), 'PM25')
    with pytest.raises(NotFound):
        observation_query(sess, Indexed('aq'), 'PM25')
    with pytest.raises(TypeError):
        observation_query(sess, 'aq_obs', 'PM25')


def test_two_point_same_table(sess, world):
    """A table joined to itself still yields one row per key."""
    q = observation_query(sess, TwoPoint('aq_obs', 'aq_obs', 'fid', 'fid'),
            'NO2')
    assert len(sess.execute(q).all()) == 3
