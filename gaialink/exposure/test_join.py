from gaialink.errors import JoinCancelled, MalformedInput, NotFound
from gaialink.ingest.util import date_field_resolve
from gaialink.location import load_location_history, load_locations
from gaialink.template import load_variable
from . import (Indexed, clear_exposure_data,
        intervals_overlap, join_exposure, resolve_variable,
        spatial_join_all_variables, spatial_join_simple)
from .conftest import BOXES, HISTORY, LOCATIONS, OBSERVATIONS, PM25_CONCEPT
import gaialink.db.schema as sch
import gaialink.exposure as exposure
import gaialink.geo as geo

import datetime
import itertools
import pyproj
import pytest
import sqlalchemy as sa
import types

_d = datetime.date

def _records(sess, variable_name=None):
    E = sch.ExternalExposure
    q = sa.select(E).order_by(E.location_id, E.value_as_number)
    if variable_name is not None:
        q = q.where(E.exposure_source_value == variable_name)
    return sess.execute(q).scalars().all()


def _brute_force(start, end, column):
    """Every (history, observation) pair overlapping in time with the
    variable window and in space, by checking all of them."""
    start, end = date_field_resolve(start), date_field_resolve(end)
    locs = {l['location_id']: geo.point(l['longitude'], l['latitude'])
            for l in LOCATIONS}
    pairs = []
    for h, o in itertools.product(HISTORY, OBSERVATIONS):
        h_start = date_field_resolve(h['start_date'])
        h_end = date_field_resolve(h['end_date'])
        if not (start <= h_end and h_start <= end):
            continue
        if not locs[h['location_id']].within(BOXES[o['fid']]):
            continue
        pairs.append((h['location_id'], o[column]))
    return sorted(pairs, key=lambda p: (p[0], p[1] is not None, p[1]))


def test_intervals_overlap():
    assert intervals_overlap(_d(2020, 1, 1), _d(2020, 6, 30),
            _d(2020, 6, 1), _d(2020, 12, 31))
    assert not intervals_overlap(_d(2020, 1, 1), _d(2020, 2, 1),
            _d(2020, 3, 1), _d(2020, 4, 1))
    # Touching endpoints
    assert intervals_overlap(_d(2020, 1, 1), _d(2020, 2, 1),
            _d(2020, 2, 1), _d(2020, 3, 1))
    assert intervals_overlap(_d(2020, 2, 1), _d(2020, 3, 1),
            _d(2020, 1, 1), _d(2020, 2, 1))
    # Containment
    assert intervals_overlap(_d(2020, 1, 1), _d(2020, 12, 31),
            _d(2020, 3, 1), _d(2020, 4, 1))


def test_join_matches_brute_force(sess, world):
    n = join_exposure(sess, 'PM25', 'aq_obs')
    got = sorted([(r.location_id, r.value_as_number)
            for r in _records(sess, 'PM25')])
    expected = _brute_force('2020-01-01', '2020-06-30', 'PM25')
    assert n == len(got) == len(expected) == 5
    assert got == expected
    # No pair twice
    assert len(set(got)) == len(got)

    n = join_exposure(sess, 'NO2', 'aq_obs')
    got = [(r.location_id, r.value_as_number) for r in _records(sess, 'NO2')]
    assert sorted(got, key=lambda p: (p[0], p[1] is not None, p[1])) == (
            _brute_force('2020-06-01', '2020-12-31', 'NO2'))
    assert n == 2


def test_join_record_fields(sess, world):
    spatial_join_simple(sess, 'PM25', 'aq_obs')
    by_loc = {}
    for r in _records(sess, 'PM25'):
        by_loc.setdefault(r.location_id, []).append(r)

    r = by_loc[1][0]
    assert r.person_id == 100
    assert r.exposure_concept_id == PM25_CONCEPT
    assert (r.exposure_start_date, r.exposure_end_date) == (
            _d(2020, 1, 1), _d(2020, 3, 31))
    assert r.exposure_start_datetime == datetime.datetime(2020, 1, 1)
    assert r.exposure_end_datetime == datetime.datetime(2020, 3, 31)
    assert r.exposure_source_value == 'PM25'
    assert r.exposure_source_concept_id is None
    assert r.exposure_type_concept_id == 0
    assert r.unit_concept_id == 8751
    assert r.value_as_number == 10.

    # Window clipped to the variable's end
    assert {(x.exposure_start_date, x.exposure_end_date) for x in by_loc[2]} == {
            (_d(2020, 4, 1), _d(2020, 6, 30))}
    # Touching intervals give a one-day window
    assert (by_loc[3][0].exposure_start_date, by_loc[3][0].exposure_end_date) == (
            _d(2020, 1, 1), _d(2020, 1, 1))
    # Not a person
    assert by_loc[4][0].person_id == 0
    assert 5 not in by_loc


def test_attribute_window_override(sess, world):
    meta = resolve_variable(sess, 'NO2')
    assert (meta.start_date, meta.end_date) == (_d(2020, 6, 1), _d(2020, 12, 31))


def test_two_point(sess, world, make_table):
    make_table('aq_values', [
            sa.Column('fid', sa.Integer, primary_key=True),
            sa.Column('geoid', sa.String),
            sa.Column('PM25', sa.Float),
            ], [{k: o[k] for k in ['fid', 'geoid', 'PM25']}
                for o in OBSERVATIONS])
    make_table('aq_shapes', [
            sa.Column('geoid', sa.String, primary_key=True),
            sa.Column('wgs_geom', sa.LargeBinary),
            ], [{'geoid': o['geoid'],
                'wgs_geom': geo.dump_geometry(BOXES[o['fid']])}
                for o in OBSERVATIONS])

    n = join_exposure(sess, 'PM25', 'aq_values', 'aq_shapes', ['geoid', 'geoid'])
    assert n == 5
    got = sorted((r.location_id, r.value_as_number) for r in _records(sess))
    assert got == _brute_force('2020-01-01', '2020-06-30', 'PM25')
    assert {r.exposure_source_concept_id for r in _records(sess)} == {PM25_CONCEPT}


def test_indexed_plan(sess, world, make_table):
    make_table('aq_src', [
            sa.Column('fid', sa.Integer, primary_key=True),
            sa.Column('geom', sa.LargeBinary),
            sa.Column('PM25', sa.Float),
            ], [{'fid': o['fid'], 'PM25': o['PM25'],
                'geom': geo.dump_geometry(BOXES[o['fid']])}
                for o in OBSERVATIONS])
    load_variable(sess, {'table_id': 'aq', 'variable_id': 'PM25',
            'source_table': 'aq_src', 'local_srid': 4326})

    n = join_exposure(sess, 'PM25', plan=Indexed('aq'))
    assert n == 5
    got = sorted((r.location_id, r.value_as_number) for r in _records(sess))
    assert got == _brute_force('2020-01-01', '2020-06-30', 'PM25')

    with pytest.raises(NotFound):
        join_exposure(sess, 'NO2', plan=Indexed('aq'))


def test_predicates(sess, world):
    # Points never contain boxes
    assert join_exposure(sess, 'PM25', 'aq_obs', spatial_predicate='contains') == 0
    assert join_exposure(sess, 'PM25', 'aq_obs',
            spatial_predicate='ST_Intersects') == 5
    with pytest.raises(MalformedInput):
        join_exposure(sess, 'PM25', 'aq_obs', spatial_predicate='near')


def test_geodetic_buffer(sess, world, make_table):
    square = BOXES[1]
    geod = pyproj.Geod(ellps='WGS84')
    lon, lat, _ = geod.fwd(square.bounds[2], 42.35, 90, 50)
    load_locations(sess, [{'location_id': 50, 'longitude': lon,
            'latitude': lat}])
    load_location_history(sess, [{'location_id': 50, 'domain_id': 1147314,
            'entity_id': 900, 'start_date': '2020-02-01',
            'end_date': '2020-02-29'}])
    make_table('one_box', [
            sa.Column('fid', sa.Integer, primary_key=True),
            sa.Column('PM25', sa.Float),
            sa.Column('wgs_geom', sa.LargeBinary),
            ], [{'fid': 1, 'PM25': 1., 'wgs_geom': geo.dump_geometry(square)}])

    def exposed(buffer_meters):
        clear_exposure_data(sess, 'PM25')
        join_exposure(sess, 'PM25', 'one_box', buffer_meters=buffer_meters)
        return 900 in {r.person_id for r in _records(sess)}

    assert not exposed(0)
    assert exposed(100)
    assert not exposed(40)

    with pytest.raises(MalformedInput):
        join_exposure(sess, 'PM25', 'one_box', buffer_meters=-1)


def test_unknown_variable(sess, world):
    with pytest.raises(NotFound):
        join_exposure(sess, 'SO2', 'aq_obs')
    with pytest.raises(NotFound):
        join_exposure(sess, 'PM25', 'no_such_table')
    assert _records(sess) == []


def test_non_numeric_values(sess, world, make_table):
    make_table('aq_text', [
            sa.Column('fid', sa.Integer, primary_key=True),
            sa.Column('PM25', sa.String),
            sa.Column('wgs_geom', sa.LargeBinary),
            ], [{'fid': 1, 'PM25': 'high',
                'wgs_geom': geo.dump_geometry(BOXES[1])}])
    with pytest.raises(MalformedInput):
        join_exposure(sess, 'PM25', 'aq_text')
    assert _records(sess) == []


def test_timeout(sess, world, monkeypatch):
    clock = itertools.chain([0.], itertools.repeat(100.))
    monkeypatch.setattr(exposure, 'time',
            types.SimpleNamespace(monotonic=lambda: next(clock)))
    with pytest.raises(JoinCancelled):
        join_exposure(sess, 'PM25', 'aq_obs', timeout=5)
    assert _records(sess) == []


def test_clear_scoping(sess, world):
    join_exposure(sess, 'PM25', 'aq_obs')
    join_exposure(sess, 'NO2', 'aq_obs')
    assert len(_records(sess)) == 7

    assert clear_exposure_data(sess, 'NO2') == 2
    assert _records(sess, 'NO2') == []
    assert len(_records(sess, 'PM25')) == 5

    assert clear_exposure_data(sess, 'NO2') == 0
    assert clear_exposure_data(sess) == 5
    assert _records(sess) == []


def test_rejoin_after_clear_is_stable(sess, world):
    join_exposure(sess, 'PM25', 'aq_obs')
    first = sorted((r.location_id, r.person_id, r.value_as_number)
            for r in _records(sess))
    clear_exposure_data(sess, 'PM25')
    join_exposure(sess, 'PM25', 'aq_obs')
    assert sorted((r.location_id, r.person_id, r.value_as_number)
            for r in _records(sess)) == first


def test_batch_isolates_failures(sess, world):
    """O3 is registered but has no column in the observation table."""
    results = spatial_join_all_variables(sess, 'aq', 'aq_obs')
    assert [(r.variable_name, r.records_created) for r in results] == [
            ('NO2', 2), ('O3', 0), ('PM25', 5)]
    assert [r.ok for r in results] == [True, False, True]
    assert 'MalformedInput' in results[1].error
    assert len(_records(sess)) == 7


def test_batch_lookup_error(sess, world, monkeypatch):
    real_join = exposure.join_exposure
    def join(sess, name, *args, **kwargs):
        if name == 'O3':
            raise NotFound(f'Unknown variable: {name}')
        return real_join(sess, name, *args, **kwargs)
    monkeypatch.setattr(exposure, 'join_exposure', join)

    results = spatial_join_all_variables(sess, world.data_source_uuid, 'aq_obs')
    assert len(results) == 3
    assert [(r.variable_name, r.records_created) for r in results] == [
            ('NO2', 2), ('O3', 0), ('PM25', 5)]
    assert 'Unknown variable: O3' in results[1].error


def test_batch_unknown_data_source(sess, world):
    with pytest.raises(NotFound):
        spatial_join_all_variables(sess, 'not-a-dataset', 'aq_obs')
