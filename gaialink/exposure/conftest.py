"""A small air-quality world: three observation shapes, five locations,
five history intervals and three registered variables.

Boxes A and B overlap; location 2 lies in both. Location 4 is only visited
by a non-person entity and location 5 lies in no box.
"""

from gaialink.ingest.register import register_data_source, register_variable
from gaialink.location import load_location_history, load_locations
import gaialink.geo as geo

import pytest
import sqlalchemy as sa
from shapely.geometry import box

BOXES = {
        1: box(-71.10, 42.30, -71.00, 42.40),
        2: box(-71.05, 42.35, -70.95, 42.45),
        3: box(-72.00, 41.00, -71.90, 41.10),
}

LOCATIONS = [
        {'location_id': 1, 'longitude': -71.08, 'latitude': 42.32},
        {'location_id': 2, 'longitude': -71.02, 'latitude': 42.37},
        {'location_id': 3, 'longitude': -70.97, 'latitude': 42.43},
        {'location_id': 4, 'longitude': -71.95, 'latitude': 41.05},
        {'location_id': 5, 'longitude': 0., 'latitude': 0.},
]

HISTORY = [
        {'location_id': 1, 'domain_id': 1147314, 'entity_id': 100,
            'start_date': '2020-01-01', 'end_date': '2020-03-31'},
        {'location_id': 2, 'domain_id': 1147314, 'entity_id': 100,
            'start_date': '2020-04-01', 'end_date': '2020-12-31'},
        # Ends the day PM25 starts
        {'location_id': 3, 'domain_id': 1147314, 'entity_id': 101,
            'start_date': '2019-01-01', 'end_date': '2020-01-01'},
        {'location_id': 4, 'domain_id': 8, 'entity_id': 500,
            'start_date': '2020-05-01', 'end_date': '2020-05-31'},
        {'location_id': 5, 'domain_id': 1147314, 'entity_id': 102,
            'start_date': '2020-01-01', 'end_date': '2020-12-31'},
]

OBSERVATIONS = [
        {'fid': 1, 'geoid': 'A', 'PM25': 10., 'NO2': 1.},
        {'fid': 2, 'geoid': 'B', 'PM25': 20., 'NO2': None},
        {'fid': 3, 'geoid': 'C', 'PM25': 30., 'NO2': 3.},
]

PM25_CONCEPT = 3000001

@pytest.fixture
def world(sess, make_table):
    load_locations(sess, LOCATIONS)
    load_location_history(sess, HISTORY)

    ds = register_data_source(sess, {'dataset_id': 'aq',
            'dataset_name': 'Air quality'})
    register_variable(sess, ds, {'variable_name': 'PM25',
            'attr_concept_id': PM25_CONCEPT, 'unit_concept_id': 8751,
            'start_date': '2020-01-01', 'end_date': '2020-06-30'})
    register_variable(sess, ds, {'variable_name': 'NO2',
            'attr_concept_id': 3000002, 'start_date': '2019-01-01',
            'attr_start_date': '2020-06-01', 'end_date': '2020-12-31'})
    register_variable(sess, ds, {'variable_name': 'O3',
            'start_date': '2021-01-01', 'end_date': '2021-12-31'})

    make_table('aq_obs', [
            sa.Column('fid', sa.Integer, primary_key=True),
            sa.Column('geoid', sa.String),
            sa.Column('PM25', sa.Float),
            sa.Column('NO2', sa.Float),
            sa.Column('wgs_geom', sa.LargeBinary),
            ], [dict(o, wgs_geom=geo.dump_geometry(BOXES[o['fid']]))
                for o in OBSERVATIONS])
    return ds
