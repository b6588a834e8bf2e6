from gaialink.location import CheckResult
from . import (exposure_statistics, join_exposure, validate_exposure_data)
import gaialink.db.schema as sch

import datetime

def test_statistics_empty(sess):
    assert exposure_statistics(sess) == {
            'Total Exposure Records': 0,
            'Unique Persons Exposed': 0,
            'Unique Locations': 0,
            'Unique Exposure Variables': 0,
            'Date Range (days)': None,
    }


def test_statistics(sess, world):
    join_exposure(sess, 'PM25', 'aq_obs')
    join_exposure(sess, 'NO2', 'aq_obs')
    stats = exposure_statistics(sess)
    assert stats['Total Exposure Records'] == 7
    # Entity 500 is not a person
    assert stats['Unique Persons Exposed'] == 2
    assert stats['Unique Locations'] == 4
    assert stats['Unique Exposure Variables'] == 2
    assert stats['Date Range (days)'] == (
            datetime.date(2020, 12, 31) - datetime.date(2020, 1, 1)).days


def test_validate(sess, world):
    assert all(r.status == 'PASS' for r in validate_exposure_data(sess))

    join_exposure(sess, 'PM25', 'aq_obs')
    sess.add(sch.ExternalExposure(location_id=999, person_id=100,
            exposure_start_date=datetime.date(2020, 2, 1),
            exposure_end_date=datetime.date(2020, 1, 1),
            exposure_source_value='manual'))
    sess.flush()
    results = {r.check_name: r for r in validate_exposure_data(sess)}
    assert results['Invalid Exposure Windows'] == CheckResult(
            'Invalid Exposure Windows', 'FAIL',
            '1 records where end_date < start_date')
    assert results['Unassigned Persons'] == CheckResult('Unassigned Persons',
            'WARN', '1 records with unassigned person_id')
    assert results['Orphaned Locations'].status == 'WARN'
    assert results['Orphaned Locations'].details == '1 records with invalid location_id'
