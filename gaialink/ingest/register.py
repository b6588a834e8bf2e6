"""Write DataSource / Variable descriptors produced by the metadata parsers.

Both operations are insert-or-update on their natural keys, so re-ingesting a
dataset refreshes its metadata without creating duplicates.
"""

from gaialink.errors import MalformedInput
from gaialink.ingest.util import optional_date
import gaialink.db.schema as sch

import logging
import sqlalchemy as sa

_log = logging.getLogger(__name__)

_DATA_SOURCE_FIELDS = ['dataset_name', 'dataset_version', 'description',
        'creator', 'provider', 'license', 'spatial_coverage',
        'temporal_coverage', 'keywords', 'url', 'measurement_technique',
        'additional_properties', 'geom_type', 'srid', 'etl_metadata']
_DATA_SOURCE_DATES = ['date_published', 'date_modified']

_VARIABLE_FIELDS = ['variable_description', 'property_id', 'data_type',
        'unit_code', 'unit_text', 'min_value', 'max_value', 'nodata_value',
        'attr_concept_id', 'value_as_concept_id', 'unit_concept_id']
_VARIABLE_DATES = ['start_date', 'end_date', 'attr_start_date', 'attr_end_date']


def register_data_source(sess, descriptor):
    """Insert or update the :class:`DataSource` whose `dataset_id` is
    ``descriptor['dataset_id']``. Keys not in the descriptor keep their
    stored values.
    """
    dataset_id = descriptor.get('dataset_id')
    if not dataset_id:
        raise MalformedInput(f'Data source descriptor has no dataset_id: {descriptor}')

    ds = sess.execute(sa.select(sch.DataSource)
            .where(sch.DataSource.dataset_id == dataset_id)).scalar()
    if ds is None:
        if not descriptor.get('dataset_name'):
            raise MalformedInput(f'New data source {dataset_id} has no dataset_name')
        ds = sch.DataSource(dataset_id=dataset_id)
        sess.add(ds)
        _log.info('Registering data source %s', dataset_id)
    else:
        _log.info('Updating data source %s', dataset_id)

    for k in _DATA_SOURCE_FIELDS:
        if k in descriptor:
            setattr(ds, k, descriptor[k])
    for k in _DATA_SOURCE_DATES:
        if k in descriptor:
            setattr(ds, k, optional_date(descriptor[k]))
    sess.flush()
    return ds


def register_variable(sess, data_source, descriptor):
    """Insert or update the :class:`VariableSource` named
    ``descriptor['variable_name']`` within `data_source`.
    """
    name = descriptor.get('variable_name')
    if not name:
        raise MalformedInput(f'Variable descriptor has no variable_name: {descriptor}')

    var = sess.execute(sa.select(sch.VariableSource)
            .where(sch.VariableSource.data_source_uuid == data_source.data_source_uuid)
            .where(sch.VariableSource.variable_name == name)).scalar()
    if var is None:
        var = sch.VariableSource(data_source=data_source, variable_name=name)
        sess.add(var)

    for k in _VARIABLE_FIELDS:
        if k in descriptor:
            setattr(var, k, descriptor[k])
    for k in _VARIABLE_DATES:
        if k in descriptor:
            setattr(var, k, optional_date(descriptor[k]))

    start, end = var.effective_start_date, var.effective_end_date
    if start is not None and end is not None and end < start:
        raise MalformedInput(
                f'Variable {name}: end date {end} precedes start date {start}')
    sess.flush()
    return var
