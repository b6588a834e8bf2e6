"""gaialink's core schema.

Three groups of tables:

* Metadata registered by ingestion collaborators: :class:`DataSource`,
  :class:`VariableSource`.
* The index catalogs and the generic instance storage they partition:
  :class:`GeomIndex` / :class:`GeomInstance` and :class:`AttrIndex` /
  :class:`AttrInstance`. A "table" such as ``geom_ma_2018_svi_tract`` is a
  partition key in the instance storage, registered in the catalogs, never a
  schema object of its own.
* Person/location data and results: :class:`Location`,
  :class:`LocationHistory`, the composed :class:`LocationMerge` view and
  :class:`ExternalExposure`.

Geometry columns hold WKB; use :mod:`gaialink.geo` to read and write them.
"""

import arrow
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import registry
import sqlalchemy_json as sj
import uuid

mapper_registry = registry()
Base = mapper_registry.generate_base()

DbJson = lambda: sj.mutable_json_type(
        dbtype=sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'),
        nested=True)
DbGeometry = lambda: sa.LargeBinary()
DbCreatedAt = lambda: sa.Column(sa.DateTime, server_default=sa.func.now())

class AsDictMixin:
    def asdict(self):
        """Column values of this row, keyed by attribute name."""
        return {c.key: getattr(self, c.key)
                for c in sa.inspect(self).mapper.column_attrs}


class DataSource(Base, AsDictMixin):
    '''Metadata about one external dataset, as parsed from its JSON-LD
    description. Created once per dataset and updated on re-ingestion; the
    linkage code never deletes these.
    '''
    __tablename__ = 'data_source'
    def __repr__(self):
        return f'<DataSource {self.dataset_id}: {self.dataset_name}>'

    data_source_uuid = sa.Column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    dataset_id = sa.Column(sa.String, nullable=False, unique=True)
    dataset_name = sa.Column(sa.String, nullable=False)
    dataset_version = sa.Column(sa.String)
    description = sa.Column(sa.String)
    creator = sa.Column(DbJson())
    provider = sa.Column(DbJson())
    license = sa.Column(sa.String)
    spatial_coverage = sa.Column(sa.String)
    temporal_coverage = sa.Column(sa.String)
    date_published = sa.Column(sa.Date)
    date_modified = sa.Column(sa.Date)
    keywords = sa.Column(DbJson())
    url = sa.Column(sa.String)
    measurement_technique = sa.Column(DbJson())
    # Raw semantic metadata blob, kept verbatim
    additional_properties = sa.Column(DbJson())
    geom_type = sa.Column(sa.String)
    srid = sa.Column(sa.Integer, default=4326)
    etl_metadata = sa.Column(DbJson())
    created_at = DbCreatedAt()
    updated_at = sa.Column(sa.DateTime, server_default=sa.func.now(),
            onupdate=sa.func.now())

    variables = sa.orm.relationship('VariableSource',
            back_populates='data_source', lazy='dynamic',
            order_by='VariableSource.variable_name')


class VariableSource(Base, AsDictMixin):
    '''A named measured property of a :class:`DataSource`. Unique per
    (data source, variable name).

    `attr_start_date` / `attr_end_date` override the general validity window
    (`start_date` / `end_date`) when set.
    '''
    __tablename__ = 'variable_source'
    def __repr__(self):
        return f'<VariableSource {self.variable_source_id}: {self.variable_name}>'

    variable_source_id = sa.Column(sa.Integer, primary_key=True)
    data_source_uuid = sa.Column(sa.Uuid,
            sa.ForeignKey('data_source.data_source_uuid'),
            nullable=False,
            index=True)
    data_source = sa.orm.relationship('DataSource', back_populates='variables')

    variable_name = sa.Column(sa.String, nullable=False, index=True)
    variable_description = sa.Column(sa.String)
    property_id = sa.Column(sa.String)
    data_type = sa.Column(sa.String)
    unit_code = sa.Column(sa.String)
    unit_text = sa.Column(sa.String)
    min_value = sa.Column(sa.Float)
    max_value = sa.Column(sa.Float)
    nodata_value = sa.Column(sa.String)
    start_date = sa.Column(sa.Date)
    end_date = sa.Column(sa.Date)
    attr_concept_id = sa.Column(sa.Integer)
    value_as_concept_id = sa.Column(sa.Integer)
    unit_concept_id = sa.Column(sa.Integer)
    attr_start_date = sa.Column(sa.Date)
    attr_end_date = sa.Column(sa.Date)
    created_at = DbCreatedAt()

    __table_args__ = (
            sa.Index('idx_variable_source_pkey', 'data_source_uuid',
                'variable_name', unique=True),
    )

    @property
    def effective_start_date(self):
        if self.attr_start_date is not None:
            return self.attr_start_date
        return self.start_date

    @property
    def effective_end_date(self):
        if self.attr_end_date is not None:
            return self.attr_end_date
        return self.end_date


class GeomIndex(Base, AsDictMixin):
    '''Catalog of geometry tables: one row per linked dataset. The existence of
    a row is the authoritative signal that the dataset's geometry instance
    rows have been built.
    '''
    __tablename__ = 'geom_index'
    def __repr__(self):
        return f'<GeomIndex {self.geom_index_id}: {self.table_name}>'

    geom_index_id = sa.Column(sa.Integer, primary_key=True)
    geom_type_concept_id = sa.Column(sa.Integer)
    geom_type_source_value = sa.Column(sa.String)
    table_name = sa.Column(sa.String, nullable=False, unique=True)
    table_desc = sa.Column(sa.String)
    database_schema = sa.Column(sa.String)
    created_at = DbCreatedAt()

    attrs = sa.orm.relationship('AttrIndex', back_populates='geom_index',
            lazy='dynamic', order_by='AttrIndex.variable_name')

    @property
    def instance_name(self):
        return f'geom_{self.table_name}'


class AttrIndex(Base, AsDictMixin):
    '''Catalog of attribute tables: one row per (dataset, variable), holding
    the variable's concept / unit / date metadata as resolved at registration
    time.
    '''
    __tablename__ = 'attr_index'
    def __repr__(self):
        return (f'<AttrIndex {self.attr_index_id}: {self.table_name}.'
                f'{self.variable_name}>')

    attr_index_id = sa.Column(sa.Integer, primary_key=True)
    geom_index_id = sa.Column(sa.Integer,
            sa.ForeignKey('geom_index.geom_index_id'),
            nullable=False,
            index=True)
    geom_index = sa.orm.relationship('GeomIndex', back_populates='attrs')

    table_name = sa.Column(sa.String, nullable=False)
    variable_name = sa.Column(sa.String, nullable=False)
    variable_desc = sa.Column(sa.String)
    attr_concept_id = sa.Column(sa.Integer)
    unit_concept_id = sa.Column(sa.Integer)
    unit_source_value = sa.Column(sa.String)
    attr_start_date = sa.Column(sa.Date)
    attr_end_date = sa.Column(sa.Date)
    attr_no_value_as_number = sa.Column(sa.Float)
    attr_no_value_as_string = sa.Column(sa.String)
    attr_source_value = sa.Column(sa.String)
    database_schema = sa.Column(sa.String)
    created_at = DbCreatedAt()

    __table_args__ = (
            sa.Index('idx_attr_index_pkey', 'table_name', 'variable_name',
                unique=True),
    )

    @property
    def instance_name(self):
        return f'attr_{self.table_name}'


class GeomInstance(Base, AsDictMixin):
    '''One geometry feature of a dataset. Partitioned by `geom_index_id`;
    `geom_record_id` is the source table's primary key value.

    `geom_wgs84` is the geometry used for spatial predicates. The original
    local-projection geometry is kept in `geom_local_value`.
    '''
    __tablename__ = 'geom_instance'
    def __repr__(self):
        return (f'<GeomInstance {self.geom_index_id}/{self.geom_record_id}: '
                f'{self.geom_name}>')

    geom_index_id = sa.Column(sa.Integer,
            sa.ForeignKey('geom_index.geom_index_id'),
            primary_key=True)
    geom_record_id = sa.Column(sa.Integer, primary_key=True,
            autoincrement=False)
    geom_name = sa.Column(sa.String)
    geom_source_coding = sa.Column(sa.String)
    geom_source_value = sa.Column(sa.String)
    geom_wgs84 = sa.Column(DbGeometry(), nullable=False)
    geom_local_epsg = sa.Column(sa.Integer)
    geom_local_value = sa.Column(DbGeometry())
    properties = sa.Column(DbJson())


class AttrInstance(Base, AsDictMixin):
    '''One observed value, tied to one :class:`GeomInstance` of the same
    dataset and to one :class:`AttrIndex` entry. `attr_record_id` is a
    monotonically increasing sequence.
    '''
    __tablename__ = 'attr_instance'
    def __repr__(self):
        return (f'<AttrInstance {self.attr_record_id}: {self.attr_index_id} @ '
                f'{self.geom_record_id} = {self.value_as_string}>')

    attr_record_id = sa.Column(sa.Integer, primary_key=True)
    attr_index_id = sa.Column(sa.Integer,
            sa.ForeignKey('attr_index.attr_index_id'),
            nullable=False,
            index=True)
    geom_index_id = sa.Column(sa.Integer, nullable=False)
    geom_record_id = sa.Column(sa.Integer, nullable=False)
    attr_concept_id = sa.Column(sa.Integer)
    attr_start_date = sa.Column(sa.Date, nullable=False)
    attr_end_date = sa.Column(sa.Date, nullable=False)
    value_as_number = sa.Column(sa.Float)
    value_as_string = sa.Column(sa.String)
    value_as_concept_id = sa.Column(sa.Integer)
    unit_concept_id = sa.Column(sa.Integer)
    unit_source_value = sa.Column(sa.String)
    qualifier_concept_id = sa.Column(sa.Integer)
    qualifier_source_value = sa.Column(sa.String)
    attr_source_concept_id = sa.Column(sa.Integer)
    attr_source_value = sa.Column(sa.String, nullable=False)
    value_source_value = sa.Column(sa.String, nullable=False)

    geom = sa.orm.relationship('GeomInstance')

    __table_args__ = (
            sa.ForeignKeyConstraint(['geom_index_id', 'geom_record_id'],
                ['geom_instance.geom_index_id', 'geom_instance.geom_record_id']),
            sa.Index('idx_attr_instance_geom', 'geom_index_id', 'geom_record_id'),
    )


class Location(Base, AsDictMixin):
    '''A geocoded address. `geom` is a WGS84 point built from
    `longitude` / `latitude`.
    '''
    __tablename__ = 'location'
    def __repr__(self):
        return f'<Location {self.location_id}: {self.latitude}, {self.longitude}>'

    location_id = sa.Column(sa.Integer, primary_key=True, autoincrement=False)
    address_1 = sa.Column(sa.String)
    address_2 = sa.Column(sa.String)
    city = sa.Column(sa.String)
    state = sa.Column(sa.String)
    zip = sa.Column(sa.String)
    county = sa.Column(sa.String)
    location_source_value = sa.Column(sa.String)
    country_concept_id = sa.Column(sa.Integer)
    country_source_value = sa.Column(sa.String)
    latitude = sa.Column(sa.Float)
    longitude = sa.Column(sa.Float)
    geom = sa.Column(DbGeometry())
    created_at = DbCreatedAt()

    history = sa.orm.relationship('LocationHistory', back_populates='location',
            lazy='dynamic')


class LocationHistory(Base, AsDictMixin):
    '''An entity's presence at a :class:`Location` during the closed window
    ``[start_date, end_date]``. `domain_id` says what kind of entity
    `entity_id` refers to.
    '''
    __tablename__ = 'location_history'
    def __repr__(self):
        start = arrow.get(self.start_date).format('YYYY-MM-DD')
        end = arrow.get(self.end_date).format('YYYY-MM-DD')
        return (f'<LocationHistory {self.location_history_id}: entity '
                f'{self.entity_id} @ {self.location_id} [{start}, {end}]>')

    location_history_id = sa.Column(sa.Integer, primary_key=True)
    location_id = sa.Column(sa.Integer,
            sa.ForeignKey('location.location_id'),
            index=True)
    location = sa.orm.relationship('Location', back_populates='history')
    relationship_type_concept_id = sa.Column(sa.Integer)
    domain_id = sa.Column(sa.Integer)
    entity_id = sa.Column(sa.Integer)
    start_date = sa.Column(sa.Date, nullable=False)
    end_date = sa.Column(sa.Date, nullable=False)
    created_at = DbCreatedAt()

    __table_args__ = (
            sa.CheckConstraint('end_date >= start_date',
                name='ck_location_history_window'),
            sa.Index('idx_location_history_window', 'start_date', 'end_date'),
    )


class ExternalExposure(Base, AsDictMixin):
    '''Output of the exposure join: one row per (location history interval,
    variable observation) pair overlapping in both time and space.

    Append-only; rows are removed in bulk (see :meth:`cls_clear`) and
    recomputed, never updated.
    '''
    __tablename__ = 'external_exposure'
    def __repr__(self):
        return (f'<ExternalExposure {self.external_exposure_id}: '
                f'{self.exposure_source_value} person {self.person_id} @ '
                f'{self.location_id}>')

    external_exposure_id = sa.Column(sa.Integer, primary_key=True)
    location_id = sa.Column(sa.Integer, index=True)
    person_id = sa.Column(sa.Integer, index=True)
    exposure_concept_id = sa.Column(sa.Integer)
    exposure_start_date = sa.Column(sa.Date)
    exposure_start_datetime = sa.Column(sa.DateTime)
    exposure_end_date = sa.Column(sa.Date)
    exposure_end_datetime = sa.Column(sa.DateTime)
    exposure_type_concept_id = sa.Column(sa.Integer)
    exposure_relationship_concept_id = sa.Column(sa.Integer)
    exposure_source_concept_id = sa.Column(sa.Integer)
    # Name of the variable this row came from; scopes clearing
    exposure_source_value = sa.Column(sa.String, index=True)
    exposure_relationship_source_value = sa.Column(sa.String(50))
    dose_unit_source_value = sa.Column(sa.String(50))
    quantity = sa.Column(sa.Integer)
    modifier_source_value = sa.Column(sa.String(50))
    operator_concept_id = sa.Column(sa.Integer)
    value_as_number = sa.Column(sa.Float)
    value_as_concept_id = sa.Column(sa.Integer)
    unit_concept_id = sa.Column(sa.Integer)
    created_at = DbCreatedAt()

    __table_args__ = (
            sa.Index('idx_external_exposure_dates', 'exposure_start_date',
                'exposure_end_date'),
    )

    @classmethod
    def cls_clear(cls, variable_name, session):
        """Delete the exposure rows produced for `variable_name`. Returns the
        number deleted.
        """
        return session.execute(sa.delete(cls)
                .where(cls.exposure_source_value == variable_name)).rowcount


# Read-only composition of history intervals with their location. Mapped
# against a subquery, so it is re-evaluated by every query that uses it.
_location_merge = (
        sa.select(
            LocationHistory.location_history_id,
            LocationHistory.location_id,
            LocationHistory.relationship_type_concept_id,
            LocationHistory.domain_id,
            LocationHistory.entity_id,
            LocationHistory.start_date,
            LocationHistory.end_date,
            Location.geom,
            Location.latitude,
            Location.longitude,
            Location.address_1,
            Location.city,
            Location.state,
            Location.zip,
        )
        .select_from(LocationHistory)
        .join(Location, LocationHistory.location_id == Location.location_id)
        ).subquery('location_merge')

class LocationMerge(Base):
    '''Each :class:`LocationHistory` row with its :class:`Location`'s geometry
    and address fields attached.
    '''
    __table__ = _location_merge
    __mapper_args__ = {
            'primary_key': [_location_merge.c.location_history_id],
    }
    def __repr__(self):
        return (f'<LocationMerge {self.location_history_id}: entity '
                f'{self.entity_id} @ {self.location_id}>')
