"""Shared pytest fixtures: an in-memory SQLite database with every gaialink
table, and helpers for building source tables like the ingestion pipeline
does.
"""

from gaialink.db.connection import enable_sqlite_savepoints
import gaialink.db.schema as sch

import pytest
import sqlalchemy as sa
import sqlalchemy.orm
from sqlalchemy.pool import StaticPool

@pytest.fixture
def engine():
    engine = sa.create_engine('sqlite://', future=True, poolclass=StaticPool,
            connect_args={'check_same_thread': False})
    enable_sqlite_savepoints(engine)
    sch.Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sess(engine):
    sessionmaker = sa.orm.sessionmaker(engine)
    with sessionmaker.begin() as s:
        yield s


@pytest.fixture
def make_table(sess):
    """Create a caller-owned table and fill it with `rows`.

    ``make_table('svi', [sa.Column('fid', sa.Integer, primary_key=True), ...],
    [{'fid': 1, ...}])``
    """
    def make(name, columns, rows=()):
        t = sa.Table(name, sa.MetaData(), *columns)
        t.create(sess.connection())
        rows = list(rows)
        if rows:
            sess.execute(t.insert(), rows)
        return t
    return make
