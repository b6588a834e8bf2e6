
from gaialink.config import get_config

import sqlalchemy as sa
import sqlalchemy.orm
import threading

_lock = threading.Lock()
_engine = None
_sessionmaker = None
def get_engine(*, kwargs=None):
    """Returns the sqlalchemy.Engine instance.

    Args:
        kwargs: Passed to `sqlalchemy.create_engine`. Only for development tools.
    """
    global _engine, _sessionmaker

    cfg = get_config()

    if kwargs is not None:
        assert _engine is None, 'Cannot specify kwargs after engine created. For dev only'
    else:
        kwargs = {}

    with _lock:
        if _engine is None:
            url = cfg['db']['url']
            if url is None:
                u = cfg['db']['user']
                p = cfg['db']['password']
                h = cfg['db']['host']
                po = cfg['db']['port']
                db = cfg['db']['db']
                url = f'postgresql://{u}:{p}@{h}:{po}/{db}'
            _engine = sqlalchemy.create_engine(url, future=True, **kwargs)
            if _engine.dialect.name == 'sqlite':
                enable_sqlite_savepoints(_engine)

            _sessionmaker = sqlalchemy.orm.sessionmaker(_engine)
    return _engine


def set_engine(engine):
    """Points `get_session` at an existing engine, e.g. an in-memory SQLite
    engine for tests. Passing ``None`` forgets the current engine.
    """
    global _engine, _sessionmaker
    with _lock:
        _engine = engine
        _sessionmaker = None
        if engine is not None:
            _sessionmaker = sqlalchemy.orm.sessionmaker(engine)


def get_session():
    """Returns a sqlalchemy.orm.Session object, to be used in a context manager.

    Autocommit is on, meaning that the session will be committed if no error is
    raised.
    """
    if _engine is None:
        # Ensure engine exists
        get_engine()
    return _sessionmaker.begin()


def enable_sqlite_savepoints(engine):
    """pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT. Take over transaction control so `Session.begin_nested()` works.

    See https://docs.sqlalchemy.org/en/20/dialects/sqlite.html#serializable-isolation-savepoints-transactional-ddl
    """
    @sa.event.listens_for(engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        # Also enforce the FK constraints declared in `gaialink.db.schema`
        dbapi_connection.execute('PRAGMA foreign_keys=ON')

    @sa.event.listens_for(engine, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN')
