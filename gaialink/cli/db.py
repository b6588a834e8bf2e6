
import typer

app = typer.Typer()

@app.command()
def init():
    """Create every gaialink table which does not exist yet. Existing tables
    and their rows are left alone.
    """
    from gaialink.db.connection import get_engine
    import gaialink.db.schema as sch

    engine = get_engine()
    sch.Base.metadata.create_all(engine)
    print(f'Tables ready in {engine.url.render_as_string()}')


@app.command()
def reset():
    """Deletes entire database and recreates all tables, empty.
    """
    from gaialink.db.connection import get_engine
    import gaialink.db.schema as sch
    from sqlalchemy_utils import database_exists, drop_database, create_database

    engine = get_engine()
    if database_exists(engine.url):
        print(f'Considering reset of: {engine.url.render_as_string()}')
        sure = input('Are you sure? This will purge everything. (y/N) ')
        if sure.lower() != 'y':
            print('Aborting.')
            return

        print('Resetting.')
        drop_database(engine.url)
    else:
        print('Creating.')

    create_database(engine.url)
    sch.Base.metadata.create_all(engine)


