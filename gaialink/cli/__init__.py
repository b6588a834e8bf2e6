"""Main command line interface for gaialink.

This tool consists of many sub-commands; see below modules (or commandline
`--help`) for more information.
"""

import logging
import typer

app = typer.Typer()

@app.callback()
def main(verbose: bool = typer.Option(False, '--verbose', '-v',
        help='Log progress at INFO level.')):
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING,
            format='%(asctime)s %(levelname)s %(name)s: %(message)s')


from .catalog import app as catalog_app
app.add_typer(catalog_app, name='catalog')

from .db import app as db_app
app.add_typer(db_app, name='db')

from .exposure import app as exposure_app
app.add_typer(exposure_app, name='exposure')

from .link import app as link_app
app.add_typer(link_app, name='link')

from .location import app as location_app
app.add_typer(location_app, name='location')

@app.command()
def shell():
    """Opens a shell with DB access.

    `sess()` is a function that returns a usable SQLAlchemy session. This is a
    function s.t. errors in the transaction won't invalidate future usages of
    sess, which can be annoying when testing in a REPL.
    """
    from gaialink.db.connection import get_session
    import gaialink.db.schema as sch
    import sqlalchemy as sa

    sess = lambda: get_session().__enter__()

    print(f'Use `sess()` for a session / schema module as `sch` / sqlalchemy as `sa`')
    print(f'...Try something like `sess().execute(sa.select(sch.GeomIndex).limit(1)).scalar()`')

    import IPython; IPython.embed()
