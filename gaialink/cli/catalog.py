"""Inspect the index catalogs: which datasets and variables are linked.
"""

import typer

app = typer.Typer()

@app.command()
def tables():
    """List every dataset with a registered geometry table."""
    from gaialink.db.connection import get_session
    import gaialink.catalog as catalog

    with get_session() as sess:
        for name in catalog.linked_tables(sess):
            entry = catalog.lookup_geom(sess, name)
            print(f'{entry.instance_name}\t{entry.geom_type_source_value or ""}'
                    f'\t{entry.table_desc or ""}')


@app.command()
def variables(table_id: str):
    """List the variables already linked for TABLE_ID."""
    from gaialink.db.connection import get_session
    from gaialink.errors import NotFound
    import gaialink.catalog as catalog

    with get_session() as sess:
        if not catalog.geom_exists(sess, table_id):
            raise NotFound(f'No geometry table registered for {table_id}')
        for name in catalog.loaded_variables(sess, table_id):
            print(name)
