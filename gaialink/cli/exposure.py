"""Compute, summarize and clear exposure records.
"""

import typer
from typing import List

app = typer.Typer()

def _plan_args(secondary_geometry_table, merge_columns, indexed):
    from gaialink.exposure import Indexed

    if indexed is not None:
        return dict(plan=Indexed(indexed))
    return dict(secondary_geometry_table=secondary_geometry_table,
            merge_columns=merge_columns or None)


@app.command()
def join(variable_name: str,
        primary_table: str = typer.Argument(None),
        secondary_geometry_table: str = typer.Option(None, '--geometry-table'),
        merge_columns: List[str] = typer.Option(None, '--merge-column',
            help='Key column; give twice for (variable side, geometry side).'),
        indexed: str = typer.Option(None,
            help='Read observations linked for this dataset instead of a table.'),
        predicate: str = typer.Option(None, help='Defaults to "within".'),
        buffer_meters: float = 0.,
        timeout: float = typer.Option(None, help='Seconds.'),
        clear: bool = typer.Option(False,
            help="Delete the variable's existing records first.")):
    """Link VARIABLE_NAME's observations in PRIMARY_TABLE to location
    history.
    """
    from gaialink.db.connection import get_session
    from gaialink.exposure import clear_exposure_data, join_exposure

    with get_session() as sess:
        if clear:
            n = clear_exposure_data(sess, variable_name)
            print(f'Cleared {n} records for {variable_name}')
        n = join_exposure(sess, variable_name, primary_table,
                spatial_predicate=predicate, buffer_meters=buffer_meters,
                timeout=timeout, progress=True,
                **_plan_args(secondary_geometry_table, merge_columns, indexed))
    print(f'Created {n} exposure records for {variable_name}')


@app.command()
def join_all(data_source: str,
        primary_table: str = typer.Argument(None),
        secondary_geometry_table: str = typer.Option(None, '--geometry-table'),
        merge_columns: List[str] = typer.Option(None, '--merge-column'),
        indexed: str = typer.Option(None),
        predicate: str = typer.Option(None),
        buffer_meters: float = 0.,
        timeout: float = typer.Option(None, help='Seconds, per variable.')):
    """Join every variable of DATA_SOURCE (dataset id or uuid). Failures are
    reported per variable; the exit code is non-zero if any failed.
    """
    from gaialink.db.connection import get_session
    from gaialink.exposure import spatial_join_all_variables

    plan_args = _plan_args(secondary_geometry_table, merge_columns, indexed)
    with get_session() as sess:
        results = spatial_join_all_variables(sess, data_source, primary_table,
                spatial_predicate=predicate, buffer_meters=buffer_meters,
                timeout=timeout, **plan_args)
    for r in results:
        print(f'{r.variable_name}: {r.records_created}'
                + ('' if r.ok else f'  FAILED {r.error}'))
    if not all(r.ok for r in results):
        raise typer.Exit(1)


@app.command()
def stats():
    from gaialink.db.connection import get_session
    from gaialink.exposure import exposure_statistics

    with get_session() as sess:
        for k, v in exposure_statistics(sess).items():
            print(f'{k}: {v}')


@app.command()
def clear(variable_name: str = typer.Argument(None),
        yes: bool = typer.Option(False, '--yes', '-y')):
    """Delete exposure records of VARIABLE_NAME, or all of them."""
    from gaialink.db.connection import get_session
    from gaialink.exposure import clear_exposure_data

    if variable_name is None and not yes:
        sure = input('Delete ALL exposure records? (y/N) ')
        if sure.lower() != 'y':
            print('Aborting.')
            return
    with get_session() as sess:
        n = clear_exposure_data(sess, variable_name)
    print(f'Deleted {n} records')


@app.command()
def validate():
    """Run the exposure checks. Exits non-zero if any check FAILs."""
    from gaialink.cli.location import _print_checks
    from gaialink.db.connection import get_session
    from gaialink.exposure import validate_exposure_data

    with get_session() as sess:
        results = validate_exposure_data(sess)
    _print_checks(results)
