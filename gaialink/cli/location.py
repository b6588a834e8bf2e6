"""Load locations and location history, and check them.
"""

from pathlib import Path
import typer

app = typer.Typer()

def _print_checks(results):
    failed = False
    for r in results:
        print(f'{r.status:<4}  {r.check_name}: {r.details}')
        failed = failed or r.status == 'FAIL'
    if failed:
        raise typer.Exit(1)


@app.command()
def load(locations: Path = typer.Argument(..., exists=True, dir_okay=False),
        history: Path = typer.Argument(None, exists=True, dir_okay=False)):
    """Load LOCATIONS (CSV with location_id, latitude, longitude and address
    columns) and, optionally, HISTORY (CSV with location_id, domain_id,
    entity_id, start_date, end_date).
    """
    from gaialink.db.connection import get_session
    from gaialink.location import load_locations, load_location_history
    import pandas as pd

    with get_session() as sess:
        df = pd.read_csv(locations, dtype=str, keep_default_na=False)
        n = load_locations(sess, df.to_dict('records'))
        print(f'Loaded {n} of {len(df)} locations')
        if history is not None:
            df = pd.read_csv(history, dtype=str, keep_default_na=False)
            n = load_location_history(sess, df.to_dict('records'))
            print(f'Loaded {n} location history records')


@app.command()
def missing():
    """List stored locations which have an address but no geometry."""
    from gaialink.db.connection import get_session
    from gaialink.location import locations_missing_geometry

    with get_session() as sess:
        for location_id, address in locations_missing_geometry(sess):
            print(f'{location_id}\t{address}')


@app.command()
def validate():
    """Run the location checks. Exits non-zero if any check FAILs."""
    from gaialink.db.connection import get_session
    from gaialink.location import validate_location_data

    with get_session() as sess:
        results = validate_location_data(sess)
    _print_checks(results)


@app.command()
def stats():
    from gaialink.db.connection import get_session
    from gaialink.location import location_statistics

    with get_session() as sess:
        for k, v in location_statistics(sess).items():
            print(f'{k}: {v}')
