"""Register dataset metadata and link dataset variables into the instance
storage.
"""

from pathlib import Path
import typer

app = typer.Typer()

def _read_json(path):
    import json
    with open(path) as f:
        return json.load(f)


@app.command()
def register(path: Path = typer.Argument(..., exists=True, dir_okay=False)):
    """Register the data source described by the JSON file at PATH.

    The object holds the data source fields; an optional `variables` list
    holds one object per variable.
    """
    from gaialink.db.connection import get_session
    from gaialink.ingest.register import register_data_source, register_variable

    params = _read_json(path)
    variables = params.pop('variables', [])
    with get_session() as sess:
        ds = register_data_source(sess, params)
        for v in variables:
            register_variable(sess, ds, v)
        print(f'Registered {ds.dataset_id} ({ds.data_source_uuid}) with '
                f'{len(variables)} variables')


@app.command()
def load(path: Path = typer.Argument(..., exists=True, dir_okay=False),
        report: Path = typer.Option(None, exists=True, dir_okay=False,
            help='JSON list of step status records from the ingestion '
                'pipeline; a failed step aborts linking.'),
        progress: bool = True):
    """Link one variable described by the JSON file at PATH.

    Both the geometry and attribute tables are only built if they are not yet
    in the catalogs, so re-running is a no-op.
    """
    from gaialink.db.connection import get_session
    from gaialink.ingest.status import IngestReport
    from gaialink.template import load_variable

    params = _read_json(path)
    ingest_report = None
    if report is not None:
        ingest_report = IngestReport.from_rows(_read_json(report))
    with get_session() as sess:
        refs = load_variable(sess, params, report=ingest_report,
                progress=progress)
    for name, created, rows in [(refs.geom, refs.geom_created, refs.geom_rows),
            (refs.attr, refs.attr_created, refs.attr_rows)]:
        print(f'{name}: ' + (f'built, {rows} rows' if created else 'already present'))
