"""Boundary with the ingestion collaborators.

Downloading, format conversion and JSON-LD parsing happen elsewhere; their
products reach gaialink as

* :class:`DataSource` / :class:`VariableSource` rows, written through
  :mod:`gaialink.ingest.register`;
* a source table per dataset (primary key, geometry column, one column per
  variable);
* a step-by-step :class:`gaialink.ingest.status.IngestReport`, which decides
  whether those products may be linked at all.

.. mermaid::

    graph LR;
    collaborators --> register
    collaborators --> status
    register --> template
    status --> template
    template --> exposure
"""
