"""gaialink root module. Links external spatial-temporal datasets to the
location histories of people, producing exposure records.

Submodules
==========

.. autosummary::
    :toctree: _autosummary

    catalog
    cli
    db
    exposure
    geo
    ingest
    location
    template

Architecture
============

.. mermaid::

    graph LR;
    ingest --> template
    template --> catalog
    catalog --> db
    location --> db
    template --> exposure
    location --> exposure
    exposure --> db
"""
