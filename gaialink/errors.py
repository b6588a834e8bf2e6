"""Errors raised by gaialink operations.

Single-operation calls (instantiation, one join) propagate these to the caller.
Batch calls catch them per item and report them instead; see
:func:`gaialink.exposure.spatial_join_all_variables`.
"""


class GaiaLinkError(Exception):
    """Base class for every error raised deliberately by gaialink."""


class NotFound(GaiaLinkError, LookupError):
    """An unknown variable, dataset, catalog entry or source table was
    referenced. Raised before any state is changed.
    """


class MalformedInput(GaiaLinkError, ValueError):
    """Input that cannot be interpreted: an unparsable date, a source table
    without a single-column primary key, an invalid geometry, a non-numeric
    value, an unknown spatial predicate.
    """


class IntegrityViolation(GaiaLinkError):
    """A constraint failed while building instance rows. The enclosing
    savepoint has already been rolled back, so no catalog entry references
    the partially built rows.
    """


class JoinCancelled(GaiaLinkError):
    """An exposure join ran past its deadline. Nothing was written."""


class IngestionRejected(GaiaLinkError):
    """An ingestion collaborator reported a failed step; its output must not
    be linked.
    """
