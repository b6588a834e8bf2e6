from gaialink.errors import MalformedInput

import arrow
import datetime
import numbers
import re

def date_field_resolve(*dates):
    """Try to resolve each value in `dates`, in order. Return the first one that
    resolves correctly, as a `datetime.date`.

    ``None`` and empty strings are skipped. Integers are read as ``YYYYMMDD``
    digits, never as Unix timestamps; floats and booleans never resolve.
    Raises :class:`MalformedInput` if nothing resolves; a bad date is never
    turned into NULL.
    """
    for fmt_field in dates:
        if fmt_field is None or fmt_field == '':
            continue
        if isinstance(fmt_field, datetime.datetime):
            return fmt_field.date()
        if isinstance(fmt_field, datetime.date):
            return fmt_field
        if isinstance(fmt_field, bool):
            continue
        if isinstance(fmt_field, numbers.Integral):
            fmt_field = str(int(fmt_field))
        elif isinstance(fmt_field, numbers.Real):
            continue
        for fmt in [None, ['YYYY-MM-DD', 'YYYY/MM/DD', 'MM/DD/YYYY', 'YYYYMMDD']]:
            args = []
            if fmt is not None:
                args.append(fmt)
            try:
                return arrow.get(fmt_field, *args).date()
            except (TypeError, ValueError, arrow.parser.ParserError):
                continue
    raise MalformedInput(f'Bad dates: {dates}')


def optional_date(value):
    """`date_field_resolve` for a single value which may legitimately be
    absent."""
    if value is None or value == '':
        return None
    return date_field_resolve(value)


_non_alnum = re.compile(r'[^a-z0-9]+')

def sanitize_identifier(text):
    """Derive a table / column name fragment from a dataset or variable
    identifier: lower-cased, each run of non-alphanumeric characters replaced
    by a single ``_``, no leading or trailing ``_``.

    >>> sanitize_identifier('MA 2018 SVI (Tract)')
    'ma_2018_svi_tract'
    """
    if text is None:
        raise MalformedInput('Identifier is missing')
    name = _non_alnum.sub('_', str(text).lower()).strip('_')
    if not name:
        raise MalformedInput(f'Identifier {text!r} has no alphanumeric characters')
    return name
