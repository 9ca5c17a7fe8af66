# tasca/write_path.py
"""Remote writes that survive a schema lagging behind the app's field set.

A write rejected because the remote table lacks a column is retried once
with the optional columns named in the error removed. The decision rests
on the wording of the remote error message, which is fragile: a rename on
the server side silently turns recoverable drift into a hard failure.
"""
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from .errors import BackendError, ConnectionError, SchemaDriftError
from .rows import OPTIONAL_COLUMNS

logger = logging.getLogger(__name__)

# PostgREST "column not in schema cache" and Postgres "undefined_column"
SCHEMA_ERROR_CODES = ('PGRST204', '42703')


def _error_code(err: BackendError) -> str:
    details = err.details if isinstance(err.details, dict) else {}
    return str(details.get('code') or '')


def is_unknown_column_error(err: BackendError) -> bool:
    if isinstance(err, ConnectionError):
        return False
    code = _error_code(err)
    if code:
        return code in SCHEMA_ERROR_CODES
    # Uncoded errors only have their wording to go on
    return 'column' in (err.message or '').lower()


def drop_named_columns(payload: Dict[str, Any], message: str) -> Tuple[Dict[str, Any], List[str]]:
    """Remove every optional column group whose name appears in `message`."""
    reduced = dict(payload)
    dropped: List[str] = []
    text = message or ''
    for trigger, columns in OPTIONAL_COLUMNS:
        if not re.search(r'\b' + re.escape(trigger) + r'\b', text):
            continue
        for col in columns:
            if col in reduced:
                reduced.pop(col)
                dropped.append(col)
    return reduced, dropped


async def write_with_schema_fallback(
    write: Callable[[Dict[str, Any]], Awaitable[Any]],
    payload: Dict[str, Any],
) -> Any:
    """Run `write(payload)`, retrying exactly once on recoverable schema drift."""
    try:
        return await write(payload)
    except BackendError as e:
        if not is_unknown_column_error(e):
            raise
        reduced, dropped = drop_named_columns(payload, e.message)
        if not dropped:
            if _error_code(e) not in SCHEMA_ERROR_CODES:
                raise
            raise SchemaDriftError(e.message, status_code=e.status_code, details=e.details) from e
        logger.warning("Remote schema is missing %s; retrying write without them", ', '.join(dropped))
        try:
            return await write(reduced)
        except BackendError as retry_err:
            if is_unknown_column_error(retry_err):
                raise SchemaDriftError(
                    retry_err.message,
                    dropped_columns=dropped,
                    status_code=retry_err.status_code,
                    details=retry_err.details,
                ) from retry_err
            raise
