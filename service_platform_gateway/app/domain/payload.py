"""
Unwrapping of the upstream platform's procedure envelope.

Procedures that serialize their result with the SQL-side JSON feature come
back as ``[[{"JSON_F52E2B61-...": "<json text>"}]]``, and nested relations
inside that text are frequently JSON-stringified again, sometimes several
layers deep. Everything here works on plain JSON values (dicts, lists,
scalars); a concrete schema is only applied after unwrapping.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import MalformedUpstreamPayload

# Column name prefix SQL Server uses for FOR JSON output.
FOR_JSON_COLUMN_PREFIX = "JSON_F52E2B61"

_JSON_TEXT_STARTS = ("{", "[", '"')


def first_result_set(envelope: Any) -> Optional[List[Any]]:
    """Return the first result set, or None when the envelope is empty."""
    if not isinstance(envelope, list) or not envelope:
        return None
    first = envelope[0]
    if isinstance(first, list):
        return first or None
    # Some procedures return a single flat result set.
    return envelope


def first_row(envelope: Any) -> Optional[Dict[str, Any]]:
    result_set = first_result_set(envelope)
    if not result_set:
        return None
    row = result_set[0]
    return row if isinstance(row, dict) else None


def try_parse_json(text: str) -> Tuple[bool, Any]:
    """Parse ``text`` when it looks like JSON container or string text.

    Bare scalars such as ``"123"`` or ``"true"`` are deliberately not
    treated as JSON so identifiers and codes keep their string type.
    """
    stripped = text.strip()
    if not stripped or not stripped.startswith(_JSON_TEXT_STARTS):
        return False, None
    try:
        return True, json.loads(stripped)
    except ValueError:
        return False, None


def materialize(value: Any) -> Any:
    """Replace every JSON-encoded string inside ``value`` with its parsed form.

    Only newly produced values are revisited, and each successful parse
    consumes at least the enclosing quote or bracket characters, so the
    walk always terminates.

    Only text starting with `{`, `[` or `"` is considered, so strings such
    as "123", "true" or "null" stay strings.
    """
    if isinstance(value, str):
        parsed_ok, parsed = try_parse_json(value)
        if parsed_ok:
            return materialize(parsed)
        return value
    if isinstance(value, dict):
        return {key: materialize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [materialize(item) for item in value]
    return value


def locate_payload_column(row: Dict[str, Any], preferred: Optional[str] = None) -> Optional[str]:
    """Find the column holding the JSON payload in a result row.

    Resolution order: the caller's preferred name, a FOR JSON column, then
    the first column whose string value parses as JSON. A single-column row
    always counts as the payload column.
    """
    if preferred and preferred in row:
        return preferred

    for column in row:
        if column.startswith(FOR_JSON_COLUMN_PREFIX):
            return column

    for column, value in row.items():
        if isinstance(value, str) and try_parse_json(value)[0]:
            return column

    if len(row) == 1:
        return next(iter(row))
    return None


def _collect_payload_text(result_set: List[Any], column: str) -> str:
    """Join FOR JSON output that the server split across several rows."""
    chunks = []
    for row in result_set:
        if not isinstance(row, dict) or list(row.keys()) != [column]:
            break
        value = row[column]
        if not isinstance(value, str):
            break
        chunks.append(value)
    return "".join(chunks)


def unwrap_envelope(envelope: Any, procedure: str, payload_column: Optional[str] = None) -> Any:
    """Turn a raw procedure envelope into one fully materialized value.

    Returns None when the envelope carries no result set or no rows.
    Raises MalformedUpstreamPayload when the payload column cannot be found
    or does not hold valid JSON.
    """
    result_set = first_result_set(envelope)
    row = first_row(envelope)
    if result_set is None or row is None:
        return None

    column = locate_payload_column(row, payload_column)
    if column is None:
        raise MalformedUpstreamPayload(procedure, message="No payload column in procedure result")

    value = row[column]
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return materialize(value)
    if not isinstance(value, str):
        raise MalformedUpstreamPayload(procedure, column, message="Payload column does not hold JSON text")

    text = value
    if column.startswith(FOR_JSON_COLUMN_PREFIX):
        text = _collect_payload_text(result_set, column)

    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise MalformedUpstreamPayload(
            procedure, column, message=f"Payload column is not valid JSON: {exc}"
        ) from exc

    return materialize(payload)
