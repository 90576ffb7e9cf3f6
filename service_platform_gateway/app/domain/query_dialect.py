"""
Translation of generic query descriptors into the upstream platform's
REST query-string dialect.

All `$`-prefixed parameter building lives here so the dialect can be
tested, and swapped, without touching callers.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

QueryParams = List[Tuple[str, str]]


@dataclass(frozen=True)
class QueryDescriptor:
    """Read query against one upstream table.

    ``select`` may use dotted navigation into related tables, for example
    ``Contact_ID_Table.Display_Name``. ``filter`` is passed through verbatim
    in the upstream's own predicate language.
    """

    select: Optional[Union[str, Sequence[str]]] = None
    filter: Optional[str] = None
    order_by: Optional[Union[str, Sequence[str]]] = None
    group_by: Optional[str] = None
    having: Optional[str] = None
    top: Optional[int] = None
    skip: Optional[int] = None
    distinct: Optional[bool] = None
    acting_user_id: Optional[int] = None
    global_filter_id: Optional[int] = None


def _join_columns(value: Union[str, Sequence[str]]) -> str:
    if isinstance(value, str):
        return value
    return ",".join(column.strip() for column in value if column and column.strip())


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_params(descriptor: Optional[QueryDescriptor] = None, **mutation_options: Any) -> QueryParams:
    """Build the ordered query parameters for a table request.

    Fields that are absent are omitted, never defaulted. Mutation options
    (``select_columns``, ``acting_user_id``, ``allow_create``, ``ids``)
    cover the create/update/delete variants.
    """
    params: QueryParams = []

    if descriptor is not None:
        if descriptor.select:
            params.append(("$select", _join_columns(descriptor.select)))
        if descriptor.filter:
            params.append(("$filter", descriptor.filter))
        if descriptor.order_by:
            params.append(("$orderby", _join_columns(descriptor.order_by)))
        if descriptor.group_by:
            params.append(("$groupby", descriptor.group_by))
        if descriptor.having:
            params.append(("$having", descriptor.having))
        if descriptor.top is not None:
            params.append(("$top", _format_scalar(descriptor.top)))
        if descriptor.skip is not None:
            params.append(("$skip", _format_scalar(descriptor.skip)))
        if descriptor.distinct is not None:
            params.append(("$distinct", _format_scalar(descriptor.distinct)))
        if descriptor.acting_user_id is not None:
            params.append(("$userId", _format_scalar(descriptor.acting_user_id)))
        if descriptor.global_filter_id is not None:
            params.append(("$globalFilterId", _format_scalar(descriptor.global_filter_id)))

    select_columns = mutation_options.get("select_columns")
    if select_columns:
        params.append(("$select", _join_columns(select_columns)))

    acting_user_id = mutation_options.get("acting_user_id")
    if acting_user_id is not None:
        params.append(("$userId", _format_scalar(acting_user_id)))

    allow_create = mutation_options.get("allow_create")
    if allow_create:
        params.append(("$allowCreate", "true"))

    ids: Optional[Iterable[Any]] = mutation_options.get("ids")
    if ids is not None:
        params.extend(("id", _format_scalar(record_id)) for record_id in ids)

    return params


def build_procedure_body(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Prefix procedure parameter names with ``@`` as the upstream expects."""
    body: Dict[str, Any] = {}
    for name, value in (params or {}).items():
        key = name if name.startswith("@") else f"@{name}"
        body[key] = value
    return body


def quote_literal(value: Any) -> str:
    """Render a value as a literal inside an upstream filter predicate."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"
