"""
Generic record access against named upstream tables.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from shared.logging import get_logger

from ..domain.query_dialect import QueryDescriptor, build_query_params
from .platform_client import PlatformClient

Record = Dict[str, Any]
Columns = Optional[Union[str, Sequence[str]]]


def _as_records(payload: Any) -> List[Record]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    return [payload]


class RecordGateway:
    """Create, read, update and delete rows of upstream tables.

    Nothing is cached; every call is a live round trip.
    """

    def __init__(self, client: PlatformClient):
        self.client = client
        self.logger = get_logger("gateway.record_gateway")

    async def read(
        self,
        table: str,
        query: Optional[QueryDescriptor] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Record]:
        """Read records matching ``query``. A missing query reads the whole table."""
        result = await self.client.request(
            "GET",
            PlatformClient.table_path(table),
            operation="read",
            params=build_query_params(query),
            table=table,
            timeout=timeout,
        )
        records = _as_records(result)
        self.logger.debug("Records read", table=table, count=len(records))
        return records

    async def create(
        self,
        table: str,
        records: Iterable[Record],
        acting_user_id: Optional[int] = None,
        select_columns: Columns = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Record]:
        """Insert ``records`` in one batch and return the created rows."""
        body = list(records)
        result = await self.client.request(
            "POST",
            PlatformClient.table_path(table),
            operation="create",
            params=build_query_params(select_columns=select_columns, acting_user_id=acting_user_id),
            json=body,
            table=table,
            timeout=timeout,
        )
        self.logger.info("Records created", table=table, count=len(body), acting_user_id=acting_user_id)
        return _as_records(result)

    async def update(
        self,
        table: str,
        records: Iterable[Record],
        acting_user_id: Optional[int] = None,
        select_columns: Columns = None,
        allow_create: bool = False,
        *,
        timeout: Optional[float] = None,
    ) -> List[Record]:
        """Update rows by primary key; ``allow_create`` upserts rows that do not exist."""
        body = list(records)
        result = await self.client.request(
            "PUT",
            PlatformClient.table_path(table),
            operation="update",
            params=build_query_params(
                select_columns=select_columns,
                acting_user_id=acting_user_id,
                allow_create=allow_create,
            ),
            json=body,
            table=table,
            timeout=timeout,
        )
        self.logger.info("Records updated", table=table, count=len(body), acting_user_id=acting_user_id)
        return _as_records(result)

    async def delete(
        self,
        table: str,
        ids: Iterable[Union[int, str]],
        acting_user_id: Optional[int] = None,
        select_columns: Columns = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Record]:
        """Delete rows by id and return what the upstream reports as deleted."""
        id_list = list(ids)
        result = await self.client.request(
            "DELETE",
            PlatformClient.table_path(table),
            operation="delete",
            params=build_query_params(
                select_columns=select_columns,
                acting_user_id=acting_user_id,
                ids=id_list,
            ),
            table=table,
            timeout=timeout,
        )
        self.logger.info("Records deleted", table=table, count=len(id_list), acting_user_id=acting_user_id)
        return _as_records(result)
