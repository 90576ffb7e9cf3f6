"""
Unit tests for RecordGateway and the platform client.
"""

import asyncio

import httpx
import pytest

from service_platform_gateway.app.adapters.platform_client import PlatformClient
from service_platform_gateway.app.adapters.record_gateway import RecordGateway
from service_platform_gateway.app.auth.token_cache import ServiceCredential, TokenCache
from service_platform_gateway.app.domain.query_dialect import QueryDescriptor
from shared.errors import UpstreamRequestFailure
from shared.metrics import MetricsCollector
from shared.test_helpers import TEST_PLATFORM_BASE_URL, FakePlatform, request_json


def build_gateway(platform: FakePlatform, metrics=None, timeout: float = 30.0) -> RecordGateway:
    client = platform.client()
    credential = ServiceCredential(
        client_id="portal-client",
        client_secret="portal-secret",
        token_url=f"{TEST_PLATFORM_BASE_URL}/oauth/connect/token",
        scope="http://www.thinkministry.com/dataplatform/scopes/all",
    )
    token_cache = TokenCache(credential, client=client)
    platform_client = PlatformClient(TEST_PLATFORM_BASE_URL, token_cache, client=client,
                                     timeout=timeout, metrics=metrics)
    return RecordGateway(platform_client)


class TestRecordGateway:
    """Test cases for RecordGateway."""

    @pytest.fixture
    def platform(self):
        return FakePlatform()

    @pytest.mark.asyncio
    async def test_read_sends_query_and_bearer(self, platform):
        platform.add_table("Contacts", [{"Contact_ID": 1, "Display_Name": "Smith, Pat"}])
        gateway = build_gateway(platform)

        records = await gateway.read("Contacts", QueryDescriptor(
            select="Contact_ID, Display_Name",
            filter="Contact_ID=1",
            top=1,
        ))

        assert records == [{"Contact_ID": 1, "Display_Name": "Smith, Pat"}]
        request = platform.upstream_requests()[0]
        assert request.method == "GET"
        assert request.url.path == "/ministryplatformapi/tables/Contacts"
        assert request.headers["Authorization"] == "Bearer service-token-1"
        assert list(request.url.params.multi_items()) == [
            ("$select", "Contact_ID, Display_Name"),
            ("$filter", "Contact_ID=1"),
            ("$top", "1"),
        ]

    @pytest.mark.asyncio
    async def test_every_read_is_a_live_round_trip(self, platform):
        platform.add_table("Events", [])
        gateway = build_gateway(platform)

        await gateway.read("Events")
        await gateway.read("Events")

        assert len(platform.upstream_requests()) == 2
        assert platform.token_grants == 1

    @pytest.mark.asyncio
    async def test_create_posts_batch(self, platform):
        def created(request: httpx.Request) -> httpx.Response:
            rows = request_json(request)
            return httpx.Response(200, json=[dict(row, Prayer_ID=i + 10) for i, row in enumerate(rows)])

        platform.add_table("Prayers", created)
        gateway = build_gateway(platform)

        result = await gateway.create(
            "Prayers",
            [{"Title": "Healing"}, {"Title": "Travel"}],
            acting_user_id=42,
            select_columns=["Prayer_ID", "Title"],
        )

        assert [row["Prayer_ID"] for row in result] == [10, 11]
        request = platform.upstream_requests()[0]
        assert request.method == "POST"
        assert request_json(request) == [{"Title": "Healing"}, {"Title": "Travel"}]
        assert list(request.url.params.multi_items()) == [
            ("$select", "Prayer_ID,Title"),
            ("$userId", "42"),
        ]

    @pytest.mark.asyncio
    async def test_update_with_allow_create(self, platform):
        platform.add_table("Event_Participants", lambda request: httpx.Response(200, json=request_json(request)))
        gateway = build_gateway(platform)

        await gateway.update("Event_Participants", [{"Event_Participant_ID": 5, "Notes": "x"}],
                             allow_create=True)

        request = platform.upstream_requests()[0]
        assert request.method == "PUT"
        assert request.url.params.get("$allowCreate") == "true"

    @pytest.mark.asyncio
    async def test_delete_repeats_id(self, platform):
        platform.add_table("Feedback_Entries", [{"Feedback_Entry_ID": 3}, {"Feedback_Entry_ID": 4}])
        gateway = build_gateway(platform)

        deleted = await gateway.delete("Feedback_Entries", [3, 4], acting_user_id=9)

        assert len(deleted) == 2
        request = platform.upstream_requests()[0]
        assert request.method == "DELETE"
        assert request.url.params.get_list("id") == ["3", "4"]
        assert request.url.params.get("$userId") == "9"

    @pytest.mark.asyncio
    async def test_non_success_raises_upstream_failure(self, platform):
        platform.add_table("Contacts", lambda request: httpx.Response(403, text="denied"))
        gateway = build_gateway(platform)

        with pytest.raises(UpstreamRequestFailure) as exc_info:
            await gateway.read("Contacts")

        failure = exc_info.value
        assert failure.status_code == 403
        assert failure.table == "Contacts"
        assert failure.operation == "read"
        assert failure.raw_body == "denied"
        assert failure.is_forbidden
        assert not failure.is_not_found

    @pytest.mark.asyncio
    async def test_unknown_table_is_not_found(self, platform):
        gateway = build_gateway(platform)

        with pytest.raises(UpstreamRequestFailure) as exc_info:
            await gateway.read("Nope")

        assert exc_info.value.is_not_found

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_service_token(self, platform):
        replies = [httpx.Response(401, text="expired"), httpx.Response(200, json=[])]
        platform.add_table("Contacts", lambda request: replies.pop(0))
        gateway = build_gateway(platform)

        with pytest.raises(UpstreamRequestFailure):
            await gateway.read("Contacts")
        await gateway.read("Contacts")

        assert platform.token_grants == 2
        assert platform.upstream_requests()[1].headers["Authorization"] == "Bearer service-token-2"

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self, platform):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        platform.add_table("Contacts", slow)
        metrics = MetricsCollector("gateway-test")
        gateway = build_gateway(platform, metrics=metrics)

        with pytest.raises(UpstreamRequestFailure) as exc_info:
            await gateway.read("Contacts", timeout=0.5)

        assert exc_info.value.status_code is None
        assert exc_info.value.is_server_error
        assert metrics.registry.get_sample_value(
            "upstream_requests_total", {"operation": "read", "status": "timeout"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_caller_can_cancel_with_wait_for(self, platform):
        async def hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200, json=[])

        platform.add_table("Contacts", hang)
        gateway = build_gateway(platform)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(gateway.read("Contacts"), timeout=0.05)

    @pytest.mark.asyncio
    async def test_table_names_are_path_escaped(self, platform):
        platform.add_table("Custom Table", [])
        gateway = build_gateway(platform)

        await gateway.read("Custom Table")

        assert platform.upstream_requests()[0].url.raw_path.startswith(
            b"/ministryplatformapi/tables/Custom%20Table"
        )


class TestCorrelatedWrites:
    """Read-then-write sequences built on the gateway are not atomic."""

    @pytest.mark.asyncio
    async def test_concurrent_max_then_insert_duplicates_sort_order(self):
        platform = FakePlatform()
        rows = [{"Link_ID": 1, "Sort_Order": 1}, {"Link_ID": 2, "Sort_Order": 2}]

        def links(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                top = max(rows, key=lambda row: row["Sort_Order"])
                return httpx.Response(200, json=[top])
            created = []
            for row in request_json(request):
                created.append(dict(row, Link_ID=len(rows) + 1))
                rows.append(created[-1])
            return httpx.Response(200, json=created)

        platform.add_table("Quick_Links", links)
        gateway = build_gateway(platform)

        async def next_sort_order() -> int:
            current = await gateway.read("Quick_Links", QueryDescriptor(
                select="Link_ID, Sort_Order", order_by="Sort_Order DESC", top=1,
            ))
            return current[0]["Sort_Order"] + 1

        # Both callers observe the same maximum before either insert lands.
        first, second = await asyncio.gather(next_sort_order(), next_sort_order())
        await asyncio.gather(
            gateway.create("Quick_Links", [{"Sort_Order": first}]),
            gateway.create("Quick_Links", [{"Sort_Order": second}]),
        )

        sort_orders = [row["Sort_Order"] for row in rows]
        assert sort_orders == [1, 2, 3, 3]
