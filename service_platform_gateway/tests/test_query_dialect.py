"""
Unit tests for the upstream query dialect translation.
"""

from service_platform_gateway.app.domain.query_dialect import (
    QueryDescriptor,
    build_procedure_body,
    build_query_params,
    quote_literal,
)


class TestBuildQueryParams:
    """Test cases for build_query_params."""

    def test_empty_descriptor_emits_nothing(self):
        assert build_query_params(QueryDescriptor()) == []
        assert build_query_params() == []

    def test_all_fields_map_one_to_one(self):
        descriptor = QueryDescriptor(
            select="Contact_ID, Contact_ID_Table.Display_Name",
            filter="Contact_Status_ID=1",
            order_by="Display_Name",
            group_by="Household_ID",
            having="COUNT(*) > 1",
            top=25,
            skip=50,
            distinct=True,
            acting_user_id=7,
            global_filter_id=3,
        )

        assert build_query_params(descriptor) == [
            ("$select", "Contact_ID, Contact_ID_Table.Display_Name"),
            ("$filter", "Contact_Status_ID=1"),
            ("$orderby", "Display_Name"),
            ("$groupby", "Household_ID"),
            ("$having", "COUNT(*) > 1"),
            ("$top", "25"),
            ("$skip", "50"),
            ("$distinct", "true"),
            ("$userId", "7"),
            ("$globalFilterId", "3"),
        ]

    def test_absent_fields_are_omitted(self):
        params = build_query_params(QueryDescriptor(filter="Is_Active=1", top=0))

        assert params == [("$filter", "Is_Active=1"), ("$top", "0")]

    def test_explicit_false_distinct_is_sent(self):
        assert build_query_params(QueryDescriptor(distinct=False)) == [("$distinct", "false")]

    def test_column_sequences_are_joined(self):
        params = build_query_params(QueryDescriptor(select=["Event_ID", " Event_Title ", ""],
                                                    order_by=("Event_Start_Date", "Event_ID")))

        assert params == [
            ("$select", "Event_ID,Event_Title"),
            ("$orderby", "Event_Start_Date,Event_ID"),
        ]

    def test_mutation_options(self):
        params = build_query_params(
            select_columns=["Announcement_ID"],
            acting_user_id=12,
            allow_create=True,
        )

        assert params == [
            ("$select", "Announcement_ID"),
            ("$userId", "12"),
            ("$allowCreate", "true"),
        ]

    def test_allow_create_false_is_omitted(self):
        assert build_query_params(allow_create=False) == []

    def test_ids_repeat(self):
        assert build_query_params(ids=[4, 5, 6]) == [("id", "4"), ("id", "5"), ("id", "6")]


class TestProcedureBody:
    """Test cases for build_procedure_body."""

    def test_prefixes_parameter_names(self):
        body = build_procedure_body({"UserName": "admin@church.example", "@DomainID": 1})

        assert body == {"@UserName": "admin@church.example", "@DomainID": 1}

    def test_no_params(self):
        assert build_procedure_body(None) == {}


class TestQuoteLiteral:
    """Test cases for quote_literal."""

    def test_strings_are_quoted_and_escaped(self):
        assert quote_literal("O'Brien") == "'O''Brien'"

    def test_scalars(self):
        assert quote_literal(None) == "NULL"
        assert quote_literal(True) == "1"
        assert quote_literal(False) == "0"
        assert quote_literal(42) == "42"
        assert quote_literal(2.5) == "2.5"
