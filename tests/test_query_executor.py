"""Tests for paged query execution."""

from datetime import datetime
from decimal import Decimal

import pytest

from odata_sql_gateway.client import SqlServerClient
from odata_sql_gateway.errors import MisconfiguredEntityError
from odata_sql_gateway.executor import QueryExecutor
from odata_sql_gateway.executor.query_executor import COLUMN_DISCOVERY_SQL, ColumnCache, build_next_link
from odata_sql_gateway.models import EndpointDescriptor, EnvironmentTarget, ODataQuerySpec

BASE_URL = "http://localhost:5252/api/AdventureWorks/items"

ITEM_ROWS = [
    ("A1", "Widget", Decimal("9.50")),
    ("A2", "Gadget", Decimal("12")),
    ("A3", "Doohickey", None),
]


@pytest.fixture
def executor(gateway_config, fake_db):
    return QueryExecutor(SqlServerClient(gateway_config, connect=fake_db.connect))


@pytest.fixture
def items():
    return EndpointDescriptor(name="items", object_name="Items", allowed_columns=("ItemCode", "Description", "Price"))


class TestBuildNextLink:
    def test_minimal(self):
        assert build_next_link(BASE_URL, ODataQuerySpec(top=10, skip=0)) == f"{BASE_URL}?$top=10&$skip=10"

    def test_carries_query_options(self):
        spec = ODataQuerySpec(
            select=["ItemCode", "Price"],
            filter="Price gt 5 and ItemCode ne 'X'",
            orderby="Price desc",
            top=5,
            skip=10,
            select_supplied=True,
        )

        assert build_next_link(BASE_URL, spec) == (
            f"{BASE_URL}?$top=5&$skip=15&$select=ItemCode,Price"
            "&$filter=Price%20gt%205%20and%20ItemCode%20ne%20%27X%27&$orderby=Price%20desc"
        )

    def test_select_omitted_when_not_supplied(self):
        spec = ODataQuerySpec(select=["ItemCode"], top=5, select_supplied=False)

        assert "$select" not in build_next_link(BASE_URL, spec)


class TestExecute:
    """Test page shaping from top+1 rows."""

    def test_more_rows_available(self, executor, fake_db, items, target):
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Description", "Price"], rows=ITEM_ROWS)

        page = executor.query(target, items, ODataQuerySpec(top=2), BASE_URL)

        assert page.count == 2
        assert page.value == [
            {"ItemCode": "A1", "Description": "Widget", "Price": 9.5},
            {"ItemCode": "A2", "Description": "Gadget", "Price": 12},
        ]
        assert page.next_link == f"{BASE_URL}?$top=2&$skip=2"
        sql, params = fake_db.statements("FROM [dbo].[Items]")[0]
        assert "WITH (NOLOCK)" in sql
        assert params == (0, 3)

    def test_last_page(self, executor, fake_db, items, target):
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Description", "Price"], rows=ITEM_ROWS)

        page = executor.query(target, items, ODataQuerySpec(top=3), BASE_URL)

        assert page.count == 3
        assert page.is_last_page
        assert page.to_dict()["nextLink"] is None
        assert page.value[2]["Price"] is None

    def test_empty_result(self, executor, fake_db, items, target):
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Description", "Price"], rows=[])

        page = executor.query(target, items, ODataQuerySpec(top=10), BASE_URL)

        assert page.to_dict() == {"count": 0, "value": [], "nextLink": None}

    def test_zero_top_reports_next_page(self, executor, fake_db, items, target):
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Description", "Price"], rows=ITEM_ROWS[:1])

        page = executor.query(target, items, ODataQuerySpec(top=0), BASE_URL)

        assert page.count == 0
        assert page.value == []
        assert page.next_link == f"{BASE_URL}?$top=0&$skip=0"

    def test_values_are_json_safe(self, executor, fake_db, target):
        view = EndpointDescriptor(name="audit", object_name="AuditLog", allowed_columns=("At",))
        fake_db.on("FROM [dbo].[AuditLog]", columns=["At"], rows=[(datetime(2024, 5, 1, 12, 30),)])

        page = executor.query(target, view, ODataQuerySpec(top=10), BASE_URL)

        assert page.value == [{"At": "2024-05-01T12:30:00"}]


class TestColumnDiscovery:
    """Test catalog-based column discovery and caching."""

    @pytest.fixture
    def discovered(self):
        return EndpointDescriptor(name="items", object_name="Items")

    def test_discovers_once_per_environment(self, executor, fake_db, discovered, target):
        fake_db.on("sys.columns", columns=["COLUMN_NAME"], rows=[("ItemCode",), ("Price",)])
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Price"], rows=[("A1", 1)])

        executor.query(target, discovered, ODataQuerySpec(), BASE_URL)
        executor.query(target, discovered, ODataQuerySpec(), BASE_URL)

        discovery = fake_db.statements("sys.columns")
        assert len(discovery) == 1
        assert discovery[0] == (COLUMN_DISCOVERY_SQL, ("Items", "dbo"))
        sql, _ = fake_db.statements("FROM [dbo].[Items]")[0]
        assert sql.startswith("SELECT [ItemCode], [Price] FROM")

        other = EnvironmentTarget(name="Staging", connection_string="Server=sql02")
        executor.query(other, discovered, ODataQuerySpec(), BASE_URL)
        assert len(fake_db.statements("sys.columns")) == 2

    def test_no_columns_is_misconfiguration(self, executor, fake_db, discovered, target):
        fake_db.on("sys.columns", columns=["COLUMN_NAME"], rows=[])

        with pytest.raises(MisconfiguredEntityError):
            executor.query(target, discovered, ODataQuerySpec(), BASE_URL)
        assert len(executor.column_cache) == 0

    def test_configured_columns_skip_discovery(self, executor, fake_db, items, target):
        assert executor.resolve_columns(target, items) == ["ItemCode", "Description", "Price"]
        assert fake_db.executed == []


def test_column_cache_first_insert_wins():
    cache = ColumnCache()
    key = ("prod", "dbo", "items")

    assert cache.put_if_absent(key, ["A"]) == ("A",)
    assert cache.put_if_absent(key, ["B"]) == ("A",)
    cache.clear()
    assert cache.get(key) is None
