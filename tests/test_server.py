"""End-to-end tests for the HTTP surface using FastAPI's TestClient."""

import asyncio
import dataclasses

import pyodbc
import pytest
from fastapi.testclient import TestClient

from odata_sql_gateway.server import GatewayServices, create_app, ensure_bootstrap_token


@pytest.fixture
def configured(write_environment, write_endpoint):
    """One environment with a read-only and a writable endpoint."""
    write_environment("AdventureWorks")
    write_endpoint("items", DatabaseObjectName="Items", AllowedColumns=["ItemCode", "Description"], AllowedMethods=["GET", "POST"])
    write_endpoint("orders", DatabaseObjectName="Orders", Procedure="api.Orders_Write", AllowedColumns=["Id"])


@pytest.fixture
def make_client(fake_db, configured):
    def _make(config):
        services = GatewayServices.build(config, connect=fake_db.connect)
        return TestClient(create_app(services=services))
    return _make


@pytest.fixture
def client(make_client, gateway_config):
    return make_client(gateway_config)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "1.0.0"}


class TestQueryEndpoint:
    """Test GET /api/{env}/{endpoint}."""

    def test_first_page(self, client, fake_db):
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Description"], rows=[("A1", "One"), ("A2", "Two")])

        response = client.get("/api/AdventureWorks/items", params={"$top": "1"})

        assert response.status_code == 200
        assert response.json() == {
            "count": 1,
            "value": [{"ItemCode": "A1", "Description": "One"}],
            "nextLink": "http://testserver/api/AdventureWorks/items?$top=1&$skip=1",
        }

    def test_filter_and_select(self, client, fake_db):
        fake_db.on("FROM [dbo].[Items]", columns=["Description"], rows=[("One",)])

        response = client.get(
            "/api/AdventureWorks/ITEMS",
            params={"$select": "Description", "$filter": "ItemCode eq 'A1'", "$orderby": "ItemCode desc"}
        )

        assert response.status_code == 200
        assert response.json()["nextLink"] is None
        sql, params = fake_db.statements("FROM [dbo].[Items]")[0]
        assert sql == (
            "SELECT [Description] FROM [dbo].[Items] WITH (NOLOCK) WHERE [ItemCode] = ? "
            "ORDER BY [ItemCode] DESC OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"
        )
        assert params == ("A1", 0, 11)

    def test_following_next_link(self, client, fake_db):
        fake_db.on("FROM [dbo].[Items]", columns=["Description"], rows=[("One",), ("Two",), ("Three",)])
        query = {
            "$select": "Description",
            "$filter": "Description eq 'a&b+c' or Description eq 'it''s'",
            "$orderby": "Description desc",
            "$top": "2",
        }

        first = client.get("/api/AdventureWorks/items", params=query)
        next_link = first.json()["nextLink"]
        second = client.get(next_link)

        assert first.status_code == second.status_code == 200
        (first_sql, first_params), (second_sql, second_params) = fake_db.statements("FROM [dbo].[Items]")
        assert second_sql == first_sql == (
            "SELECT [Description] FROM [dbo].[Items] WITH (NOLOCK) "
            "WHERE ([Description] = ? OR [Description] = ?) "
            "ORDER BY [Description] DESC OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"
        )
        assert first_params == ("a&b+c", "it's", 0, 3)
        assert second_params == ("a&b+c", "it's", 2, 3)
        assert second.json()["nextLink"] == next_link.replace("$skip=2", "$skip=4")

    def test_disallowed_column(self, client, fake_db):
        response = client.get("/api/AdventureWorks/items", params={"$select": "ItemCode,Cost"})

        assert response.status_code == 400
        assert response.json() == {
            "error": "One or more columns are not allowed: Cost",
            "error_code": "COLUMN_NOT_ALLOWED",
            "success": False,
        }
        assert fake_db.connect_calls == []

    def test_invalid_top(self, client):
        response = client.get("/api/AdventureWorks/items", params={"$top": "ten"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PAGING"

    def test_unknown_environment(self, client):
        response = client.get("/api/Nowhere/items")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid or missing environment: Nowhere"

    def test_unknown_endpoint(self, client):
        response = client.get("/api/AdventureWorks/widgets")

        assert response.status_code == 404
        assert response.json()["error"] == "Endpoint 'widgets' not found."

    def test_missing_endpoint(self, client):
        response = client.get("/api/AdventureWorks/")

        assert response.status_code == 400
        assert response.json()["error_code"] == "MISSING_ENDPOINT"

    def test_get_not_allowed(self, client, write_endpoint):
        write_endpoint("writeonly", DatabaseObjectName="Queue", Procedure="api.Queue_Write", AllowedMethods=["POST"])

        response = client.get("/api/AdventureWorks/writeonly")

        assert response.status_code == 405

    def test_timeout_is_503(self, client, fake_db):
        fake_db.on("FROM [dbo].[Items]", error=pyodbc.OperationalError("HYT00", "[HYT00] Query timeout expired"))

        response = client.get("/api/AdventureWorks/items")

        assert response.status_code == 503
        assert response.json() == {
            "error": "Database timeout occurred. Please try again later.",
            "error_code": "SERVICE_UNAVAILABLE",
            "success": False,
            "retryable": True,
        }

    def test_driver_errors_are_hidden(self, client, fake_db):
        fake_db.on("FROM [dbo].[Items]", error=pyodbc.ProgrammingError("42S02", "Invalid object name 'dbo.Items'"))

        response = client.get("/api/AdventureWorks/items")

        assert response.status_code == 500
        assert response.json()["error"] == "Internal connection error."

    def test_misconfigured_entity(self, client, write_endpoint):
        write_endpoint("spaced", DatabaseObjectName="Items", AllowedColumns=["Item Code"])

        response = client.get("/api/AdventureWorks/spaced")

        assert response.status_code == 500
        assert response.json()["error"] == "Invalid entity. Object definition not correct."


class TestWriteEndpoints:
    """Test POST/PUT/DELETE dispatch."""

    def test_post(self, client, fake_db):
        fake_db.on("EXEC [api].[Orders_Write]", columns=["Id"], rows=[(42,)])

        response = client.post("/api/AdventureWorks/orders", json={"Customer": "Contoso", "Total": 12.5})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "INSERT operation completed successfully",
            "result": [{"Id": 42}],
        }
        sql, params = fake_db.executed[0]
        assert sql == "EXEC [api].[Orders_Write] @Customer = ?, @Total = ?, @Method = ?"
        assert params == ("Contoso", 12.5, "INSERT")

    def test_put(self, client, fake_db):
        fake_db.on("EXEC", rowcount=1)

        response = client.put("/api/AdventureWorks/orders", json={"Id": 1, "Status": "Shipped"})

        assert response.json()["message"] == "UPDATE operation completed successfully"
        assert fake_db.executed[0][1] == (1, "Shipped", "UPDATE")

    def test_delete(self, client, fake_db):
        fake_db.on("EXEC", rowcount=1)

        response = client.delete("/api/AdventureWorks/orders", params={"id": "17"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "DELETE operation completed successfully", "result": []}
        assert fake_db.executed[0] == ("EXEC [api].[Orders_Write] @id = ?, @Method = ?", ("17", "DELETE"))

    def test_delete_without_id(self, client):
        response = client.delete("/api/AdventureWorks/orders")

        assert response.status_code == 400
        assert response.json()["error_code"] == "MISSING_ID"

    def test_write_method_without_procedure_is_405(self, client, fake_db):
        response = client.post("/api/AdventureWorks/items", json={"ItemCode": "A9"})

        assert response.status_code == 405
        assert response.json()["error"] == "HTTP POST method is not allowed for endpoint 'items'"
        assert fake_db.connect_calls == []

    @pytest.mark.parametrize("body", [b"", b"{not json", b"[1, 2]"])
    def test_invalid_body(self, client, body):
        response = client.post(
            "/api/AdventureWorks/orders",
            content=body,
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PAYLOAD"

    def test_unsupported_verb(self, client):
        response = client.patch("/api/AdventureWorks/orders", json={})

        assert response.status_code == 405
        assert response.json()["success"] is False


class TestWebhookEndpoint:
    def test_stores_payload(self, client, fake_db):
        fake_db.on("sys.tables", columns=[""], rows=[(1,)])
        fake_db.on("OUTPUT INSERTED.Id", columns=["Id"], rows=[(7,)])

        response = client.post(
            "/webhook/AdventureWorks/orderCreated",
            content=b'{"orderId": 5}',
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Webhook processed successfully.", "id": 7}
        assert fake_db.statements("OUTPUT INSERTED.Id")[0][1][1] == '{"orderId": 5}'

    def test_payload_numbers_are_stored_verbatim(self, client, fake_db):
        fake_db.on("sys.tables", columns=[""], rows=[(1,)])
        fake_db.on("OUTPUT INSERTED.Id", columns=["Id"], rows=[(8,)])
        body = '{"amount": 12345678901234567.891, "rate": 1.10}'

        response = client.post(
            "/webhook/AdventureWorks/orderCreated",
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert fake_db.statements("OUTPUT INSERTED.Id")[0][1][1] == body

    def test_invalid_json(self, client, fake_db):
        response = client.post(
            "/webhook/AdventureWorks/orderCreated",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PAYLOAD"
        assert fake_db.connect_calls == []

    def test_unlisted_webhook(self, client, write_endpoint):
        write_endpoint("Webhooks", DatabaseObjectName="Hooks", AllowedColumns=["orderCreated"])

        response = client.post("/webhook/AdventureWorks/invoicePaid", json={})

        assert response.status_code == 404

    def test_unknown_environment(self, client):
        response = client.post("/webhook/Nowhere/orderCreated", json={})

        assert response.status_code == 400


class TestAuthentication:
    """Test bearer token enforcement."""

    @pytest.fixture
    def secured(self, make_client, gateway_config):
        return make_client(dataclasses.replace(gateway_config, auth_enabled=True))

    def test_missing_header(self, secured):
        response = secured.get("/api/AdventureWorks/items")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error_code"] == "INVALID_AUTH_HEADER"

    def test_unknown_token(self, secured):
        response = secured.get("/api/AdventureWorks/items", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_TOKEN"

    def test_valid_token(self, secured, fake_db):
        token = secured.app.state.services.token_store.generate_token("alice")
        fake_db.on("FROM [dbo].[Items]", columns=["ItemCode", "Description"], rows=[])

        response = secured.get("/api/AdventureWorks/items", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200

    def test_health_is_open(self, secured):
        assert secured.get("/health").status_code == 200

    def test_bootstrap_token_on_startup(self, secured, tmp_path):
        store = secured.app.state.services.token_store

        with secured:
            assert store.count() == 1

        ensure_bootstrap_token(store)
        assert store.count() == 1
        assert list((tmp_path / "tokens").glob("*.txt"))


def test_rate_limit(make_client, gateway_config):
    client = make_client(dataclasses.replace(gateway_config, rate_limit_enabled=True, requests_per_minute=2))

    statuses = [client.get("/api/Nowhere/items").status_code for _ in range(3)]

    assert statuses == [400, 400, 429]
    response = client.get("/api/Nowhere/items")
    assert int(response.headers["Retry-After"]) >= 1
    assert client.get("/health").status_code == 200


def test_unknown_route(client):
    response = client.get("/nothing-here")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found", "success": False, "statusCode": 404}


def test_configuration_is_resolved_in_worker_threads(fake_db, configured, gateway_config, monkeypatch):
    services = GatewayServices.build(gateway_config, connect=fake_db.connect)
    on_event_loop = []

    def recording(resolve):
        def wrapper(name):
            try:
                asyncio.get_running_loop()
                on_event_loop.append(True)
            except RuntimeError:
                on_event_loop.append(False)
            return resolve(name)
        return wrapper

    monkeypatch.setattr(services.resolver, "resolve", recording(services.resolver.resolve))
    monkeypatch.setattr(services.registry, "resolve", recording(services.registry.resolve))
    fake_db.on("EXEC", rowcount=1)
    fake_db.on("sys.tables", columns=[""], rows=[(1,)])
    fake_db.on("OUTPUT INSERTED.Id", columns=["Id"], rows=[(1,)])
    client = TestClient(create_app(services=services))

    assert client.put("/api/AdventureWorks/orders", json={"Id": 1}).status_code == 200
    assert client.delete("/api/AdventureWorks/orders", params={"id": "1"}).status_code == 200
    assert client.post("/webhook/AdventureWorks/orderCreated", json={}).status_code == 200

    assert on_event_loop.count(False) >= 6
    assert not any(on_event_loop)
