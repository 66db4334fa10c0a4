import asyncio
import json
import time

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from services import DataServiceError, RestDataService, SelectFilter, SqlDataService


def make_engine():
    # Queries run on worker threads; they must all see the same in-memory database.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def make_service(user_id: str = "test-user", engine=None) -> SqlDataService:
    if engine is None:
        engine = make_engine()
    return SqlDataService(user_id, sessionmaker(bind=engine, expire_on_commit=False))


async def seed_transaction(service, category, source, **values):
    row = {
        "name": "Coffee",
        "amount": 4.5,
        "type": "expense",
        "category": category["id"],
        "source": source["id"],
    }
    row.update(values)
    return await service.insert("transactions", row)


@pytest.mark.asyncio
async def test_insert_returns_confirmed_row() -> None:
    service = make_service()

    row = await service.insert("category", {"name": "Food", "type": "expense"})

    assert row["id"]
    assert row["user_id"] == "test-user"
    assert row["type"] == "expense"
    assert row["created_at"]
    assert await service.select("category") == [row]


@pytest.mark.asyncio
async def test_rows_are_scoped_to_owner() -> None:
    engine = make_engine()
    mine = make_service("alice", engine)
    theirs = make_service("bob", engine)

    row = await mine.insert("source", {"name": "Bank"})

    assert await theirs.select("source") == []
    with pytest.raises(DataServiceError, match="not found"):
        await theirs.delete("source", row["id"])
    assert len(await mine.select("source")) == 1


@pytest.mark.asyncio
async def test_transaction_select_embeds_relations_and_filters_range() -> None:
    service = make_service()
    category = await service.insert("category", {"name": "Food", "type": "expense"})
    source = await service.insert("source", {"name": "Card"})
    event = await service.insert("event", {"name": "Holiday", "budget": 500})
    await seed_transaction(service, category, source, created_at="2025-01-15T10:00:00")
    await seed_transaction(
        service, category, source, name="Dinner", event=event["id"],
        created_at="2025-01-02T19:30:00Z",
    )
    await seed_transaction(service, category, source, created_at="2025-02-01T10:00:00")

    rows = await service.select(
        "transactions",
        embed=("category", "source", "event"),
        filter=SelectFilter(
            gte={"created_at": "2025-01-01T00:00:00"},
            lte={"created_at": "2025-01-31T23:59:59"},
            order_by="created_at",
        ),
    )

    assert [r["name"] for r in rows] == ["Dinner", "Coffee"]
    assert rows[0]["category"] == {"id": category["id"], "name": "Food", "type": "expense"}
    assert rows[0]["source"] == {"id": source["id"], "name": "Card"}
    assert rows[0]["event"] == {"id": event["id"], "name": "Holiday"}
    assert rows[1]["event"] is None


@pytest.mark.asyncio
async def test_update_and_delete() -> None:
    service = make_service()
    row = await service.insert(
        "budget",
        {"name": "January", "amount": 100, "start": "2025-01-01T00:00:00", "end": "2025-01-31T23:59:59"},
    )

    await service.update("budget", row["id"], {"amount": 250})
    [updated] = await service.select("budget", filter=SelectFilter(eq={"id": row["id"]}))
    assert updated["amount"] == 250

    await service.delete("budget", row["id"])
    assert await service.select("budget") == []


@pytest.mark.asyncio
async def test_deleting_category_in_use_fails() -> None:
    service = make_service()
    category = await service.insert("category", {"name": "Food", "type": "expense"})
    source = await service.insert("source", {"name": "Card"})
    await seed_transaction(service, category, source)

    with pytest.raises(DataServiceError, match="Failed to delete category"):
        await service.delete("category", category["id"])
    assert len(await service.select("category")) == 1


@pytest.mark.asyncio
async def test_unknown_table_and_column_are_rejected() -> None:
    service = make_service()

    with pytest.raises(DataServiceError, match="Unknown table"):
        await service.select("accounts")
    with pytest.raises(DataServiceError, match="Unknown column"):
        await service.insert("source", {"name": "Bank", "iban": "DE00"})


@pytest.mark.asyncio
async def test_queries_do_not_block_event_loop() -> None:
    factory = sessionmaker(bind=make_engine(), expire_on_commit=False)

    def slow_factory():
        time.sleep(0.3)
        return factory()

    service = SqlDataService("test-user", slow_factory)
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    task = asyncio.create_task(ticker())
    try:
        assert await service.select("source") == []
    finally:
        task.cancel()

    assert ticks >= 5


def rest_service(handler) -> RestDataService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestDataService("https://example.test/", "anon-key", "user-1", client=client)


@pytest.mark.asyncio
async def test_rest_select_builds_postgrest_query() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = list(request.url.params.multi_items())
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json=[{"id": "t1"}])

    service = rest_service(handler)
    rows = await service.select(
        "transactions",
        embed=("category", "source"),
        filter=SelectFilter(
            gte={"created_at": "2025-01-01T00:00:00"},
            lte={"created_at": "2025-01-31T23:59:59"},
            order_by="created_at",
        ),
    )
    await service.aclose()

    assert rows == [{"id": "t1"}]
    assert seen["path"] == "/rest/v1/transactions"
    assert seen["apikey"] == "anon-key"
    assert seen["params"] == [
        ("select", "*,category(id,name,type),source(id,name)"),
        ("created_at", "gte.2025-01-01T00:00:00"),
        ("created_at", "lte.2025-01-31T23:59:59"),
        ("order", "created_at.asc"),
    ]


@pytest.mark.asyncio
async def test_rest_insert_returns_representation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Prefer"] == "return=representation"
        [payload] = json.loads(request.content)
        return httpx.Response(201, json=[{**payload, "id": "c1"}])

    service = rest_service(handler)
    row = await service.insert("category", {"name": "Food", "type": "expense"})

    assert row == {"name": "Food", "type": "expense", "user_id": "user-1", "id": "c1"}


@pytest.mark.asyncio
async def test_rest_errors_carry_backend_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"message": "violates foreign key constraint"})

    service = rest_service(handler)

    with pytest.raises(DataServiceError, match="violates foreign key") as excinfo:
        await service.delete("category", "c1")
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_rest_transport_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = rest_service(handler)

    with pytest.raises(DataServiceError, match="Could not reach backend"):
        await service.update("source", "s1", {"name": "Cash"})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, fragment",
    [(["not", "an", "object"], "object"), ("plain string", "plain string")],
)
async def test_rest_error_without_message_object_falls_back_to_body(body, fragment) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=body)

    service = rest_service(handler)

    with pytest.raises(DataServiceError, match=fragment) as excinfo:
        await service.select("budget")
    assert excinfo.value.status_code == 400
