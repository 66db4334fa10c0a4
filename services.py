from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

import httpx
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select as sa_select
from sqlalchemy import DateTime, Enum as SAEnum, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import SessionLocal, session_scope
from models import MODELS_BY_TABLE

logger = logging.getLogger(__name__)

Row = dict[str, Any]

# Summary columns of the relations a transaction read can embed.
EMBEDDED_RELATIONS: dict[str, dict[str, tuple[str, ...]]] = {
    "transactions": {
        "category": ("id", "name", "type"),
        "source": ("id", "name"),
        "event": ("id", "name"),
    }
}


class DataServiceError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class SelectFilter:
    eq: dict[str, Any] = field(default_factory=dict)
    gte: dict[str, Any] = field(default_factory=dict)
    lte: dict[str, Any] = field(default_factory=dict)
    order_by: Optional[str] = None
    ascending: bool = True


class DataService:
    """Per-table CRUD against the system of record.

    Rows are plain dicts keyed by column name; ids are strings. Every call
    may raise :class:`DataServiceError` with a human readable message.
    """

    async def select(
        self,
        table: str,
        *,
        embed: Sequence[str] = (),
        filter: Optional[SelectFilter] = None,
    ) -> list[Row]:
        raise NotImplementedError

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        raise NotImplementedError

    async def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, table: str, record_id: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SqlDataService(DataService):
    def __init__(
        self,
        user_id: str,
        session_factory: sessionmaker = SessionLocal,
    ) -> None:
        self.user_id = user_id
        self.session_factory = session_factory

    @staticmethod
    def _model(table: str):
        try:
            return MODELS_BY_TABLE[table]
        except KeyError:
            raise DataServiceError(f"Unknown table: {table}") from None

    @staticmethod
    def _to_row(obj) -> Row:
        mapper = inspect(obj).mapper
        return {
            attr.columns[0].name: _jsonable(getattr(obj, attr.key))
            for attr in mapper.column_attrs
        }

    def _coerce(self, model, values: Mapping[str, Any]) -> dict[str, Any]:
        by_column = {attr.columns[0].name: attr for attr in inspect(model).column_attrs}
        coerced: dict[str, Any] = {}
        for name, value in values.items():
            attr = by_column.get(name)
            if attr is None:
                raise DataServiceError(f"Unknown column '{name}' on {model.__tablename__}")
            if name in ("id", "user_id"):
                continue
            column_type = attr.columns[0].type
            if value is not None and isinstance(column_type, DateTime):
                value = _parse_datetime(value)
            elif value is not None and isinstance(column_type, SAEnum):
                value = column_type.enum_class(value)
            coerced[attr.key] = value
        return coerced

    def _owned(self, session: Session, model, record_id: str):
        obj = session.execute(
            sa_select(model).where(model.id == record_id, model.user_id == self.user_id)
        ).scalar_one_or_none()
        if obj is None:
            raise DataServiceError(f"{model.__tablename__} {record_id} not found", 404)
        return obj

    def _embed(self, table: str, obj, row: Row, embed: Sequence[str]) -> Row:
        relations = EMBEDDED_RELATIONS.get(table, {})
        for name in embed:
            if name not in relations:
                raise DataServiceError(f"Cannot embed '{name}' in {table}")
            related = getattr(obj, name)
            row[name] = (
                None
                if related is None
                else {col: _jsonable(getattr(related, col)) for col in relations[name]}
            )
        return row

    # Session work is synchronous; the async methods hand it to the threadpool.

    def _select_rows(self, table: str, embed: Sequence[str], filter: SelectFilter) -> list[Row]:
        model = self._model(table)
        columns = {attr.columns[0].name: attr.key for attr in inspect(model).column_attrs}

        def column(name: str):
            if name not in columns:
                raise DataServiceError(f"Unknown column '{name}' on {table}")
            return getattr(model, columns[name])

        def operand(name: str, value: Any) -> Any:
            if isinstance(column(name).type, DateTime):
                return _parse_datetime(value)
            return value

        stmt = sa_select(model).where(model.user_id == self.user_id)
        for name, value in filter.eq.items():
            stmt = stmt.where(column(name) == operand(name, value))
        for name, value in filter.gte.items():
            stmt = stmt.where(column(name) >= operand(name, value))
        for name, value in filter.lte.items():
            stmt = stmt.where(column(name) <= operand(name, value))
        if filter.order_by:
            order_col = column(filter.order_by)
            stmt = stmt.order_by(order_col.asc() if filter.ascending else order_col.desc())

        try:
            with session_scope(self.session_factory) as session:
                return [
                    self._embed(table, obj, self._to_row(obj), embed)
                    for obj in session.execute(stmt).scalars()
                ]
        except SQLAlchemyError as exc:
            logger.exception(f"select_failed: table={table}")
            raise DataServiceError(f"Failed to read {table}") from exc

    def _insert_row(self, table: str, row: Mapping[str, Any]) -> Row:
        model = self._model(table)
        values = self._coerce(model, row)
        try:
            with session_scope(self.session_factory) as session:
                obj = model(user_id=self.user_id, **values)
                session.add(obj)
                session.flush()
                created = self._to_row(obj)
        except SQLAlchemyError as exc:
            logger.warning(f"insert_failed: table={table} error={exc}")
            raise DataServiceError(f"Failed to save {table}") from exc
        logger.info(f"insert: table={table} id={created['id']}")
        return created

    def _update_row(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        model = self._model(table)
        values = self._coerce(model, patch)
        try:
            with session_scope(self.session_factory) as session:
                obj = self._owned(session, model, record_id)
                for key, value in values.items():
                    setattr(obj, key, value)
        except SQLAlchemyError as exc:
            logger.warning(f"update_failed: table={table} id={record_id} error={exc}")
            raise DataServiceError(f"Failed to update {table}") from exc
        logger.info(f"update: table={table} id={record_id}")

    def _delete_row(self, table: str, record_id: str) -> None:
        model = self._model(table)
        try:
            with session_scope(self.session_factory) as session:
                session.delete(self._owned(session, model, record_id))
        except SQLAlchemyError as exc:
            logger.warning(f"delete_failed: table={table} id={record_id} error={exc}")
            raise DataServiceError(f"Failed to delete {table}") from exc
        logger.info(f"delete: table={table} id={record_id}")

    async def select(self, table, *, embed=(), filter=None):
        return await run_in_threadpool(
            self._select_rows, table, tuple(embed), filter or SelectFilter()
        )

    async def insert(self, table, row):
        return await run_in_threadpool(self._insert_row, table, dict(row))

    async def update(self, table, record_id, patch):
        await run_in_threadpool(self._update_row, table, record_id, dict(patch))

    async def delete(self, table, record_id):
        await run_in_threadpool(self._delete_row, table, record_id)


class RestDataService(DataService):
    """Client for a hosted PostgREST-style backend (``/rest/v1/<table>``)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        user_id: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.user_id = user_id
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = await self._client.request(
                method,
                f"{self._base_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise DataServiceError(f"Could not reach backend: {exc}") from exc

        if resp.is_error:
            try:
                body = resp.json()
            except ValueError:
                body = None
            message = body.get("message") if isinstance(body, dict) else None
            message = message or resp.text
            logger.warning(
                f"rest_error: method={method} table={table} status={resp.status_code}"
            )
            raise DataServiceError(message or resp.reason_phrase, resp.status_code)
        if not resp.content:
            return None
        return resp.json()

    async def select(self, table, *, embed=(), filter=None):
        filter = filter or SelectFilter()
        relations = EMBEDDED_RELATIONS.get(table, {})
        columns = ["*"]
        for name in embed:
            if name not in relations:
                raise DataServiceError(f"Cannot embed '{name}' in {table}")
            columns.append(f"{name}({','.join(relations[name])})")
        params = [("select", ",".join(columns))]
        params += [(k, f"eq.{_jsonable(v)}") for k, v in filter.eq.items()]
        params += [(k, f"gte.{_jsonable(v)}") for k, v in filter.gte.items()]
        params += [(k, f"lte.{_jsonable(v)}") for k, v in filter.lte.items()]
        if filter.order_by:
            direction = "asc" if filter.ascending else "desc"
            params.append(("order", f"{filter.order_by}.{direction}"))
        return await self._request("GET", table, params=params) or []

    async def insert(self, table, row):
        payload = {k: _jsonable(v) for k, v in row.items()}
        payload.setdefault("user_id", self.user_id)
        data = await self._request(
            "POST", table, json=[payload], prefer="return=representation"
        )
        if not data:
            raise DataServiceError(f"Backend returned no {table} row")
        return data[0]

    async def update(self, table, record_id, patch):
        await self._request(
            "PATCH",
            table,
            params=[("id", f"eq.{record_id}")],
            json={k: _jsonable(v) for k, v in patch.items()},
        )

    async def delete(self, table, record_id):
        await self._request("DELETE", table, params=[("id", f"eq.{record_id}")])

    async def aclose(self) -> None:
        await self._client.aclose()
