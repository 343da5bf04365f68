"""Tests for the backend client's query composition and error mapping."""

import uuid
from contextlib import asynccontextmanager

import asyncpg
import pytest

from backend import (
    Backend,
    BackendError,
    BackendUnavailableError,
    DuplicateRecordError,
    InvalidArgumentError,
    PermissionDeniedError,
    ProcedureNotFoundError,
    ReferenceNotFoundError,
    build_where,
    build_order,
    quote_identifier,
    row_to_dict
)

class FakeConnection:
    """Records statements and answers with canned rows."""

    def __init__(self, rows=None, status="DELETE 0", error=None):
        self.rows = rows or []
        self.status = status
        self.error = error
        self.statements = []

    async def fetch(self, query, *params):
        self.statements.append((query, params))
        if self.error:
            raise self.error
        return self.rows

    async def execute(self, query, *params):
        self.statements.append((query, params))
        if self.error:
            raise self.error
        return self.status

class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

def make_backend(**kwargs):
    conn = FakeConnection(**kwargs)
    return Backend(FakePool(conn)), conn

def test_quote_identifier():
    assert quote_identifier('listings') == '"listings"'
    for bad in ('Listings', 'drop table', 'a;b', '"x"', ''):
        with pytest.raises(ValueError):
            quote_identifier(bad)

def test_build_where():
    clause, params = build_where(
        {'owner_id': 'u1', 'read_at': None, 'id': ['a', 'b']},
        either={'buyer_id': 'u2', 'seller_id': 'u2'}
    )

    assert clause == (
        ' WHERE "owner_id" = $1 AND "read_at" IS NULL AND "id" = ANY($2)'
        ' AND ("buyer_id" = $3 OR "seller_id" = $4)'
    )
    assert params == ['u1', ['a', 'b'], 'u2', 'u2']

def test_build_where_offset_and_empty():
    assert build_where() == ("", [])
    clause, params = build_where({'id': 'x'}, offset=2)
    assert clause == ' WHERE "id" = $3'
    assert params == ['x']

def test_build_order():
    assert build_order(None) == ""
    assert build_order('created_at', descending=True) == ' ORDER BY "created_at" DESC'
    assert build_order(['a', 'b']) == ' ORDER BY "a" ASC, "b" ASC'

def test_row_to_dict_stringifies_uuids():
    value = uuid.uuid4()
    assert row_to_dict({'id': value, 'ids': [value], 'n': 1}) == {
        'id': str(value), 'ids': [str(value)], 'n': 1
    }

@pytest.mark.asyncio
async def test_select():
    backend, conn = make_backend(rows=[{'id': 'x'}])

    rows = await backend.select(
        'listings', columns=('id', 'title'), filters={'owner_id': 'u1'},
        order_by='created_at', descending=True, limit=5
    )

    assert rows == [{'id': 'x'}]
    assert conn.statements == [(
        'SELECT "id", "title" FROM "listings" WHERE "owner_id" = $1 '
        'ORDER BY "created_at" DESC LIMIT $2',
        ('u1', 5)
    )]

@pytest.mark.asyncio
async def test_insert():
    backend, conn = make_backend(rows=[{'id': 'new'}])

    row = await backend.insert('favorites', {'user_id': 'u1', 'listing_id': 'l1'})

    assert row == {'id': 'new'}
    assert conn.statements[0] == (
        'INSERT INTO "favorites" ("user_id", "listing_id") VALUES ($1, $2) RETURNING *',
        ('u1', 'l1')
    )

@pytest.mark.asyncio
async def test_update_numbers_filter_params_after_values():
    backend, conn = make_backend(rows=[])

    rows = await backend.update(
        'listings', {'analytics': {'views': 2}},
        filters={'id': 'l1', 'analytics': {'views': 1}}
    )

    assert rows == []
    assert conn.statements[0] == (
        'UPDATE "listings" SET "analytics" = $1 WHERE "id" = $2 AND "analytics" = $3 RETURNING *',
        ({'views': 2}, 'l1', {'views': 1})
    )

@pytest.mark.asyncio
async def test_update_and_delete_require_filters():
    backend, _ = make_backend()

    with pytest.raises(ValueError):
        await backend.update('listings', {'title': 'x'}, filters={})
    with pytest.raises(ValueError):
        await backend.delete('favorites', filters={})

@pytest.mark.asyncio
async def test_delete_returns_count():
    backend, conn = make_backend(status="DELETE 1")

    assert await backend.delete('favorites', filters={'user_id': 'u1', 'listing_id': 'l1'}) == 1
    assert conn.statements[0][0] == 'DELETE FROM "favorites" WHERE "user_id" = $1 AND "listing_id" = $2'

@pytest.mark.asyncio
async def test_call_uses_named_arguments():
    backend, conn = make_backend(rows=[{'increment_listing_counter': 3}])

    rows = await backend.call('increment_listing_counter', listing_id='l1', counter_type='view')

    assert rows == [{'increment_listing_counter': 3}]
    assert conn.statements[0] == (
        'SELECT * FROM "increment_listing_counter"("listing_id" => $1, "counter_type" => $2)',
        ('l1', 'view')
    )

@pytest.mark.asyncio
@pytest.mark.parametrize("error,expected", [
    (asyncpg.UniqueViolationError("duplicate key"), DuplicateRecordError),
    (asyncpg.ForeignKeyViolationError("violates foreign key constraint"), ReferenceNotFoundError),
    (asyncpg.InsufficientPrivilegeError("not a participant"), PermissionDeniedError),
    (asyncpg.UndefinedFunctionError("no such function"), ProcedureNotFoundError),
    (asyncpg.DataError("bad value"), BackendError),
    (ValueError("invalid input for query argument $1"), InvalidArgumentError),
    (ConnectionRefusedError("refused"), BackendUnavailableError),
])
async def test_errors_are_translated(error, expected):
    backend, _ = make_backend(error=error)

    with pytest.raises(expected):
        await backend.select('listings')

@pytest.mark.asyncio
async def test_missing_reference_is_not_an_outage():
    backend, _ = make_backend(error=asyncpg.ForeignKeyViolationError("violates foreign key constraint"))

    with pytest.raises(ReferenceNotFoundError) as exc_info:
        await backend.insert('favorites', {'user_id': 'u1', 'listing_id': 'gone'})

    assert exc_info.value.code == '23503'
    assert not isinstance(exc_info.value, BackendUnavailableError)
