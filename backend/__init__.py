"""Backend client for the hosted marketplace database.

The hosted platform exposes Postgres tables and SQL functions. This module
wraps them in the two shapes the rest of the code needs:

- table-style CRUD with filter/order/limit composition (select, insert,
  update, delete)
- named remote procedure calls (``call``)

Rows come back as plain dicts with UUID values rendered as strings, so ids
compare directly with the user id carried by an ``auth.Identity``.

Database errors are translated into the BackendError hierarchy below; callers
never see asyncpg exceptions.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

import asyncpg

from database import get_pool

logger = logging.getLogger(__name__)

class BackendError(Exception):
    """Base exception for backend call failures"""
    def __init__(self, message: str, operation: Optional[str] = None, code: Optional[str] = None):
        self.operation = operation
        self.code = code
        super().__init__(f"Backend error [{code}] in {operation}: {message}" if code else message)

class DuplicateRecordError(BackendError):
    """Raised when an insert violates a uniqueness constraint"""
    pass

class PermissionDeniedError(BackendError):
    """Raised when the backend refuses the operation for this user"""
    pass

class ProcedureNotFoundError(BackendError):
    """Raised when a remote procedure does not exist"""
    pass

class BackendUnavailableError(BackendError):
    """Raised when the backend cannot be reached"""
    pass

class InvalidArgumentError(BackendError):
    """Raised when a value cannot be encoded for its column, such as a malformed id"""
    pass

class ReferenceNotFoundError(BackendError):
    """Raised when a row points at a record that does not exist (foreign key violation)"""
    pass

_IDENTIFIER = re.compile(r'^[a-z_][a-z0-9_]*$')

Filters = Optional[Dict[str, Any]]

def quote_identifier(name: str) -> str:
    """Quote a table, column or procedure name after validating it.

    Raises:
        ValueError: If the name is not a plain lower-case identifier
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return f'"{name}"'

def _condition(column: str, value: Any, params: List[Any], offset: int) -> str:
    col = quote_identifier(column)
    if value is None:
        return f"{col} IS NULL"
    if isinstance(value, (list, tuple, set, frozenset)):
        params.append(list(value))
        return f"{col} = ANY(${offset + len(params)})"
    params.append(value)
    return f"{col} = ${offset + len(params)}"

def build_where(filters: Filters = None, either: Filters = None, offset: int = 0) -> Tuple[str, List[Any]]:
    """Build a WHERE clause.

    Every entry of ``filters`` must hold (AND); at least one entry of
    ``either`` must hold (OR). A list value matches any of its members and
    None matches NULL.

    Args:
        filters: Column equality conditions joined with AND
        either: Column equality conditions joined with OR
        offset: Number of positional parameters already used by the statement

    Returns:
        Tuple of (clause including the leading WHERE or empty string, parameters)
    """
    params: List[Any] = []
    clauses = [_condition(col, val, params, offset) for col, val in (filters or {}).items()]

    if either:
        alternatives = [_condition(col, val, params, offset) for col, val in either.items()]
        clauses.append("(" + " OR ".join(alternatives) + ")")

    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params

def build_order(order_by: Union[str, Sequence[str], None], descending: bool = False) -> str:
    if not order_by:
        return ""
    columns = [order_by] if isinstance(order_by, str) else list(order_by)
    direction = "DESC" if descending else "ASC"
    return " ORDER BY " + ", ".join(f"{quote_identifier(c)} {direction}" for c in columns)

def _to_python(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, list):
        return [_to_python(v) for v in value]
    return value

def row_to_dict(row: Any) -> Dict[str, Any]:
    """Convert an asyncpg Record into a dict with string ids."""
    return {key: _to_python(value) for key, value in dict(row).items()}

class Backend:
    """Table and remote procedure access to the hosted backend."""

    def __init__(self, pool=None):
        """Initialize the backend client.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _fetch(self, operation: str, query: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        """Run a statement and translate database errors."""
        try:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
            return [row_to_dict(row) for row in rows]
        except asyncpg.UniqueViolationError as e:
            raise DuplicateRecordError(str(e), operation, e.sqlstate) from e
        except asyncpg.ForeignKeyViolationError as e:
            raise ReferenceNotFoundError(str(e), operation, e.sqlstate) from e
        except asyncpg.InsufficientPrivilegeError as e:
            raise PermissionDeniedError(str(e), operation, e.sqlstate) from e
        except asyncpg.UndefinedFunctionError as e:
            raise ProcedureNotFoundError(str(e), operation, e.sqlstate) from e
        except asyncpg.PostgresError as e:
            raise BackendError(str(e), operation, e.sqlstate) from e
        except ValueError as e:
            # Client-side encoding failures (asyncpg DataError) are ValueErrors
            raise InvalidArgumentError(str(e), operation) from e
        except (OSError, asyncio.TimeoutError, asyncpg.InterfaceError) as e:
            raise BackendUnavailableError(f"Backend unreachable during {operation}: {e}", operation) from e

    async def _execute(self, operation: str, query: str, params: Sequence[Any]) -> str:
        """Run a statement that returns no rows and return its status tag."""
        try:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *params)
        except asyncpg.ForeignKeyViolationError as e:
            raise ReferenceNotFoundError(str(e), operation, e.sqlstate) from e
        except asyncpg.InsufficientPrivilegeError as e:
            raise PermissionDeniedError(str(e), operation, e.sqlstate) from e
        except asyncpg.PostgresError as e:
            raise BackendError(str(e), operation, e.sqlstate) from e
        except ValueError as e:
            # Client-side encoding failures (asyncpg DataError) are ValueErrors
            raise InvalidArgumentError(str(e), operation) from e
        except (OSError, asyncio.TimeoutError, asyncpg.InterfaceError) as e:
            raise BackendUnavailableError(f"Backend unreachable during {operation}: {e}", operation) from e

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] = ('*',),
        filters: Filters = None,
        either: Filters = None,
        order_by: Union[str, Sequence[str], None] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Select rows from a table.

        Args:
            table: Table name
            columns: Columns to return, '*' for all
            filters: Equality conditions that must all hold
            either: Equality conditions of which one must hold
            order_by: Column or columns to sort by
            descending: Sort direction
            limit: Maximum number of rows

        Returns:
            List of row dicts
        """
        cols = ", ".join("*" if c == "*" else quote_identifier(c) for c in columns)
        where, params = build_where(filters, either)
        query = f"SELECT {cols} FROM {quote_identifier(table)}{where}{build_order(order_by, descending)}"
        if limit is not None:
            params.append(int(limit))
            query += f" LIMIT ${len(params)}"
        return await self._fetch(f"select {table}", query, params)

    async def select_one(
        self,
        table: str,
        *,
        columns: Sequence[str] = ('*',),
        filters: Filters = None,
        either: Filters = None
    ) -> Optional[Dict[str, Any]]:
        """Select a single row or None."""
        rows = await self.select(table, columns=columns, filters=filters, either=either, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored (defaults filled in).

        Raises:
            DuplicateRecordError: If a uniqueness constraint is violated
        """
        if not values:
            raise ValueError("Nothing to insert")
        columns = ", ".join(quote_identifier(c) for c in values)
        placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))
        query = (
            f"INSERT INTO {quote_identifier(table)} ({columns}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        rows = await self._fetch(f"insert {table}", query, list(values.values()))
        return rows[0]

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        filters: Dict[str, Any],
        either: Filters = None
    ) -> List[Dict[str, Any]]:
        """Update matching rows and return them.

        Only rows that matched the filters come back; an empty list means
        nothing was changed.
        """
        if not values:
            raise ValueError("Nothing to update")
        if not filters:
            raise ValueError("Refusing to update without filters")
        params = list(values.values())
        assignments = ", ".join(
            f"{quote_identifier(c)} = ${i}" for i, c in enumerate(values, start=1)
        )
        where, where_params = build_where(filters, either, offset=len(params))
        query = f"UPDATE {quote_identifier(table)} SET {assignments}{where} RETURNING *"
        return await self._fetch(f"update {table}", query, params + where_params)

    async def delete(self, table: str, *, filters: Dict[str, Any]) -> int:
        """Delete matching rows and return how many went."""
        if not filters:
            raise ValueError("Refusing to delete without filters")
        where, params = build_where(filters)
        status = await self._execute(
            f"delete {table}",
            f"DELETE FROM {quote_identifier(table)}{where}",
            params
        )
        # Status tag looks like "DELETE 3"
        try:
            return int(status.split()[-1])
        except (AttributeError, IndexError, ValueError):
            return 0

    async def call(self, procedure: str, **params: Any) -> List[Dict[str, Any]]:
        """Invoke a remote procedure with named arguments.

        Returns:
            The rows the procedure produced. Scalar procedures give one row
            keyed by the procedure name.

        Raises:
            ProcedureNotFoundError: If the procedure does not exist
            BackendError: If the procedure fails
        """
        arguments = ", ".join(
            f"{quote_identifier(name)} => ${i}" for i, name in enumerate(params, start=1)
        )
        query = f"SELECT * FROM {quote_identifier(procedure)}({arguments})"
        logger.debug(f"Calling remote procedure {procedure}")
        return await self._fetch(f"rpc {procedure}", query, list(params.values()))

async def get_backend() -> Backend:
    """FastAPI dependency returning a backend bound to the shared pool."""
    return Backend(await get_pool())

__all__ = [
    'Backend',
    'get_backend',
    'BackendError',
    'DuplicateRecordError',
    'PermissionDeniedError',
    'ProcedureNotFoundError',
    'BackendUnavailableError',
    'InvalidArgumentError',
    'ReferenceNotFoundError',
    'build_where',
    'build_order',
    'quote_identifier',
    'row_to_dict'
]
