"""Database module for managing the connection pool to the backend database.

This module handles:
- Database connection pool initialization
- JSON codecs for the attribute and analytics columns
- Optional schema installation for a local stand-in backend
- Connection lifecycle
"""

import json
import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None

# sslmode values that require an encrypted connection
SSL_MODES = {'require', 'verify-ca', 'verify-full'}

# Sized for request traffic from one API process
POOL_OPTIONS: Dict[str, Any] = {
    'min_size': 2,
    'max_size': 20,
    'max_inactive_connection_lifetime': 300.0,
    'command_timeout': 60.0,
}

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted backend connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """SSL and server settings derived from the URL's sslmode query parameter."""
    params = parse_qs(urlparse(db_url).query)
    sslmode = params.get('sslmode', ['disable'])[0]

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '60000',  # 1 minute
            'application_name': 'classifieds',
        }
    }
    if sslmode in SSL_MODES:
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns into Python objects."""
    for type_name in ('json', 'jsonb'):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog'
        )

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(
    db_url: Optional[str] = None,
    apply_schema: bool = False,
    force_recreate: bool = False
) -> asyncpg.Pool:
    """Initialize the database connection pool and, optionally, the schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        apply_schema: Install or migrate the local schema (never against the hosted backend)
        force_recreate: If True, drop and recreate all tables before installing

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If schema installation fails
    """
    global _pool

    if _pool:
        return _pool

    # Import here to avoid circular imports
    from config import get_settings

    url = db_url or get_settings().get('db_url')
    if not url:
        raise ValueError("Database URL not provided")

    try:
        _pool = await asyncpg.create_pool(
            url,
            **POOL_OPTIONS,
            init=_init_connection,
            **_get_connection_kwargs(url)
        )
        logger.info(f"Connected to backend database at {urlparse(url).hostname}")

        if apply_schema:
            schema_manager = SchemaManager(_pool)
            if force_recreate:
                logger.info("Force recreate requested. Dropping existing tables...")
                await schema_manager.drop_all_tables()
            await schema_manager.initialize()

        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        if _pool:
            await _pool.close()
            _pool = None
        raise

async def get_pool() -> asyncpg.Pool:
    """Return the shared pool, starting it on first use.

    Raises:
        DatabaseError: If the pool could not be created
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise DatabaseError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool:
        await _pool.close()
        _pool = None

__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError']
