"""Database module for managing connections to CockroachDB/PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Pool lifecycle
- Choosing the repository backend the engine runs on
"""

import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .lib.schema_manager import SchemaManager
from .exceptions import DatabaseError, DatabaseSchemaError, TransactionConflictError
from .memory import MemoryRepository
from .postgres import PostgresRepository

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for CockroachDB Cloud connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }
    if params.get('sslmode', ['require'])[0] != 'disable':
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database named in db_url if it doesn't exist.

    Args:
        db_url: Database connection URL
    """
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/') or 'defaultdb'
    if db_name == 'defaultdb':
        return

    base_url = parsed._replace(path='/defaultdb').geturl()
    logger.info(f"Connecting to defaultdb to create {db_name} if needed")

    conn = await asyncpg.connect(base_url, **_get_connection_kwargs(db_url))
    try:
        await conn.execute(f'CREATE DATABASE IF NOT EXISTS "{db_name}"')
    finally:
        await conn.close()

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
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
        await create_database_if_not_exists(url)

        _pool = await asyncpg.create_pool(
            url,
            min_size=2,
            max_size=20,
            max_queries=10000,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            **_get_connection_kwargs(url)
        )

        await SchemaManager(_pool).initialize()
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        if _pool:
            await _pool.close()
            _pool = None
        raise

async def close() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool:
        await _pool.close()
        _pool = None

async def create_repository(settings: Dict[str, Any]):
    """Build the repository selected by the storage_backend setting."""
    if settings['storage_backend'] == 'memory':
        logger.warning("Using in-memory storage; data will not survive a restart")
        return MemoryRepository()
    return PostgresRepository(await init_db(settings['db_url']))

# Export public interface
__all__ = [
    'init_db', 'close', 'create_repository',
    'MemoryRepository', 'PostgresRepository',
    'DatabaseError', 'DatabaseSchemaError', 'TransactionConflictError'
]
