"""Database module for managing connections to PostgreSQL / CockroachDB.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
"""

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
_schema_manager: Optional[SchemaManager] = None

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted database connections."""
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
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '60000',  # 1 minute
        }
    }

    # sslmode is handled here, asyncpg gets an explicit context or nothing
    sslmode = params.get('sslmode', ['require'])[0]
    kwargs['ssl'] = None if sslmode == 'disable' else _get_ssl_context()

    return kwargs

def _strip_ssl_params(db_url: str) -> str:
    parsed = urlparse(db_url)
    query = '&'.join(
        part for part in parsed.query.split('&')
        if part and not part.startswith(('sslmode=', 'ssl='))
    )
    return parsed._replace(query=query).geturl()

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> None:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be brought up to date
    """
    global _pool, _schema_manager

    if _pool:
        return

    # Import here to avoid circular imports
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise ValueError("Database URL not provided")

    conn_kwargs = _get_connection_kwargs(url)

    try:
        _pool = await asyncpg.create_pool(
            _strip_ssl_params(url),
            min_size=2,
            max_size=20,
            max_queries=10000,   # Reset connection after this many queries
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=60.0,
            **conn_kwargs
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize()

    except DatabaseSchemaError:
        await close()
        raise
    except (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError):
        await close()
        raise
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        await close()
        raise DatabaseError(f"Failed to initialize database: {e}") from e

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError']
