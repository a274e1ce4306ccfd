"""Process-wide application context.

Owns the database engine and the Redis client. Both are built explicitly from
settings (or passed in pre-built) and torn down in reverse order.
"""

import logging

import redis
from sqlalchemy import Engine, text
from sqlalchemy.orm import sessionmaker

from connectkit.cache import SessionCache, create_redis_client
from connectkit.config import Settings
from connectkit.database import create_db_engine, create_session_factory

logger = logging.getLogger(__name__)


class AppContext:
    """Connections shared by every request in the process."""

    def __init__(
        self,
        settings: Settings,
        engine: Engine | None = None,
        redis_client: redis.Redis | None = None,
    ):
        self.settings = settings
        self.engine = engine or create_db_engine(settings)
        self.session_factory: sessionmaker = create_session_factory(self.engine)
        self.redis = redis_client or create_redis_client(
            settings.redis_url, settings.redis_socket_timeout
        )
        self.cache = SessionCache(self.redis, settings.redis_key_prefix)

    def startup(self) -> None:
        """Check both backing stores before serving traffic."""
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("Database connection established")

        self.cache.ping()
        logger.info("Redis connection established")

    def shutdown(self) -> None:
        try:
            self.cache.close()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")
        self.engine.dispose()
        logger.info("Application context shut down")
