import os
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..constants import EnvironmentVariable
from ..exceptions import ConfigurationError, ErrorCode, ServiceError
from ..utils.logger import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()


class DatabaseConfig(BaseModel):
    db_type: str = "postgres"
    database: str
    host: str = ""
    port: str = "5432"
    username: str = ""
    password: str = ""
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    development_mode: bool = False

    def get_connection_string(self) -> str:
        if self.db_type.lower() == "postgres":
            missing = [
                name
                for name, value in (
                    ("host", self.host),
                    ("database", self.database),
                    ("username", self.username),
                    ("password", self.password),
                )
                if not value
            ]
            if missing:
                raise ConfigurationError(
                    "Missing required Postgres configuration parameters",
                    setting="database_config",
                    missing=missing,
                )
            return (
                f"postgresql+psycopg://{self.username}:{self.password}@"
                f"{self.host}:{self.port}/{self.database}"
            )
        elif self.db_type.lower() == "sqlite":
            return f"sqlite:///{self.database}"
        raise ConfigurationError(f"Unsupported database type: {self.db_type}", setting="db_type")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        """String representation with masked password."""
        return (
            f"DatabaseConfig("
            f"db_type='{self.db_type}', "
            f"host='{self.host}', "
            f"port='{self.port}', "
            f"database='{self.database}', "
            f"username='{self.username}', "
            f"password='***')"
        )


class DatabaseManager:
    """
    Owns the engine, session factory and thread-scoped sessions.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.scoped_session = scoped_session(self.session_factory)

    def _create_engine(self):
        connection_string = self.config.get_connection_string()
        if self.config.db_type.lower() == "sqlite":
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            if self.config.database == ":memory:":
                # One shared connection so every thread sees the same in-memory database
                kwargs["poolclass"] = StaticPool
            return create_engine(connection_string, echo=self.config.echo, **kwargs)
        return create_engine(
            connection_string,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if self.config.development_mode:
            Base.metadata.drop_all(self.engine)
        else:
            raise ServiceError(
                "Cannot drop tables: not in development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
                development_mode=self.config.development_mode,
            )

    def get_session(self) -> Session:
        return self.scoped_session()

    def new_session(self) -> Session:
        """A session not bound to the calling thread's scope."""
        return self.session_factory()

    def close_session(self, session: Optional[Session] = None) -> None:
        if session:
            session.close()
        else:
            self.scoped_session.remove()

    def close(self) -> None:
        self.scoped_session.remove()
        self.engine.dispose()


def get_development_config() -> DatabaseConfig:
    """
    Get SQLite configuration for development.
    """
    return DatabaseConfig(
        db_type="sqlite",
        database=os.environ.get(EnvironmentVariable.DEV_DB_PATH.value, ":memory:"),
        echo=os.environ.get(EnvironmentVariable.DB_ECHO.value, "False").lower() == "true",
        development_mode=True,
    )


def get_production_config() -> DatabaseConfig:
    """
    Get Postgres configuration for production from environment variables.

    Credentials have no defaults; ``get_connection_string`` rejects a
    config with any of them missing.
    """
    return DatabaseConfig(
        db_type="postgres",
        host=os.environ.get(EnvironmentVariable.DB_HOST.value, ""),
        port=os.environ.get(EnvironmentVariable.DB_PORT.value, "5432"),
        database=os.environ.get(EnvironmentVariable.DB_NAME.value, "integration_db"),
        username=os.environ.get(EnvironmentVariable.DB_USER.value, ""),
        password=os.environ.get(EnvironmentVariable.DB_PASSWORD.value, ""),
        pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
        max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.environ.get("DB_POOL_TIMEOUT", "30")),
        echo=os.environ.get(EnvironmentVariable.DB_ECHO.value, "False").lower() == "true",
        development_mode=False,
    )


def get_config_from_env() -> DatabaseConfig:
    """Pick the development or production config from ``DB_TYPE``."""
    if os.environ.get(EnvironmentVariable.DB_TYPE.value, "postgres").lower() == "sqlite":
        return get_development_config()
    return get_production_config()


def import_all_models():
    """Import all models to ensure they're registered with SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_credential_models import Credential  # noqa
    from .db_integration_models import Integration, IntegrationEvent, IntegrationWebhook  # noqa
    from .db_log_models import IntegrationLog  # noqa
    from .db_oauth_state_models import OAuthState  # noqa
    from .db_sync_job_models import SyncJob  # noqa

    configure_mappers()


def init_db(db_manager: DatabaseManager) -> None:
    """Create all tables on an existing manager."""
    get_logger().info("Initializing database", extra={"db_type": db_manager.config.db_type})
    import_all_models()
    db_manager.create_tables()


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Build a DatabaseManager and create the schema.

    Args:
        config: Optional DatabaseConfig. If None, the config is read from the environment.

    Raises:
        ConfigurationError: If datastore credentials are missing
    """
    if config is None:
        config = get_config_from_env()

    manager = DatabaseManager(config)
    init_db(manager)
    return manager
