import logging
import os

from sqlalchemy import create_engine, text

from app.db import SCHEMAS, BuildAdminConnectionUrl

logger = logging.getLogger("app.bootstrap")


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"Missing required env var: {name}")
    return value


def _env_truthy(name: str) -> bool:
    value = os.getenv(name, "").strip().lower()
    return value in {"1", "true", "yes", "on"}


def EnsureDatabaseSetup() -> None:
    """Create the school database, the application login and its CRUD role.

    Runs with the admin login before migrations. Schema creation here is
    idempotent; alembic creates the same schemas for databases bootstrapped
    elsewhere.
    """
    if _env_truthy("SQLSERVER_SKIP_BOOTSTRAP"):
        logger.info("skipping database bootstrap (managed externally)")
        return

    database = _require_env("SQLSERVER_DB")
    user_login = _require_env("SQLSERVER_USER_LOGIN")
    user_password = _require_env("SQLSERVER_USER_PASSWORD")
    role_name = os.getenv("SQLSERVER_CRUD_ROLE", "").strip() or "SchoolCrud"

    master_engine = create_engine(
        BuildAdminConnectionUrl(database_override="master"),
        pool_pre_ping=True,
        isolation_level="AUTOCOMMIT",
    )

    logger.info("ensuring database %s and login %s", database, user_login)
    with master_engine.connect() as connection:
        connection.execute(
            text(
                """
                DECLARE @DatabaseName sysname = :db;
                DECLARE @LoginName sysname = :login;
                DECLARE @LoginPassword nvarchar(256) = :password;
                DECLARE @SafeDb sysname = REPLACE(@DatabaseName, ']', ']]');
                DECLARE @SafeLogin sysname = REPLACE(@LoginName, ']', ']]');
                DECLARE @SafePassword nvarchar(512) = REPLACE(@LoginPassword, '''', '''''');

                IF NOT EXISTS (SELECT 1 FROM sys.databases WHERE name = @DatabaseName)
                BEGIN
                  EXEC('CREATE DATABASE [' + @SafeDb + ']');
                END;

                IF EXISTS (SELECT 1 FROM sys.server_principals WHERE name = @LoginName)
                BEGIN
                  EXEC('ALTER LOGIN [' + @SafeLogin + '] WITH PASSWORD = '''
                    + @SafePassword + ''', DEFAULT_DATABASE = [' + @SafeDb + ']');
                END
                ELSE
                BEGIN
                  EXEC('CREATE LOGIN [' + @SafeLogin + '] WITH PASSWORD = '''
                    + @SafePassword + ''', DEFAULT_DATABASE = [' + @SafeDb + ']');
                END;
                """
            ),
            {"db": database, "login": user_login, "password": user_password},
        )
    master_engine.dispose()

    db_engine = create_engine(BuildAdminConnectionUrl(database_override=database), pool_pre_ping=True)

    logger.info("ensuring schemas %s and role %s", ", ".join(SCHEMAS), role_name)
    with db_engine.begin() as connection:
        for schema in SCHEMAS:
            connection.execute(
                text(
                    """
                    DECLARE @SchemaName sysname = :schema;
                    DECLARE @SafeSchema sysname = REPLACE(@SchemaName, ']', ']]');
                    IF NOT EXISTS (SELECT 1 FROM sys.schemas WHERE name = @SchemaName)
                    BEGIN
                      EXEC('CREATE SCHEMA [' + @SafeSchema + ']');
                    END;
                    """
                ),
                {"schema": schema},
            )

        connection.execute(
            text(
                """
                DECLARE @LoginName sysname = :login;
                DECLARE @RoleName sysname = :role;
                DECLARE @SafeLogin sysname = REPLACE(@LoginName, ']', ']]');
                DECLARE @SafeRole sysname = REPLACE(@RoleName, ']', ']]');

                IF NOT EXISTS (SELECT 1 FROM sys.database_principals WHERE name = @LoginName)
                BEGIN
                  EXEC('CREATE USER [' + @SafeLogin + '] FOR LOGIN [' + @SafeLogin + '] WITH DEFAULT_SCHEMA = [school]');
                END;

                IF NOT EXISTS (SELECT 1 FROM sys.database_principals WHERE type = 'R' AND name = @RoleName)
                BEGIN
                  EXEC('CREATE ROLE [' + @SafeRole + ']');
                END;

                IF IS_ROLEMEMBER(@RoleName, @LoginName) <> 1
                BEGIN
                  EXEC('ALTER ROLE [' + @SafeRole + '] ADD MEMBER [' + @SafeLogin + ']');
                END;
                """
            ),
            {"login": user_login, "role": role_name},
        )

        safe_role = role_name.replace("]", "]]")
        for schema in SCHEMAS:
            connection.execute(
                text(f"GRANT SELECT, INSERT, UPDATE, DELETE ON SCHEMA::[{schema}] TO [{safe_role}];")
            )
        connection.execute(text(f"DENY ALTER, CONTROL, TAKE OWNERSHIP ON SCHEMA::[dbo] TO [{safe_role}];"))
    db_engine.dispose()

    logger.info("bootstrap complete")
