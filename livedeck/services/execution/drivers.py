"""Driver registry: maps a code block's language to a command line."""
import logging
import os
from typing import Optional

from livedeck.core.config import ConnectionConfig, DriverConfig
from livedeck.core.errors import DriverNotFound, ProcessSpawnFailed
from livedeck.models.deck import CodeBlock

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"mysql": 3306, "postgres": 5432}


class DriverRegistry:
    """Lookup of configured interpreters, with per-deck overrides layered on top."""

    def __init__(self, drivers: Optional[dict[str, DriverConfig]] = None):
        self._drivers = {name.lower(): cfg for name, cfg in (drivers or {}).items()}

    def get(self, name: str) -> Optional[DriverConfig]:
        return self._drivers.get(name.lower())

    def with_overrides(self, overrides: dict[str, DriverConfig]) -> "DriverRegistry":
        """
        A new registry with deck-declared drivers layered on configured ones.

        Fields a deck sets replace the configured value and connections are
        merged by name, so a deck can add a connection to a built-in driver
        without repeating its command line.
        """
        merged = dict(self._drivers)
        for name, cfg in overrides.items():
            key = name.lower()
            merged[key] = merged[key].merged_with(cfg) if key in merged else cfg
        if overrides:
            logger.info(f"Deck declares drivers: {', '.join(sorted(overrides))}")
        return DriverRegistry(merged)

    def resolve(self, block: CodeBlock) -> DriverConfig:
        """The driver for ``block`` with its selected connection applied."""
        driver = self.get(block.driver_name)
        if driver is None or not driver.command:
            raise DriverNotFound(block.id, block.driver_name)

        connection = ConnectionConfig()
        if block.connection:
            if block.connection not in driver.connections:
                raise ProcessSpawnFailed(
                    block.id,
                    f"driver '{block.driver_name}' has no connection '{block.connection}'",
                )
            connection = driver.connections[block.connection]

        if driver.dialect is None:
            return driver
        args, env = connection_arguments(driver.dialect, connection)
        return driver.model_copy(update={
            "args": [*driver.args, *args],
            "env": {**driver.env, **env},
        })


def connection_arguments(dialect: str, connection: ConnectionConfig) -> tuple[list[str], dict[str, str]]:
    """Client flags and environment for a SQL connection; passwords never go on argv."""
    if dialect == "sqlite":
        return [connection.database or connection.path or ":memory:"], {}

    host = connection.host or "localhost"
    port = str(connection.port or DEFAULT_PORTS[dialect])
    env = {}
    if dialect == "mysql":
        args = ["-h", host, "-P", port]
        if connection.user:
            args += ["-u", connection.user]
        if connection.database:
            args.append(connection.database)
        if connection.password:
            env["MYSQL_PWD"] = connection.password
    else:
        args = ["-h", host, "-p", port]
        if connection.user:
            args += ["-U", connection.user]
        if connection.database:
            args += ["-d", connection.database]
        if connection.password:
            env["PGPASSWORD"] = connection.password
    return args, env


def build_environment(driver: DriverConfig) -> dict[str, str]:
    """Server environment with the driver's variables merged on top."""
    env = dict(os.environ)
    env.update(driver.env)
    return env
