# core/db_manager.py
from typing import Any

import structlog
from config import settings
from neo4j import (  # type: ignore
    AsyncDriver,
    AsyncGraphDatabase,
    AsyncManagedTransaction,
)
from neo4j.exceptions import (  # type: ignore
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from core.exceptions import TransientIOError

logger = structlog.get_logger(__name__)

_TRANSIENT_DRIVER_ERRORS = (ServiceUnavailable, SessionExpired, TransientError)


class Neo4jManagerSingleton:
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super().__new__(cls)
            cls._instance._initialized_flag = False
        return cls._instance

    def __init__(self):
        if self._initialized_flag:
            return

        self.logger = structlog.get_logger(__name__)
        self.driver: AsyncDriver | None = None
        self._initialized_flag = True

    async def __aenter__(self) -> "Neo4jManagerSingleton":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        if self.driver:
            await self.close()

        try:
            self.driver = AsyncGraphDatabase.driver(
                settings.NEO4J_URI, auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD)
            )
            await self.driver.verify_connectivity()
            self.logger.info(f"Successfully connected to Neo4j at {settings.NEO4J_URI}")
        except ServiceUnavailable as e:
            self.logger.critical(
                f"Neo4j connection failed: {e}. Ensure the Neo4j database is running and accessible."
            )
            self.driver = None
            raise TransientIOError(f"Neo4j unavailable at {settings.NEO4J_URI}") from e

    async def close(self) -> None:
        if self.driver is None:
            return
        try:
            await self.driver.close()
            self.logger.info("Neo4j driver closed.")
        finally:
            self.driver = None

    async def _ensure_connected(self) -> AsyncDriver:
        if self.driver is None:
            self.logger.info("Driver is None, attempting to connect.")
            await self.connect()
        if self.driver is None:
            raise TransientIOError("Neo4j driver not initialized or connection failed.")
        return self.driver

    async def _execute_query_tx(
        self,
        tx: AsyncManagedTransaction,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        self.logger.debug("Executing Cypher query", query=query, parameters=parameters)
        result_cursor = await tx.run(query, parameters)
        return await result_cursor.data()

    async def execute_read_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        driver = await self._ensure_connected()
        try:
            async with driver.session(database=settings.NEO4J_DATABASE) as session:
                return await session.execute_read(
                    self._execute_query_tx, query, parameters
                )
        except _TRANSIENT_DRIVER_ERRORS as e:
            raise TransientIOError(f"Neo4j read failed: {e}") from e

    async def execute_write_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        driver = await self._ensure_connected()
        try:
            async with driver.session(database=settings.NEO4J_DATABASE) as session:
                return await session.execute_write(
                    self._execute_query_tx, query, parameters
                )
        except _TRANSIENT_DRIVER_ERRORS as e:
            raise TransientIOError(f"Neo4j write failed: {e}") from e

    async def execute_cypher_batch(
        self, cypher_statements_with_params: list[tuple[str, dict[str, Any]]]
    ) -> None:
        if not cypher_statements_with_params:
            return

        async def _run_all(tx: AsyncManagedTransaction) -> None:
            for query, params in cypher_statements_with_params:
                await tx.run(query, params)

        driver = await self._ensure_connected()
        try:
            async with driver.session(database=settings.NEO4J_DATABASE) as session:
                await session.execute_write(_run_all)
        except _TRANSIENT_DRIVER_ERRORS as e:
            raise TransientIOError(f"Neo4j batch failed: {e}") from e
        self.logger.info(
            f"Successfully executed batch of {len(cypher_statements_with_params)} Cypher statements."
        )

    async def create_db_schema(self) -> None:
        """Create the uniqueness constraints used by the story repository."""
        queries = [
            "CREATE CONSTRAINT story_id_unique IF NOT EXISTS FOR (s:Story) REQUIRE s.id IS UNIQUE",
            "CREATE CONSTRAINT character_key IF NOT EXISTS FOR (c:Character) REQUIRE (c.story_id, c.name) IS UNIQUE",
            "CREATE CONSTRAINT foreshadowing_key IF NOT EXISTS FOR (f:Foreshadowing) REQUIRE (f.story_id, f.id) IS UNIQUE",
            "CREATE CONSTRAINT chapter_key IF NOT EXISTS FOR (c:Chapter) REQUIRE (c.story_id, c.number) IS UNIQUE",
            "CREATE CONSTRAINT summary_key IF NOT EXISTS FOR (s:ChapterSummary) REQUIRE (s.story_id, s.chapter_number) IS UNIQUE",
            "CREATE CONSTRAINT pacing_story_unique IF NOT EXISTS FOR (p:PacingProgress) REQUIRE p.story_id IS UNIQUE",
            "CREATE CONSTRAINT task_id_unique IF NOT EXISTS FOR (t:GenerationTask) REQUIRE t.id IS UNIQUE",
            "CREATE CONSTRAINT term_key IF NOT EXISTS FOR (t:Term) REQUIRE (t.category, t.value) IS UNIQUE",
            "CREATE INDEX chronicle_story_idx IF NOT EXISTS FOR (e:ChronicleEvent) ON (e.story_id)",
        ]
        await self.execute_cypher_batch([(q, {}) for q in queries])
        self.logger.info("Neo4j schema constraints ensured.")


neo4j_manager = Neo4jManagerSingleton()
