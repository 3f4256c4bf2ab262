import logging
import os

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from core.config import Settings
from core.embeddings import BACKENDS
from db.metrics import METRICS
from db.schema import Base, Color

logger = logging.getLogger(__name__)

INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS {column}_ivfflat ON colors "
    "USING ivfflat ({column} {opclass}) WITH (lists = {lists})"
)

# The inner query lets the IVFFlat index pick match_count rows; the outer
# query orders that pre-limited subset with id as a stable tie-breaker.
SEARCH_FUNCTION_DDL = """
CREATE OR REPLACE FUNCTION search_{column}(
    query_embedding vector({dimensions}),
    match_count integer DEFAULT 10
)
RETURNS TABLE (
    name varchar,
    hex_color varchar,
    is_curated boolean,
    distance double precision
)
LANGUAGE sql STABLE
AS $$
    SELECT nearest.name, nearest.hex_color, nearest.is_curated, nearest.distance
    FROM (
        SELECT c.id, c.name, c.hex_color, c.is_curated,
               (c.{column} {operator} query_embedding)::double precision AS distance
        FROM colors c
        WHERE c.{column} IS NOT NULL
        ORDER BY c.{column} {operator} query_embedding
        LIMIT match_count
    ) AS nearest
    ORDER BY nearest.distance, nearest.id;
$$
"""


def make_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        # The pipeline writes from worker threads
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def search_function_name(column: str) -> str:
    return f"search_{column}"


def init_db(engine: Engine, settings: Settings) -> None:
    """Create tables and, on PostgreSQL, the vector indexes and search functions."""
    is_postgres = engine.dialect.name == "postgresql"
    if is_postgres:
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    Base.metadata.create_all(engine)

    if not is_postgres:
        logger.info("Skipping vector indexes on %s; search will scan exactly", engine.dialect.name)
        return

    with engine.begin() as conn:
        for backend in BACKENDS.values():
            metric = METRICS[backend.metric]
            dimensions = Color.__table__.c[backend.column].type.dim
            conn.execute(
                text(
                    INDEX_DDL.format(
                        column=backend.column,
                        opclass=metric.opclass,
                        lists=settings.ivfflat_lists,
                    )
                )
            )
            conn.execute(
                text(
                    SEARCH_FUNCTION_DDL.format(
                        column=backend.column,
                        dimensions=dimensions,
                        operator=metric.operator,
                    )
                )
            )
            logger.info(
                "Indexed %s with %s (lists=%d)",
                backend.column,
                metric.opclass,
                settings.ivfflat_lists,
            )


if __name__ == "__main__":
    settings = Settings.from_env()
    init_db(make_engine(settings.database_url), settings)
    print("Database initialized.")
