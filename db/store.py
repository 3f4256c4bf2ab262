import logging
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.errors import PersistenceError, SearchTimeout
from core.models import ColorMatch, EmbeddedColor
from db.metrics import Metric
from db.schema import Color, SearchRequest, embedding_column
from db.setup import search_function_name

logger = logging.getLogger(__name__)

QUERY_CANCELED = "57014"  # PostgreSQL SQLSTATE raised by statement_timeout

INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class ColorStore:
    """Persistence for colors keyed by name, plus nearest-neighbour lookup."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine)
        dialect = engine.dialect.name
        if dialect not in INSERTS:
            raise PersistenceError(f"Upsert is not supported on {dialect}")
        self._insert = INSERTS[dialect]

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def upsert(self, colors: Sequence[EmbeddedColor], column: str) -> int:
        """Insert or overwrite rows by name in one statement.

        Only the record fields and `column` are written, so another backend's
        embedding and the original created_at survive.
        """
        if not colors:
            return 0
        embedding_column(column)
        dimensions = Color.__table__.c[column].type.dim
        for c in colors:
            if len(c.embedding) != dimensions:
                raise PersistenceError(
                    f"{c.record.name!r} has {len(c.embedding)} dimensions, "
                    f"{column} expects {dimensions}"
                )
        # Last occurrence of a name wins within one statement
        rows = {
            c.record.name: {
                "name": c.record.name,
                "hex_color": c.record.hex_color,
                "is_curated": c.record.is_curated,
                column: c.embedding,
            }
            for c in colors
        }
        stmt = self._insert(Color).values(list(rows.values()))
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "hex_color": stmt.excluded.hex_color,
                "is_curated": stmt.excluded.is_curated,
                column: stmt.excluded[column],
            },
        )
        try:
            with self.Session.begin() as session:
                session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Upsert of {len(rows)} colors failed: {e}") from e
        logger.debug("Upserted %d colors into %s", len(rows), column)
        return len(rows)

    def get(self, name: str) -> Optional[Color]:
        with self.Session() as session:
            color = session.scalar(select(Color).where(Color.name == name))
            if color is not None:
                session.expunge(color)
            return color

    def count(self, column: str = None) -> int:
        stmt = select(func.count()).select_from(Color)
        if column is not None:
            stmt = stmt.where(embedding_column(column).isnot(None))
        with self.Session() as session:
            return session.scalar(stmt)

    def nearest(
        self,
        column: str,
        metric: Metric,
        query_embedding: List[float],
        match_count: int,
        probes: int,
        timeout: float,
    ) -> List[ColorMatch]:
        """Return up to match_count colors ordered by ascending distance."""
        embedding_column(column)
        try:
            if self.is_postgres:
                return self._nearest_indexed(
                    column, query_embedding, match_count, probes, timeout
                )
            return self._nearest_exact(column, metric, query_embedding, match_count)
        except DBAPIError as e:
            if getattr(e.orig, "pgcode", None) == QUERY_CANCELED:
                raise SearchTimeout(f"Search on {column} exceeded {timeout}s") from e
            raise PersistenceError(f"Search on {column} failed: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Search on {column} failed: {e}") from e

    def _nearest_indexed(self, column, query_embedding, match_count, probes, timeout):
        vector = "[" + ",".join(str(float(v)) for v in query_embedding) + "]"
        with self.Session.begin() as session:
            # Transaction-local, so pooled connections keep their defaults
            session.execute(
                text("SELECT set_config('ivfflat.probes', :probes, true)"),
                {"probes": str(probes)},
            )
            session.execute(
                text("SELECT set_config('statement_timeout', :ms, true)"),
                {"ms": str(int(timeout * 1000))},
            )
            function = search_function_name(column)
            rows = session.execute(
                text(
                    "SELECT name, hex_color, is_curated, distance "
                    f"FROM {function}(CAST(:embedding AS vector), :match_count)"
                ),
                {"embedding": vector, "match_count": match_count},
            ).all()
        return [
            ColorMatch(
                name=r.name,
                hex_color=r.hex_color,
                is_curated=r.is_curated,
                distance=r.distance,
            )
            for r in rows
        ]

    def _nearest_exact(self, column, metric, query_embedding, match_count):
        attr = embedding_column(column)
        stmt = (
            select(Color.name, Color.hex_color, Color.is_curated, attr)
            .where(attr.isnot(None))
            .order_by(Color.id)
        )
        with self.Session() as session:
            rows = session.execute(stmt).all()
        if not rows:
            return []
        matrix = np.vstack([np.asarray(r[3], dtype=np.float64) for r in rows])
        distances = metric.distance(matrix, np.asarray(query_embedding, dtype=np.float64))
        # Stable sort keeps insertion order among equal distances
        order = np.argsort(distances, kind="stable")[:match_count]
        return [
            ColorMatch(
                name=rows[i].name,
                hex_color=rows[i].hex_color,
                is_curated=rows[i].is_curated,
                distance=float(distances[i]),
            )
            for i in order
        ]

    def log_request(
        self,
        query_text: str,
        model: str,
        status: str,
        duration_ms_embedding: int = None,
        duration_ms_db: int = None,
        top_result_name: str = None,
    ) -> None:
        try:
            with self.Session.begin() as session:
                session.add(
                    SearchRequest(
                        query_text=query_text,
                        model=model,
                        status=status,
                        duration_ms_embedding=duration_ms_embedding,
                        duration_ms_db=duration_ms_db,
                        top_result_name=top_result_name,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not log search request: {e}") from e
