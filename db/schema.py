from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Color(Base):
    __tablename__ = "colors"
    id = Column(Integer, primary_key=True)  # insertion order, breaks distance ties
    name = Column(String(100), nullable=False, unique=True)
    hex_color = Column(String(6), nullable=False)  # without the leading '#'
    is_curated = Column(Boolean, nullable=False, default=False)
    # One column per embedding backend: embedding_<backend>_<dimensions>
    embedding_openai_1536 = Column(Vector(1536), nullable=True)
    embedding_mistral_1024 = Column(Vector(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SearchRequest(Base):
    __tablename__ = "color_genie_requests"
    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    query_text = Column(Text, nullable=True)
    model = Column(String(100), nullable=True)
    status = Column(String(32), nullable=True)
    duration_ms_embedding = Column(Integer, nullable=True)
    duration_ms_db = Column(Integer, nullable=True)
    top_result_name = Column(String(100), nullable=True)


def embedding_column(name: str):
    """Return the Color column attribute for an embedding column name."""
    column = Color.__table__.columns.get(name)
    if column is None or not name.startswith("embedding_"):
        raise KeyError(f"colors has no embedding column {name!r}")
    return getattr(Color, name)
