import zlib
from types import SimpleNamespace

import numpy as np
import pytest

from core.config import Settings
from core.embeddings import EmbeddingBackend
from db.setup import init_db, make_engine
from db.store import ColorStore

# Axes below this are reserved for hand-placed concept vectors
RESERVED_AXES = 16


def unit(dims, weights):
    vector = np.zeros(dims)
    for axis, weight in weights.items():
        vector[axis] = weight
    return (vector / np.linalg.norm(vector)).tolist()


class FakeBackend(EmbeddingBackend):
    """Deterministic offline backend shaped like the OpenAI one."""

    name = "openai"
    model = "fake-embedding"
    dimensions = 1536
    column = "embedding_openai_1536"
    metric = "inner_product"

    def __init__(self, vectors=None, drop=(), reverse=False, fail=False, max_batch_size=64):
        self.vectors = dict(vectors or {})
        self.drop = set(drop)
        self.reverse = reverse
        self.fail = fail
        self.max_batch_size = max_batch_size
        self.calls = []

    def vector_for(self, text):
        if text in self.vectors:
            return self.vectors[text]
        span = self.dimensions - RESERVED_AXES
        axis = RESERVED_AXES + zlib.crc32(text.encode("utf-8")) % span
        return unit(self.dimensions, {axis: 1.0})

    async def _create(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("provider unavailable")
        data = [
            SimpleNamespace(object="embedding", index=i, embedding=self.vector_for(t))
            for i, t in enumerate(texts)
            if t not in self.drop
        ]
        if self.reverse:
            data.reverse()
        return data


class FakeMistralBackend(FakeBackend):
    name = "mistral"
    dimensions = 1024
    column = "embedding_mistral_1024"
    metric = "cosine"


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", request_delay=0, pause_seconds=0)


@pytest.fixture
def store(tmp_path, settings):
    engine = make_engine(f"sqlite:///{tmp_path / 'colors.db'}")
    init_db(engine, settings)
    return ColorStore(engine)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def write_csv(tmp_path):
    def _write(rows, name="colornames.csv"):
        path = tmp_path / name
        lines = ["name,hex,good name"] + [",".join(row) for row in rows]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    return _write
