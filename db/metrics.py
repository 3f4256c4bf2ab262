from dataclasses import dataclass
from typing import Callable

import numpy as np


def _inner_product(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    # pgvector's <#> returns the negative inner product so smaller is closer
    return -(matrix @ query)


def _cosine(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = np.inf
    return 1.0 - (matrix @ query) / norms


def _euclidean(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    return np.linalg.norm(matrix - query, axis=1)


@dataclass(frozen=True)
class Metric:
    """One distance metric, as seen by the index, the SQL query and numpy."""

    name: str
    opclass: str  # pgvector operator class used to build the IVFFlat index
    operator: str  # SQL distance operator, smaller = more similar
    distance: Callable[[np.ndarray, np.ndarray], np.ndarray]


INNER_PRODUCT = Metric("inner_product", "vector_ip_ops", "<#>", _inner_product)
COSINE = Metric("cosine", "vector_cosine_ops", "<=>", _cosine)
EUCLIDEAN = Metric("euclidean", "vector_l2_ops", "<->", _euclidean)

METRICS = {m.name: m for m in (INNER_PRODUCT, COSINE, EUCLIDEAN)}
