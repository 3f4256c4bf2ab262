import pytest

from core.errors import PersistenceError
from core.models import EmbeddedColor
from core.validation import validate_row
from db.metrics import COSINE, EUCLIDEAN, INNER_PRODUCT
from db.schema import SearchRequest
from tests.conftest import unit

OPENAI = "embedding_openai_1536"
MISTRAL = "embedding_mistral_1024"


def embedded(name, hex_color="#c93f38", marker="", axis=0, dims=1536):
    return EmbeddedColor(
        record=validate_row(name, hex_color, marker),
        embedding=unit(dims, {axis: 1.0}),
    )


def test_upsert_twice_keeps_one_row_and_last_write_wins(store):
    store.upsert([embedded("100 Mph", "#c93f38", "")], OPENAI)
    first = store.get("100 Mph")
    store.upsert([embedded("100 Mph", "#ffffff", "x", axis=3)], OPENAI)

    assert store.count() == 1
    color = store.get("100 Mph")
    assert color.hex_color == "ffffff"
    assert color.is_curated is True
    assert color.embedding_openai_1536[3] == pytest.approx(1.0)
    assert color.id == first.id
    assert color.created_at == first.created_at


def test_upsert_leaves_other_backend_column(store):
    store.upsert([embedded("24 Karat", axis=1)], OPENAI)
    store.upsert([embedded("24 Karat", axis=2, dims=1024)], MISTRAL)

    color = store.get("24 Karat")
    assert color.embedding_openai_1536[1] == pytest.approx(1.0)
    assert color.embedding_mistral_1024[2] == pytest.approx(1.0)
    assert store.count(OPENAI) == 1
    assert store.count(MISTRAL) == 1


def test_duplicate_names_in_one_batch_collapse(store):
    written = store.upsert([embedded("Red", "#ff0000"), embedded("Red", "#ee0000")], OPENAI)
    assert written == 1
    assert store.get("Red").hex_color == "ee0000"


def test_upsert_rejects_unknown_column(store):
    with pytest.raises(KeyError):
        store.upsert([embedded("Red")], "hex_color")


def test_wrong_dimension_is_a_persistence_error(store):
    with pytest.raises(PersistenceError):
        store.upsert([embedded("Red", dims=1536)], MISTRAL)


def test_exact_nearest_orders_by_distance_then_insertion(store):
    store.upsert([embedded("Far", axis=5)], OPENAI)
    store.upsert([embedded("Tie A", axis=1)], OPENAI)
    store.upsert([embedded("Tie B", axis=1)], OPENAI)
    store.upsert([embedded("Near", axis=0)], OPENAI)
    query = unit(1536, {0: 0.8, 1: 0.6})

    matches = store.nearest(OPENAI, INNER_PRODUCT, query, 3, probes=10, timeout=5)
    assert [m.name for m in matches] == ["Near", "Tie A", "Tie B"]
    assert [m.distance for m in matches] == sorted(m.distance for m in matches)
    assert matches[0].distance == pytest.approx(-0.8)


@pytest.mark.parametrize("metric", [COSINE, EUCLIDEAN])
def test_exact_nearest_other_metrics(store, metric):
    store.upsert([embedded("A", axis=0), embedded("B", axis=1)], OPENAI)
    matches = store.nearest(OPENAI, metric, unit(1536, {1: 1.0}), 2, probes=1, timeout=5)
    assert [m.name for m in matches] == ["B", "A"]
    assert matches[0].distance == pytest.approx(0.0, abs=1e-6)


def test_nearest_on_empty_column(store):
    store.upsert([embedded("Only OpenAI")], OPENAI)
    assert store.nearest(MISTRAL, COSINE, unit(1024, {0: 1.0}), 5, 10, 5) == []


def test_log_request(store):
    store.log_request("very fast car", "text-embedding-3-small", "ok", 12, 34, "100 Mph")
    with store.Session() as session:
        logged = session.query(SearchRequest).one()
    assert logged.top_result_name == "100 Mph"
    assert logged.duration_ms_db == 34
