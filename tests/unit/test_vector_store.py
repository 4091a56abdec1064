import pytest

from code_agent.retrieval.vector_store import (
    DimensionMismatchError,
    InMemoryVectorIndex,
    SqliteVectorIndex,
)
from code_agent.types import Chunk


def _chunk(
    filename: str,
    index: int,
    embedding: tuple[float, ...],
    model: str = "embed-model",
    identifiers: frozenset[str] = frozenset(),
) -> Chunk:
    return Chunk(
        filename=filename,
        file_type="typescript",
        content=f"// {filename} window {index}",
        window_index=index,
        window_start=index * 800,
        window_end=index * 800 + 1000,
        start_line=index * 20 + 1,
        end_line=index * 20 + 25,
        embedding_model=model,
        embedding=embedding,
        extracted_identifiers=identifiers,
    )


@pytest.fixture(params=["memory", "sqlite"])
def index(request, tmp_path):
    if request.param == "memory":
        return InMemoryVectorIndex()
    return SqliteVectorIndex(tmp_path / "index.db")


def test_search_is_restricted_to_one_model(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))
    index.put(_chunk("b.ts", 0, (0.0, 1.0)))
    index.put(_chunk("a.ts", 0, (1.0, 0.0, 0.0), model="other-model"))

    outcome = index.search([1.0, 0.0], top_k=5, model="embed-model")

    assert outcome.compatible
    assert [result.chunk.filename for result in outcome.results] == ["a.ts", "b.ts"]
    assert all(result.chunk.embedding_model == "embed-model" for result in outcome.results)
    assert outcome.results[0].similarity == pytest.approx(1.0)
    assert index.models() == ["embed-model", "other-model"]


def test_unknown_model_is_incompatible(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))

    outcome = index.search([1.0, 0.0], top_k=5, model="missing-model")

    assert outcome.results == []
    assert not outcome.compatible


def test_put_replaces_same_key_and_checks_dimension(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))
    index.put(_chunk("a.ts", 0, (0.0, 1.0), identifiers=frozenset({"retryRequest"})))

    assert index.count("embed-model") == 1
    stored = index.get_all("embed-model")[0]
    assert stored.embedding == (0.0, 1.0)
    assert stored.extracted_identifiers == frozenset({"retryRequest"})
    assert index.dimension("embed-model") == 2

    with pytest.raises(DimensionMismatchError):
        index.put(_chunk("b.ts", 0, (1.0, 0.0, 0.0)))


def test_remove_file_only_touches_one_model(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))
    index.put(_chunk("a.ts", 1, (0.5, 0.5)))
    index.put(_chunk("a.ts", 0, (1.0,), model="other-model"))

    assert index.remove_file("a.ts", "embed-model") == 2
    assert index.count("embed-model") == 0
    assert index.count("other-model") == 1
    assert index.filenames() == ["a.ts"]
    assert index.dimension("embed-model") is None


def test_equal_scores_keep_insertion_order(index) -> None:
    for name in ("first.ts", "second.ts", "third.ts"):
        index.put(_chunk(name, 0, (1.0, 1.0)))

    outcome = index.search([2.0, 2.0], top_k=2, model="embed-model")

    assert [result.chunk.filename for result in outcome.results] == ["first.ts", "second.ts"]


def test_replace_swaps_a_file_and_keeps_other_files(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))
    index.put(_chunk("a.ts", 1, (0.5, 0.5)))
    index.put(_chunk("b.ts", 0, (0.0, 1.0)))

    removed = index.replace("embed-model", {"a.ts"}, [_chunk("a.ts", 0, (0.6, 0.8))])

    assert removed == 2
    assert index.count("embed-model") == 2
    assert sorted(index.filenames("embed-model")) == ["a.ts", "b.ts"]


def test_replace_with_wrong_dimension_leaves_index_untouched(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))
    index.put(_chunk("b.ts", 0, (0.0, 1.0)))
    before = index.get_all()

    with pytest.raises(DimensionMismatchError):
        index.replace("embed-model", {"a.ts"}, [_chunk("a.ts", 0, (1.0, 0.0, 0.0))])

    assert index.get_all() == before


def test_replace_of_every_file_may_change_dimension(index) -> None:
    index.put(_chunk("a.ts", 0, (1.0, 0.0)))
    index.put(_chunk("b.ts", 0, (0.0, 1.0)))

    index.replace(
        "embed-model",
        {"a.ts", "b.ts"},
        [_chunk("a.ts", 0, (1.0, 0.0, 0.0)), _chunk("b.ts", 0, (0.0, 0.0, 1.0))],
    )

    assert index.dimension("embed-model") == 3
    assert index.count("embed-model") == 2


def test_replace_rejects_mixed_dimensions_in_one_batch(index) -> None:
    with pytest.raises(DimensionMismatchError):
        index.replace(
            "embed-model",
            {"a.ts"},
            [_chunk("a.ts", 0, (1.0, 0.0)), _chunk("a.ts", 1, (1.0, 0.0, 0.0))],
        )

    assert index.count() == 0


def test_search_results_carry_insertion_position(index) -> None:
    index.put(_chunk("first.ts", 0, (0.0, 1.0)))
    index.put(_chunk("second.ts", 0, (1.0, 0.0)))

    outcome = index.search([1.0, 0.0], top_k=2, model="embed-model")

    assert [(result.chunk.filename, result.position) for result in outcome.results] == [
        ("second.ts", 1),
        ("first.ts", 0),
    ]
