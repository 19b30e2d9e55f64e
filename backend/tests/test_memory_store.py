"""Tests for MemoryStore similarity-gated writes."""

from typing import Any
from unittest.mock import MagicMock

import pytest

from strategist.core.exceptions import AuthorizationError, NotFoundError
from strategist.memory.store import MemoryStore


def _mock_execute(data: Any) -> MagicMock:
    result = MagicMock()
    result.data = data
    return result


def _build_chain(execute_return: Any) -> MagicMock:
    """Build a fluent Supabase query chain ending in .execute()."""
    chain = MagicMock()
    chain.select.return_value = chain
    chain.insert.return_value = chain
    chain.update.return_value = chain
    chain.delete.return_value = chain
    chain.eq.return_value = chain
    chain.order.return_value = chain
    chain.limit.return_value = chain
    chain.execute.return_value = _mock_execute(execute_return)
    return chain


def _row(memory_id: str = "mem-1", user_id: str = "user-1", **extra: Any) -> dict[str, Any]:
    return {
        "id": memory_id,
        "user_id": user_id,
        "content": "Posts fashion reels weekly",
        "metadata": {"source": "analysis"},
        "created_at": "2026-01-01T00:00:00+00:00",
        **extra,
    }


def _store(rpc_rows: list[dict[str, Any]], table_rows: list[dict[str, Any]]) -> tuple[MemoryStore, MagicMock]:
    db = MagicMock()
    db.rpc.return_value = _build_chain(rpc_rows)
    table_chain = _build_chain(table_rows)
    db.table.return_value = table_chain
    return MemoryStore(db), table_chain


@pytest.mark.asyncio
async def test_search_similar_clamps_and_sorts() -> None:
    store, _ = _store(
        [_row("a", similarity=0.4), _row("b", similarity=1.3), _row("c", similarity=-0.2)],
        [],
    )

    memories = await store.search_similar("user-1", [0.1, 0.2], k=3)

    assert [m.id for m in memories] == ["b", "a", "c"]
    assert memories[0].similarity == 1.0
    assert memories[-1].similarity == 0.0
    store.db.rpc.assert_called_once_with(
        "match_memories",
        {"query_embedding": [0.1, 0.2], "match_user_id": "user-1", "match_count": 3},
    )


@pytest.mark.asyncio
async def test_upsert_updates_near_duplicate() -> None:
    store, chain = _store([_row("mem-1", similarity=0.9)], [_row("mem-1", content="New text")])

    memory, updated = await store.upsert_memory("user-1", "New text", [1.0, 0.0], {"importance": 0.9})

    assert updated is True
    assert memory.id == "mem-1"
    chain.update.assert_called_once()
    payload = chain.update.call_args.args[0]
    assert payload["content"] == "New text"
    assert payload["metadata"] == {"source": "analysis", "importance": 0.9}
    chain.insert.assert_not_called()


@pytest.mark.asyncio
async def test_upsert_inserts_below_threshold() -> None:
    store, chain = _store([_row("mem-1", similarity=0.8)], [_row("mem-2")])

    memory, updated = await store.upsert_memory("user-1", "Other fact", [1.0, 0.0])

    assert updated is False
    assert memory.id == "mem-2"
    chain.insert.assert_called_once()
    chain.update.assert_not_called()


@pytest.mark.asyncio
async def test_insert_if_novel_skips_stored_duplicate() -> None:
    store, chain = _store([_row(similarity=0.95)], [_row("mem-2")])

    result = await store.insert_if_novel("user-1", "Posts fashion reels weekly", [1.0, 0.0])

    assert result is None
    chain.insert.assert_not_called()


@pytest.mark.asyncio
async def test_insert_if_novel_skips_batch_duplicate_without_search() -> None:
    store, chain = _store([], [_row("mem-2")])

    result = await store.insert_if_novel(
        "user-1", "Posts fashion reels weekly", [1.0, 0.0], pending=[[2.0, 0.0]]
    )

    assert result is None
    store.db.rpc.assert_not_called()
    chain.insert.assert_not_called()


@pytest.mark.asyncio
async def test_insert_if_novel_inserts_new_fact() -> None:
    store, chain = _store([_row(similarity=0.5)], [_row("mem-2")])

    result = await store.insert_if_novel("user-1", "Launching a podcast in March", [0.0, 1.0])

    assert result is not None
    assert result.id == "mem-2"
    chain.insert.assert_called_once()


@pytest.mark.asyncio
async def test_delete_memory_missing_raises_not_found() -> None:
    store, _ = _store([], [])

    with pytest.raises(NotFoundError):
        await store.delete_memory("user-1", "missing")


@pytest.mark.asyncio
async def test_delete_memory_of_other_user_is_forbidden() -> None:
    store, chain = _store([], [_row("mem-1", user_id="someone-else")])

    with pytest.raises(AuthorizationError):
        await store.delete_memory("user-1", "mem-1")
    chain.delete.assert_not_called()
