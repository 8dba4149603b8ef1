from datetime import timedelta

import pytest

from conftest import assistant, record_call, user
from errors import TraceValidationError
from models import ConversationMessage, ToolCall, ToolResult, utcnow
from trace_store import TraceStore


def test_views_preserve_insertion_order(trace):
    trace.add_message(user("hi"))
    trace.add_message(assistant("hello"))
    record_call(trace, "c1", "add", result=3)
    record_call(trace, "c2", "multiply", result=6)

    assert [m.content for m in trace.get_conversation()] == ["hi", "hello"]
    assert [c.id for c in trace.get_tool_calls()] == ["c1", "c2"]
    assert trace.get_tool_result("c2").result == 6
    assert trace.get_last_message().content == "hello"


def test_result_must_reference_existing_call(trace):
    with pytest.raises(TraceValidationError):
        trace.add_tool_result(ToolResult(id="r1", tool_call_id="missing"))


def test_duplicate_call_id_rejected(trace):
    record_call(trace, "c1", "add", with_result=False)
    with pytest.raises(TraceValidationError):
        trace.add_tool_call(ToolCall(id="c1", name="add", arguments={}))


def test_invalid_message_role_rejected(trace):
    with pytest.raises(TraceValidationError):
        trace.add_message(ConversationMessage(role="system", content="x"))


def test_views_are_copies(trace):
    trace.add_message(user("hi"))
    trace.get_conversation().clear()
    assert len(trace.get_conversation()) == 1


def test_messages_evict_oldest_first():
    store = TraceStore(max_messages=3)
    for i in range(5):
        store.add_message(user(f"m{i}"))
    assert [m.content for m in store.get_conversation()] == ["m2", "m3", "m4"]


def test_tool_calls_evict_oldest_and_forget_their_ids():
    store = TraceStore(max_tool_calls=2)
    for i in range(3):
        store.add_tool_call(ToolCall(id=f"c{i}", name="t", arguments={}))
    assert [c.id for c in store.get_tool_calls()] == ["c1", "c2"]

    # a late result for an evicted call is dropped, not an error
    store.add_tool_result(ToolResult(id="r0", tool_call_id="c0"))
    assert store.get_tool_result("c0") is None
    assert store.get_tool_results() == []

    with pytest.raises(TraceValidationError):
        store.add_tool_result(ToolResult(id="rx", tool_call_id="never-seen"))


def test_evicting_a_call_drops_its_result():
    store = TraceStore(max_tool_calls=2)
    record_call(store, "c0", "t", result=0)
    record_call(store, "c1", "t", result=1)
    record_call(store, "c2", "t", result=2)
    assert store.get_tool_result("c0") is None
    assert [r.tool_call_id for r in store.get_tool_results()] == ["c1", "c2"]


def test_clear_forgets_evicted_ids():
    store = TraceStore(max_tool_calls=1)
    store.add_tool_call(ToolCall(id="c0", name="t", arguments={}))
    store.add_tool_call(ToolCall(id="c1", name="t", arguments={}))
    store.clear()
    with pytest.raises(TraceValidationError):
        store.add_tool_result(ToolResult(id="r0", tool_call_id="c0"))


def test_tool_results_evict_oldest_first():
    store = TraceStore(max_tool_results=2)
    for i in range(3):
        record_call(store, f"c{i}", "t", result=i)
    assert store.get_tool_result("c0") is None
    assert [r.result for r in store.get_tool_results()] == [1, 2]


def test_bounds_must_be_positive():
    with pytest.raises(ValueError):
        TraceStore(max_messages=0)


def test_clear_empties_everything_and_is_idempotent(trace):
    trace.add_message(user("hi"))
    record_call(trace, "c1", "add", result=1)

    trace.clear()
    assert trace.get_conversation() == []
    assert trace.get_tool_calls() == []
    assert trace.get_tool_results() == []
    assert trace.get_last_message() is None

    trace.clear()
    assert trace.get_memory_usage() == {"conversation": 0, "tool_calls": 0, "tool_results": 0, "total": 0}


def test_call_ids_reusable_after_clear(trace):
    record_call(trace, "c1", "add", result=1)
    trace.clear()
    record_call(trace, "c1", "add", result=2)
    assert trace.get_tool_result("c1").result == 2


def test_compact_drops_entries_older_than_retention():
    store = TraceStore(retention_s=60)
    old = utcnow() - timedelta(seconds=120)
    store.add_message(ConversationMessage(role="user", content="old", timestamp=old))
    store.add_message(user("new"))

    removed = store.compact()

    assert removed == 1
    assert [m.content for m in store.get_conversation()] == ["new"]


def test_compact_without_retention_is_noop(trace):
    trace.add_message(user("hi"))
    assert trace.compact() == 0
    assert len(trace.get_conversation()) == 1


def test_export_and_memory_usage(trace):
    trace.add_message(user("hi"))
    record_call(trace, "c1", "add", result=1)
    exported = trace.export()
    assert len(exported["conversation"]) == 1
    assert len(exported["tool_calls"]) == 1
    assert trace.get_memory_usage()["total"] == 3
