"""Tests for ExecutionHistoryStore and runtime message conversion."""

from src.scheduler.history import (
    ExecutionHistoryStore,
    ExecutionMessage,
    ExecutionRecord,
    to_history_message,
)


def _record(execution_id: str = "task_1", **kwargs) -> ExecutionRecord:
    defaults = {
        "prompt": "Summarize my inbox",
        "status": "pending",
        "schedule_id": "sched1",
        "messages": [ExecutionMessage(type="user", content="Summarize my inbox")],
    }
    defaults.update(kwargs)
    return ExecutionRecord(id=execution_id, **defaults)


# -- to_history_message --------------------------------------------------------


def test_text_becomes_assistant_message() -> None:
    entry = to_history_message({"type": "text", "part": {"text": "Done."}})
    assert entry is not None
    assert entry.type == "assistant"
    assert entry.content == "Done."
    assert entry.id.startswith("msg_")


def test_empty_text_is_dropped() -> None:
    assert to_history_message({"type": "text", "part": {"text": ""}}) is None


def test_tool_call() -> None:
    entry = to_history_message(
        {"type": "tool_call", "part": {"tool": "search", "input": {"q": "news"}}}
    )
    assert entry.type == "tool"
    assert entry.content == "Using tool: search"
    assert entry.tool_name == "search"
    assert entry.tool_input == {"q": "news"}


def test_tool_use_only_when_finished() -> None:
    running = {"type": "tool_use", "part": {"tool": "bash", "state": {"status": "running"}}}
    done = {"type": "tool_use", "part": {"tool": "bash", "state": {"status": "completed"}}}
    failed = {"type": "tool_use", "part": {"tool": "bash", "state": {"status": "error"}}}

    assert to_history_message(running) is None
    assert to_history_message(done).content == "Tool bash completed"
    assert to_history_message(failed).content == "Tool bash error"


def test_unknown_message_type_is_dropped() -> None:
    assert to_history_message({"type": "step_start"}) is None


# -- Executions ----------------------------------------------------------------


async def test_save_and_get_execution(history: ExecutionHistoryStore) -> None:
    await history.save_execution(_record())

    fetched = await history.get_execution("task_1")
    assert fetched is not None
    assert fetched.schedule_id == "sched1"
    assert fetched.status == "pending"
    assert [m.type for m in fetched.messages] == ["user"]


async def test_get_missing_execution(history: ExecutionHistoryStore) -> None:
    assert await history.get_execution("nope") is None


async def test_update_status_and_session(history: ExecutionHistoryStore) -> None:
    await history.save_execution(_record())

    await history.update_status("task_1", "running")
    fetched = await history.get_execution("task_1")
    assert fetched.status == "running"
    assert fetched.completed_at is None

    await history.update_status("task_1", "completed", "2026-02-04T12:05:00.000Z")
    await history.update_session_id("task_1", "sess_9")
    fetched = await history.get_execution("task_1")
    assert fetched.status == "completed"
    assert fetched.completed_at == "2026-02-04T12:05:00.000Z"
    assert fetched.session_id == "sess_9"


async def test_messages_keep_insertion_order(history: ExecutionHistoryStore) -> None:
    await history.save_execution(_record())
    await history.add_message("task_1", ExecutionMessage(type="assistant", content="one"))
    await history.add_message(
        "task_1",
        ExecutionMessage(type="tool", content="Using tool: x", tool_name="x", tool_input=[1, 2]),
    )

    messages = await history.get_messages("task_1")
    assert [m.content for m in messages] == ["Summarize my inbox", "one", "Using tool: x"]
    assert messages[2].tool_input == [1, 2]


# -- Todos ---------------------------------------------------------------------


async def test_save_todos_replaces_list(history: ExecutionHistoryStore) -> None:
    await history.save_execution(_record())
    await history.save_todos("task_1", [{"content": "a"}, {"content": "b"}])
    await history.save_todos("task_1", [{"content": "c", "status": "done"}])

    assert await history.get_todos("task_1") == [{"content": "c", "status": "done"}]


async def test_clear_todos(history: ExecutionHistoryStore) -> None:
    await history.save_execution(_record())
    await history.save_todos("task_1", [{"content": "a"}])
    await history.clear_todos("task_1")
    assert await history.get_todos("task_1") == []
