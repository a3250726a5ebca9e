"""Tests for Conversation and ToolResult rendering."""

import json

import pytest

from nookbot.agent.conversation import ASSISTANT, TOOL_RESULTS, USER, Conversation, ToolResult
from nookbot.providers.base import ToolCallRequest


def make_calls() -> list[ToolCallRequest]:
    return [
        ToolCallRequest(id="call_a", name="list_channels", arguments={}),
        ToolCallRequest(id="call_b", name="create_channel", arguments={"name": "general"}),
    ]


class TestAppendOnly:
    def test_turns_are_kept_in_order(self):
        conv = Conversation()
        conv.append_user("hi")
        conv.append_assistant("hello")
        assert [t.role for t in conv.turns] == [USER, ASSISTANT]
        assert len(conv) == 2

    def test_snapshot_is_immutable(self):
        conv = Conversation()
        conv.append_user("hi")
        snapshot = conv.turns
        assert isinstance(snapshot, tuple)
        with pytest.raises(AttributeError):
            snapshot[0].content = "changed"

    def test_snapshot_is_not_affected_by_later_appends(self):
        conv = Conversation()
        conv.append_user("hi")
        snapshot = conv.turns
        conv.append_assistant("hello")
        assert len(snapshot) == 1
        assert len(conv.turns) == 2


class TestToMessages:
    def test_system_prompt_first(self):
        conv = Conversation(system_prompt="be nice")
        conv.append_user("hi")
        messages = conv.to_messages()
        assert messages[0] == {"role": "system", "content": "be nice"}
        assert messages[1] == {"role": "user", "content": "hi"}

    def test_assistant_tool_calls_in_openai_format(self):
        conv = Conversation()
        conv.append_assistant(None, make_calls())
        msg = conv.to_messages()[0]
        assert msg["role"] == "assistant"
        assert msg["content"] == ""
        assert [tc["id"] for tc in msg["tool_calls"]] == ["call_a", "call_b"]
        assert json.loads(msg["tool_calls"][1]["function"]["arguments"]) == {"name": "general"}

    def test_segmented_assistant_content_is_flattened(self):
        conv = Conversation()
        conv.append_assistant([
            {"type": "text", "text": "one"},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": "two"},
        ])
        assert conv.to_messages()[0]["content"] == "one\ntwo"

    def test_tool_results_expand_in_request_order(self):
        conv = Conversation()
        conv.append_assistant("", make_calls())
        conv.append_tool_results([
            ToolResult(tool_call_id="call_a", success=True, payload=["general"], tool_name="list_channels"),
            ToolResult.failure("call_b", "boom", "create_channel"),
        ])
        messages = conv.to_messages()
        assert conv.turns[-1].role == TOOL_RESULTS
        tool_msgs = [m for m in messages if m["role"] == "tool"]
        assert [m["tool_call_id"] for m in tool_msgs] == ["call_a", "call_b"]
        assert json.loads(tool_msgs[1]["content"]) == {"success": False, "error": "boom"}


class TestToolResultContent:
    def test_flags_only_when_set(self):
        result = ToolResult(tool_call_id="c", success=True, payload={"n": 1}, cached=True)
        assert json.loads(result.to_content()) == {"success": True, "result": {"n": 1}, "cached": True}

    def test_validation_error(self):
        result = ToolResult.failure("c", "Invalid input: name: required", validation_error=True)
        body = json.loads(result.to_content())
        assert body["validation_error"] is True
        assert body["success"] is False
