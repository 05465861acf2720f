"""Pytest fixtures for History Lens tests."""

import json

import pytest

from history_lens.indexer import ConversationIndex
from history_lens.loader import parse_payload
from history_lens.models import Message
from history_lens.pagination import MemoryPreferenceStore


@pytest.fixture
def make_message():
    """Factory for messages with sensible defaults."""

    def _make(uid: str, **overrides) -> Message:
        data = {
            "uid": uid,
            "conversationId": "chatgpt:conv-1",
            "messageId": uid,
            "sourceId": "src-a",
            "vendor": "chatgpt",
            "role": "user",
            "createdAt": 1706789000,
            "text": f"Message {uid}",
            "title": "Test conversation",
        }
        data.update(overrides)
        return Message.model_validate(data)

    return _make


@pytest.fixture
def sample_payload_dict():
    """A store payload with three conversations, a fork tree and bad records."""
    login = {"title": "Fix the login bug", "vendor": "chatgpt", "sourceId": "src-a"}
    messages = [
        {**login, "uid": "m1", "conversationId": "chatgpt:c1", "messageId": "m1",
         "role": "user", "createdAt": 1706789010, "text": "Help me fix the login bug"},
        {**login, "uid": "m2", "conversationId": "chatgpt:c1", "messageId": "m2",
         "role": "assistant", "createdAt": 1706789020000, "text": "Check validate_token"},
        {**login, "uid": "m3", "conversationId": "chatgpt:c1", "messageId": "m3",
         "role": "user", "createdAt": 1706789030, "text": "It returns None"},
        {**login, "uid": "m4", "conversationId": "chatgpt:c1", "messageId": "m4",
         "role": "assistant", "createdAt": 1706789040, "text": "Return the user object"},
        {**login, "uid": "m5", "conversationId": "chatgpt:c1", "messageId": "m5",
         "role": "assistant", "createdAt": 1706789045, "text": "Regenerated: raise instead"},
        {**login, "uid": "m6", "conversationId": "chatgpt:c1", "messageId": "m6",
         "role": "user", "createdAt": 1706789050, "text": "Thanks, that worked"},
        {"uid": "u1", "conversationId": "claude:c2", "messageId": "u1", "sourceId": "src-b",
         "vendor": "claude", "role": "user", "createdAt": 1706900000,
         "text": "Set up a deploy pipeline", "title": "claude"},
        {"uid": "u2", "conversationId": "claude:c2", "messageId": "u2", "sourceId": "src-b",
         "vendor": "claude", "role": "assistant", "createdAt": 1706900100,
         "text": "Here is a GitHub Actions workflow", "title": "Deploy pipeline"},
        {"uid": "g1", "conversationId": "gemini:c3", "messageId": "g1", "sourceId": "src-a",
         "vendor": "gemini", "role": "user", "createdAt": 0, "text": "Undated question"},
        {"uid": "g2", "conversationId": "gemini:c3", "messageId": "g2", "sourceId": "src-a",
         "vendor": "gemini", "role": "assistant", "createdAt": None, "text": "Undated answer"},
        # Later sync pass corrects m2
        {**login, "uid": "m2", "conversationId": "chatgpt:c1", "messageId": "m2",
         "role": "assistant", "createdAt": 1706789020000, "text": "Check validate_token (corrected)"},
        # Malformed
        {"conversationId": "chatgpt:c1", "vendor": "chatgpt", "role": "user", "text": "no uid"},
        {"uid": "x1", "conversationId": "bard:c9", "vendor": "bard", "role": "user", "text": "?"},
        {"uid": "x2", "conversationId": "chatgpt:c1", "vendor": "chatgpt", "role": "user", "text": ""},
    ]
    nodes = [
        {"id": "n1", "conversation_id": "c1", "message_id": "m1", "parent_id": None,
         "children_ids": '["n2"]', "depth": 0, "is_root": 1, "is_branch_point": 0},
        {"id": "n2", "conversation_id": "c1", "message_id": "m2", "parent_id": "n1",
         "children_ids": ["n3"], "depth": 1, "is_root": 0, "is_branch_point": 0},
        {"id": "n3", "conversation_id": "c1", "message_id": "m3", "parent_id": "n2",
         "children_ids": '["n4", "n5"]', "depth": 2, "is_root": 0, "is_branch_point": 1},
        {"id": "n4", "conversation_id": "c1", "message_id": "m4", "parent_id": "n3",
         "children_ids": '["n6"]', "depth": 3, "is_root": 0, "is_branch_point": 0},
        {"id": "n5", "conversation_id": "c1", "message_id": "m5", "parent_id": "n3",
         "children_ids": "[]", "depth": 3, "is_root": 0, "is_branch_point": 0},
        {"id": "n6", "conversation_id": "c1", "message_id": "m6", "parent_id": "n4",
         "children_ids": "not json", "depth": 4, "is_root": 0, "is_branch_point": 0},
        {"conversation_id": "c1", "message_id": "m9"},
    ]
    conversations = [
        {"id": "c1", "title": "Fix the login bug", "provider": "chatgpt", "ts": "2024-02-01",
         "summary": "Login fix", "tags_json": '["auth"]', "topics_json": None,
         "entities_json": "{broken", "outlier_count": 2, "attachment_count": 1},
        {"id": "claude:c2", "title": "Deploy pipeline", "provider": "claude",
         "outlier_count": 0},
    ]
    return {
        "conversations": conversations,
        "messages": messages,
        "hasTree": True,
        "schema": "v3",
        "nodes": nodes,
    }


@pytest.fixture
def sample_payload(sample_payload_dict):
    return parse_payload(sample_payload_dict)


@pytest.fixture
def source_labels():
    return {"src-a": "ChatGPT 2024-02", "src-b": "Claude export"}


@pytest.fixture
def preferences():
    return MemoryPreferenceStore()


@pytest.fixture
def index(sample_payload, source_labels, preferences):
    """A loaded conversation index over the sample payload."""
    return ConversationIndex(sample_payload, source_labels=source_labels, preferences=preferences)


@pytest.fixture
def payload_file(tmp_path, sample_payload_dict):
    """The sample payload written to disk."""
    path = tmp_path / "payload.json"
    path.write_text(json.dumps(sample_payload_dict))
    return path
