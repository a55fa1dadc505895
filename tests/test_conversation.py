"""Tests for building model transcripts and system prompts."""

from sparks_chat.ai.conversation import Attachment, build_messages, build_system_prompt
from sparks_chat.core.types import Role
from sparks_chat.storage.models import Memory, Message


def _msg(role: Role, content: str) -> Message:
    return Message(conversation_id="conv-1", role=role, content=content)


def test_consecutive_roles_are_merged():
    messages = build_messages([
        _msg(Role.USER, "first"),
        _msg(Role.USER, "second"),
        _msg(Role.ASSISTANT, "reply"),
        _msg(Role.USER, "third"),
    ])

    assert messages == [
        {"role": "user", "content": "first\n\nsecond"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "third"},
    ]


def test_attachments_added_to_last_user_message():
    messages = build_messages(
        [_msg(Role.USER, "see files")],
        [
            Attachment(data=b"a,b\n1,2\n", media_type="text/csv", filename="data.csv"),
            Attachment(data=b"\x00" * 2048, media_type="application/zip", filename="bundle.zip"),
        ],
    )

    content = messages[0]["content"]
    assert content[0] == {"type": "text", "text": "see files"}
    assert content[1] == {"type": "text", "text": "[File: data.csv]\na,b\n1,2\n"}
    assert content[2]["text"].startswith("[File: bundle.zip (application/zip, 2.0 KB)")


def test_system_prompt_without_memories():
    assert build_system_prompt("Be kind.") == "Be kind."


def test_system_prompt_lists_memories():
    prompt = build_system_prompt("Be kind.", [
        Memory(user_id="alice", content="Has a dog"),
        Memory(user_id="alice", content="Vegetarian"),
    ])

    assert prompt.startswith("Be kind.\n\n")
    assert prompt.endswith("- Has a dog\n- Vegetarian")
