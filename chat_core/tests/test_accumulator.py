from chat_core.domain.accumulator import Complete, Delta, Fail, StreamState, apply
from chat_core.domain.conversation import Conversation
from chat_core.domain.models import Message, TextPart, text_message


def _fresh_state():
    user = text_message("msg-1", "user", "Hello")
    placeholder = Message(id="msg-2-model", role="model", parts=(TextPart(""),))
    conv = Conversation(id="conv-1", title="Hello", messages=(user, placeholder))
    return StreamState(conversation=conv, placeholder_id="msg-2-model")


def test_deltas_concatenate_in_order():
    state = _fresh_state()
    for piece in ["He", "llo", "", "!", " 你好"]:
        state = apply(state, Delta(piece))
    last = state.conversation.messages[-1]
    assert last.id == "msg-2-model"
    assert last.parts == (TextPart("Hello! 你好"),)
    assert state.text == "Hello! 你好"
    assert len(state.conversation.messages) == 2


def test_delta_replaces_with_full_text_not_fragment():
    state = apply(_fresh_state(), Delta("a"))
    state = apply(state, Delta("b"))
    assert state.conversation.messages[-1].text == "ab"


def test_complete_keeps_conversation_and_settles():
    state = apply(_fresh_state(), Delta("done"))
    settled = apply(state, Complete())
    assert settled.settled
    assert settled.conversation is state.conversation
    assert apply(settled, Delta("more")) is settled


def test_fail_replaces_placeholder_by_id():
    state = apply(_fresh_state(), Delta("partial"))
    failed = apply(state, Fail("错误: boom", "msg-3-error"))
    msgs = failed.conversation.messages
    assert [m.id for m in msgs] == ["msg-1", "msg-3-error"]
    assert msgs[-1].role == "model"
    assert msgs[-1].text == "错误: boom"
    assert failed.settled


def test_fail_appends_when_placeholder_missing():
    state = _fresh_state()
    conv = state.conversation.with_messages(state.conversation.messages[:1])
    failed = apply(StreamState(conversation=conv, placeholder_id="msg-2-model"), Fail("x", "msg-3-error"))
    assert [m.id for m in failed.conversation.messages] == ["msg-1", "msg-3-error"]


def test_delta_after_fail_is_noop():
    failed = apply(_fresh_state(), Fail("错误: boom", "msg-3-error"))
    assert apply(failed, Delta("late")) is failed


def test_stale_delta_dropped_when_placeholder_not_trailing():
    state = _fresh_state()
    newer = state.conversation.append(text_message("msg-9", "user", "next"))
    stale = StreamState(conversation=newer, placeholder_id="msg-2-model")
    assert apply(stale, Delta("x")) is stale
