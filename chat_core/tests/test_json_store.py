import json
import tempfile
from pathlib import Path

from chat_core.domain.conversation import Conversation
from chat_core.domain.models import InlineBinaryPart, Message, TextPart, text_message
from chat_core.infrastructure.storage.json_store import JsonKeyValueStore
from chat_core.infrastructure.storage.state_store import CONVERSATIONS_KEY, ChatStateStore


def _conversation():
    return Conversation(
        id="conv-1700000000000",
        title="Hello",
        messages=(
            Message(
                id="msg-1",
                role="user",
                parts=(InlineBinaryPart("image/png", "aGk="), TextPart("what is this?")),
            ),
            text_message("msg-2-model", "model", "A picture."),
        ),
    )


def test_kv_store_get_set_remove():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / ".storage" / "state.json"
        kv = JsonKeyValueStore(path)
        assert kv.get("a") is None
        kv.set("a", "1")
        kv.set("b", "2")
        kv.remove("a")
        kv.remove("missing")
        reopened = JsonKeyValueStore(path)
        assert reopened.get("a") is None
        assert reopened.get("b") == "2"


def test_kv_store_tolerates_corrupt_file():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "state.json"
        path.write_text("{not json", encoding="utf-8")
        kv = JsonKeyValueStore(path)
        assert kv.get("a") is None
        kv.set("a", "1")
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}


def test_state_store_round_trip_omits_session():
    with tempfile.TemporaryDirectory() as d:
        kv = JsonKeyValueStore(Path(d) / "state.json")
        store = ChatStateStore(kv)
        conv = _conversation()
        store.save_conversations({conv.id: conv})
        store.save_active_conversation_id(conv.id)
        store.save_provider("openai")
        store.save_credential("gemini", "g-key")

        blob = json.loads(kv.get(CONVERSATIONS_KEY))
        assert set(blob[conv.id]) == {"id", "title", "messages"}
        assert blob[conv.id]["messages"][0]["parts"][0] == {"inlineData": {"mimeType": "image/png", "data": "aGk="}}

        loaded = ChatStateStore(JsonKeyValueStore(Path(d) / "state.json")).load()
        assert loaded.conversations[conv.id] == conv
        assert loaded.active_conversation_id == conv.id
        assert loaded.provider == "openai"
        assert loaded.credentials == {"gemini": "g-key"}


def test_state_store_clears_active_id():
    with tempfile.TemporaryDirectory() as d:
        kv = JsonKeyValueStore(Path(d) / "state.json")
        store = ChatStateStore(kv)
        store.save_active_conversation_id("conv-1")
        store.save_active_conversation_id(None)
        assert kv.get("activeConversationId") is None


def test_state_store_corrupt_blob_loads_empty():
    with tempfile.TemporaryDirectory() as d:
        kv = JsonKeyValueStore(Path(d) / "state.json")
        kv.set(CONVERSATIONS_KEY, "{broken")
        assert ChatStateStore(kv).load().conversations == {}


def test_state_store_skips_malformed_conversation():
    with tempfile.TemporaryDirectory() as d:
        kv = JsonKeyValueStore(Path(d) / "state.json")
        good = {"id": "conv-2", "title": "ok", "messages": [{"id": "m", "role": "user", "parts": [{"text": "hi"}]}]}
        bad = {"id": "conv-3", "title": "bad", "messages": [{"id": "m", "role": "system", "parts": []}]}
        kv.set(CONVERSATIONS_KEY, json.dumps({"conv-2": good, "conv-3": bad, "conv-4": {"title": "no id"}}))
        loaded = ChatStateStore(kv).load()
        assert list(loaded.conversations) == ["conv-2"]
        assert loaded.conversations["conv-2"].messages[0].text == "hi"
