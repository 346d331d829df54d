import json

from flowbridge.sessions import SessionStore


def test_append_keeps_most_recent_in_order(tmp_path):
    store = SessionStore(tmp_path, max_history=15)
    for i in range(40):
        role = "user" if i % 2 == 0 else "assistant"
        session = store.add_message("chat-1", role, f"msg {i}")
        assert len(session.messages) <= 15

    contents = [m.content for m in store.get("chat-1").messages]
    assert contents == [f"msg {i}" for i in range(25, 40)]


def test_record_is_persisted_in_full(tmp_path):
    store = SessionStore(tmp_path, max_history=15)
    store.add_message("oc_abc", "user", "你好")
    store.add_message("oc_abc", "assistant", "hi")

    record = json.loads((tmp_path / "oc_abc.json").read_text(encoding="utf-8"))
    assert set(record) == {"messages", "createdAt"}
    assert [m["role"] for m in record["messages"]] == ["user", "assistant"]
    assert record["messages"][0]["content"] == "你好"
    assert isinstance(record["messages"][0]["timestamp"], int)


def test_sessions_are_reloaded_from_disk(tmp_path):
    SessionStore(tmp_path).add_message("chat", "user", "remember me")

    fresh = SessionStore(tmp_path)
    assert fresh.count() == 0
    assert [m.content for m in fresh.get("chat").messages] == ["remember me"]
    assert fresh.count() == 1


def test_clear_removes_file_and_cache(tmp_path):
    store = SessionStore(tmp_path)
    store.add_message("chat", "user", "x")
    store.clear("chat")

    assert not (tmp_path / "chat.json").exists()
    assert store.get("chat").messages == []


def test_corrupt_file_starts_empty(tmp_path):
    (tmp_path / "chat.json").write_text("{not json", encoding="utf-8")
    store = SessionStore(tmp_path)
    assert store.get("chat").messages == []


def test_malformed_messages_field_starts_empty(tmp_path):
    (tmp_path / "chat.json").write_text(
        json.dumps({"messages": 5, "createdAt": 1}), encoding="utf-8"
    )
    (tmp_path / "other.json").write_text(
        json.dumps({"messages": [{"role": "user", "content": "x", "timestamp": 1e400}]}),
        encoding="utf-8",
    )
    store = SessionStore(tmp_path)
    assert store.get("chat").messages == []
    assert store.get("other").messages == []
    store.add_message("chat", "user", "fresh")
    assert [m.content for m in store.get("chat").messages] == ["fresh"]


def test_keys_are_sanitized_for_filenames(tmp_path):
    store = SessionStore(tmp_path)
    store.add_message("../owner@example.org/phone", "user", "x")
    assert [p.name for p in tmp_path.iterdir()] == ["owner@example.orgphone.json"]


def test_history_length_counts_characters(tmp_path):
    store = SessionStore(tmp_path)
    store.add_message("chat", "user", "abc")
    store.add_message("chat", "assistant", "de")
    assert store.get("chat").history_length() == 5
