"""Tests for EntityStore invariants: credentials, ownership, cascades and ordering."""

import pytest
from sqlmodel import Session, select

from chatvault.core.crypto import CredentialCipher, fingerprint, parse_token, SealedToken
from chatvault.core.errors import Conflict, CredentialCorrupt, InvalidArgument, NotFound
from chatvault.models.chat import Message
from chatvault.models.user import User
from tests.conftest import test_engine


def _raw_user(user_id: str) -> User:
    with Session(test_engine) as session:
        return session.get(User, user_id)


# --- users & credentials ---


def test_credential_is_sealed_at_rest(store):
    store.upsert_user({"id": "u1", "email": "u1@example.com"})
    view = store.set_user_credential("u1", "key123")

    assert view.gemini_api_key == "key123"
    assert view.api_key_fingerprint == fingerprint("key123")

    raw = _raw_user("u1")
    assert raw.gemini_api_key != "key123"
    assert isinstance(parse_token(raw.gemini_api_key), SealedToken)
    assert store.get_user("u1").gemini_api_key == "key123"


def test_clearing_credential(store):
    store.upsert_user({"id": "u1"})
    store.set_user_credential("u1", "key123")
    view = store.set_user_credential("u1", "")
    assert view.gemini_api_key is None
    assert _raw_user("u1").gemini_api_key is None


def test_legacy_plaintext_credential_is_readable(store, session):
    session.add(User(id="legacy", gemini_api_key="AIzaSy-old-plaintext"))
    session.commit()
    assert store.get_user("legacy").gemini_api_key == "AIzaSy-old-plaintext"


def test_corrupt_credential_raises(store, session):
    store.upsert_user({"id": "u1"})
    store.set_user_credential("u1", "key123")
    user = session.get(User, "u1")
    nonce, tag, ciphertext = user.gemini_api_key.split(":")
    user.gemini_api_key = f"{nonce}:{'00' * 16}:{ciphertext}"
    session.add(user)
    session.commit()

    with pytest.raises(CredentialCorrupt):
        store.get_user("u1")


def _store_foreign_token(session, user_id: str) -> None:
    """Store a credential sealed under some other key, as after a key rotation."""
    session.add(User(id=user_id, gemini_api_key=CredentialCipher(bytes(32)).seal("old-key")))
    session.commit()


def test_profile_flags_undecryptable_credential(store, session):
    _store_foreign_token(session, "u1")
    view = store.get_profile("u1")
    assert view.api_key_status == "corrupt"
    assert view.gemini_api_key is None
    assert view.public_dict()["has_api_key"] is True


def test_identity_never_opens_the_credential(store, session):
    _store_foreign_token(session, "u1")
    view = store.get_identity("u1")
    assert view.id == "u1"
    assert view.api_key_status == "set"
    assert view.gemini_api_key is None
    assert store.get_identity("nobody") is None


def test_list_users_survives_undecryptable_credential(store, session):
    _store_foreign_token(session, "broken")
    store.upsert_user({"id": "fine"})
    store.set_user_credential("fine", "key123")

    users = {u.id: u for u in store.list_users()}
    assert users["broken"].api_key_status == "corrupt"
    assert users["fine"].gemini_api_key == "key123"


def test_undecryptable_credential_can_be_replaced(store, session):
    _store_foreign_token(session, "u1")
    view = store.set_user_credential("u1", "new-key")
    assert view.api_key_status == "set"
    assert store.get_user("u1").gemini_api_key == "new-key"


def test_record_login_refreshes_timestamp(store):
    first = store.upsert_user({"id": "u1"}, record_login=True).last_login_at
    assert store.record_login("u1").last_login_at >= first
    with pytest.raises(NotFound):
        store.record_login("nobody")


def test_get_unknown_user_returns_none(store):
    assert store.get_user("nobody") is None


def test_set_credential_for_unknown_user(store):
    with pytest.raises(NotFound):
        store.set_user_credential("nobody", "key123")


def test_upsert_merges_instead_of_clobbering(store):
    store.upsert_user({"id": "u1", "email": "u1@example.com", "first_name": "Ada"})
    store.set_user_credential("u1", "key123")
    store.update_user_profile("u1", {"theme_color": "green"})

    view = store.upsert_user({"id": "u1", "last_name": "Lovelace"}, record_login=True)

    assert view.first_name == "Ada"
    assert view.last_name == "Lovelace"
    assert view.email == "u1@example.com"
    assert view.theme_color == "green"
    assert view.gemini_api_key == "key123"
    assert view.last_login_at is not None


def test_upsert_requires_id(store):
    with pytest.raises(InvalidArgument):
        store.upsert_user({"email": "x@example.com"})


def test_email_is_unique(store):
    store.upsert_user({"id": "u1", "email": "same@example.com"})
    with pytest.raises(Conflict):
        store.upsert_user({"id": "u2", "email": "same@example.com"})
    assert store.get_user("u2") is None


def test_update_profile_subset(store):
    store.upsert_user({"id": "u1", "first_name": "Ada", "last_name": "Byron"})
    view = store.update_user_profile("u1", {"last_name": "Lovelace", "profile_image_url": "https://img/1"})
    assert view.first_name == "Ada"
    assert view.last_name == "Lovelace"
    assert view.profile_image_url == "https://img/1"


def test_update_profile_rejects_bad_theme(store):
    store.upsert_user({"id": "u1"})
    with pytest.raises(InvalidArgument):
        store.update_user_profile("u1", {"theme_color": "purple"})
    assert store.get_user("u1").theme_color == "blue"


def test_update_profile_rejects_privileged_fields(store):
    store.upsert_user({"id": "u1"})
    with pytest.raises(InvalidArgument):
        store.update_user_profile("u1", {"is_admin": True})
    assert store.get_user("u1").is_admin is False


def test_update_profile_unknown_user(store):
    with pytest.raises(NotFound):
        store.update_user_profile("nobody", {"first_name": "X"})


def test_admin_update_user(store):
    store.upsert_user({"id": "u1"})
    view = store.update_user("u1", {"is_active": False, "gemini_api_key": "admin-set"})
    assert view.is_active is False
    assert view.gemini_api_key == "admin-set"
    assert _raw_user("u1").gemini_api_key != "admin-set"


def test_admin_update_cannot_change_id(store):
    store.upsert_user({"id": "u1"})
    with pytest.raises(InvalidArgument):
        store.update_user("u1", {"id": "u2"})


def test_list_users_decrypts(store):
    store.upsert_user({"id": "u1"})
    store.upsert_user({"id": "u2"})
    store.set_user_credential("u2", "key-two")
    users = {u.id: u for u in store.list_users()}
    assert users["u1"].gemini_api_key is None
    assert users["u2"].gemini_api_key == "key-two"


def test_set_single_admin(store):
    store.upsert_user({"id": "u1", "email": "a@example.com", "is_admin": True})
    store.upsert_user({"id": "u2", "email": "b@example.com", "is_admin": True})
    store.upsert_user({"id": "u3", "email": "c@example.com"})

    assert store.set_single_admin("c@example.com") == "u3"
    admins = [u.id for u in store.list_users() if u.is_admin]
    assert admins == ["u3"]


def test_set_single_admin_unknown_email(store):
    with pytest.raises(NotFound):
        store.set_single_admin("ghost@example.com")


# --- chats ---


def test_chats_most_recently_updated_first(store):
    store.upsert_user({"id": "u1"})
    first = store.create_chat("First", "u1")
    second = store.create_chat("Second", "u1")
    assert [c.id for c in store.list_chats("u1")] == [second.id, first.id]

    store.rename_chat(first.id, "First, renamed")
    chats = store.list_chats("u1")
    assert [c.id for c in chats] == [first.id, second.id]
    assert chats[0].title == "First, renamed"


def test_new_message_refreshes_chat(store):
    store.upsert_user({"id": "u1"})
    first = store.create_chat("First", "u1")
    second = store.create_chat("Second", "u1")
    store.create_message("hello", "user", user_id="u1", chat_id=first.id)
    assert [c.id for c in store.list_chats("u1")] == [first.id, second.id]


def test_chats_are_scoped_to_owner(store):
    store.upsert_user({"id": "u1"})
    store.upsert_user({"id": "u2"})
    store.create_chat("Mine", "u1")
    assert store.list_chats("u2") == []


def test_create_chat_requires_title(store):
    store.upsert_user({"id": "u1"})
    with pytest.raises(InvalidArgument):
        store.create_chat("   ", "u1")


def test_rename_unknown_chat(store):
    with pytest.raises(NotFound):
        store.rename_chat(9999, "Nope")


def test_delete_chat_cascades_messages(store):
    store.upsert_user({"id": "u1"})
    chat_id = store.create_chat("Trip planning", "u1").id
    other_id = store.create_chat("Other", "u1").id
    store.create_message("hello", "user", user_id="u1", chat_id=chat_id)
    store.create_message("hi", "assistant", user_id="u1", chat_id=chat_id)
    store.create_message("keep me", "user", user_id="u1", chat_id=other_id)

    store.delete_chat(chat_id)

    assert store.list_messages("u1", chat_id) == []
    assert store.get_chat(chat_id) is None
    assert [m.content for m in store.list_messages("u1", other_id)] == ["keep me"]


def test_delete_chat_is_idempotent(store):
    store.delete_chat(9999)


# --- messages ---


def test_create_message_rejects_empty_content(store):
    with pytest.raises(InvalidArgument):
        store.create_message("   \n", "user", user_id="u1")
    assert store.list_messages() == []


def test_create_message_rejects_unknown_role(store):
    with pytest.raises(InvalidArgument):
        store.create_message("hello", "system")


def test_messages_ordered_by_call_order(store):
    store.upsert_user({"id": "u1"})
    chat = store.create_chat("Chat", "u1")
    created = [
        store.create_message(f"message {i}", "user" if i % 2 == 0 else "assistant", user_id="u1", chat_id=chat.id)
        for i in range(6)
    ]

    listed = store.list_messages("u1", chat.id)
    assert [m.id for m in listed] == [m.id for m in created]
    timestamps = [m.timestamp for m in listed]
    assert timestamps == sorted(timestamps)


def test_list_messages_scopes(store):
    store.upsert_user({"id": "u1"})
    store.upsert_user({"id": "u2"})
    chat_a = store.create_chat("A", "u1")
    chat_b = store.create_chat("B", "u1")
    store.create_message("a1", "user", user_id="u1", chat_id=chat_a.id)
    store.create_message("b1", "user", user_id="u1", chat_id=chat_b.id)
    store.create_message("other", "user", user_id="u2")
    store.create_message("legacy", "user")

    assert [m.content for m in store.list_messages("u1", chat_a.id)] == ["a1"]
    assert [m.content for m in store.list_messages("u1")] == ["a1", "b1"]
    assert [m.content for m in store.list_messages(chat_id=chat_b.id)] == ["b1"]
    assert len(store.list_messages()) == 4


def test_edit_message_keeps_role_and_owner(store):
    store.upsert_user({"id": "u1"})
    msg = store.create_message("original", "user", user_id="u1")
    edited = store.edit_message(msg.id, "edited")
    assert edited.content == "edited"
    assert edited.role == "user"
    assert edited.user_id == "u1"


def test_edit_unknown_message(store):
    with pytest.raises(NotFound):
        store.edit_message(9999, "content")


def test_edit_message_rejects_empty_content(store):
    msg = store.create_message("original", "user")
    with pytest.raises(InvalidArgument):
        store.edit_message(msg.id, "")


def test_delete_message_is_idempotent(store):
    message_id = store.create_message("bye", "user").id
    store.delete_message(message_id)
    store.delete_message(message_id)
    store.delete_message(9999)
    assert store.list_messages() == []


# --- user cascade ---


def test_delete_user_cascades(store):
    store.upsert_user({"id": "u1"})
    store.upsert_user({"id": "u2"})
    chat_id = store.create_chat("Mine", "u1").id
    store.create_message("hello", "user", user_id="u1", chat_id=chat_id)
    store.create_message("no chat", "user", user_id="u1")
    theirs = store.create_chat("Theirs", "u2")
    store.create_message("survivor", "user", user_id="u2", chat_id=theirs.id)

    store.delete_user("u1")

    assert store.get_user("u1") is None
    assert store.list_chats("u1") == []
    assert store.list_messages("u1") == []
    with Session(test_engine) as session:
        orphans = session.exec(select(Message).where(Message.chat_id == chat_id)).all()
        assert orphans == []
    assert [m.content for m in store.list_messages("u2")] == ["survivor"]


def test_delete_unknown_user_is_noop(store):
    store.delete_user("nobody")


# --- settings ---


def test_setting_key_is_unique(store):
    store.create_setting("default_model", "gemini-2.0-flash", "Model for new chats")
    with pytest.raises(Conflict):
        store.create_setting("default_model", "something-else")
    assert store.get_setting_by_key("default_model").value == "gemini-2.0-flash"


@pytest.mark.parametrize("key", ["", "has space", "semi;colon", "x" * 129])
def test_setting_key_must_be_well_formed(store, key):
    with pytest.raises(InvalidArgument):
        store.create_setting(key, "v")


def test_settings_listed_by_key(store):
    store.create_setting("zeta", "1")
    store.create_setting("alpha", "2")
    assert [s.key for s in store.list_settings()] == ["alpha", "zeta"]


def test_update_setting(store):
    setting = store.create_setting("motd", "hello")
    updated = store.update_setting(setting.id, {"value": "goodbye"})
    assert updated.value == "goodbye"
    assert updated.key == "motd"


def test_update_setting_to_existing_key_conflicts(store):
    store.create_setting("a", "1")
    b = store.create_setting("b", "2")
    with pytest.raises(Conflict):
        store.update_setting(b.id, {"key": "a"})


def test_update_unknown_setting(store):
    with pytest.raises(NotFound):
        store.update_setting(9999, {"value": "x"})


def test_delete_setting(store):
    setting_id = store.create_setting("temp", "1").id
    removed = store.delete_setting(setting_id)
    assert removed.key == "temp"
    assert store.list_settings() == []
    assert store.delete_setting(setting_id) is None


# --- audit log & stats ---


def test_admin_logs_newest_first_and_bounded(store, monkeypatch):
    from chatvault.core.config import settings

    for i in range(5):
        store.append_admin_log("admin", "UPDATE_USER", target=f"u{i}")

    logs = store.list_admin_logs()
    assert [entry.target for entry in logs] == ["u4", "u3", "u2", "u1", "u0"]
    assert [entry.target for entry in store.list_admin_logs(2)] == ["u4", "u3"]

    monkeypatch.setattr(settings, "admin_log_limit", 3)
    assert len(store.list_admin_logs(100)) == 3


def test_admin_logs_reject_non_positive_limit(store):
    with pytest.raises(InvalidArgument):
        store.list_admin_logs(0)


def test_compute_stats(store):
    store.upsert_user({"id": "u1"})
    store.upsert_user({"id": "u2", "is_active": False})
    store.create_message("one", "user", user_id="u1")
    store.create_message("two", "assistant", user_id="u1")

    stats = store.compute_stats()
    assert stats.total_users == 2
    assert stats.active_users == 1
    assert stats.total_messages == 2
