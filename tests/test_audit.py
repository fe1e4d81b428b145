"""Tests for admin auditing."""

import json
import logging

import pytest

from chatvault.core.crypto import fingerprint
from chatvault.core.errors import Conflict
from chatvault.services.audit import (
    CREATE_SETTING,
    DELETE_SETTING,
    DELETE_USER,
    UPDATE_SETTING,
    UPDATE_USER,
    AdminAuditor,
    AuditContext,
)

CTX = AuditContext(admin_id="admin", ip_address="10.0.0.1", user_agent="pytest")


@pytest.fixture
def auditor(store):
    return AdminAuditor(store)


def test_update_user_is_logged(store, auditor):
    store.upsert_user({"id": "u1"})
    user = auditor.update_user(CTX, "u1", {"is_active": False})
    assert user.is_active is False

    [entry] = store.list_admin_logs()
    assert entry.action == UPDATE_USER
    assert entry.target == "u1"
    assert entry.admin_id == "admin"
    assert entry.ip_address == "10.0.0.1"
    assert entry.user_agent == "pytest"
    assert json.loads(entry.details) == {"is_active": False}


def test_credential_never_reaches_the_log(store, auditor):
    store.upsert_user({"id": "u1"})
    auditor.update_user(CTX, "u1", {"gemini_api_key": "super-secret"})

    [entry] = store.list_admin_logs()
    assert "super-secret" not in entry.details
    assert fingerprint("super-secret") in entry.details


def test_delete_user_is_logged_and_target_may_dangle(store, auditor):
    store.upsert_user({"id": "u1"})
    auditor.delete_user(CTX, "u1")

    assert store.get_user("u1") is None
    [entry] = store.list_admin_logs()
    assert entry.action == DELETE_USER
    assert entry.target == "u1"


def test_setting_lifecycle_is_logged(store, auditor):
    setting = auditor.create_setting(CTX, "motd", value="hello", description="Banner")
    setting_id = setting.id
    auditor.update_setting(CTX, setting_id, {"value": "goodbye"})
    auditor.delete_setting(CTX, setting_id)

    actions = [(e.action, e.target) for e in store.list_admin_logs()]
    assert actions == [
        (DELETE_SETTING, str(setting_id)),
        (UPDATE_SETTING, "motd"),
        (CREATE_SETTING, "motd"),
    ]


def test_failed_mutation_is_not_logged(store, auditor):
    auditor.create_setting(CTX, "motd", value="hello")
    with pytest.raises(Conflict):
        auditor.create_setting(CTX, "motd", value="again")
    assert len(store.list_admin_logs()) == 1


def test_audit_failure_does_not_fail_mutation(store, auditor, monkeypatch, caplog):
    store.upsert_user({"id": "u1"})

    def broken_append(**kwargs):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(store, "append_admin_log", broken_append)
    with caplog.at_level(logging.ERROR, logger="chatvault.services.audit"):
        user = auditor.update_user(CTX, "u1", {"first_name": "Ada"})

    assert user.first_name == "Ada"
    assert store.get_user("u1").first_name == "Ada"
    assert "Failed to record UPDATE_USER" in caplog.text


def test_deleting_missing_setting_is_not_logged(store, auditor):
    auditor.delete_setting(CTX, 9999)
    assert store.list_admin_logs() == []
