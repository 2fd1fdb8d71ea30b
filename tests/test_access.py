"""
Tests for per-template access control
"""

import pytest

from process_flow.access import TemplateAccessControl
from process_flow.audit import AuditEventType, AuditTrail
from process_flow.config import ProcessFlowConfig
from process_flow.directory import CallerContext, StorageDirectory
from process_flow.errors import NotFoundError
from process_flow.storage import InMemoryStorage
from process_flow.templates import StepInput, TemplateStore


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def directory(storage):
    directory = StorageDirectory(storage)
    directory.create_user("admin", "Administrador", "admin@example.com", is_admin=True, user_id="admin")
    directory.create_user("ana", "Ana Souza", "ana@example.com", user_id="ana")
    directory.create_user("bruno", "Bruno Lima", "bruno@example.com", user_id="bruno")
    return directory


@pytest.fixture
def access(storage, directory, audit_trail):
    return TemplateAccessControl(storage, directory, audit_trail)


@pytest.fixture
def template(storage, directory, access, audit_trail):
    """Template created by the admin"""
    store = TemplateStore(storage, directory, access, audit_trail,
                          ProcessFlowConfig(database_url="memory://"))
    return store.create_template(
        "Abertura de Empresa",
        [StepInput(name="Consulta de viabilidade", responsible_user_id="ana")],
        created_by="admin"
    )


class TestGrantAccess:

    def test_grant_and_check(self, access, template):
        ana = CallerContext(user_id="ana")
        assert not access.has_access(template.id, ana)

        entry = access.grant_access(template.id, "ana", granted_by="admin")
        assert entry.user_id == "ana"
        assert entry.granted_by == "admin"
        assert access.has_access(template.id, ana)

    def test_grant_is_idempotent(self, access, template, audit_trail):
        access.grant_access(template.id, "ana", granted_by="admin")
        access.grant_access(template.id, "ana", granted_by="admin")

        assert access.list_authorized_users(template.id) == ["admin", "ana"]
        grants = [e for e in audit_trail.get_events_for_entity("process_template", template.id)
                  if e.event_type == AuditEventType.TEMPLATE_ACCESS_GRANTED
                  and e.metadata["user_id"] == "ana"]
        assert len(grants) == 1

    def test_grant_unknown_template(self, access):
        with pytest.raises(NotFoundError):
            access.grant_access("missing", "ana")

    def test_grant_unknown_user(self, access, template):
        with pytest.raises(NotFoundError):
            access.grant_access(template.id, "ghost")

    def test_admin_bypasses_list(self, access, template):
        access.revoke_access(template.id, "admin")
        assert access.has_access(template.id, CallerContext(user_id="admin", is_admin=True))


class TestRevokeAccess:

    def test_revoke(self, access, template):
        access.grant_access(template.id, "bruno")
        assert access.revoke_access(template.id, "bruno", revoked_by="admin") is True
        assert not access.has_access(template.id, CallerContext(user_id="bruno"))

    def test_revoke_without_entry(self, access, template):
        assert access.revoke_access(template.id, "bruno") is False


class TestListing:

    def test_accessible_template_ids(self, access, template):
        access.grant_access(template.id, "bruno")
        assert access.accessible_template_ids("bruno") == {template.id}
        assert access.accessible_template_ids("ana") == set()

    def test_clear(self, access, template):
        access.grant_access(template.id, "ana")
        access.grant_access(template.id, "bruno")
        assert access.clear(template.id) == 3
        assert access.list_authorized_users(template.id) == []
