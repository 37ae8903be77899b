from types import SimpleNamespace

import pytest

from app.vendorflow.errors import PermissionDenied
from app.vendorflow.rbac import (
    CAPABILITY_DENIED,
    DRAFT_PRIVATE,
    NOT_ASSIGNED,
    NOT_OWNER,
    PERMISSIONS,
    ROLE_NOT_RECOGNIZED,
    Actor,
    Capability,
    Role,
    can_act_on_document,
    can_act_on_vendor,
    check_capability,
    has_capability,
    require,
)


def _doc(vendor_id: int, consultant_id: int | None, status: str = "pending"):
    return SimpleNamespace(
        vendor_id=vendor_id,
        status=status,
        vendor=SimpleNamespace(id=vendor_id, assigned_consultant_id=consultant_id),
    )


def test_every_role_has_a_non_empty_capability_set():
    assert set(PERMISSIONS) == set(Role)
    for role in Role:
        assert PERMISSIONS[role]
        assert role.capabilities == PERMISSIONS[role]


def test_permission_table_is_read_only():
    with pytest.raises(TypeError):
        PERMISSIONS[Role.VENDOR] = frozenset()  # type: ignore[index]
    assert isinstance(PERMISSIONS[Role.ADMIN], frozenset)


def test_known_capabilities_per_role():
    assert has_capability("admin", Capability.PERFORM_FINAL_APPROVAL)
    assert has_capability("consultant", "canApproveDocuments")
    assert has_capability("cross_verifier", Capability.PERFORM_CROSS_VERIFICATION)
    assert has_capability("approver", Capability.PERFORM_FINAL_APPROVAL)
    assert has_capability("vendor", Capability.RESUBMIT_DOCUMENTS)

    assert not has_capability("vendor", Capability.APPROVE_DOCUMENTS)
    assert not has_capability("cross_verifier", Capability.APPROVE_LOGINS)
    assert not has_capability("approver", Capability.REJECT_DOCUMENTS)


def test_unknown_role_fails_closed_with_distinct_reason():
    decision = check_capability("imtma", Capability.VIEW_OWN_DOCUMENTS)
    assert not decision
    assert decision.reason == ROLE_NOT_RECOGNIZED

    denied = check_capability("vendor", Capability.APPROVE_DOCUMENTS)
    assert not denied
    assert denied.reason == CAPABILITY_DENIED

    assert not has_capability(None, Capability.VIEW_OWN_DOCUMENTS)
    assert not has_capability("admin", "canDoAnything")


def test_vendor_only_acts_on_own_documents():
    vendor = Actor(id=10, role="vendor")
    assert can_act_on_document(vendor, _doc(10, 2), Capability.RESUBMIT_DOCUMENTS)

    decision = can_act_on_document(vendor, _doc(11, 2), Capability.RESUBMIT_DOCUMENTS)
    assert not decision
    assert decision.reason == NOT_OWNER


def test_consultant_requires_assignment():
    consultant = Actor(id=2, role="consultant")
    assert can_act_on_document(consultant, _doc(10, 2), Capability.APPROVE_DOCUMENTS)

    decision = can_act_on_document(consultant, _doc(10, 3), Capability.APPROVE_DOCUMENTS)
    assert decision.reason == NOT_ASSIGNED
    assert not can_act_on_document(consultant, _doc(10, None), Capability.APPROVE_DOCUMENTS)


def test_consultant_without_capability_is_denied_even_when_assigned():
    consultant = Actor(id=2, role="consultant")
    decision = can_act_on_document(consultant, _doc(10, 2), Capability.PERFORM_FINAL_APPROVAL)
    assert decision.reason == CAPABILITY_DENIED


def test_cross_verifier_and_approver_are_capability_gated_only():
    cv = Actor(id=4, role="cross_verifier")
    approver = Actor(id=5, role="approver")
    assert can_act_on_document(cv, _doc(10, 2), Capability.PERFORM_CROSS_VERIFICATION)
    assert can_act_on_document(approver, _doc(99, None), Capability.PERFORM_FINAL_APPROVAL)
    assert not can_act_on_document(approver, _doc(10, 2), Capability.PERFORM_CROSS_VERIFICATION)


def test_admin_always_allowed_with_base_capability():
    admin = Actor(id=1, role="admin")
    assert can_act_on_vendor(admin, 10, None, Capability.MANAGE_VENDORS)
    assert can_act_on_document(admin, _doc(10, 3), Capability.REJECT_DOCUMENTS)


def test_drafts_are_private_to_owner():
    doc = _doc(10, 2, status="draft")
    assert can_act_on_document(Actor(id=10, role="vendor"), doc, Capability.UPLOAD_DOCUMENTS)
    for actor in (Actor(id=1, role="admin"), Actor(id=2, role="consultant")):
        decision = can_act_on_document(actor, doc, Capability.VIEW_ALL_DOCUMENTS)
        assert decision.reason == DRAFT_PRIVATE


def test_require_raises_permission_denied_with_reason_and_capability():
    with pytest.raises(PermissionDenied) as ei:
        require(check_capability("vendor", Capability.APPROVE_LOGINS))
    err = ei.value
    assert err.http_status == 403
    assert err.details == {"reason": CAPABILITY_DENIED, "capability": "canApproveLogins"}

    require(check_capability("admin", Capability.APPROVE_LOGINS))


def test_role_parse():
    assert Role.parse("vendor") is Role.VENDOR
    assert Role.parse(Role.ADMIN) is Role.ADMIN
    assert Role.parse("imtma") is None
    assert Role.parse(None) is None
