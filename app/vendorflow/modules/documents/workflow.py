"""
Document lifecycle: states, review stages and the transition table.

    draft --submit--> pending --begin_review--> under_review:consultant
    under_review:consultant --approve--> under_review:cross_verification
    under_review:cross_verification --approve--> under_review:final
    under_review:final --approve--> approved
    under_review:* --reject--> rejected
    rejected --resubmit--> (new document) pending

Pure data + lookups; persistence and audit live in ``service``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.vendorflow.rbac import Capability


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewStage(str, Enum):
    CONSULTANT = "consultant"
    CROSS_VERIFICATION = "cross_verification"
    FINAL = "final"


class Action(str, Enum):
    SUBMIT = "submit"
    BEGIN_REVIEW = "begin_review"
    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"


@dataclass(frozen=True)
class DocumentState:
    """Status plus review stage; ``stage`` is set iff status is under_review."""

    status: DocumentStatus
    stage: ReviewStage | None = None

    def __post_init__(self) -> None:
        if (self.status is DocumentStatus.UNDER_REVIEW) != (self.stage is not None):
            raise ValueError(f"Invalid document state: status={self.status.value} stage={self.stage}")

    def __str__(self) -> str:
        if self.stage is not None:
            return f"{self.status.value}:{self.stage.value}"
        return self.status.value

    @classmethod
    def parse(cls, value: str) -> "DocumentState":
        status, _, stage = value.partition(":")
        return cls(DocumentStatus(status), ReviewStage(stage) if stage else None)

    @classmethod
    def under_review(cls, stage: ReviewStage) -> "DocumentState":
        return cls(DocumentStatus.UNDER_REVIEW, stage)

    @property
    def is_terminal(self) -> bool:
        return self.status is DocumentStatus.APPROVED


DRAFT = DocumentState(DocumentStatus.DRAFT)
PENDING = DocumentState(DocumentStatus.PENDING)
APPROVED = DocumentState(DocumentStatus.APPROVED)
REJECTED = DocumentState(DocumentStatus.REJECTED)

STAGE_ORDER: tuple[ReviewStage, ...] = (
    ReviewStage.CONSULTANT,
    ReviewStage.CROSS_VERIFICATION,
    ReviewStage.FINAL,
)

# Capability that approves each stage; a role may approve only the stage(s) it holds.
STAGE_APPROVAL_CAPABILITY: dict[ReviewStage, Capability] = {
    ReviewStage.CONSULTANT: Capability.APPROVE_DOCUMENTS,
    ReviewStage.CROSS_VERIFICATION: Capability.PERFORM_CROSS_VERIFICATION,
    ReviewStage.FINAL: Capability.PERFORM_FINAL_APPROVAL,
}

# Capability for the non-approve actions.
ACTION_CAPABILITY: dict[Action, Capability] = {
    Action.SUBMIT: Capability.CREATE_SUBMISSIONS,
    Action.BEGIN_REVIEW: Capability.PERFORM_CONSULTANT_REVIEW,
    Action.REJECT: Capability.REJECT_DOCUMENTS,
    Action.RESUBMIT: Capability.RESUBMIT_DOCUMENTS,
}

# Status each action is legal from.
ACTION_SOURCE: dict[Action, DocumentStatus] = {
    Action.SUBMIT: DocumentStatus.DRAFT,
    Action.BEGIN_REVIEW: DocumentStatus.PENDING,
    Action.APPROVE: DocumentStatus.UNDER_REVIEW,
    Action.REJECT: DocumentStatus.UNDER_REVIEW,
    Action.RESUBMIT: DocumentStatus.REJECTED,
}

# Audit action recorded for each transition.
AUDIT_ACTION: dict[Action, str] = {
    Action.SUBMIT: "updated",
    Action.BEGIN_REVIEW: "reviewed",
    Action.APPROVE: "approved",
    Action.REJECT: "rejected",
    Action.RESUBMIT: "created",
}


def is_legal(state: DocumentState, action: Action) -> bool:
    return ACTION_SOURCE[action] is state.status


def next_state(state: DocumentState, action: Action) -> DocumentState:
    """Target state for a legal action. Caller checks ``is_legal`` first."""
    if not is_legal(state, action):
        raise ValueError(f"Cannot {action.value} from {state}")
    if action is Action.SUBMIT:
        return PENDING
    if action is Action.BEGIN_REVIEW:
        return DocumentState.under_review(STAGE_ORDER[0])
    if action is Action.REJECT:
        return REJECTED
    if action is Action.RESUBMIT:
        return PENDING
    # approve: advance one stage, or finish
    idx = STAGE_ORDER.index(state.stage)  # type: ignore[arg-type]
    if idx + 1 < len(STAGE_ORDER):
        return DocumentState.under_review(STAGE_ORDER[idx + 1])
    return APPROVED


def required_capability(state: DocumentState, action: Action) -> Capability:
    if action is Action.APPROVE and state.stage is not None:
        return STAGE_APPROVAL_CAPABILITY[state.stage]
    if action is Action.APPROVE:
        return Capability.APPROVE_DOCUMENTS
    return ACTION_CAPABILITY[action]
