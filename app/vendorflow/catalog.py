"""
Document type catalog.

Categories drive which types a vendor must have on file for a given
reporting month:
- monthly_mandatory: every month
- annual_mandatory: January only
- one_time_optional: never required
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DocumentCategory(str, Enum):
    MONTHLY_MANDATORY = "monthly_mandatory"
    ANNUAL_MANDATORY = "annual_mandatory"
    ONE_TIME_OPTIONAL = "one_time_optional"


@dataclass(frozen=True)
class DocumentType:
    id: str
    name: str
    category: DocumentCategory
    description: str = ""


_M = DocumentCategory.MONTHLY_MANDATORY
_A = DocumentCategory.ANNUAL_MANDATORY
_O = DocumentCategory.ONE_TIME_OPTIONAL

DOCUMENT_TYPES: tuple[DocumentType, ...] = (
    DocumentType("INVOICE", "Invoice", _M, "Monthly invoice document"),
    DocumentType("FORM_T_MUSTER_ROLL", "Form T Muster Roll", _M, "Combined Muster Roll Cum Register of Wages for previous month"),
    DocumentType("BANK_STATEMENT", "Bank Statement", _M, "Bank statement for previous month"),
    DocumentType("ECR", "ECR", _M, "Electronic Challan Cum Return for previous month"),
    DocumentType("PF_COMBINED_CHALLAN", "PF Combined Challan", _M, "EPFO Combined Challan for previous month"),
    DocumentType("PF_TRRN_DETAILS", "PF TRRN Details", _M, "Provident Fund TRRN Details for previous month"),
    DocumentType("ESI_CONTRIBUTION_HISTORY", "ESIC Contribution History", _M, "ESIC Contribution History Statement for previous month"),
    DocumentType("ESI_CHALLAN", "ESIC Challan", _M, "ESIC Challan for previous month"),
    DocumentType("PROFESSIONAL_TAX_RETURNS", "Professional Tax Returns", _M, "Professional Tax Returns Form 5A for previous month"),
    DocumentType("LABOUR_WELFARE_FUND", "Labour Welfare Fund", _A, "Labour Welfare Fund Form-D with December data"),
    DocumentType("VENDOR_AGREEMENT", "Vendor Agreement", _O, "Copy of Agreement document for vendors"),
    DocumentType("EPF_CODE_LETTER", "EPF Code Letter", _O, "EPF Code Allotment Letter"),
    DocumentType("EPF_FORM_5A", "EPF Form 5A", _O, "EPF Form 5A document"),
    DocumentType("ESIC_REGISTRATION", "ESIC Registration", _O, "ESIC Registration Certificate Form C11"),
    DocumentType("PT_REGISTRATION", "PT Registration", _O, "Professional Tax Registration Certificate Form 3"),
    DocumentType("PT_ENROLLMENT", "PT Enrollment", _O, "Professional Tax Enrollment Certificate Form 4"),
    DocumentType("CONTRACT_LABOUR_LICENSE", "Labour License", _O, "Contract Labour License document (if applicable)"),
)

_BY_ID: dict[str, DocumentType] = {t.id: t for t in DOCUMENT_TYPES}

JANUARY = 1


def get_document_type(type_id: str) -> DocumentType | None:
    return _BY_ID.get((type_id or "").strip().upper())


def is_known_type(type_id: str) -> bool:
    return get_document_type(type_id) is not None


def types_in_category(category: DocumentCategory) -> tuple[DocumentType, ...]:
    return tuple(t for t in DOCUMENT_TYPES if t.category == category)


def required_types_for_month(month: int) -> frozenset[str]:
    """Type ids that must be on file for the given calendar month (1-12)."""
    required = {t.id for t in types_in_category(DocumentCategory.MONTHLY_MANDATORY)}
    if month == JANUARY:
        required.update(t.id for t in types_in_category(DocumentCategory.ANNUAL_MANDATORY))
    return frozenset(required)


def is_mandatory(type_id: str, month: int) -> bool:
    return (type_id or "").strip().upper() in required_types_for_month(month)


def is_one_time_optional(type_id: str) -> bool:
    t = get_document_type(type_id)
    return t is not None and t.category == DocumentCategory.ONE_TIME_OPTIONAL
