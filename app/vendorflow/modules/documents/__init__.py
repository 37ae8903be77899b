"""
Vendor compliance documents.

- Documents move through a three-stage review (consultant, cross verification, final)
- Rejected documents are never edited; resubmission creates a new linked record
- Every successful transition writes exactly one audit event
"""
