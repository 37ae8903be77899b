"""
Vendor login approval.

Vendors flagged for approval cannot start a session until a consultant or
admin approves the pending request. Requests expire after a configurable TTL.
"""
