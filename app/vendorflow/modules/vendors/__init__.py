"""
Vendor directory and consultant assignment.
"""
