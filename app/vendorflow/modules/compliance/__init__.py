"""
Compliance aging: days since each vendor's last upload, and the fleet summary.
"""
