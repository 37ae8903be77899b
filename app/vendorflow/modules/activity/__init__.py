"""
Admin activity log: what each user did, and how often each action happens.
"""
