"""
Reaper module.
Handles expired-lease recovery and ledger retention.
"""
