"""
Toodle - linked todo lists.

Cross-list link graph engine with transactional status propagation,
plus the change-event reconciliation layer used by realtime clients.
"""

__version__ = "1.0.0"
