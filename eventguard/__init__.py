"""
EventGuard - ticketing core with resale rules, attendance badges and
prediction-market refund protection.
"""

__version__ = "0.1.0"
