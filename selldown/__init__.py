"""
Selldown Payout Engine

Partner payout calculation and reconciliation for assigned loan portfolios:
seller-share apportionment, cycle interest with overdue carry-forward, and
opening position checks, using Decimal throughout.
"""

__version__ = "1.0.0"
