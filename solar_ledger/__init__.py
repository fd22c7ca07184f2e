"""
Solar Ledger: a four-account, six-currency ledger whose tension is damped
by a self-growing autonomy scalar.

A small state container with snapshot persistence and a periodic
rebalancing timer.
"""

__version__ = "0.1.0"
