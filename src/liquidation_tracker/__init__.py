"""Liquidation tracker.

Tracks HEI liquidation reports through the RC, Accountant and COA
approval workflow.
"""

__version__ = "0.1.0"
