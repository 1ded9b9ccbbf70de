"""
PropDesk Challenge Platform

Bookkeeping core for prop-trading challenge accounts.
"""

__version__ = "1.0.0"
