"""
Trade Journal Persistence
PropDesk Challenge Platform

SQLAlchemy async models, repositories and the journal writer that mirrors
the in-memory bookkeeping for the dashboard and history pages.
"""
