"""
FocusFlow backend package.

Provides a FastAPI service for a Projects -> Goals -> Tasks hierarchy with
soft deletion and a bulk offline-sync endpoint, on top of a pluggable
entity store (SQLAlchemy or in-memory).
"""

__version__ = "1.0.0"
