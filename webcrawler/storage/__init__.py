"""
In-memory crawl state.
"""

from .visited import VisitedSet

__all__ = ['VisitedSet']
