"""
changelens - structured git changesets with a content-addressed result cache.
"""

__version__ = "0.3.0"
