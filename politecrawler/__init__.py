"""
Polite Crawler

A persistent web crawler with a per-host politeness schedule.
"""

__version__ = "1.0.0"
__description__ = "A polite, persistent web crawler with a durable URL frontier"
