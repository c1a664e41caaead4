# src/beacon/__init__.py
"""
Beacon: client-embedded analytics pipeline.

Validates, enriches, batches and durably delivers application events to one
or more collectors, gated by the user's privacy consent.
"""

__version__ = "0.1.0"
