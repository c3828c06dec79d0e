"""
Swap Engine.

Asynchronous execution pipeline for token-swap orders: job admission,
multi-venue quote routing, order lifecycle persistence and live status fan-out.
"""

__version__ = "1.0.0"
