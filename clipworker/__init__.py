"""
ClipFlow Worker

A pool of independent queue workers that claim render, edit, AI short and
discovery work from a shared store, delegate it to external media engines,
and record the outcome with bounded retries and graceful shutdown handoff.
"""

__version__ = "1.0.0"
