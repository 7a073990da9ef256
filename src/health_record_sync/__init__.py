"""
Health Record Sync - Dual-store persistence for scanned health readings.

Keeps a durable local record history and the platform health repository
in step: dual writes, reconciliation sweeps, manual resync and deletion fan-out.
"""

__version__ = "0.1.0"
