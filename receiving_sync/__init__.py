"""Warehouse receiving sync service.

Multi-device reconciliation of received quantities against a shipment's
expected-items manifest.
"""

__version__ = "1.0.0"
