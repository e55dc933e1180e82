"""Selectors for the shipment kernel (read side)."""

from shipment_kernel.selectors.audit_selector import AuditSelector
from shipment_kernel.selectors.base import run_with_read_retry
from shipment_kernel.selectors.request_selector import RequestSelector
from shipment_kernel.selectors.resource_selector import ResourceSelector

__all__ = [
    "AuditSelector",
    "RequestSelector",
    "ResourceSelector",
    "run_with_read_retry",
]
