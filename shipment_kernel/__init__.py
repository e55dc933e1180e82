"""
Shipment Kernel - Request Lifecycle & Assignment Engine

The engine behind the shipment brokerage platform:
- Dual state machine (commercial and delivery status) per request
- Cost-offer negotiation among shipping companies
- Warehouse, driver and vehicle matching under country/capacity rules
- Append-only, hash-chained audit trail for every mutation
"""

__version__ = "0.1.0"
