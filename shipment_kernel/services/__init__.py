"""
Kernel services: the imperative shell.

Services receive a Session from the caller, flush within its transaction and
never commit.  The ``BrokerageEngine`` facade owns transaction boundaries.

Import concrete services from their modules; this package stays import-light
because ``shipment_kernel.models`` imports ``sequence_service`` during model
registration.
"""
