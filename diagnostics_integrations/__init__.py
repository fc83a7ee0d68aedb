"""
Diagnostics Integrations Package

Reconciles field-diagnostics submissions for serialized devices with the
records held in Bitrix24:
- Device lookup by serial number and deal linking
- Aggregation of diagnostic, verification and repair line items
- Currency normalization of deal line items
- Batched catalog pagination
"""

__version__ = "1.0.0"
