"""
Lifecycle Kernel - order / return / shipment workflow core

A finite-state lifecycle engine for retail business entities with:
- Enforced transition legality per domain
- Atomic entity + event + SLA + outbound unit of work
- Append-only event history for audit and timelines
- Service-level deadline tracking and breach sweeps
"""

__version__ = "0.1.0"
