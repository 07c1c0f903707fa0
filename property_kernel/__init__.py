"""
Property Kernel - approval workflow core

A sequential, role-gated approval engine for property movements:
- Configurable linear workflow templates per entity type
- Compare-and-swap step advancement
- Override authority by role level
- Single-transaction synchronisation of governed entities
- Full auditability of every lifecycle transition
"""

__version__ = "0.1.0"
