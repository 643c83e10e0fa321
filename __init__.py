"""
Approval Workflow Service - dual-party approvals for design/build projects

A decision engine that governs task and financial-transaction lifecycles
through admin + client approval, wrapped in an async persistence and API layer.

Features:
- Immutable domain models with a shared dual-party approval stage
- Dependency blocking with cycle rejection
- Checklist- and approval-driven task status derivation
- Exactly-once additional-budget reconciliation
- Optimistic versioned writes on PostgreSQL
"""

__version__ = "1.0.0"
__author__ = "Approval Workflow Team"
