"""
Approval Kernel

Hierarchy-driven approval chains and a sequential approval workflow with:
- Deduplicated, self-approval-free chain construction
- Status derived from the chain, never stored independently
- Escalation and emergency override
- Append-only audit history per request
- Best-effort notification fan-out
"""

__version__ = "0.1.0"
