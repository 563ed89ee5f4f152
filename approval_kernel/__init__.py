"""
Approval Kernel

The template approval workflow and escalation engine:
- Ordered, rule-routed approval stage chains
- Race-safe approve/reject transitions
- Append-only audit log of every state change
- Idempotent deadline escalation sweep
"""

__version__ = "0.1.0"
