"""
approval_batch -- Background scheduling for the approval workflow.

Hosts the in-process escalation sweep scheduler.  Nothing in
approval_kernel imports from approval_batch.
"""

from approval_batch.scheduler import EscalationSweepScheduler

__all__ = ["EscalationSweepScheduler"]
