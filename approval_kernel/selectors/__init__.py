"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.selectors.template_log_selector import (
    TemplateLogPage,
    TemplateLogSelector,
)

__all__ = [
    "ApprovalSelector",
    "TemplateLogPage",
    "TemplateLogSelector",
]
