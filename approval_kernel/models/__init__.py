"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalModel, ApprovalStageModel
from approval_kernel.models.template import TemplateDocumentModel
from approval_kernel.models.template_log import TemplateLogModel

__all__ = [
    "ApprovalModel",
    "ApprovalStageModel",
    "TemplateDocumentModel",
    "TemplateLogModel",
]
