"""HTTP clients for the services the workflow depends on."""

from approval_services.clients.base import InterServiceClient
from approval_services.clients.escalation_matrix import EscalationMatrixClient
from approval_services.clients.notifications import NotificationClient
from approval_services.clients.user_directory import UserDirectoryClient

__all__ = [
    "InterServiceClient",
    "EscalationMatrixClient",
    "NotificationClient",
    "UserDirectoryClient",
]
