"""
Business logic services for DraftSign.
"""

from draftsign.services.drafting_service import DraftingService, get_drafting_service
from draftsign.services.lifecycle import ContractLifecycleController, can_edit
from draftsign.services.llm_service import LLMService, get_llm_service
from draftsign.services.notification_service import NotificationService, get_notification_service
from draftsign.services.reconciler import EditReconciler
from draftsign.services.token_service import TokenService

__all__ = [
    "ContractLifecycleController",
    "can_edit",
    "DraftingService",
    "get_drafting_service",
    "EditReconciler",
    "LLMService",
    "get_llm_service",
    "NotificationService",
    "get_notification_service",
    "TokenService",
]
