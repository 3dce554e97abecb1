"""
Lifecycle managers and their supporting machinery.
"""

from .analytics import AnalyticsDispatcher, AnalyticsHook, log_call_metrics
from .calls import CallLifecycleManager, CallPage
from .concurrency import EntityLocks, EventLedger
from .conversations import (
    ContactSummary,
    ConversationPage,
    ConversationSummary,
    ConversationView,
)
from .messages import InboundMessageResult, MessageDispatchManager, accepts_sms
from .reconciliation import CALL, MESSAGE, OrphanedAction, ReconciliationQueue

__all__ = [
    "AnalyticsDispatcher",
    "AnalyticsHook",
    "log_call_metrics",
    "CallLifecycleManager",
    "CallPage",
    "EntityLocks",
    "EventLedger",
    "ContactSummary",
    "ConversationPage",
    "ConversationSummary",
    "ConversationView",
    "InboundMessageResult",
    "MessageDispatchManager",
    "accepts_sms",
    "CALL",
    "MESSAGE",
    "OrphanedAction",
    "ReconciliationQueue",
]
