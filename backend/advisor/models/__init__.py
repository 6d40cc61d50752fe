from advisor.models.conversation import ChatMessage, Conversation
from advisor.models.records import (
    CalendarEvent,
    EmailMessage,
    HubspotContact,
    HubspotNote,
    ProviderSyncState,
    VectorDocument,
)
from advisor.models.task import Task, TaskPriority, TaskStatus
from advisor.models.user import OngoingInstruction, User

__all__ = [
    "CalendarEvent",
    "ChatMessage",
    "Conversation",
    "EmailMessage",
    "HubspotContact",
    "HubspotNote",
    "OngoingInstruction",
    "ProviderSyncState",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "User",
    "VectorDocument",
]
