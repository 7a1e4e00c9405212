"""Chat error taxonomy."""

from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base chat exception.

    Carries the HTTP status and a stable error code so the API layer can
    translate any chat failure without knowing its concrete type.
    """

    status_code = 500
    error_code = "CHAT_ERROR"
    retryable = False
    default_message = "Chat operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "error_code": self.error_code,
            "retryable": self.retryable,
            "details": self.details,
        }


class UnauthenticatedError(ChatError):
    status_code = 401
    error_code = "UNAUTHENTICATED"
    default_message = "User not authenticated"


class SelfConversationError(ChatError):
    status_code = 422
    error_code = "SELF_CONVERSATION"
    default_message = "Cannot create a chat with yourself"


class EmptyMessageError(ChatError):
    status_code = 422
    error_code = "EMPTY_MESSAGE"
    default_message = "Message body is required"


class NotParticipantError(ChatError):
    status_code = 403
    error_code = "NOT_PARTICIPANT"
    default_message = "You are not a participant of this chat"


class ConversationNotFoundError(ChatError):
    status_code = 404
    error_code = "CONVERSATION_NOT_FOUND"
    default_message = "Conversation not found"


class ConversationCreationError(ChatError):
    status_code = 500
    error_code = "CONVERSATION_CREATION_FAILED"
    default_message = "Could not create or retrieve chat"


class TransientStoreError(ChatError):
    """Network or timeout failure talking to the store; safe to retry."""

    status_code = 503
    error_code = "STORE_UNAVAILABLE"
    retryable = True
    default_message = "Storage temporarily unavailable"


class SubscriptionError(ChatError):
    """The realtime channel failed or timed out."""

    status_code = 503
    error_code = "SUBSCRIPTION_FAILED"
    retryable = True
    default_message = "Realtime channel unavailable"


class DuplicateConversationError(Exception):
    """Uniqueness conflict reported by the store on conversation insert."""
