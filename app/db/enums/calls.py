"""Voice call enums."""

from enum import Enum


class VoiceProvider(str, Enum):
    """Voice agent providers that deliver call webhooks."""

    RETELL = "retell"


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallOutcome(str, Enum):
    """Normalized result of a voice call."""

    COMPLETED = "completed"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"
    CANCELLED = "cancelled"
