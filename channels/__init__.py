"""External collaborators: the voice-call service and email delivery."""
from channels.email_sender import (
    EmailDeliveryError,
    EmailSender,
    LoggingEmailSender,
    ResendEmailSender,
    create_email_sender,
)
from channels.voice_service import (
    VapiVoiceService,
    VoiceService,
    create_voice_service,
    validate_telephony_credentials,
)

__all__ = [
    "EmailDeliveryError", "EmailSender", "LoggingEmailSender", "ResendEmailSender",
    "create_email_sender",
    "VapiVoiceService", "VoiceService", "create_voice_service",
    "validate_telephony_credentials",
]
