"""
Error taxonomy for the Voice Mail Assistant.

Only ``CaptureError`` ends a session; everything else is recovered from at the
exchange boundary and shown to the user as a transient banner.
"""


class VoiceAssistantError(Exception):
    """Base class for all assistant errors."""


class CaptureError(VoiceAssistantError):
    """Microphone unavailable or access denied."""


class TranscriptionError(VoiceAssistantError):
    """Speech-to-text backend failed."""


class ChatStreamError(VoiceAssistantError):
    """The chat stream reported an error or could not be opened."""


class SynthesisError(VoiceAssistantError):
    """Text-to-speech failed for one sentence."""


class PlaybackError(VoiceAssistantError):
    """Audio could not be decoded or played."""


class MailError(VoiceAssistantError):
    """A mail provider operation failed."""
