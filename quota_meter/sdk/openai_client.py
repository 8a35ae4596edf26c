"""
Metered OpenAI speech client.

Checks the audiobook quota, synthesizes speech and records the usage.
"""

import logging
from typing import Any, Optional

from openai import OpenAI

from ..core.manager import SubscriptionManager, get_manager
from ..core.recorder import ServiceNotAllowedError, UsageCommit, UsageRecordingError
from ..storage.models import ServiceType

logger = logging.getLogger(__name__)


class MeteredSpeech:
    """OpenAI text-to-speech wrapper billed against audiobook quotas.

    Usage is recorded only after the API call succeeds, so a failed
    synthesis is never billed. A failed billing write is loud but keeps
    the produced audio available to the caller.
    """

    def __init__(
        self,
        user_id: str,
        db_path: Optional[str] = None,
        model: str = "tts-1",
        voice: str = "alloy"
    ):
        """Initialize metered speech client.

        Args:
            user_id: Account the synthesis is billed to (required)
            db_path: Database file path (defaults to the shared manager's)
            model: OpenAI TTS model name
            voice: OpenAI TTS voice

        Raises:
            ValueError: If user_id or model is missing/empty
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.user_id = user_id
        self.model = model
        self.voice = voice
        self.manager: SubscriptionManager = (
            SubscriptionManager(db_path) if db_path else get_manager()
        )
        self.client = OpenAI()
        self.last_commit: Optional[UsageCommit] = None

    def synthesize(self, text: str, resource_id: str, **kwargs: Any) -> Any:
        """Synthesize ``text`` and bill its characters to the user.

        Args:
            text: Text to convert to speech (required)
            resource_id: What the usage is billed against, e.g. an audiobook id
            **kwargs: Additional OpenAI speech parameters

        Returns:
            OpenAI speech response

        Raises:
            ValueError: If text is empty
            ServiceNotAllowedError: If the user's plan has no audiobook quota
            UserNotFoundError: If the user does not exist
            OpenAI API errors: Propagated without modification, nothing billed
            UsageRecordingError: If billing failed; ``result`` holds the response
        """
        if not text:
            raise ValueError("text is required and cannot be empty")

        character_count = len(text)
        decision = self.manager.can_perform_action(
            self.user_id, ServiceType.AUDIOBOOK, character_count
        )
        if not decision.can_proceed:
            raise ServiceNotAllowedError(self.user_id, ServiceType.AUDIOBOOK)

        response = self.client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=text,
            **kwargs
        )

        try:
            self.last_commit = self.manager.commit_usage(
                self.user_id, ServiceType.AUDIOBOOK, resource_id, character_count
            )
        except (UsageRecordingError, ServiceNotAllowedError) as e:
            # Audio already produced: hand it back with the error, don't resynthesize
            logger.error("Speech for %s delivered but not billed: %s", resource_id, e)
            raise UsageRecordingError(
                f"Speech synthesized for {resource_id} but usage was not recorded: {e}",
                user_id=self.user_id,
                service_type=ServiceType.AUDIOBOOK,
                character_count=character_count,
                result=response
            ) from e

        return response
