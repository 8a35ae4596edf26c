"""
Unit tests for SDK layer.

Tests the metered OpenAI speech wrapper: quota gating and usage recording.
"""

import os
import shutil
import tempfile
from unittest.mock import Mock, patch

import pytest

from quota_meter.core.recorder import ServiceNotAllowedError, UsageRecordingError
from quota_meter.sdk.openai_client import MeteredSpeech
from quota_meter.storage.repository import UsageLedger, initialize_schema
from quota_meter.storage.users import UserNotFoundError, UserStore


class TestMeteredSpeech:
    """Test MeteredSpeech client wrapper."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.users = UserStore(self.db_path)
        self.ledger = UsageLedger(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _client(self, mock_openai_class, user_id="u1"):
        mock_client = Mock()
        mock_client.audio.speech.create.return_value = Mock(name="speech_response")
        mock_openai_class.return_value = mock_client
        return MeteredSpeech(user_id=user_id, db_path=self.db_path), mock_client

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_init_success(self, mock_openai_class):
        """Test successful initialization."""
        client, _ = self._client(mock_openai_class)

        assert client.user_id == "u1"
        assert client.model == "tts-1"
        assert client.voice == "alloy"
        assert client.manager.db_path == self.db_path
        assert client.last_commit is None

    def test_init_missing_user(self):
        """Test initialization fails with missing user."""
        with pytest.raises(ValueError, match="user_id is required"):
            MeteredSpeech(user_id="", db_path=self.db_path)

    def test_init_missing_model(self):
        with pytest.raises(ValueError, match="model is required"):
            MeteredSpeech(user_id="u1", db_path=self.db_path, model=" ")

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_synthesize_records_usage(self, mock_openai_class):
        """Successful synthesis is billed for the text length."""
        self.users.create_user("u1", "u1@example.com", "premium")
        client, mock_client = self._client(mock_openai_class)

        response = client.synthesize("Chapter one. It was a dark night.", "book-1")

        assert response is mock_client.audio.speech.create.return_value
        mock_client.audio.speech.create.assert_called_once_with(
            model="tts-1",
            voice="alloy",
            input="Chapter one. It was a dark night."
        )
        records = self.ledger.records_for("u1")
        assert len(records) == 1
        assert records[0].character_count == len("Chapter one. It was a dark night.")
        assert records[0].resource_id == "book-1"
        assert client.last_commit.record == records[0]

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_extra_parameters_forwarded(self, mock_openai_class):
        self.users.create_user("u1", "u1@example.com", "studio")
        client, mock_client = self._client(mock_openai_class)

        client.synthesize("Hello", "book-1", response_format="mp3", speed=1.25)

        kwargs = mock_client.audio.speech.create.call_args.kwargs
        assert kwargs["response_format"] == "mp3"
        assert kwargs["speed"] == 1.25

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_refused_plan_never_calls_api(self, mock_openai_class):
        """A plan without audiobook quota is refused before any API call."""
        self.users.create_user("u1", "u1@example.com", "free")
        client, mock_client = self._client(mock_openai_class)

        with pytest.raises(ServiceNotAllowedError):
            client.synthesize("Hello", "book-1")

        mock_client.audio.speech.create.assert_not_called()
        assert self.ledger.records_for("u1") == []

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_unknown_user_never_calls_api(self, mock_openai_class):
        client, mock_client = self._client(mock_openai_class, user_id="ghost")

        with pytest.raises(UserNotFoundError):
            client.synthesize("Hello", "book-1")

        mock_client.audio.speech.create.assert_not_called()

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_api_failure_is_not_billed(self, mock_openai_class):
        """API errors propagate and nothing is recorded."""
        self.users.create_user("u1", "u1@example.com", "premium")
        client, mock_client = self._client(mock_openai_class)
        mock_client.audio.speech.create.side_effect = RuntimeError("API Error")

        with pytest.raises(RuntimeError, match="API Error"):
            client.synthesize("Hello", "book-1")

        assert self.ledger.records_for("u1") == []

    @patch('quota_meter.sdk.openai_client.OpenAI')
    def test_recording_failure_returns_audio_with_error(self, mock_openai_class):
        """A billing failure after synthesis carries the produced audio."""
        self.users.create_user("u1", "u1@example.com", "premium")
        client, mock_client = self._client(mock_openai_class)
        failure = UsageRecordingError(
            "disk full", user_id="u1", service_type=None, character_count=5
        )

        with patch.object(client.manager, "commit_usage", side_effect=failure):
            with pytest.raises(UsageRecordingError) as exc_info:
                client.synthesize("Hello", "book-1")

        assert exc_info.value.result is mock_client.audio.speech.create.return_value
        assert exc_info.value.character_count == 5
        mock_client.audio.speech.create.assert_called_once()

    def test_empty_text_rejected(self):
        with patch('quota_meter.sdk.openai_client.OpenAI'):
            client = MeteredSpeech(user_id="u1", db_path=self.db_path)
        with pytest.raises(ValueError, match="text is required"):
            client.synthesize("", "book-1")
