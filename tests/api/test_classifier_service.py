from unittest.mock import Mock, patch

import pytest
import requests

from src.api.services.classifier import ClassificationError, ClassifierService
from src.model.models import ContentCategory


class TestClassifierService:
    """分類サービスのテスト"""

    @pytest.fixture
    def classifier(self):
        return ClassifierService(base_url="http://localhost:3000/", timeout=2.0)

    @staticmethod
    def _response(status_code=200, body=None):
        response = Mock()
        response.status_code = status_code
        response.json.return_value = body
        return response

    def test_initialization(self, classifier):
        assert classifier.base_url == "http://localhost:3000"
        assert classifier.classify_url == "http://localhost:3000/ai/classify"

    def test_classify_sync_success(self, classifier):
        body = {"category": "distracting", "allowed": False, "reason": "gaming"}
        with patch("requests.post", return_value=self._response(body=body)) as mock_post:
            result = classifier.classify_sync("u@example.com", "best fails 2025", "search")

        assert result.category is ContentCategory.DISTRACTING
        assert result.allowed is False
        assert result.reason == "gaming"
        mock_post.assert_called_once()
        assert mock_post.call_args.kwargs["json"] == {
            "user_id": "u@example.com",
            "text": "best fails 2025",
            "context": "search",
        }

    def test_allowed_defaults_true_and_reason_filled(self, classifier):
        body = {"distraction_level": "Productive"}
        with patch("requests.post", return_value=self._response(body=body)):
            result = classifier.classify_sync("u", "python tutorial", "watch")
        assert result.category is ContentCategory.PRODUCTIVE
        assert result.allowed is True
        assert result.reason == "ai_classification"

    @pytest.mark.parametrize(
        "response",
        [
            Mock(status_code=500),
            Mock(status_code=200, json=Mock(return_value={"category": "spicy"})),
            Mock(status_code=200, json=Mock(return_value=["distracting"])),
            Mock(status_code=200, json=Mock(side_effect=ValueError("bad json"))),
        ],
    )
    def test_unusable_responses_raise(self, classifier, response):
        with patch("requests.post", return_value=response), pytest.raises(
            ClassificationError
        ):
            classifier.classify_sync("u", "text", "watch")

    def test_bad_context_rejected(self, classifier):
        with pytest.raises(ValueError, match="context"):
            classifier.classify_sync("u", "text", "shorts")

    @pytest.mark.asyncio
    async def test_classify_fails_open_on_network_error(self, classifier):
        with patch("requests.post", side_effect=requests.ConnectionError("down")):
            assert await classifier.classify("u", "text", "watch") is None

    @pytest.mark.asyncio
    async def test_classify_fails_open_on_http_error(self, classifier):
        with patch("requests.post", return_value=self._response(status_code=503)):
            assert await classifier.classify("u", "text", "watch") is None

    @pytest.mark.asyncio
    async def test_classify_skips_empty_text(self, classifier):
        with patch("requests.post") as mock_post:
            assert await classifier.classify("u", "   ", "search") is None
        mock_post.assert_not_called()

    @pytest.mark.asyncio
    async def test_classify_success(self, classifier):
        body = {"category": "neutral", "allowed": True, "reason": "music"}
        with patch("requests.post", return_value=self._response(body=body)):
            result = await classifier.classify("u", "lofi mix", "watch")
        assert result is not None
        assert result.category is ContentCategory.NEUTRAL
