"""Content classification client (remote ``/ai/classify`` endpoint)."""

from __future__ import annotations

from typing import Any

import requests

from src.api.services.guard import call_with_timeout
from src.config.logger import logger
from src.config.settings import Settings
from src.model.models import ClassificationResult, ContentCategory

HTTP_OK_MIN = 200
HTTP_OK_MAX = 300
CONTEXTS = ("search", "watch")

__all__ = ["ClassificationError", "ClassifierService", "create_classifier_service"]


class ClassificationError(RuntimeError):
    """分類サーバーの応答が使えないときに送出される."""


class ClassifierService:
    """分類サーバーのクライアント.

    失敗はすべて「分類なし」として扱う（fail-open）。
    """

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        """初期化

        Args:
        base_url: 分類サーバーのベースURL（例: http://localhost:3000）
        timeout: 1回の分類にかける最大秒数

        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.classify_url = f"{self.base_url}/ai/classify"

    def _parse_response(self, data: Any) -> ClassificationResult:
        if not isinstance(data, dict):
            msg = "classification body is not an object"
            raise ClassificationError(msg)

        raw_category = data.get("category") or data.get("distraction_level")
        try:
            category = ContentCategory(str(raw_category).lower())
        except ValueError:
            msg = f"unknown category: {raw_category!r}"
            raise ClassificationError(msg) from None

        reason = data.get("reason")
        if not isinstance(reason, str) or not reason:
            reason = "ai_classification"
        return ClassificationResult(
            category=category,
            allowed=data.get("allowed") is not False,
            reason=reason,
        )

    def classify_sync(self, user_id: str, text: str, context: str) -> ClassificationResult:
        """Call the classifier and parse its verdict.

        Raises:
            ClassificationError: non-2xx status or malformed body.
            requests.RequestException: transport failures.
        """
        if context not in CONTEXTS:
            msg = f"context must be one of {CONTEXTS}, got {context!r}"
            raise ValueError(msg)

        response = requests.post(
            self.classify_url,
            json={"user_id": user_id, "text": text, "context": context},
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
        )
        status_code: int = response.status_code
        if not HTTP_OK_MIN <= status_code < HTTP_OK_MAX:
            msg = f"classifier returned HTTP {status_code}"
            raise ClassificationError(msg)

        try:
            data = response.json()
        except ValueError as e:
            msg = "classifier returned invalid JSON"
            raise ClassificationError(msg) from e
        return self._parse_response(data)

    async def classify(
        self, user_id: str, text: str, context: str
    ) -> ClassificationResult | None:
        """Bounded, fail-open classification. ``None`` means unavailable."""
        text = text.strip()
        if not user_id or not text:
            return None

        outcome = await call_with_timeout(
            self.classify_sync, user_id, text, context, timeout=self.timeout
        )
        if not outcome.ok:
            logger.warning(
                f"Classification unavailable ({outcome.status.value}): {outcome.error}"
            )
            return None
        return outcome.value


def create_classifier_service(settings: Settings) -> ClassifierService:
    """設定から分類クライアントを生成する."""
    return ClassifierService(
        base_url=settings.server_url, timeout=settings.classify_timeout
    )
