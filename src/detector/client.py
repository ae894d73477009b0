import json
import sys
from typing import Any

import requests

from src.config.logger import logger

DEFAULT_API_URL = "http://localhost:5577"
HTTP_OK = 200

# サービスに届かないときは閲覧を妨げない
FAIL_OPEN_RESPONSE: dict[str, Any] = {
    "ok": False,
    "blocked": False,
    "scope": "none",
    "reason": "service_unavailable",
}


class DetectorClient:
    """検出側（ページ側）から判定サービスへメッセージを送るクライアント."""

    def __init__(
        self, api_url: str = DEFAULT_API_URL, tab_id: int | None = None, timeout: float = 20
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.tab_id = tab_id
        self.timeout = timeout

    def send_message(self, message: dict[str, Any]) -> dict[str, Any] | None:
        """メッセージを送信し、応答を返す.

        Returns:
            dict | None: 応答。通信に失敗した場合は None

        """
        params = {"tab_id": self.tab_id} if self.tab_id is not None else None
        try:
            response = requests.post(
                f"{self.api_url}/messages",
                json=message,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Message {message.get('type')!r} not delivered: {e}")
            return None

        status_code = int(getattr(response, "status_code", 0))
        if status_code != HTTP_OK:
            logger.warning(f"Message {message.get('type')!r} rejected: HTTP {status_code}")
            return None
        result: dict[str, Any] = response.json()
        return result

    def navigated(
        self,
        page_type: str,
        url: str,
        video_title: str | None = None,
        channel: str | None = None,
    ) -> dict[str, Any]:
        """ナビゲーションを通知し判定を受け取る（失敗時は許可扱い）."""
        message: dict[str, Any] = {"type": "NAVIGATED", "pageType": page_type, "url": url}
        if video_title:
            message["videoTitle"] = video_title
        if channel:
            message["channel"] = channel
        return self.send_message(message) or dict(FAIL_OPEN_RESPONSE)

    def temp_unlock(self, minutes: float) -> dict[str, Any] | None:
        return self.send_message({"type": "TEMP_UNLOCK", "minutes": minutes})

    def block_channel(self, channel: str, *, permanent: bool = False) -> dict[str, Any] | None:
        kind = "BLOCK_CHANNEL_PERMANENT" if permanent else "BLOCK_CHANNEL_TODAY"
        return self.send_message({"type": kind, "channel": channel})

    def ping(self) -> bool:
        result = self.send_message({"type": "PING"})
        return bool(result and result.get("ok"))


def main() -> None:
    """メイン関数: ``client.py PAGE_TYPE URL [TITLE]``."""
    if len(sys.argv) < 3:
        sys.stderr.write("usage: client.py PAGE_TYPE URL [VIDEO_TITLE]\n")
        raise SystemExit(2)
    client = DetectorClient()
    title = sys.argv[3] if len(sys.argv) > 3 else None
    result = client.navigated(sys.argv[1], sys.argv[2], title)
    sys.stdout.write(json.dumps(result, ensure_ascii=False, indent=2) + "\n")


if __name__ == "__main__":
    main()
