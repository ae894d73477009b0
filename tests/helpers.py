"""テスト共通のヘルパー."""

from datetime import datetime


def local_ms(*args: int) -> int:
    """ローカル時刻の datetime 引数から epoch ms を作る."""
    return int(datetime(*args).timestamp() * 1000)  # noqa: DTZ001


class FakeClock:
    """手動で進める時計 (epoch ms)."""

    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms
