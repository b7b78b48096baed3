import time
import threading
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from . import settings


class SlidingWindowLimiter:
    """クライアントごとのスライディングウィンドウ実装。

    クライアントキー（通常は接続元アドレス）ごとに deque を持ち、過去 60 秒間の
    リクエスト数を数えます。単一プロセス向けです。
    """

    def __init__(self, per_min: int, window_seconds: int = 60):
        self.per_min = int(per_min)
        self.window_seconds = window_seconds
        self.windows: Dict[str, Deque[float]] = {}
        self.lock = threading.Lock()

    def allow(self, key: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """リクエストを許可するか判定する。戻り値は (allowed, remaining)。"""
        now = time.time() if now is None else now
        cutoff = now - self.window_seconds
        with self.lock:
            self._sweep(cutoff)
            window = self.windows.setdefault(key, deque())

            if len(window) < self.per_min:
                window.append(now)
                return True, self.per_min - len(window)

            return False, 0

    def _sweep(self, cutoff: float) -> None:
        # 期限切れの記録を捨て、空になったクライアントのキーを消す（lock 内で呼ぶ）
        for key in list(self.windows):
            window = self.windows[key]
            while window and window[0] <= cutoff:
                window.popleft()
            if not window:
                del self.windows[key]

    def reset(self) -> None:
        with self.lock:
            self.windows.clear()


_limiter = SlidingWindowLimiter(settings.RATE_LIMIT_PER_MIN)


def allow_request(key: str = "global") -> Tuple[bool, int]:
    return _limiter.allow(key)


def reset() -> None:
    _limiter.reset()
