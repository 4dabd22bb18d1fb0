"""
FFmpeg 诊断输出识别

FFmpeg 只会在 stderr 上以文本形式报告连接和输入问题。下面的特征表把已知的
子串映射为统一的错误类型和给调用方的简短消息。
"""

from enum import Enum
from typing import Optional, Tuple


class FailureKind(Enum):
    """统一的错误类型"""
    SOURCE_UNREACHABLE = "source_unreachable"
    AUTH_FAILED = "auth_failed"
    SOURCE_NOT_FOUND = "source_not_found"
    INVALID_FORMAT = "invalid_format"
    EXITED = "exited"
    SPAWN_FAILED = "spawn_failed"
    TIMEOUT = "timeout"


# 按顺序匹配，第一个命中的生效
FAILURE_SIGNATURES = (
    (
        ("Connection refused", "No route to host", "Connection timed out", "Operation timed out"),
        FailureKind.SOURCE_UNREACHABLE,
        "RTSP connection failed - check if the server is reachable and the URL is correct",
    ),
    (
        ("401 Unauthorized",),
        FailureKind.AUTH_FAILED,
        "Authentication failed - check username and password",
    ),
    (
        ("404 Not Found",),
        FailureKind.SOURCE_NOT_FOUND,
        "Stream not found - check the stream path in the RTSP URL",
    ),
    (
        ("Invalid data found",),
        FailureKind.INVALID_FORMAT,
        "Invalid RTSP stream format",
    ),
)

# 足以容纳跨两次读取的最长特征串
TAIL_SIZE = max(len(s) for patterns, _, _ in FAILURE_SIGNATURES for s in patterns) - 1


def classify_output(text: str) -> Optional[Tuple[FailureKind, str]]:
    """用特征表匹配一段 FFmpeg stderr 输出

    Args:
        text: 解码后的诊断输出

    Returns:
        第一个命中特征的 (FailureKind, message)，未命中返回 None
    """
    for patterns, kind, message in FAILURE_SIGNATURES:
        if any(pattern in text for pattern in patterns):
            return kind, message
    return None


def exit_message(code: int) -> str:
    return f"FFmpeg exited with code {code}"


def spawn_message(error: BaseException) -> str:
    return f"FFmpeg error: {error}"


def timeout_message(seconds: float) -> str:
    return f"Timed out waiting for playlist after {seconds:g} seconds"


class OutputClassifier:
    """诊断输出的增量识别器

    保留上一段输出的末尾，特征串被拆到两次读取中时仍能识别。
    """

    def __init__(self):
        self._tail = ""

    def feed(self, chunk: str) -> Optional[Tuple[FailureKind, str]]:
        text = self._tail + chunk
        self._tail = text[-TAIL_SIZE:] if TAIL_SIZE > 0 else ""
        return classify_output(text)
