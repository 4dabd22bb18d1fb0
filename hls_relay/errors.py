"""
流生命周期异常

所有异常继承自 StreamError。参数校验异常在启动任何进程之前抛出；
StreamStartError 的子类描述进程监管失败，并携带同样写入流记录的可读原因。
"""

from typing import Dict, Optional, Type

from .diagnostics import FailureKind


class StreamError(Exception):
    """流生命周期异常基类"""
    pass


class UnsupportedQuality(StreamError):
    """未知的画质预设名称"""

    def __init__(self, quality: str):
        self.quality = quality
        super().__init__(f"Unsupported quality: {quality}")


class StreamStartError(StreamError):
    """流未能就绪"""

    kind: Optional[FailureKind] = None

    def __init__(self, message: str, stream_id: Optional[str] = None):
        self.message = message
        self.stream_id = stream_id
        super().__init__(message)


class ProcessSpawnError(StreamStartError):
    kind = FailureKind.SPAWN_FAILED


class SourceUnreachable(StreamStartError):
    kind = FailureKind.SOURCE_UNREACHABLE


class AuthFailed(StreamStartError):
    kind = FailureKind.AUTH_FAILED


class SourceNotFound(StreamStartError):
    kind = FailureKind.SOURCE_NOT_FOUND


class InvalidSourceFormat(StreamStartError):
    kind = FailureKind.INVALID_FORMAT


class ProcessExitedEarly(StreamStartError):
    kind = FailureKind.EXITED


class ReadinessTimeout(StreamStartError):
    """启动期限内未生成播放列表"""
    kind = FailureKind.TIMEOUT


_ERRORS_BY_KIND: Dict[FailureKind, Type[StreamStartError]] = {
    cls.kind: cls
    for cls in (
        ProcessSpawnError,
        SourceUnreachable,
        AuthFailed,
        SourceNotFound,
        InvalidSourceFormat,
        ProcessExitedEarly,
        ReadinessTimeout,
    )
}


def error_for(kind: Optional[FailureKind], message: str, stream_id: Optional[str] = None) -> StreamStartError:
    """创建与错误类型对应的异常

    Args:
        kind: 识别出的错误类型（None 时使用 ProcessExitedEarly）
        message: 可读原因
        stream_id: 相关的流

    Returns:
        StreamStartError 子类实例
    """
    cls = _ERRORS_BY_KIND.get(kind, ProcessExitedEarly)
    return cls(message, stream_id=stream_id)
