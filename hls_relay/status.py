"""
流状态机

starting -> active -> stopped，starting -> error；播放列表暂时没有切片时
active -> starting。error 和 stopped 为终止状态，直到新的启动重写记录。
"""

from enum import Enum
from typing import FrozenSet, Set, Tuple, Union


class StreamStatus(str, Enum):
    """流状态枚举"""
    STARTING = "starting"  # FFmpeg 已启动，尚无可播放输出
    ACTIVE = "active"      # 播放列表存在，正在生成切片
    STOPPED = "stopped"    # 活跃后进程已消失
    ERROR = "error"        # 生成播放列表前失败


TERMINAL_STATES: FrozenSet[StreamStatus] = frozenset({
    StreamStatus.STOPPED,
    StreamStatus.ERROR,
})

_TRANSITIONS: Set[Tuple[StreamStatus, StreamStatus]] = {
    (StreamStatus.STARTING, StreamStatus.ACTIVE),
    (StreamStatus.STARTING, StreamStatus.ERROR),
    (StreamStatus.ACTIVE, StreamStatus.STOPPED),
    (StreamStatus.ACTIVE, StreamStatus.STARTING),
}


def _coerce(status: Union[str, StreamStatus, None]):
    if isinstance(status, StreamStatus):
        return status
    try:
        return StreamStatus(status)
    except ValueError:
        return None


def is_terminal(status: Union[str, StreamStatus, None]) -> bool:
    return _coerce(status) in TERMINAL_STATES


def can_transition(current: Union[str, StreamStatus], target: Union[str, StreamStatus]) -> bool:
    """检查 current -> target 是否为定义的状态转换

    Args:
        current: 持久化的状态
        target: 目标状态

    Returns:
        在转换表中返回 True
    """
    return (_coerce(current), _coerce(target)) in _TRANSITIONS


def effective_status(persisted: str, is_live: bool, has_playlist: bool, segment_count: int) -> str:
    """根据持久化状态和实际情况计算当前状态

    按顺序匹配，第一条命中的规则生效：

    - starting，有播放列表且有切片        -> active
    - starting，无活跃进程且无播放列表    -> error
    - active，无活跃进程                  -> stopped
    - active，有播放列表但无切片          -> starting
    - 其他情况                            -> 不变

    Args:
        persisted: 记录中的状态
        is_live: 监管器是否跟踪着该流的运行进程
        has_playlist: index.m3u8 是否存在
        segment_count: 流目录中 .ts 文件数

    Returns:
        状态值字符串
    """
    status = _coerce(persisted)

    if status == StreamStatus.STARTING:
        if has_playlist and segment_count > 0:
            return StreamStatus.ACTIVE.value
        if not is_live and not has_playlist:
            return StreamStatus.ERROR.value
    elif status == StreamStatus.ACTIVE:
        if not is_live:
            return StreamStatus.STOPPED.value
        if has_playlist and segment_count == 0:
            return StreamStatus.STARTING.value

    return persisted
