"""
RTSP -> HLS 流中继模块

为每个直播流监管一个 FFmpeg 进程，并在播放列表和切片旁维护 metadata.json 记录。

- 根据（源地址、画质、保留模式）生成流 ID
- 从 FFmpeg 诊断输出识别错误
- 有期限地等待播放列表生成
- 每次读取及后台定期按实际进程和文件校正状态
"""

from .config import StreamConfig, get_stream_config
from .errors import (
    StreamError,
    UnsupportedQuality,
    StreamStartError,
    ProcessSpawnError,
    SourceUnreachable,
    AuthFailed,
    SourceNotFound,
    InvalidSourceFormat,
    ProcessExitedEarly,
    ReadinessTimeout,
)
from .identity import derive_stream_id
from .presets import QUALITY_PRESETS, QualityPreset
from .status import StreamStatus
from .ffmpeg import FFmpegRunner
from .manager import StreamManager, get_stream_manager

__all__ = [
    'StreamConfig',
    'get_stream_config',
    'StreamError',
    'UnsupportedQuality',
    'StreamStartError',
    'ProcessSpawnError',
    'SourceUnreachable',
    'AuthFailed',
    'SourceNotFound',
    'InvalidSourceFormat',
    'ProcessExitedEarly',
    'ReadinessTimeout',
    'derive_stream_id',
    'QUALITY_PRESETS',
    'QualityPreset',
    'StreamStatus',
    'FFmpegRunner',
    'StreamManager',
    'get_stream_manager',
]
