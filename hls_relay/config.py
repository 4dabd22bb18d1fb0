"""
流中继配置

定义 RTSP -> HLS 中继的参数及默认值。参数先从全局 JSON 配置文件的
``streams`` 段读取，再由少量环境变量覆盖。
"""

import os
import json
import logging
from typing import Any, Dict, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CONFIG_FILE = "config/config.json"


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() == "true"


@dataclass
class StreamConfig:
    """中继配置

    从全局配置中读取中继相关参数，并提供默认值。
    """

    # 输出
    hls_dir: str = "hls_streams"
    ffmpeg_path: str = "ffmpeg"

    # 输入 / 编码器
    rtsp_transport: str = "tcp"
    video_preset: str = "ultrafast"
    tune: str = "zerolatency"

    # HLS
    segment_time: int = 2  # 每个切片的时长（秒）
    rolling_list_size: int = 6  # 删除旧切片时播放列表保留的切片数

    # 音频（所有画质预设共用）
    audio_bitrate: str = "128k"
    audio_channels: int = 2
    audio_sample_rate: int = 44100

    # 就绪轮询
    startup_delay: float = 1.0
    poll_interval: float = 0.5
    startup_timeout: Optional[float] = 30.0  # None 或 0 表示无限等待

    # 后台状态校正
    reconcile_interval: float = 3.0

    # 接管上一个实例遗留的 FFmpeg 进程
    adopt_orphans: bool = True

    # 日志
    debug: bool = False
    log_dir: str = "logs"
    log_backup_count: int = 3

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'StreamConfig':
        """从全局配置创建 StreamConfig

        Args:
            app_config: 全局配置字典

        Returns:
            StreamConfig 实例
        """
        section = app_config.get("streams", {}) or {}

        config = cls()

        if "hls_dir" in section:
            config.hls_dir = section["hls_dir"]
        if "ffmpeg_path" in section:
            config.ffmpeg_path = section["ffmpeg_path"]

        if "rtsp_transport" in section:
            config.rtsp_transport = section["rtsp_transport"]
        if "video_preset" in section:
            config.video_preset = section["video_preset"]
        if "tune" in section:
            config.tune = section["tune"]

        if "segment_time" in section:
            config.segment_time = int(section["segment_time"] or 2)
        if "rolling_list_size" in section:
            config.rolling_list_size = int(section["rolling_list_size"] or 6)

        if "audio_bitrate" in section:
            config.audio_bitrate = section["audio_bitrate"]
        if "audio_channels" in section:
            config.audio_channels = int(section["audio_channels"] or 2)
        if "audio_sample_rate" in section:
            config.audio_sample_rate = int(section["audio_sample_rate"] or 44100)

        if "startup_delay" in section:
            config.startup_delay = float(section["startup_delay"])
        if "poll_interval" in section:
            config.poll_interval = float(section["poll_interval"] or 0.5)
        if "startup_timeout" in section:
            timeout = section["startup_timeout"]
            config.startup_timeout = float(timeout) if timeout else None

        if "reconcile_interval" in section:
            config.reconcile_interval = float(section["reconcile_interval"] or 3.0)

        if "adopt_orphans" in section:
            config.adopt_orphans = bool(section["adopt_orphans"])

        if "debug" in section:
            config.debug = bool(section["debug"])
        if "log_dir" in section:
            config.log_dir = section["log_dir"]
        if "log_backup_count" in section:
            config.log_backup_count = int(section["log_backup_count"])

        config.apply_env()
        return config

    def apply_env(self) -> None:
        """应用环境变量覆盖（DEBUG、HLS_DIR、FFMPEG_PATH）"""
        debug = _env_flag("DEBUG")
        if debug is not None:
            self.debug = debug

        hls_dir = os.getenv("HLS_DIR", "").strip()
        if hls_dir:
            self.hls_dir = hls_dir

        ffmpeg_path = os.getenv("FFMPEG_PATH", "").strip()
        if ffmpeg_path:
            self.ffmpeg_path = ffmpeg_path

    def hls_settings(self, delete_segments: bool) -> Dict[str, Any]:
        """获取保留模式对应的 HLS 封装参数

        Args:
            delete_segments: True 为滚动窗口，False 保留全部切片

        Returns:
            包含 segment_time、list_size、flags 的字典
        """
        return {
            "segment_time": self.segment_time,
            "list_size": self.rolling_list_size if delete_segments else 0,
            "flags": "delete_segments" if delete_segments else "independent_segments",
        }


def load_app_config(path: str = CONFIG_FILE) -> Dict[str, Any]:
    """加载全局 JSON 配置文件

    文件不存在返回空配置；格式错误时记录日志并忽略。
    """
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = json.load(f) or {}
        logger.info(f"Loaded configuration file: {path}")
        return loaded if isinstance(loaded, dict) else {}
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load configuration file: {e}")
        return {}


def get_stream_config(path: str = CONFIG_FILE) -> StreamConfig:
    """便捷函数：读取配置文件并创建 StreamConfig

    Args:
        path: 配置文件路径

    Returns:
        StreamConfig 实例
    """
    return StreamConfig.from_app_config(load_app_config(path))
