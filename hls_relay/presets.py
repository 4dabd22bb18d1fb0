"""
画质预设

每个预设对应一个输出分辨率和固定视频码率；音频参数所有预设共用，
定义在 StreamConfig 中。
"""

from dataclasses import dataclass
from typing import Dict

from .errors import UnsupportedQuality


@dataclass(frozen=True)
class QualityPreset:
    name: str
    resolution: str
    bitrate: str


QUALITY_PRESETS: Dict[str, QualityPreset] = {
    "1080p": QualityPreset("1080p", "1920x1080", "5000k"),
    "720p": QualityPreset("720p", "1280x720", "2500k"),
    "480p": QualityPreset("480p", "854x480", "1000k"),
}


def is_supported(quality: str) -> bool:
    return quality in QUALITY_PRESETS


def get_preset(quality: str) -> QualityPreset:
    """按名称查找画质预设

    Args:
        quality: 预设名称，例如 "720p"

    Returns:
        QualityPreset

    Raises:
        UnsupportedQuality: 名称不在 QUALITY_PRESETS 中
    """
    preset = QUALITY_PRESETS.get(quality)
    if preset is None:
        raise UnsupportedQuality(quality)
    return preset
