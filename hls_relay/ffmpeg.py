"""
FFmpeg 命令构建

构建拉取 RTSP 源并输出直播 HLS 播放列表（编号 MPEG-TS 切片）的 FFmpeg 命令，
并启动进程。
"""

import re
import subprocess
import logging
from typing import List

from .config import StreamConfig
from .presets import QualityPreset

logger = logging.getLogger(__name__)

_CREDENTIALS_RE = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)(?P<user>[^:@/]+):(?P<password>[^@/]*)@")


class FFmpegRunner:
    """FFmpeg 进程执行器

    构建中继命令并以捕获输出的方式启动进程。
    """

    def __init__(self, config: StreamConfig):
        """初始化执行器

        Args:
            config: 中继配置（FFmpeg 路径、编码器和 HLS 参数）
        """
        self.config = config

    @property
    def ffmpeg_path(self) -> str:
        return self.config.ffmpeg_path

    def build_command(
        self,
        rtsp_url: str,
        preset: QualityPreset,
        delete_segments: bool,
        playlist_path: str,
        segment_pattern: str
    ) -> List[str]:
        """构建 FFmpeg 命令

        Args:
            rtsp_url: 源地址
            preset: 画质预设（分辨率和视频码率）
            delete_segments: 滚动窗口（True）或全部保留（False）
            playlist_path: 输出 index.m3u8 路径
            segment_pattern: 输出切片文件名模式

        Returns:
            FFmpeg 参数列表
        """
        cmd = [self.ffmpeg_path]

        # 输入
        cmd.extend(["-rtsp_transport", self.config.rtsp_transport])
        cmd.extend(["-i", rtsp_url])

        # 视频
        cmd.extend(self._get_video_params(preset))

        # 音频
        cmd.extend(self._get_audio_params())

        # HLS 输出
        cmd.extend(self._get_hls_params(delete_segments, segment_pattern))
        cmd.append(playlist_path)

        return cmd

    def _get_video_params(self, preset: QualityPreset) -> List[str]:
        # 固定码率：maxrate 和 bufsize 与目标码率一致
        return [
            "-c:v", "libx264",
            "-preset", self.config.video_preset,
            "-tune", self.config.tune,
            "-s", preset.resolution,
            "-b:v", preset.bitrate,
            "-maxrate", preset.bitrate,
            "-bufsize", preset.bitrate,
            "-pix_fmt", "yuv420p",
        ]

    def _get_audio_params(self) -> List[str]:
        return [
            "-c:a", "aac",
            "-b:a", self.config.audio_bitrate,
            "-ac", str(self.config.audio_channels),
            "-ar", str(self.config.audio_sample_rate),
        ]

    def _get_hls_params(self, delete_segments: bool, segment_pattern: str) -> List[str]:
        """HLS 封装参数

        滚动模式只保留较短的窗口，由 FFmpeg 删除旧切片；
        保留模式列出全部切片（list size 为 0）并全部保留。
        """
        settings = self.config.hls_settings(delete_segments)
        return [
            "-f", "hls",
            "-hls_time", str(settings["segment_time"]),
            "-hls_list_size", str(settings["list_size"]),
            "-hls_flags", settings["flags"],
            "-hls_segment_filename", segment_pattern,
        ]

    def start_process(self, command: List[str]) -> subprocess.Popen:
        """启动 FFmpeg

        stdout 和 stderr 通过管道交给监管器读取诊断输出；stdin 关闭。

        Args:
            command: 参数列表

        Returns:
            subprocess.Popen 对象

        Raises:
            OSError: 可执行文件无法启动
        """
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        logger.info(f"Started FFmpeg process with PID {process.pid}")
        return process

    def get_command_line_string(self, command: List[str]) -> str:
        """获取用于日志的命令行字符串（隐藏 URL 中的密码）

        Args:
            command: 参数列表

        Returns:
            命令行字符串
        """
        return " ".join(_CREDENTIALS_RE.sub(r"\g<scheme>\g<user>:***@", arg) for arg in command)
