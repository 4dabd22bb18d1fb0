"""
流生命周期管理器

中继的公共入口：
- 启动流并等待播放列表就绪
- 读取流记录（按实际状态校正）
- 更新流状态
- 删除流及其全部输出
- 列出有活跃 FFmpeg 进程的流
"""

import os
import threading
import logging
from typing import Any, Dict, List, Optional

from .config import StreamConfig
from .errors import ProcessSpawnError
from .ffmpeg import FFmpegRunner
from .identity import derive_stream_id
from .metadata import MetadataStore, PLAYLIST_NAME, now_iso
from .presets import QualityPreset, get_preset
from .readiness import ReadinessPoller
from .reconciler import Reconciler
from .status import StreamStatus, can_transition, is_terminal
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class StreamManager:
    """流生命周期管理器

    不同流的操作互不影响；同一个流的启动（直到进程启动并写入初始记录）
    与删除通过按流划分的锁串行化。等待播放列表时不持有该锁，
    因此删除可以随时取消正在启动的流。
    """

    def __init__(self, config: StreamConfig, ffmpeg_runner: Optional[FFmpegRunner] = None):
        """初始化管理器

        Args:
            config: 中继配置
            ffmpeg_runner: 命令构建与启动器，默认 FFmpegRunner(config)
        """
        self.config = config
        self.store = MetadataStore(config.hls_dir)
        self.ffmpeg_runner = ffmpeg_runner or FFmpegRunner(config)
        self.supervisor = ProcessSupervisor(self.ffmpeg_runner)
        self.poller = ReadinessPoller(
            self.store,
            self.supervisor,
            startup_delay=config.startup_delay,
            poll_interval=config.poll_interval,
            timeout=config.startup_timeout,
        )
        self.reconciler = Reconciler(self.store, self.supervisor, interval=config.reconcile_interval)

        self._op_locks: Dict[str, threading.Lock] = {}
        self._op_locks_guard = threading.Lock()

    # 管理器自身的生命周期

    def startup(self) -> None:
        """准备 HLS 根目录、接管遗留进程并启动校正线程"""
        os.makedirs(self.config.hls_dir, exist_ok=True)
        if self.config.adopt_orphans:
            self.adopt_orphans()
        self.reconciler.start()

    def stop(self) -> None:
        """停止校正线程和所有受监管的进程"""
        self.reconciler.stop()
        self.supervisor.terminate_all()

    def __enter__(self) -> 'StreamManager':
        self.startup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # 公共操作

    def start_stream(self, rtsp_url: str, quality: str, delete_segments: bool) -> str:
        """启动（或重启）流并等待播放列表

        对已在运行的流再次启动会替换其进程。

        Args:
            rtsp_url: 源地址
            quality: 画质预设名称
            delete_segments: True 为滚动窗口，False 保留全部切片

        Returns:
            流 ID

        Raises:
            UnsupportedQuality: 未知画质，未做任何改动
            StreamStartError: FFmpeg 启动失败、未生成播放列表，或启动期间被删除
        """
        preset = get_preset(quality)
        stream_id = derive_stream_id(rtsp_url, quality, delete_segments)

        with self._op_lock(stream_id):
            logger.debug(f"[Stream {stream_id}] Starting stream...")

            with self.store.lock(stream_id):
                self.supervisor.terminate(stream_id)
                os.makedirs(self.store.stream_dir(stream_id), exist_ok=True)
                self.store.clear_output(stream_id)

                command = self.ffmpeg_runner.build_command(
                    rtsp_url,
                    preset,
                    delete_segments,
                    self.store.playlist_path(stream_id),
                    self.store.segment_pattern(stream_id),
                )
                logger.info(f"Starting FFmpeg for stream {stream_id}: "
                            f"{self.ffmpeg_runner.get_command_line_string(command)}")

                record = self._build_record(stream_id, rtsp_url, quality, delete_segments, preset)
                try:
                    entry = self.supervisor.spawn(stream_id, command)
                except ProcessSpawnError as e:
                    record.update({
                        "status": StreamStatus.ERROR.value,
                        "error_message": e.message,
                        "error_at": now_iso(),
                    })
                    self.store.write(stream_id, record)
                    raise

                record["ffmpeg_pid"] = entry.pid
                self.store.write(stream_id, record)

        # 不持锁等待，删除或再次启动会终止该进程并让等待立即结束
        return self.poller.wait(stream_id, entry)

    def get_stream_metadata(self, stream_id: str) -> Optional[Dict[str, Any]]:
        """获取流记录（按实际状态校正）

        Args:
            stream_id: 流 ID

        Returns:
            记录字典，未知流返回 None
        """
        if not self._is_valid_id(stream_id):
            return None
        return self.reconciler.reconcile(stream_id)

    def update_stream_status(
        self,
        stream_id: str,
        status: str,
        additional_data: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """设置流状态并把附加字段合并进记录

        Args:
            stream_id: 流 ID
            status: 新状态
            additional_data: 一并保存的附加字段

        Returns:
            更新后的记录，未知流返回 None
        """
        if not self._is_valid_id(stream_id):
            return None

        fields = dict(additional_data or {})
        fields["status"] = status

        with self.store.lock(stream_id):
            current = self.store.read(stream_id)
            if current is None:
                return None
            previous = current.get("status")
            if previous != status and not can_transition(previous, status):
                logger.debug(f"[Stream {stream_id}] Explicit status change {previous} -> {status}")
            return self.store.merge(stream_id, fields)

    def delete_stream(self, stream_id: str) -> bool:
        """停止流并删除其目录

        只发送终止信号，不等待进程退出。正在等待播放列表的启动会随之失败。

        Args:
            stream_id: 流 ID

        Returns:
            目录已删除返回 True，不存在或无法删除返回 False
        """
        if not self._is_valid_id(stream_id):
            return False

        with self._op_lock(stream_id):
            self.supervisor.terminate(stream_id)
            removed = self.store.remove(stream_id)
            self.store.forget(stream_id)
            with self._op_locks_guard:
                self._op_locks.pop(stream_id, None)
        if removed:
            logger.info(f"[Stream {stream_id}] Stream deleted")
        return removed

    def get_active_streams(self) -> List[str]:
        """本实例中有活跃 FFmpeg 进程的流 ID"""
        return sorted(self.supervisor.list_live())

    # 供服务层使用的辅助方法

    def hls_url(self, stream_id: str) -> str:
        return f"/hls/{stream_id}/{PLAYLIST_NAME}"

    def list_streams(self) -> List[Dict[str, Any]]:
        """磁盘上所有带播放列表的流

        Returns:
            字典列表，包含 id、hls_url、quality、type 和校正后的记录
        """
        streams = []
        for stream_id in self.store.list_stream_ids():
            if not self.store.has_playlist(stream_id):
                continue
            try:
                metadata = self.get_stream_metadata(stream_id) or {}
            except (OSError, ValueError) as e:
                logger.warning(f"[Stream {stream_id}] Unreadable metadata: {e}")
                metadata = {}
            stream_type = metadata.get("type") or ("Rolling" if metadata.get("delete_segments") else "Archive")
            streams.append({
                "id": stream_id,
                "hls_url": self.hls_url(stream_id),
                "quality": metadata.get("quality", "unknown"),
                "type": stream_type,
                "metadata": metadata,
            })
        logger.debug(f"Found {len(streams)} streams")
        return streams

    def get_debug_info(self) -> Dict[str, Any]:
        """各目录的原始情况，不做校正"""
        active = self.get_active_streams()
        debug_info = []
        for stream_id in self.store.list_stream_ids():
            info = {
                "stream_id": stream_id,
                "has_playlist": self.store.has_playlist(stream_id),
                "has_metadata": self.store.has_metadata(stream_id),
                "is_process_active": stream_id in active,
                "segment_count": self.store.count_segments(stream_id),
                "metadata": None,
            }
            if info["has_metadata"]:
                try:
                    info["metadata"] = self.store.read(stream_id)
                except (OSError, ValueError) as e:
                    info["metadata_error"] = str(e)
            debug_info.append(info)

        return {
            "debug_info": debug_info,
            "active_processes": active,
            "total_streams": len(debug_info),
        }

    def adopt_orphans(self) -> List[str]:
        """接管上一个实例遗留的 FFmpeg 进程

        只考虑非终止状态且记录了 PID 的流，并且进程必须仍在写该流的播放列表。

        Returns:
            已接管的流 ID
        """
        adopted = []
        for stream_id in self.store.list_stream_ids():
            try:
                record = self.store.read(stream_id)
            except (OSError, ValueError) as e:
                logger.debug(f"[Stream {stream_id}] Skipping orphan check: {e}")
                continue
            if not record or is_terminal(record.get("status")):
                continue
            pid = record.get("ffmpeg_pid")
            if not pid:
                continue
            if self.supervisor.adopt(stream_id, int(pid), self.store.playlist_path(stream_id)):
                adopted.append(stream_id)
        if adopted:
            logger.info(f"Adopted {len(adopted)} running stream(s)")
        return adopted

    # 内部方法

    def _op_lock(self, stream_id: str) -> threading.Lock:
        with self._op_locks_guard:
            lock = self._op_locks.get(stream_id)
            if lock is None:
                lock = self._op_locks[stream_id] = threading.Lock()
            return lock

    @staticmethod
    def _is_valid_id(stream_id: str) -> bool:
        # ID 即 HLS 根目录下的目录名
        return bool(stream_id) and stream_id not in (".", "..") and "/" not in stream_id and "\\" not in stream_id

    def _build_record(
        self,
        stream_id: str,
        rtsp_url: str,
        quality: str,
        delete_segments: bool,
        preset: QualityPreset
    ) -> Dict[str, Any]:
        now = now_iso()
        return {
            "stream_id": stream_id,
            "rtsp_url": rtsp_url,
            "quality": quality,
            "delete_segments": delete_segments,
            "type": "Rolling" if delete_segments else "Archive",
            "created_at": now,
            "started_at": now,
            "status": StreamStatus.STARTING.value,
            "ffmpeg_pid": None,
            "hls_settings": self.config.hls_settings(delete_segments),
            "quality_preset": {
                "resolution": preset.resolution,
                "bitrate": preset.bitrate,
                "audio_bitrate": self.config.audio_bitrate,
                "audio_channels": self.config.audio_channels,
                "audio_sample_rate": str(self.config.audio_sample_rate),
            },
            "file_paths": {
                "stream_dir": self.store.stream_dir(stream_id),
                "playlist": self.store.playlist_path(stream_id),
                "segment_pattern": self.store.segment_pattern(stream_id),
            },
        }


def get_stream_manager(config: StreamConfig) -> StreamManager:
    """创建 StreamManager

    Args:
        config: 中继配置

    Returns:
        StreamManager 实例
    """
    return StreamManager(config)
