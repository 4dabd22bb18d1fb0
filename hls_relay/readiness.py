"""
启动就绪轮询

FFmpeg 启动后等待播放列表出现（成功），或进程报告错误、退出、
超过启动期限（失败）。
"""

import time
import logging
from typing import Optional

from .diagnostics import FailureKind, timeout_message
from .errors import error_for
from .metadata import MetadataStore, now_iso
from .status import StreamStatus
from .supervisor import ProcessSupervisor, SupervisedProcess

logger = logging.getLogger(__name__)

EARLY_EXIT_MESSAGE = "FFmpeg exited before the playlist was created"
CANCELLED_MESSAGE = "Stream was stopped before the playlist was created"


class ReadinessPoller:
    """等待新启动的流生成播放列表"""

    def __init__(
        self,
        store: MetadataStore,
        supervisor: ProcessSupervisor,
        startup_delay: float = 1.0,
        poll_interval: float = 0.5,
        timeout: Optional[float] = 30.0
    ):
        """初始化轮询器

        Args:
            store: 流记录存储
            supervisor: 进程监管器（用于停止启动失败的流）
            startup_delay: 首次检查前的等待时间（秒）
            poll_interval: 检查间隔（秒）
            timeout: 总期限（秒），None 或 0 表示无限等待
        """
        self.store = store
        self.supervisor = supervisor
        self.startup_delay = startup_delay
        self.poll_interval = poll_interval
        self.timeout = timeout or None

    def wait(self, stream_id: str, entry: SupervisedProcess) -> str:
        """阻塞直到流就绪

        进程被 delete 或新的 start 终止时立即失败返回，且不改动记录，
        因为记录此时已属于删除或新的启动。

        Args:
            stream_id: 流 ID
            entry: 已启动进程的状态

        Returns:
            index.m3u8 出现后返回 stream_id

        Raises:
            StreamStartError: 与失败原因对应的子类
        """
        deadline = time.monotonic() + self.timeout if self.timeout else None
        entry.wait_for_change(self.startup_delay)

        while True:
            if entry.terminate_requested:
                logger.info(f"[Stream {stream_id}] Start cancelled")
                raise error_for(FailureKind.EXITED, CANCELLED_MESSAGE, stream_id=stream_id)

            if self.store.has_playlist(stream_id):
                self._mark_active(stream_id)
                logger.debug(f"[Stream {stream_id}] Playlist created successfully")
                return stream_id

            if entry.has_error:
                self._fail(stream_id, entry, entry.failure, entry.error_message)

            if not entry.is_running():
                # 播放列表可能在退出前刚刚写入
                if self.store.has_playlist(stream_id):
                    continue
                self._fail(stream_id, entry, FailureKind.EXITED, EARLY_EXIT_MESSAGE)

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._fail(stream_id, entry, FailureKind.TIMEOUT, timeout_message(self.timeout))
                wait = min(wait, remaining)

            entry.wait_for_change(wait)

    def _mark_active(self, stream_id: str) -> None:
        self.store.merge(stream_id, {
            "status": StreamStatus.ACTIVE.value,
            "playlist_created_at": now_iso(),
            "playlist_size": self.store.playlist_size(stream_id),
            "segment_count": self.store.count_segments(stream_id),
        })

    def _fail(self, stream_id: str, entry: SupervisedProcess, kind: Optional[FailureKind], message: str) -> None:
        """停止进程、记录错误并抛出异常"""
        if self.supervisor.get(stream_id) is entry:
            self.supervisor.terminate(stream_id)

        self.store.merge(stream_id, {
            "status": StreamStatus.ERROR.value,
            "error_message": message,
            "error_at": now_iso(),
        })
        logger.error(f"[Stream {stream_id}] Stream start failed: {message}")
        raise error_for(kind, message, stream_id=stream_id)
