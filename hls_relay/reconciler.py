"""
流状态校正

根据持久化记录、活跃进程表和流目录中的文件重新计算流的实际状态。
每次读取状态时执行，并由后台线程定期执行。
"""

import threading
import logging
from typing import Any, Dict, Optional

from .metadata import MetadataStore, now_iso
from .status import effective_status
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class Reconciler:
    """让流记录与实际运行情况保持一致"""

    def __init__(self, store: MetadataStore, supervisor: ProcessSupervisor, interval: float = 3.0):
        """初始化校正器

        Args:
            store: 流记录存储
            supervisor: 活跃进程表
            interval: 后台巡检间隔（秒）
        """
        self.store = store
        self.supervisor = supervisor
        self.interval = interval

        self._sweep_thread: Optional[threading.Thread] = None
        self._stop_sweep = threading.Event()

    def reconcile(self, stream_id: str) -> Optional[Dict[str, Any]]:
        """校正单个流

        仅在状态或切片数变化时重写记录。

        Args:
            stream_id: 流 ID

        Returns:
            当前记录，流没有记录返回 None

        Raises:
            ValueError: 记录无法解析
        """
        with self.store.lock(stream_id):
            record = self.store.read(stream_id)
            if record is None:
                return None

            is_live = self.supervisor.is_live(stream_id)
            has_playlist = self.store.has_playlist(stream_id)
            segment_count = self.store.count_segments(stream_id)

            persisted = record.get("status")
            current = effective_status(persisted, is_live, has_playlist, segment_count)

            if current == persisted and segment_count == (record.get("segment_count") or 0):
                return record

            if current != persisted:
                logger.info(f"[Stream {stream_id}] Status {persisted} -> {current}")

            record["status"] = current
            record["segment_count"] = segment_count
            record["last_updated"] = now_iso()

            if has_playlist:
                size = self.store.playlist_size(stream_id)
                if size is not None:
                    record["playlist_size"] = size
                    if not record.get("playlist_created_at"):
                        record["playlist_created_at"] = now_iso()

            self.store.write(stream_id, record)
            return record

    def sweep(self) -> int:
        """校正所有带记录的流目录

        单个流出错只记录日志并跳过。

        Returns:
            本轮校正的流数量
        """
        count = 0
        for stream_id in self.store.list_stream_ids():
            if not self.store.has_metadata(stream_id):
                continue
            try:
                self.reconcile(stream_id)
                count += 1
            except (OSError, ValueError) as e:
                logger.debug(f"[Metadata Update] Error updating {stream_id}: {e}")
        return count

    def start(self) -> None:
        """启动后台巡检线程"""
        if self._sweep_thread is None or not self._sweep_thread.is_alive():
            self._stop_sweep.clear()
            self._sweep_thread = threading.Thread(
                target=self._sweep_loop,
                daemon=True,
                name="StreamReconciler"
            )
            self._sweep_thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """停止后台巡检线程"""
        self._stop_sweep.set()
        if self._sweep_thread:
            self._sweep_thread.join(timeout=timeout)
            self._sweep_thread = None

    def is_running(self) -> bool:
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def _sweep_loop(self):
        """巡检循环"""
        while not self._stop_sweep.wait(self.interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error in reconcile loop: {e}")
