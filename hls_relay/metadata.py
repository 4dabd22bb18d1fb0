"""
流记录持久化

每个流在 HLS 根目录下拥有一个子目录，包含 index.m3u8、编号的
segment_NNN.ts 切片和 metadata.json。metadata.json 是流的持久状态记录，
每次修改都以原子方式整体重写。
"""

import os
import json
import shutil
import tempfile
import threading
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "index.m3u8"
METADATA_NAME = "metadata.json"
SEGMENT_TEMPLATE = "segment_%03d.ts"
SEGMENT_SUFFIX = ".ts"
PLAYLIST_SUFFIX = ".m3u8"


def now_iso() -> str:
    """当前 UTC 时间，ISO-8601 毫秒精度，例如 2024-05-01T12:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MetadataStore:
    """基于文件的流记录存储

    同一个流的写入通过按流划分的锁串行化，该锁由状态校正器和管理器共享。
    """

    def __init__(self, hls_dir: str):
        """初始化存储

        Args:
            hls_dir: 根目录，每个流一个子目录
        """
        self.hls_dir = hls_dir
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, stream_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(stream_id)
            if lock is None:
                lock = self._locks[stream_id] = threading.RLock()
            return lock

    def forget(self, stream_id: str) -> None:
        """丢弃流的锁（流目录删除后调用）"""
        with self._locks_guard:
            self._locks.pop(stream_id, None)

    # 目录布局

    def stream_dir(self, stream_id: str) -> str:
        return os.path.join(self.hls_dir, stream_id)

    def playlist_path(self, stream_id: str) -> str:
        return os.path.join(self.stream_dir(stream_id), PLAYLIST_NAME)

    def metadata_path(self, stream_id: str) -> str:
        return os.path.join(self.stream_dir(stream_id), METADATA_NAME)

    def segment_pattern(self, stream_id: str) -> str:
        return os.path.join(self.stream_dir(stream_id), SEGMENT_TEMPLATE)

    def has_playlist(self, stream_id: str) -> bool:
        return os.path.isfile(self.playlist_path(stream_id))

    def has_metadata(self, stream_id: str) -> bool:
        return os.path.isfile(self.metadata_path(stream_id))

    def playlist_size(self, stream_id: str) -> Optional[int]:
        try:
            return os.path.getsize(self.playlist_path(stream_id))
        except OSError:
            return None

    def count_segments(self, stream_id: str) -> int:
        """流目录中当前 .ts 文件的数量"""
        try:
            names = os.listdir(self.stream_dir(stream_id))
        except FileNotFoundError:
            return 0
        return sum(1 for name in names if name.endswith(SEGMENT_SUFFIX))

    def list_stream_ids(self) -> List[str]:
        """HLS 根目录下所有流目录，已排序"""
        try:
            names = os.listdir(self.hls_dir)
        except FileNotFoundError:
            return []
        return sorted(name for name in names if os.path.isdir(os.path.join(self.hls_dir, name)))

    # 记录读写

    def read(self, stream_id: str) -> Optional[Dict[str, Any]]:
        """读取流记录

        Args:
            stream_id: 流 ID

        Returns:
            记录字典，目录或文件不存在返回 None

        Raises:
            ValueError: metadata.json 不是合法 JSON，或顶层不是对象
        """
        try:
            with open(self.metadata_path(stream_id), "r", encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError:
            return None
        if not isinstance(record, dict):
            raise ValueError(f"metadata.json of {stream_id} is not a JSON object")
        return record

    def write(self, stream_id: str, record: Dict[str, Any]) -> None:
        """覆盖写入流记录

        先写入流目录中的临时文件，再替换 metadata.json，读者不会看到写了一半的文件。

        Args:
            stream_id: 流 ID
            record: 完整记录
        """
        stream_dir = self.stream_dir(stream_id)
        with self.lock(stream_id):
            os.makedirs(stream_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".metadata-", suffix=".tmp", dir=stream_dir)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.metadata_path(stream_id))
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise

    def merge(self, stream_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """读-改-写流记录

        ``fields`` 覆盖同名的顶层字段，并刷新 last_updated。

        Args:
            stream_id: 流 ID
            fields: 部分记录

        Returns:
            更新后的记录，流没有记录时返回 None
        """
        with self.lock(stream_id):
            record = self.read(stream_id)
            if record is None:
                return None
            record.update(fields)
            record["last_updated"] = now_iso()
            self.write(stream_id, record)
            return record

    # 输出文件

    def clear_output(self, stream_id: str) -> int:
        """删除上一次运行留下的播放列表和切片

        Returns:
            删除的文件数
        """
        stream_dir = self.stream_dir(stream_id)
        removed = 0
        try:
            names = os.listdir(stream_dir)
        except FileNotFoundError:
            return 0
        for name in names:
            if name.endswith(SEGMENT_SUFFIX) or name.endswith(PLAYLIST_SUFFIX):
                try:
                    os.unlink(os.path.join(stream_dir, name))
                    removed += 1
                except FileNotFoundError:
                    pass
        return removed

    def remove(self, stream_id: str) -> bool:
        """删除流目录及其全部内容

        Returns:
            目录已删除返回 True，不存在或删除失败返回 False
        """
        stream_dir = self.stream_dir(stream_id)
        with self.lock(stream_id):
            if not os.path.isdir(stream_dir):
                return False
            try:
                shutil.rmtree(stream_dir)
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                logger.error(f"[Stream {stream_id}] Error deleting directory: {e}")
                return False
