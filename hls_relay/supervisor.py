"""
FFmpeg 进程监管

维护活跃进程表：每个流 ID 至多一个受监管的 FFmpeg 进程。每个启动的进程由
三个守护线程观察（stdout 读取、stderr 读取与错误识别、退出监视），它们共同
更新一个 SupervisedProcess 状态对象，供就绪轮询器读取。
"""

import time
import threading
import logging
from typing import Dict, List, Optional, Set

import psutil

from .diagnostics import FailureKind, OutputClassifier, exit_message, spawn_message
from .errors import ProcessSpawnError
from .ffmpeg import FFmpegRunner

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
# 退出监视线程等待 stderr 读取线程读完的时间
DRAIN_TIMEOUT = 2.0


class SupervisedProcess:
    """单个 FFmpeg 进程的观察状态

    由观察线程写入，由就绪轮询器和状态校正器读取。只保留第一次记录的错误。
    """

    def __init__(self, stream_id: str, process, adopted: bool = False):
        self.stream_id = stream_id
        self.process = process
        self.pid: int = process.pid
        self.adopted = adopted
        self.started_at = time.time()

        self.has_error = False
        self.failure: Optional[FailureKind] = None
        self.error_message: Optional[str] = None
        self.exit_code: Optional[int] = None
        self.terminate_requested = False

        self.exited = threading.Event()
        self._changed = threading.Event()
        self._lock = threading.Lock()

    def record_failure(self, kind: FailureKind, message: str) -> bool:
        """记录错误（已有错误时忽略）

        Returns:
            本次调用是否写入了错误
        """
        with self._lock:
            if self.has_error:
                return False
            self.has_error = True
            self.failure = kind
            self.error_message = message
        self._changed.set()
        return True

    def record_exit(self, code: Optional[int]) -> None:
        """记录进程退出

        只有正数退出码且不是 terminate() 造成的退出才算错误。负数退出码表示
        被信号终止，按无退出码处理。通用消息仅在之前没有识别到错误时使用。
        """
        self.exit_code = code
        if code is not None and code > 0 and not self.terminate_requested:
            self.record_failure(FailureKind.EXITED, exit_message(code))
        self.exited.set()
        self._changed.set()

    def request_terminate(self) -> None:
        """标记为主动终止并唤醒等待者"""
        self.terminate_requested = True
        self._changed.set()

    def is_running(self) -> bool:
        return not self.exited.is_set()

    def wait_for_change(self, timeout: Optional[float]) -> bool:
        """阻塞直到记录了错误或退出，或超时"""
        return self._changed.wait(timeout)


class ProcessSupervisor:
    """按流 ID 索引的活跃进程表"""

    def __init__(self, runner: FFmpegRunner):
        """初始化监管器

        Args:
            runner: 用于启动 FFmpeg 的执行器
        """
        self.runner = runner
        self._processes: Dict[str, SupervisedProcess] = {}
        self._lock = threading.RLock()

    def spawn(self, stream_id: str, command: List[str]) -> SupervisedProcess:
        """为流启动 FFmpeg，替换该流已有的进程

        Args:
            stream_id: 流 ID
            command: FFmpeg 参数列表

        Returns:
            新进程的 SupervisedProcess

        Raises:
            ProcessSpawnError: 进程无法启动
        """
        with self._lock:
            self.terminate(stream_id)

            try:
                process = self.runner.start_process(command)
            except OSError as e:
                logger.error(f"[Stream {stream_id}] Failed to start FFmpeg: {e}")
                raise ProcessSpawnError(spawn_message(e), stream_id=stream_id) from e

            entry = SupervisedProcess(stream_id, process)
            self._processes[stream_id] = entry

        readers = [
            self._start_thread(self._read_stdout, entry, f"FFmpegStdout-{stream_id[:8]}"),
            self._start_thread(self._read_stderr, entry, f"FFmpegStderr-{stream_id[:8]}"),
        ]
        self._start_thread(self._watch_exit, entry, f"FFmpegExit-{stream_id[:8]}", readers)
        return entry

    def adopt(self, stream_id: str, pid: int, marker: str) -> bool:
        """接管上一个实例启动的 FFmpeg 进程

        进程必须仍在运行且命令行中包含 ``marker``（通常是播放列表路径），
        避免接管被复用的 PID。

        Args:
            stream_id: 流 ID
            pid: 记录中的 FFmpeg PID
            marker: 进程参数中应包含的字符串

        Returns:
            进程是否已纳入监管
        """
        try:
            proc = psutil.Process(pid)
            if proc.status() == psutil.STATUS_ZOMBIE:
                return False
            cmdline = proc.cmdline()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logger.debug(f"[Stream {stream_id}] Cannot adopt PID {pid}: {e}")
            return False

        if not any(marker in arg for arg in cmdline):
            logger.debug(f"[Stream {stream_id}] PID {pid} does not belong to this stream")
            return False

        with self._lock:
            if stream_id in self._processes:
                return False
            entry = SupervisedProcess(stream_id, proc, adopted=True)
            self._processes[stream_id] = entry

        self._start_thread(self._watch_exit, entry, f"FFmpegExit-{stream_id[:8]}", [])
        logger.info(f"[Stream {stream_id}] Adopted running FFmpeg process {pid}")
        return True

    def terminate(self, stream_id: str) -> bool:
        """停止跟踪流的进程并发送 SIGTERM

        不等待进程退出。未知流或已退出的进程不做任何操作。

        Args:
            stream_id: 流 ID

        Returns:
            该流是否有被跟踪的进程
        """
        with self._lock:
            entry = self._processes.pop(stream_id, None)
        if entry is None:
            return False

        entry.request_terminate()
        if entry.is_running():
            try:
                entry.process.terminate()
                logger.info(f"[Stream {stream_id}] Sent SIGTERM to FFmpeg process {entry.pid}")
            except (OSError, psutil.Error) as e:
                logger.debug(f"[Stream {stream_id}] Process already killed: {e}")
        return True

    def terminate_all(self) -> None:
        for stream_id in list(self.list_live()):
            self.terminate(stream_id)

    def get(self, stream_id: str) -> Optional[SupervisedProcess]:
        with self._lock:
            return self._processes.get(stream_id)

    def is_live(self, stream_id: str) -> bool:
        with self._lock:
            return stream_id in self._processes

    def list_live(self) -> Set[str]:
        with self._lock:
            return set(self._processes)

    @staticmethod
    def _start_thread(target, entry: SupervisedProcess, name: str, *args) -> threading.Thread:
        thread = threading.Thread(target=target, args=(entry,) + args, daemon=True, name=name)
        thread.start()
        return thread

    def _read_stdout(self, entry: SupervisedProcess) -> None:
        stream = entry.process.stdout
        try:
            for chunk in iter(lambda: stream.read1(READ_CHUNK_SIZE), b""):
                logger.debug(f"[FFmpeg {entry.stream_id} stdout]: {chunk.decode('utf-8', errors='replace')}")
        except (OSError, ValueError) as e:
            logger.debug(f"[FFmpeg {entry.stream_id}] stdout closed: {e}")
        finally:
            stream.close()

    def _read_stderr(self, entry: SupervisedProcess) -> None:
        """记录 FFmpeg 诊断输出并识别已知错误特征"""
        stream = entry.process.stderr
        classifier = OutputClassifier()
        try:
            for chunk in iter(lambda: stream.read1(READ_CHUNK_SIZE), b""):
                text = chunk.decode("utf-8", errors="replace")
                logger.debug(f"[FFmpeg {entry.stream_id} stderr]: {text}")

                match = classifier.feed(text)
                if match and entry.record_failure(*match):
                    logger.warning(f"[Stream {entry.stream_id}] {match[1]}")
        except (OSError, ValueError) as e:
            logger.debug(f"[FFmpeg {entry.stream_id}] stderr closed: {e}")
        finally:
            stream.close()

    def _watch_exit(self, entry: SupervisedProcess, readers: List[threading.Thread]) -> None:
        try:
            code = entry.process.wait()
        except psutil.Error as e:
            logger.debug(f"[Stream {entry.stream_id}] Lost track of process {entry.pid}: {e}")
            code = None

        # 先让 stderr 读取线程识别最后的输出，再写入通用退出消息
        for reader in readers:
            reader.join(DRAIN_TIMEOUT)

        entry.record_exit(code)
        if entry.has_error and not entry.terminate_requested:
            logger.error(f"[FFmpeg {entry.stream_id} Exit]: Code {code} - {entry.error_message}")
        else:
            logger.debug(f"[FFmpeg {entry.stream_id} Exit]: Code {code}")

        with self._lock:
            if self._processes.get(entry.stream_id) is entry:
                del self._processes[entry.stream_id]
