"""
命令行入口

    hls-relay start rtsp://host/cam1 --quality 720p       # 滚动窗口
    hls-relay start rtsp://host/cam1 --quality 720p --archive
    hls-relay status <stream_id>
    hls-relay update <stream_id> <status> [key=value ...]
    hls-relay list
    hls-relay delete <stream_id>
    hls-relay debug

``start`` 在前台运行，Ctrl-C 时停止流。其他命令检查 HLS 目录；被强制结束的
前台运行遗留的 FFmpeg 进程会先被接管，使状态准确。
"""

import sys
import json
import argparse
import logging
import threading
from typing import List, Optional

from .config import CONFIG_FILE, get_stream_config
from .errors import StreamError
from .logging_config import setup_logging
from .manager import StreamManager, get_stream_manager
from .presets import QUALITY_PRESETS

logger = logging.getLogger(__name__)


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _parse_fields(pairs: List[str]) -> dict:
    fields = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected key=value, got {pair!r}")
        try:
            fields[key] = json.loads(value)
        except ValueError:
            fields[key] = value
    return fields


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hls-relay", description="RTSP 转 HLS 流中继")
    parser.add_argument("--config", default=CONFIG_FILE, help="JSON 配置文件")
    parser.add_argument("--debug", action="store_true", help="详细日志（包括 FFmpeg 输出）")

    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="启动流并保持运行")
    start.add_argument("rtsp_url")
    start.add_argument("--quality", required=True, help="可选: " + ", ".join(QUALITY_PRESETS))
    start.add_argument("--archive", action="store_true", help="保留全部切片而不是滚动窗口")

    status = sub.add_parser("status", help="查看流记录")
    status.add_argument("stream_id")

    update = sub.add_parser("update", help="设置流状态")
    update.add_argument("stream_id")
    update.add_argument("status")
    update.add_argument("fields", nargs="*", metavar="key=value")

    sub.add_parser("list", help="列出有播放列表的流")

    delete = sub.add_parser("delete", help="停止流并删除其文件")
    delete.add_argument("stream_id")

    sub.add_parser("debug", help="输出各目录的原始状态")

    return parser


def _run_foreground(manager: StreamManager, args, stop_event: threading.Event) -> int:
    manager.startup()
    try:
        stream_id = manager.start_stream(args.rtsp_url, args.quality, not args.archive)
    except StreamError as e:
        logger.error(f"Stream start failed: {e}")
        _print_json({"error": str(e)})
        manager.stop()
        return 1

    _print_json({"stream_id": stream_id, "hls_url": manager.hls_url(stream_id)})
    try:
        while not stop_event.wait(1.0):
            if stream_id not in manager.get_active_streams():
                logger.warning(f"[Stream {stream_id}] FFmpeg is no longer running")
                break
    except KeyboardInterrupt:
        pass
    finally:
        manager.stop()
        _print_json({"metadata": manager.get_stream_metadata(stream_id)})
    return 0


def main(argv: Optional[List[str]] = None, stop_event: Optional[threading.Event] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = get_stream_config(args.config)
    if args.debug:
        config.debug = True
    setup_logging(config.debug, config.log_dir, config.log_backup_count)

    manager = get_stream_manager(config)

    if args.command == "start":
        return _run_foreground(manager, args, stop_event or threading.Event())

    if config.adopt_orphans:
        manager.adopt_orphans()

    if args.command == "status":
        metadata = manager.get_stream_metadata(args.stream_id)
        if metadata is None:
            _print_json({"error": "Stream not found"})
            return 1
        _print_json({"metadata": metadata})
        return 0

    if args.command == "update":
        try:
            fields = _parse_fields(args.fields)
        except argparse.ArgumentTypeError as e:
            parser.error(str(e))
        metadata = manager.update_stream_status(args.stream_id, args.status, fields)
        if metadata is None:
            _print_json({"error": "Stream not found"})
            return 1
        _print_json({"metadata": metadata})
        return 0

    if args.command == "list":
        _print_json({"streams": manager.list_streams(), "active_streams": manager.get_active_streams()})
        return 0

    if args.command == "delete":
        if manager.delete_stream(args.stream_id):
            _print_json({"success": True})
            return 0
        _print_json({"error": "Stream not found"})
        return 1

    _print_json(manager.get_debug_info())
    return 0


if __name__ == "__main__":
    sys.exit(main())
