"""
日志配置

控制台输出加按天轮转的日志文件。开启调试后根日志级别为 DEBUG，
FFmpeg 自身的输出也会记录。
"""

import os
import logging
from logging.handlers import TimedRotatingFileHandler

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_FILE_NAME = "hls_relay.log"

# 减少第三方模块的日志输出
QUIET_MODULES = ['urllib3', 'psutil']


def setup_logging(debug: bool = False, log_dir: str = "logs", backup_count: int = 3) -> logging.Logger:
    """配置根日志

    Args:
        debug: 使用 DEBUG 级别而不是 INFO
        log_dir: 轮转日志文件目录，为空时不写文件
        backup_count: 保留的轮转文件数

    Returns:
        根 logger
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)

    for module in QUIET_MODULES:
        logging.getLogger(module).setLevel(logging.WARNING)

    logger = logging.getLogger()
    logger.setLevel(level)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.abspath(os.path.join(log_dir, LOG_FILE_NAME))
        already_attached = any(
            isinstance(h, TimedRotatingFileHandler) and getattr(h, "baseFilename", None) == log_path
            for h in logger.handlers
        )
        if not already_attached:
            file_handler = TimedRotatingFileHandler(
                log_path,
                when='midnight',
                interval=1,
                backupCount=backup_count
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            file_handler.setLevel(level)
            logger.addHandler(file_handler)

    if debug:
        logger.debug("Debug mode enabled - verbose logging active")
    return logger
