"""
日志配置模块

提供统一的日志配置，支持控制台输出和文件输出。
必须在导入其他模块之前调用 setup_logging()。
"""

import sys
import logging
import traceback
from logging.config import dictConfig

from .config import settings


def get_logging_config() -> dict:
    """
    获取日志配置字典

    Returns:
        日志配置字典，可直接传递给 dictConfig
    """
    log_file = settings.storage_dir / "debug.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    package_logger = {
        "level": settings.logging_level,
        "handlers": ["console", "file"],
        "propagate": False,
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "filename": str(log_file),
                "mode": "a",
                "formatter": "default",
                "encoding": "utf-8",
            }
        },
        "loggers": {
            "diary_comic": dict(package_logger),
            "diary_comic.api.routers": dict(package_logger),
            "diary_comic.services": dict(package_logger),
            "diary_comic.utils": dict(package_logger),
            # 禁用 SQLAlchemy SQL 日志，避免淹没业务日志
            "sqlalchemy.engine": {
                "level": "WARNING",
                "handlers": ["console", "file"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console", "file"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console", "file"],
        },
    }


def setup_logging() -> None:
    """
    配置日志系统

    必须在导入其他模块之前调用，否则这些模块中的 logger
    会在配置完成前被创建，导致日志无法正常输出。
    """
    dictConfig(get_logging_config())


def setup_exception_hook() -> None:
    """
    设置全局异常钩子，捕获未处理的异常并记录到日志
    """
    original_hook = sys.excepthook

    def exception_hook(exc_type, exc_value, exc_traceback):
        logger = logging.getLogger(__name__)
        error_msg = ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
        logger.critical("未捕获的异常导致程序崩溃:\n%s", error_msg)

        for handler in logging.root.handlers:
            handler.flush()

        original_hook(exc_type, exc_value, exc_traceback)

    sys.excepthook = exception_hook


def log_startup_info() -> None:
    """
    输出启动信息到日志
    """
    logger = logging.getLogger(__name__)
    logger.info("=" * 80)
    logger.info("Diary Comic 后端服务启动，logging 配置已完成")
    logger.info("日志级别: %s", settings.logging_level)
    logger.info("日志文件: %s", settings.storage_dir / "debug.log")
    logger.info("图片供应商: %s, 场景并发: %d", settings.image_provider, settings.scene_render_concurrency)
    logger.info("=" * 80)
