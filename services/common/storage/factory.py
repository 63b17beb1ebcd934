"""
存储工厂

根据配置创建合适的文档存储实例，支持文件和Redis两种后端
"""

import os
import logging
from typing import Any, Dict, Optional

import redis

from .base import DocumentStore
from .file_store import FileDocumentStore
from .redis_store import RedisDocumentStore

logger = logging.getLogger("storage.factory")


def get_store(namespace: str,
              store_type: Optional[str] = None,
              ttl: Optional[int] = None,
              **kwargs) -> DocumentStore:
    """
    获取文档存储实例

    Args:
        namespace: 命名空间
        store_type: 存储类型 ('file', 'redis', None=自动选择)
        ttl: 默认过期时间（秒）
        **kwargs: 后端特定的配置参数

    Returns:
        DocumentStore: 存储实例

    Raises:
        ValueError: 不支持的存储类型
    """
    if store_type is None:
        store_type = _get_default_store_type()

    store_type = store_type.lower()
    logger.info(f"创建存储实例: {namespace}, 类型: {store_type}")

    if store_type == "file":
        return _create_file_store(namespace, ttl, **kwargs)
    elif store_type == "redis":
        return _create_redis_store(namespace, ttl, **kwargs)
    else:
        raise ValueError(f"不支持的存储类型: {store_type}")


def _get_default_store_type() -> str:
    """
    获取默认存储类型

    优先级：
    1. 环境变量 STORE_TYPE
    2. 有Redis配置 -> redis
    3. 默认 -> file
    """
    env_store_type = os.getenv("STORE_TYPE", "").lower()
    if env_store_type in ["file", "redis"]:
        return env_store_type

    if os.getenv("REDIS_URL") or os.getenv("REDIS_HOST"):
        logger.debug("检测到Redis配置，使用Redis存储")
        return "redis"

    return "file"


def _create_file_store(namespace: str, ttl: Optional[int], **kwargs) -> FileDocumentStore:
    storage_dir = kwargs.get("storage_dir") or os.getenv("STORAGE_DIR", "storage/rssbot")
    return FileDocumentStore(namespace=namespace, ttl=ttl, storage_dir=storage_dir)


def _create_redis_store(namespace: str, ttl: Optional[int], **kwargs) -> DocumentStore:
    """
    创建Redis存储实例，连接失败时按配置降级到文件存储
    """
    redis_config = _get_redis_config(**kwargs)

    try:
        return RedisDocumentStore(namespace=namespace, ttl=ttl, **redis_config)
    except redis.RedisError as e:
        logger.error(f"Redis存储创建失败: {str(e)}")

        if kwargs.get("allow_fallback", True):
            logger.warning("降级到文件存储")
            return _create_file_store(namespace, ttl, **kwargs)
        raise


def _get_redis_config(**kwargs) -> Dict[str, Any]:
    """
    获取Redis配置

    优先级：kwargs参数 > 环境变量 > 默认值
    """
    if kwargs.get("client") is not None:
        return {"client": kwargs["client"]}

    redis_url = kwargs.get("redis_url") or os.getenv("REDIS_URL")
    if redis_url:
        return {
            "redis_url": redis_url,
            "socket_connect_timeout": kwargs.get("socket_connect_timeout", 5),
            "socket_timeout": kwargs.get("socket_timeout", 5),
        }

    config = {
        "host": kwargs.get("host") or os.getenv("REDIS_HOST", "localhost"),
        "port": int(kwargs.get("port") or os.getenv("REDIS_PORT", 6379)),
        "db": int(kwargs.get("db") or os.getenv("REDIS_DB", 0)),
        "password": kwargs.get("password") or os.getenv("REDIS_PASSWORD"),
        "socket_connect_timeout": kwargs.get("socket_connect_timeout", 5),
        "socket_timeout": kwargs.get("socket_timeout", 5),
    }
    # 移除None值
    config = {k: v for k, v in config.items() if v is not None}

    logger.debug(f"Redis配置: {_mask_password(config)}")
    return config


def _mask_password(config: Dict[str, Any]) -> Dict[str, Any]:
    """遮蔽密码用于日志输出"""
    masked_config = config.copy()
    if masked_config.get("password"):
        masked_config["password"] = "***"
    return masked_config
