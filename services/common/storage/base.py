"""
文档存储基础接口

定义所有存储后端必须实现的统一接口：以键为单位整体读写JSON文档，
不支持字段级别的部分更新。
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging


class StorageError(Exception):
    """存储后端读取失败（不同于文档不存在）"""
    pass


class DocumentStore(ABC):
    """文档存储接口抽象基类"""

    def __init__(self, namespace: str, ttl: Optional[int] = None):
        """
        初始化文档存储

        Args:
            namespace: 命名空间（用于日志和键隔离）
            ttl: 默认过期时间（秒），None表示永不过期
        """
        self.namespace = namespace
        self.default_ttl = ttl
        self.logger = logging.getLogger(f"storage.{namespace}")

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """
        读取文档

        Args:
            key: 文档键

        Returns:
            Optional[Dict[str, Any]]: 文档内容，不存在或过期返回None

        Raises:
            StorageError: 后端不可用或文档已损坏
        """
        pass

    @abstractmethod
    def save(self, key: str, document: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        """
        原子地写入整个文档

        Args:
            key: 文档键
            document: 文档内容（必须可JSON序列化）
            ttl: 过期时间（秒），None使用默认值

        Returns:
            bool: 是否写入成功
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """删除文档，不存在也视为成功"""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """列出命名空间下所有未过期的键"""
        pass

    def cleanup_expired(self) -> int:
        """
        清理过期文档

        Returns:
            int: 清理的数量
        """
        return 0

    def close(self) -> None:
        """释放后端连接"""
        pass

    def _get_effective_ttl(self, ttl: Optional[int]) -> Optional[int]:
        return ttl if ttl is not None else self.default_ttl
