"""
Redis文档存储实现

文档以JSON字符串保存在带命名空间前缀的键下，SET本身是原子的
"""

import json
from typing import Any, Dict, List, Optional

import redis

from .base import DocumentStore, StorageError


class RedisDocumentStore(DocumentStore):
    """Redis文档存储"""

    def __init__(self, namespace: str, ttl: Optional[int] = None,
                 client: Optional[redis.Redis] = None, redis_url: Optional[str] = None,
                 host: str = "localhost", port: int = 6379, db: int = 0,
                 password: Optional[str] = None, **kwargs):
        """
        初始化Redis存储

        Args:
            namespace: 命名空间
            ttl: 默认过期时间（秒），None表示永不过期
            client: 已创建的Redis客户端（优先使用）
            redis_url: Redis URL
            host/port/db/password: 单独的连接参数
            **kwargs: 其他Redis连接参数
        """
        super().__init__(namespace, ttl)

        self.key_prefix = f"store:{namespace}:"

        if client is not None:
            self.redis_client = client
        else:
            if redis_url:
                self.redis_client = redis.Redis.from_url(redis_url, decode_responses=True, **kwargs)
            else:
                self.redis_client = redis.Redis(
                    host=host, port=port, db=db, password=password,
                    decode_responses=True, **kwargs
                )
            # 测试连接，失败时由工厂决定是否降级
            self.redis_client.ping()

        self.logger.info(f"Redis存储初始化完成: {self.key_prefix}*")

    def _get_full_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            value = self.redis_client.get(self._get_full_key(key))
        except redis.RedisError as e:
            self.logger.error(f"Redis读取失败: {key}, 错误: {str(e)}")
            raise StorageError(f"Redis读取失败: {key}: {str(e)}") from e

        if value is None:
            self.logger.debug(f"文档不存在: {key}")
            return None

        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            self.logger.error(f"文档反序列化失败: {key}, 错误: {str(e)}")
            raise StorageError(f"文档已损坏: {key}: {str(e)}") from e

    def save(self, key: str, document: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        effective_ttl = self._get_effective_ttl(ttl)
        try:
            value = json.dumps(document, ensure_ascii=False)
            result = self.redis_client.set(self._get_full_key(key), value, ex=effective_ttl)
        except (TypeError, ValueError) as e:
            self.logger.error(f"文档序列化失败: {key}, 错误: {str(e)}")
            return False
        except redis.RedisError as e:
            self.logger.error(f"Redis写入失败: {key}, 错误: {str(e)}")
            return False

        if not result:
            self.logger.warning(f"Redis写入未生效: {key}")
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self.redis_client.delete(self._get_full_key(key))
            return True
        except redis.RedisError as e:
            self.logger.error(f"Redis删除失败: {key}, 错误: {str(e)}")
            return False

    def keys(self) -> List[str]:
        try:
            return sorted(
                full_key[len(self.key_prefix):]
                for full_key in self.redis_client.scan_iter(match=f"{self.key_prefix}*")
            )
        except redis.RedisError as e:
            self.logger.error(f"Redis列举键失败: {str(e)}")
            return []

    def close(self) -> None:
        try:
            self.redis_client.close()
            self.logger.info("Redis连接已关闭")
        except redis.RedisError as e:
            self.logger.error(f"关闭Redis连接失败: {str(e)}")
