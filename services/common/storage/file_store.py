"""
文件文档存储实现

每个键一个JSON文件，先写临时文件再替换，保证整体写入的原子性
"""

import hashlib
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import DocumentStore, StorageError


class FileDocumentStore(DocumentStore):
    """文件文档存储"""

    def __init__(self, namespace: str, ttl: Optional[int] = None, storage_dir: str = "storage/rssbot"):
        super().__init__(namespace, ttl)

        self.storage_dir = Path(storage_dir) / namespace
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"文件存储初始化完成: {self.storage_dir}")

    def _get_file(self, key: str) -> Path:
        # 使用SHA256哈希避免文件名特殊字符问题
        key_hash = hashlib.sha256(key.encode('utf-8')).hexdigest()
        return self.storage_dir / f"{key_hash}.json"

    @staticmethod
    def _is_expired(record: dict) -> bool:
        expires_at = record.get("expires_at")
        return expires_at is not None and time.time() > expires_at

    def _read_record(self, path: Path, strict: bool = False) -> Optional[dict]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            self.logger.error(f"读取存储文件失败: {path}, 错误: {str(e)}")
            if strict:
                raise StorageError(f"读取存储文件失败: {path}: {str(e)}") from e
            return None

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._get_file(key)
        record = self._read_record(path, strict=True)
        if record is None:
            self.logger.debug(f"文档不存在: {key}")
            return None

        if self._is_expired(record):
            self.logger.debug(f"文档已过期: {key}")
            self.delete(key)
            return None

        return record.get("data")

    def save(self, key: str, document: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        effective_ttl = self._get_effective_ttl(ttl)
        now = time.time()
        record = {
            "key": key,
            "data": document,
            "updated_at": now,
            "expires_at": now + effective_ttl if effective_ttl is not None else None,
        }

        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode='w',
                encoding='utf-8',
                dir=self.storage_dir,
                delete=False,
                suffix='.tmp'
            ) as temp_file:
                temp_path = temp_file.name
                json.dump(record, temp_file, ensure_ascii=False, indent=2)

            # 原子替换
            os.replace(temp_path, self._get_file(key))
            self.logger.debug(f"文档写入成功: {key}")
            return True

        except (OSError, TypeError, ValueError) as e:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)
            self.logger.error(f"文档写入失败: {key}, 错误: {str(e)}", exc_info=True)
            return False

    def delete(self, key: str) -> bool:
        try:
            self._get_file(key).unlink(missing_ok=True)
            return True
        except OSError as e:
            self.logger.error(f"删除文档失败: {key}, 错误: {str(e)}")
            return False

    def keys(self) -> List[str]:
        result = []
        for path in sorted(self.storage_dir.glob("*.json")):
            record = self._read_record(path)
            if record and not self._is_expired(record) and "key" in record:
                result.append(record["key"])
        return result

    def cleanup_expired(self) -> int:
        cleaned_count = 0
        for path in self.storage_dir.glob("*.json"):
            record = self._read_record(path)
            # 损坏的文件也一并删除
            if record is None or self._is_expired(record):
                try:
                    path.unlink()
                    cleaned_count += 1
                except OSError:
                    continue

        if cleaned_count > 0:
            self.logger.info(f"清理过期文档完成: 删除了 {cleaned_count} 个文件")
        return cleaned_count
