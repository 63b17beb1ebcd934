"""
存储模块

提供统一的文档存储接口，支持多种后端：
- file: 文件存储（默认）
- redis: Redis存储（生产环境推荐）
"""

from .base import DocumentStore, StorageError
from .factory import get_store

__all__ = ['DocumentStore', 'StorageError', 'get_store']
