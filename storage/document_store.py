"""
Document Store
文档存储 - keyed JSON documents grouped in collections
"""
import asyncio
import copy
import json
import logging
import os
import re
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from utils.exceptions import DocumentExistsError, StorageError
from .query import apply_query, matches


logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class BaseDocumentStore(ABC):
    """
    文档存储抽象基类

    Every method is a coroutine so remote adapters can suspend; the pipeline
    treats each call as a suspension point.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Document]:
        """按主键获取文档"""
        pass

    @abstractmethod
    async def insert(self, collection: str, key: str, doc: Document) -> Document:
        """
        Insert-if-absent.

        Raises:
            DocumentExistsError: a document with this key already exists
        """
        pass

    @abstractmethod
    async def upsert(self, collection: str, key: str, doc: Document) -> Document:
        """写入或覆盖文档"""
        pass

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        """删除文档, 返回是否存在"""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Document]:
        """按逻辑过滤条件查询"""
        pass

    @abstractmethod
    async def list_collections(self) -> List[str]:
        pass

    async def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int:
        return len(await self.query(collection, filters))

    async def delete_where(self, collection: str, filters: Dict[str, Any]) -> int:
        """删除所有匹配文档, 返回删除数量"""
        deleted = 0
        for doc in await self.query(collection, filters):
            key = str(doc.get("id") or "")
            if key and await self.delete(collection, key):
                deleted += 1
        return deleted


class MemoryDocumentStore(BaseDocumentStore):
    """
    内存文档存储
    适合开发和测试; documents are deep-copied on the way in and out
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = Lock()

    async def get(self, collection: str, key: str) -> Optional[Document]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(key)
            return copy.deepcopy(doc) if doc is not None else None

    async def insert(self, collection: str, key: str, doc: Document) -> Document:
        with self._lock:
            bucket = self._collections.setdefault(collection, {})
            if key in bucket:
                raise DocumentExistsError(collection, key)
            bucket[key] = copy.deepcopy(doc)
            return copy.deepcopy(doc)

    async def upsert(self, collection: str, key: str, doc: Document) -> Document:
        with self._lock:
            self._collections.setdefault(collection, {})[key] = copy.deepcopy(doc)
            return copy.deepcopy(doc)

    async def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(key, None) is not None

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Document]:
        with self._lock:
            docs = list(self._collections.get(collection, {}).values())
            selected = apply_query(
                docs, filters, order_by=order_by, descending=descending, limit=limit, offset=offset
            )
            return copy.deepcopy(selected)

    async def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            return sum(1 for doc in self._collections.get(collection, {}).values() if matches(doc, filters))

    async def list_collections(self) -> List[str]:
        with self._lock:
            return sorted(self._collections.keys())

    def clear(self) -> None:
        """清空存储"""
        with self._lock:
            self._collections.clear()


class DiskDocumentStore(BaseDocumentStore):
    """
    磁盘文档存储
    One JSON file per document: ``<root>/<collection>/<key>.json``.
    Blocking file IO runs in worker threads.
    """

    _SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, root_dir: str = "./data/documents"):
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def _collection_dir(self, collection: str) -> Path:
        return self.root_dir / self._SAFE_KEY.sub("_", str(collection))

    def _get_path(self, collection: str, key: str) -> Path:
        return self._collection_dir(collection) / f"{self._SAFE_KEY.sub('_', str(key))}.json"

    @staticmethod
    def _read(path: Path) -> Optional[Document]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"failed to read document: {e}", {"path": str(path)}) from e

    @staticmethod
    def _write(path: Path, doc: Document, *, exclusive: bool) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(doc, ensure_ascii=False, default=str)
        if exclusive:
            # "x" fails when the file exists, giving insert-if-absent on the filesystem
            with open(path, "x", encoding="utf-8") as f:
                f.write(payload)
            return
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, path)

    def _get_sync(self, collection: str, key: str) -> Optional[Document]:
        return self._read(self._get_path(collection, key))

    def _insert_sync(self, collection: str, key: str, doc: Document) -> Document:
        try:
            self._write(self._get_path(collection, key), doc, exclusive=True)
        except FileExistsError as e:
            raise DocumentExistsError(collection, key) from e
        return doc

    def _upsert_sync(self, collection: str, key: str, doc: Document) -> Document:
        with self._lock:
            self._write(self._get_path(collection, key), doc, exclusive=False)
        return doc

    def _delete_sync(self, collection: str, key: str) -> bool:
        path = self._get_path(collection, key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _load_collection(self, collection: str) -> List[Document]:
        folder = self._collection_dir(collection)
        if not folder.exists():
            return []
        docs = []
        for path in sorted(folder.glob("*.json")):
            doc = self._read(path)
            if doc is not None:
                docs.append(doc)
        return docs

    async def get(self, collection: str, key: str) -> Optional[Document]:
        return await asyncio.to_thread(self._get_sync, collection, key)

    async def insert(self, collection: str, key: str, doc: Document) -> Document:
        return await asyncio.to_thread(self._insert_sync, collection, key, copy.deepcopy(doc))

    async def upsert(self, collection: str, key: str, doc: Document) -> Document:
        return await asyncio.to_thread(self._upsert_sync, collection, key, copy.deepcopy(doc))

    async def delete(self, collection: str, key: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, collection, key)

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Document]:
        docs = await asyncio.to_thread(self._load_collection, collection)
        return apply_query(docs, filters, order_by=order_by, descending=descending, limit=limit, offset=offset)

    async def list_collections(self) -> List[str]:
        return sorted(item.name for item in self.root_dir.iterdir() if item.is_dir())

    def clear(self) -> None:
        """清空存储"""
        shutil.rmtree(self.root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)


def get_document_store(
    provider: Optional[str] = None,
    **kwargs,
) -> BaseDocumentStore:
    """
    获取文档存储实例

    Args:
        provider: 存储类型 (memory, disk); defaults to `StorageSettings.provider`
        **kwargs: 额外参数

    Returns:
        文档存储实例
    """
    if provider is None:
        from config import get_storage_settings

        storage = get_storage_settings()
        provider = storage.provider
        kwargs.setdefault("root_dir", storage.data_dir)

    provider = str(provider or "memory").strip().lower()
    if provider == "memory":
        return MemoryDocumentStore()
    if provider == "disk":
        return DiskDocumentStore(root_dir=kwargs.get("root_dir", "./data/documents"))

    raise ValueError(f"Unknown document store provider: {provider}")
