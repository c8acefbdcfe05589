import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from resume_core.config.settings import settings
from resume_core.domain.exceptions import StoreError
from resume_core.domain.records import DocumentStore
from resume_core.relay.validation import is_valid_document_id


class JsonDocumentStore(DocumentStore):
    """以 JSON 文件实现的文档存储：每个集合一个目录，每个文档一个文件。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        path = self._doc_path(collection, doc_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e), http_status=500)
        if not isinstance(data, dict):
            raise StoreError(code="STORE_READ_ERROR", message=f"{collection}/{doc_id} is not an object", http_status=500)
        data["id"] = doc_id
        return data

    def get_all(self, collection: str, doc_ids: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        items: List[Optional[Dict[str, Any]]] = []
        for doc_id in doc_ids:
            if not isinstance(doc_id, str) or not is_valid_document_id(doc_id):
                items.append(None)
                continue
            try:
                items.append(self.get(collection, doc_id))
            except StoreError:
                # 批量读取中的单个损坏文档按缺失处理
                items.append(None)
        return items

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid4().hex
        obj = dict(data)
        obj["id"] = doc_id
        self._write(collection, doc_id, obj)
        return doc_id

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        current = self.get(collection, doc_id)
        if current is None:
            raise StoreError(code="STORE_WRITE_ERROR", message=f"{collection}/{doc_id} does not exist", http_status=404)
        current.update(data)
        current["id"] = doc_id
        self._write(collection, doc_id, current)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """以指定 ID 写入文档（覆盖），主要用于导入与测试数据准备。"""
        obj = dict(data)
        obj["id"] = doc_id
        self._write(collection, doc_id, obj)

    def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        cdir = self._root / collection
        items: List[Dict[str, Any]] = []
        if not cdir.exists():
            return items
        for path in sorted(cdir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                continue
            if isinstance(data, dict) and data.get(field) == value:
                data["id"] = path.stem
                items.append(data)
        return items

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        return self._root / collection / f"{doc_id}.json"

    def _write(self, collection: str, doc_id: str, obj: Dict[str, Any]) -> None:
        cdir = self._root / collection
        path = cdir / f"{doc_id}.json"
        tmp_path = cdir / f"{doc_id}.{uuid4().hex}.json.tmp"
        try:
            cdir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)
