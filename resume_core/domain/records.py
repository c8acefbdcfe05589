"""持久化边界：文档存储协议与集合名称。

引擎只通过 get/get_all/add/update/query 访问存储，
每个调用对单个文档是原子的；不使用锁或事务。
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence

CONVERSATIONS = "conversations"
SPACES = "spaces"
INSIGHTS = "insights"


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """读取单个文档，不存在时返回 None。"""
        ...

    def get_all(self, collection: str, doc_ids: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        """批量读取，返回列表与 doc_ids 一一对应（缺失为 None）。"""
        ...

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        """新增文档并返回生成的 ID。"""
        ...

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """按字段等值查询。"""
        ...
