"""Store Protocol 接口定义

Draft 与 Challenge 的持久化只依赖一个简单的键值契约：
按 (namespace, task_id, stage) get / put / delete，支持 TTL。
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Any, Protocol


class KeyValueStore(Protocol):
    """键值存储接口

    TTL 只用于回收存储空间；业务上的过期判定由调用方基于记录内的时间戳完成。
    """

    async def get(self, namespace: str, task_id: str, stage: str = "") -> dict[str, Any] | None:
        """读取记录，不存在或 TTL 已过返回 None"""
        ...

    async def put(
        self,
        namespace: str,
        task_id: str,
        stage: str,
        value: dict[str, Any],
        ttl_s: float | None = None,
    ) -> None:
        """写入（覆盖）记录"""
        ...

    async def delete(self, namespace: str, task_id: str, stage: str = "") -> bool:
        """删除记录，返回是否存在"""
        ...

    async def list_for_task(self, namespace: str, task_id: str) -> list[dict[str, Any]]:
        """列出某任务在 namespace 下的全部未过期记录"""
        ...

    async def purge_expired(self) -> int:
        """回收 TTL 已过的记录，返回回收条数"""
        ...

    async def close(self) -> None:
        """释放底层资源"""
        ...
