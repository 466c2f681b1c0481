"""分类节点存储

节点的持久化与查询入口：
- 按 ID / 编码查询（编码不区分大小写）
- 创建节点（分配 ID 后计算路径，排在兄弟节点末尾）
- 更新属性（结构字段不可经此修改）
- 软删除 / 恢复 / 物理删除
- 子树路径整体改写（TreeMutator 使用）

NodeStore 只做 flush 不做 commit，事务边界由调用方（TreeMutator / 服务层）控制。
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import func

from ..exceptions import (
    DuplicateCodeError,
    HasChildrenError,
    NodeNotFoundError,
    ParentNotFoundError,
)
from ..log import get_logger
from ..orm import INCLUDE_DELETED_OPTION
from ..orm.tree import path_codec
from .mappers import apply_patch, create_to_columns
from .models import Categorization, CategoryNode
from .schemas import NodeCreate, NodePatch

logger = get_logger("qbtree.category.node_store")

CODE_MAX_LENGTH = 50


def generate_unique_code(code: str, taken: set, suffix: str = "") -> str:
    """生成未被占用的编码并登记到 taken（小写集合）

    先尝试 code + suffix，仍冲突时追加 _2、_3 ...，总长度不超过编码上限。

    使用示例:
        taken = {"alg", "alg_copy"}
        generate_unique_code("ALG", taken, "_COPY")    # "ALG_COPY_2"
    """
    base = code[:CODE_MAX_LENGTH - len(suffix)] + suffix
    candidate = base
    n = 2
    while candidate.lower() in taken:
        tail = f"_{n}"
        candidate = base[:CODE_MAX_LENGTH - len(tail)] + tail
        n += 1
    taken.add(candidate.lower())
    return candidate


class NodeStore:
    """分类节点存储

    使用示例:
        store = NodeStore()
        math = store.create(NodeCreate(name="数学", code="MATH"))
        algebra = store.create({"name": "代数", "code": "ALG"}, parent_id=math.id)
        store.get_by_code("alg")    # 不区分大小写
    """

    model = CategoryNode

    @property
    def session(self):
        return self.model.query.session

    # ==================== 查询 ====================

    def _query(self, include_deleted: bool = False):
        query = self.model.query
        if include_deleted:
            return query.execution_options(**{INCLUDE_DELETED_OPTION: True})
        return query.filter(self.model.deleted_at.is_(None))

    def find(self, node_id: int, include_deleted: bool = False) -> Optional[CategoryNode]:
        if node_id is None:
            return None
        return self._query(include_deleted).filter(self.model.id == node_id).one_or_none()

    def get(self, node_id: int, include_deleted: bool = False) -> CategoryNode:
        """获取节点，不存在（或已删除）时抛出 NodeNotFoundError"""
        node = self.find(node_id, include_deleted)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def get_parent_node(self, parent_id: Optional[int]) -> Optional[CategoryNode]:
        """获取作为父节点的存活节点，parent_id 为 None 时返回 None"""
        if parent_id is None:
            return None
        parent = self.find(parent_id)
        if parent is None:
            raise ParentNotFoundError(parent_id)
        return parent

    def get_by_code(self, code: str, include_deleted: bool = True) -> Optional[CategoryNode]:
        """按编码查询（不区分大小写）

        软删除节点的编码仍被占用，因此默认包含已删除节点。
        """
        if not code:
            return None
        return (
            self._query(include_deleted)
            .filter(func.lower(self.model.code) == code.strip().lower())
            .one_or_none()
        )

    def get_many(self, node_ids: Iterable[int], include_deleted: bool = False) -> Dict[int, CategoryNode]:
        node_ids = list(set(node_ids))
        if not node_ids:
            return {}
        nodes = self._query(include_deleted).filter(self.model.id.in_(node_ids)).all()
        return {n.id: n for n in nodes}

    def get_children(self, parent_id: Optional[int], include_inactive: bool = True) -> List[CategoryNode]:
        """直接子节点（按排序号），parent_id 为 None 时返回根节点"""
        query = self._query()
        if parent_id is None:
            query = query.filter(self.model.parent_id.is_(None))
        else:
            query = query.filter(self.model.parent_id == parent_id)
        if not include_inactive:
            query = query.filter(self.model.is_active.is_(True))
        return query.order_by(self.model.sort_order, self.model.id).all()

    def count_children(self, node_id: int, include_deleted: bool = False) -> int:
        return self._query(include_deleted).filter(self.model.parent_id == node_id).count()

    def get_subtree(self, node: CategoryNode, include_root: bool = True,
                    include_deleted: bool = False) -> List[CategoryNode]:
        """子树内的节点（按层级、排序号）"""
        query = self._query(include_deleted).filter(self.model.path.startswith(node.path))
        if not include_root:
            query = query.filter(self.model.id != node.id)
        return query.order_by(self.model.level, self.model.sort_order, self.model.id).all()

    def count_subtree(self, node: CategoryNode, include_root: bool = True) -> int:
        count = node.get_descendant_count()
        return count + 1 if include_root else count

    def max_level_in_subtree(self, node: CategoryNode) -> int:
        result = (
            self._query()
            .filter(self.model.path.startswith(node.path))
            .with_entities(func.max(self.model.level))
            .scalar()
        )
        return result if result is not None else node.level

    def get_ancestors(self, node: CategoryNode) -> List[CategoryNode]:
        return node.get_ancestors()

    def get_siblings(self, node: CategoryNode, include_self: bool = False) -> List[CategoryNode]:
        return node.get_siblings(include_self=include_self)

    def find_by_path(self, path: str) -> Optional[CategoryNode]:
        """按物化路径精确查找存活节点

        Raises:
            MalformedPathError: 路径格式错误
        """
        node_ids = path_codec.parse_path(path)
        node = self.find(node_ids[-1])
        if node is None or node.path != path:
            return None
        return node

    def find_by_code_path(self, codes: List[str]) -> Optional[CategoryNode]:
        """按从根开始的编码序列逐级查找存活节点（编码不区分大小写）"""
        parent_id = None
        node = None
        for code in codes:
            node = self.get_by_code(code, include_deleted=False)
            if node is None or node.parent_id != parent_id:
                return None
            parent_id = node.id
        return node

    def list_all(self, include_deleted: bool = False) -> List[CategoryNode]:
        return (
            self._query(include_deleted)
            .order_by(self.model.level, self.model.sort_order, self.model.id)
            .all()
        )

    def taken_codes(self) -> set:
        """已占用的编码（小写，含已删除节点）"""
        rows = self._query(include_deleted=True).with_entities(self.model.code).all()
        return {row[0].lower() for row in rows}

    # ==================== 写入 ====================

    def ensure_code_available(self, code: str, exclude_id: Optional[int] = None) -> None:
        existing = self.get_by_code(code)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateCodeError(code, existing.id)

    def create(
        self,
        data: Union[NodeCreate, dict],
        parent_id: Optional[int] = None,
    ) -> CategoryNode:
        """创建节点，排在同级节点末尾

        Args:
            data: 节点属性
            parent_id: 父节点ID，None 表示根节点

        Raises:
            ParentNotFoundError: 父节点不存在或已删除
            DuplicateCodeError: 编码已被占用
        """
        if isinstance(data, dict):
            data = NodeCreate(**data)
        parent = self.get_parent_node(parent_id)
        self.ensure_code_available(data.code)

        node = self.model(**create_to_columns(data))
        node.parent_id = parent_id
        node.sort_order = self.model.get_max_sort_order({"parent_id": parent_id}) + 1
        # 路径依赖 ID，先写入占位路径再 flush 获取 ID
        node.path = path_codec.PATH_SEPARATOR
        node.level = parent.level + 1 if parent else 0
        self.session.add(node)
        self.session.flush()
        node.set_path(node.build_path(parent))
        self.session.flush()
        logger.debug(f"创建节点: id={node.id}, code={node.code}, path={node.path}")
        return node

    def update_attributes(self, node_id: int, patch: Union[NodePatch, dict]) -> CategoryNode:
        """更新节点属性

        Raises:
            NodeNotFoundError: 节点不存在
            DuplicateCodeError: 新编码已被占用
            pydantic.ValidationError: patch 中包含结构字段或值不合法
        """
        if isinstance(patch, dict):
            patch = NodePatch(**patch)
        node = self.get(node_id)
        if patch.code is not None and patch.code.lower() != node.code.lower():
            self.ensure_code_available(patch.code, exclude_id=node.id)
        changed = apply_patch(node, patch)
        if changed:
            self.session.flush()
            logger.debug(f"更新节点属性: id={node.id}, fields={changed}")
        return node

    def rewrite_subtree_path(self, node: CategoryNode, new_path: str) -> int:
        """把 node 子树（含已软删除节点）的路径前缀整体替换为 new_path

        子树内所有路径与层级的改写都经过这里，层级由 set_path 同步。

        Returns:
            改写的节点数
        """
        old_path = node.path
        if old_path == new_path:
            return 0
        rows = (
            self._query(include_deleted=True)
            .filter(self.model.path.startswith(old_path))
            .all()
        )
        for row in rows:
            row.set_path(path_codec.rebase_path(row.path, old_path, new_path))
        self.session.flush()
        logger.debug(f"改写子树路径: {old_path} -> {new_path}, count={len(rows)}")
        return len(rows)

    def resequence_children(self, parent_id: Optional[int], exclude_ids: Iterable[int] = ()) -> int:
        """父节点下的存活子节点重新连续编号"""
        siblings = self.model.get_sorted({"parent_id": parent_id}, exclude_ids=exclude_ids)
        return self.model.resequence(siblings)

    def mark_deleted(self, nodes: List[CategoryNode], deleted_at: Optional[datetime] = None) -> datetime:
        """以同一时间戳软删除一批节点

        同批删除的节点共享 deleted_at，恢复时据此找回整批节点。
        """
        deleted_at = deleted_at or datetime.now()
        for node in nodes:
            node.soft_delete(deleted_at)
        self.session.flush()
        return deleted_at

    def restore(self, node_id: int) -> List[CategoryNode]:
        """恢复软删除的节点

        同批删除（deleted_at 相同）的子孙节点一并恢复；节点排到父节点子节点末尾。

        Raises:
            NodeNotFoundError: 节点不存在
            ParentNotFoundError: 父节点不存在或仍处于删除状态
        """
        node = self.get(node_id, include_deleted=True)
        if node.deleted_at is None:
            return []
        parent = self.get_parent_node(node.parent_id)
        sort_order = self.model.get_max_sort_order({"parent_id": node.parent_id}) + 1

        batch = (
            self._query(include_deleted=True)
            .filter(
                self.model.path.startswith(node.path),
                self.model.deleted_at == node.deleted_at,
            )
            .all()
        )
        for row in batch:
            row.undelete()
        node.sort_order = sort_order
        self.session.flush()
        expected = node.build_path(parent)
        if node.path != expected:
            self.rewrite_subtree_path(node, expected)
        logger.info(f"恢复节点: id={node.id}, count={len(batch)}")
        return batch

    def hard_delete(self, node_id: int) -> None:
        """物理删除节点及其题目归类

        Raises:
            HasChildrenError: 仍存在子节点（含已软删除的子节点）
        """
        node = self.get(node_id, include_deleted=True)
        child_count = self.count_children(node.id, include_deleted=True)
        if child_count:
            raise HasChildrenError(node.id, child_count)
        was_live = node.deleted_at is None
        parent_id = node.parent_id
        Categorization.query.filter(Categorization.node_id == node.id).delete(synchronize_session=False)
        self.session.delete(node)
        self.session.flush()
        if was_live:
            self.resequence_children(parent_id)
            self.session.flush()
        logger.info(f"物理删除节点: id={node_id}")

    def purge_deleted(self) -> List[int]:
        """物理删除所有已软删除且不再有子节点的节点（叶子优先）"""
        deleted = (
            self._query(include_deleted=True)
            .filter(self.model.deleted_at.isnot(None))
            .order_by(self.model.level.desc(), self.model.id)
            .all()
        )
        purged = []
        for node in deleted:
            if self.count_children(node.id, include_deleted=True):
                continue
            Categorization.query.filter(Categorization.node_id == node.id).delete(synchronize_session=False)
            self.session.delete(node)
            self.session.flush()
            purged.append(node.id)
        if purged:
            logger.info(f"清理已删除节点: count={len(purged)}")
        return purged


__all__ = [
    "CODE_MAX_LENGTH",
    "generate_unique_code",
    "NodeStore",
]
