"""树形结构模块

提供树形数据的通用支持：
- path_codec: 物化路径编解码（"-1-2-3-"，根层级为0）
- TreeFieldsMixin: 树形字段定义（path, level, sort_order）
- TreeMixin: 树形查询方法（祖先、同级、子孙数等）
- 工具函数: iter_depth_first（先序遍历）

使用示例:
    from qbtree.orm import CoreModel
    from qbtree.orm.tree import TreeFieldsMixin, TreeMixin

    class Category(CoreModel, TreeFieldsMixin, TreeMixin):
        parent_id = mapped_column(Integer, ForeignKey("category.id"), nullable=True)
        name = mapped_column(String(100))

    node.get_ancestors()
    node.get_siblings()
"""

from . import path_codec
from .tree_fields import TreeFieldsMixin
from .tree_mixin import TreeMixin
from .tree_utils import iter_depth_first

__all__ = [
    # 路径编解码
    "path_codec",
    # 字段定义
    "TreeFieldsMixin",
    # Mixin
    "TreeMixin",
    # 工具函数
    "iter_depth_first",
]
