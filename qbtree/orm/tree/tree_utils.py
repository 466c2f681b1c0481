"""树形结构工具函数

提供确定性的先序遍历，复制子树等需要“父节点先于子节点”顺序的操作使用。

使用示例:
    from qbtree.orm.tree import iter_depth_first

    children = {1: [2, 3], 2: [], 3: []}
    for node, parent, depth in iter_depth_first([1], lambda n: children[n]):
        ...
"""

from typing import Any, Callable, Iterator, List, Optional, Tuple


def iter_depth_first(
    roots: List[Any],
    get_children: Callable[[Any], List[Any]],
) -> Iterator[Tuple[Any, Optional[Any], int]]:
    """先序深度优先遍历

    Args:
        roots: 顶层节点列表（按期望顺序）
        get_children: 返回某节点子节点列表（按期望顺序）的函数

    Yields:
        (node, parent, depth)，顶层节点的 parent 为 None、depth 为 0
    """
    stack = [(root, None, 0) for root in reversed(roots)]
    while stack:
        node, parent, depth = stack.pop()
        yield node, parent, depth
        for child in reversed(get_children(node)):
            stack.append((child, node, depth + 1))


__all__ = [
    "iter_depth_first",
]
