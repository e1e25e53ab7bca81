"""
64 位感知哈希上的 BK 树。

节点存放在扁平数组 (arena) 中，以下标引用子节点，边的标签是父子之间的
汉明距离。在与查询距离为 d 的节点上做半径 r 的查询，只需进入边标签落在
[d - r, d + r] 内的子节点（三角不等式），因此半径 0 的查询只走一条
根到叶的路径。

删除时只把条目从节点上摘下，节点本身留在数组里作为子树的路由点。
需要回收纯路由节点时重建整棵树（见 HashIndex.load）。

参考: Burkhard & Keller, "Some approaches to best-match file searching"
"""

import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from core.constants import HASH_BITS

MASK64 = (1 << HASH_BITS) - 1


def to_unsigned64(value: int) -> int:
    """平台侧哈希是有符号 i64，树内部按原始 64 位处理"""
    return int(value) & MASK64


def to_signed64(value: int) -> int:
    value = int(value) & MASK64
    return value - (1 << HASH_BITS) if value >= (1 << (HASH_BITS - 1)) else value


def hamming_distance(a: int, b: int) -> int:
    """两个 64 位值之间不同的位数（与符号无关）"""
    return bin((int(a) ^ int(b)) & MASK64).count("1")


class _Node:
    __slots__ = ("value", "items", "children")

    def __init__(self, value: int, item: Any) -> None:
        self.value = value
        self.items: List[Any] = [item]
        self.children: Dict[int, int] = {}


class BKTree:
    """基于数组的 BK 树，可在线程间共享"""

    def __init__(self) -> None:
        self._nodes: List[_Node] = []
        self._size = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return self._size

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def add(self, value: int, item: Any) -> None:
        """把 item 挂到 value 下，多个 item 可以共享同一个值"""
        value = to_unsigned64(value)
        with self._lock:
            self._size += 1
            if not self._nodes:
                self._nodes.append(_Node(value, item))
                return

            idx = 0
            while True:
                node = self._nodes[idx]
                d = hamming_distance(value, node.value)
                if d == 0:
                    node.items.append(item)
                    return
                child = node.children.get(d)
                if child is None:
                    self._nodes.append(_Node(value, item))
                    node.children[d] = len(self._nodes) - 1
                    return
                idx = child

    def _exact_node(self, value: int) -> Optional[_Node]:
        if not self._nodes:
            return None
        idx: Optional[int] = 0
        while idx is not None:
            node = self._nodes[idx]
            d = hamming_distance(value, node.value)
            if d == 0:
                return node
            idx = node.children.get(d)
        return None

    def _nodes_within(self, value: int, radius: int) -> List[Tuple[_Node, int]]:
        if radius == 0:
            node = self._exact_node(value)
            return [(node, 0)] if node is not None else []

        found: List[Tuple[_Node, int]] = []
        if not self._nodes:
            return found
        stack = [0]
        while stack:
            node = self._nodes[stack.pop()]
            d = hamming_distance(value, node.value)
            if d <= radius:
                found.append((node, d))
            lo, hi = d - radius, d + radius
            for edge, child in node.children.items():
                if lo <= edge <= hi:
                    stack.append(child)
        return found

    def exact(self, value: int) -> List[Any]:
        """恰好挂在该值下的条目"""
        value = to_unsigned64(value)
        with self._lock:
            node = self._exact_node(value)
            return list(node.items) if node is not None else []

    def find(self, value: int, radius: int) -> Iterator[Tuple[int, int, Any]]:
        """
        逐个产出半径内的 (stored_value, distance, item)，按距离升序。
        快照在开始迭代时获取。
        """
        if radius < 0:
            raise ValueError("radius must be >= 0")
        value = to_unsigned64(value)
        with self._lock:
            matches = [
                (node.value, d, item)
                for node, d in self._nodes_within(value, radius)
                for item in node.items
            ]
        matches.sort(key=lambda m: m[1])
        yield from matches

    def remove(self, value: int, radius: int, predicate: Callable[[Any], bool]) -> List[Any]:
        """摘下半径内所有 predicate(item) 为真的条目"""
        if radius < 0:
            raise ValueError("radius must be >= 0")
        value = to_unsigned64(value)
        removed: List[Any] = []
        with self._lock:
            for node, _ in self._nodes_within(value, radius):
                keep = []
                for item in node.items:
                    if predicate(item):
                        removed.append(item)
                    else:
                        keep.append(item)
                node.items = keep
            self._size -= len(removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._nodes = []
            self._size = 0
