"""Union-Find (disjoint set) over listing IDs."""

from collections import defaultdict
from collections.abc import Iterable


class UnionFind:
    """Union-Find with path compression for transitive grouping.

    Elements are added lazily, so confirmed-match edges can be fed in directly
    without knowing the full set of listing IDs up front.
    """

    def __init__(self, elements: Iterable[str] = ()) -> None:
        self._parent: dict[str, str] = {}
        for element in elements:
            self.add(element)

    def add(self, x: str) -> None:
        """Register x as a singleton set if unseen."""
        self._parent.setdefault(x, x)

    def find(self, x: str) -> str:
        """Find root of x with path compression."""
        self.add(x)
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[x] != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, x: str, y: str) -> None:
        """Merge the sets containing x and y.

        The smaller ID becomes the root so results do not depend on edge order.
        """
        px, py = self.find(x), self.find(y)
        if px == py:
            return
        if py < px:
            px, py = py, px
        self._parent[py] = px

    def connected(self, x: str, y: str) -> bool:
        return self.find(x) == self.find(y)

    def groups(self) -> dict[str, list[str]]:
        """Return mapping from root -> sorted list of member IDs."""
        result: dict[str, list[str]] = defaultdict(list)
        for element in sorted(self._parent):
            result[self.find(element)].append(element)
        return dict(result)
