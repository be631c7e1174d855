"""Branch collection: an ordered list of branches with one ownership mode.

A merge layer either owns its branches outright or borrows them from an
enclosing model. The collection carries that decision:

- owning: branches are registered as submodules (their parameters show up
  in the merge layer's parameters() and state_dict()), deep-cloned on copy,
  and closed exactly once on release
- borrowed: branches are plain references, shared on copy, and never closed

Order matters only for reproducibility: it fixes the floating-point
accumulation order of the merge.
"""
from __future__ import annotations

from collections.abc import Iterator

from torch import nn
from typing_extensions import override

from braid.errors import InvalidConfiguration
from braid.layer import Branch


class BranchCollection(nn.Module):
    """Ordered branch handles plus the owns/borrows decision."""

    def __init__(self, *, owns: bool) -> None:
        super().__init__()
        self.owns: bool = bool(owns)
        self._items: list[Branch] = []

    def add(self, branch: Branch) -> Branch:
        """Append a branch; owned branches become submodules."""
        if not isinstance(branch, Branch):
            raise InvalidConfiguration(
                f"Only Branch instances can be merged, got {type(branch).__name__}"
            )
        if branch.closed:
            raise InvalidConfiguration(
                f"Cannot add a closed {type(branch).__name__} to a merge layer"
            )
        if any(b is branch for b in self._items):
            raise InvalidConfiguration(
                f"{type(branch).__name__} is already in this merge layer"
            )
        if self.owns:
            self.add_module(str(len(self._items)), branch)
        self._items.append(branch)
        return branch

    def release(self) -> None:
        """Empty the collection, closing each branch first if owned.

        Branches leave the collection as they are released, so a second
        call has nothing left to close.
        """
        items, self._items = self._items, []
        self._modules.clear()
        if self.owns:
            for branch in items:
                branch.close()

    def clone(self) -> "BranchCollection":
        """Ownership-aware copy.

        Owned branches are cloned so the copy and the original never close
        the same branch. Borrowed branches are shared, at every nesting level:
        an owned merge that borrows its own branches keeps sharing them.
        """
        twin = BranchCollection(owns=self.owns)
        for branch in self._items:
            twin.add(branch.clone() if self.owns else branch)
        return twin

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Branch]:
        return iter(self._items)

    def __getitem__(self, index: int) -> Branch:
        return self._items[index]

    @override
    def extra_repr(self) -> str:
        mode = "owned" if self.owns else "borrowed"
        return f"{mode}, n={len(self._items)}"
