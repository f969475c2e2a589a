"""
Ordinal valuation for a single actor.

`GoalHierarchy` ranks goals (0 = most valued). `PreferenceList` keeps, for
every item, a heap of the active goals that item can satisfy so that the root
is always what the item is currently best used for. Heaps store `(rank, goal)`
pairs taken from the hierarchy when the goal was pushed; whenever a rank
changes the affected heaps are rebuilt from the hierarchy.
"""
from __future__ import annotations

import heapq
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from objects import Goal, InvariantViolation, Item, Ordering

logger = logging.getLogger(__name__)


class GoalHierarchy:
    """Goal -> rank. Lower rank wins. Gaps left by retired goals are never closed."""

    def __init__(self, ranks: Optional[Dict[Goal, int]] = None):
        self._ranks: Dict[Goal, int] = dict(ranks or {})

    @classmethod
    def from_goals(cls, goals: Iterable[Goal]) -> "GoalHierarchy":
        ranks: Dict[Goal, int] = {}
        for goal in goals:
            if goal in ranks:
                raise ValueError(f"goal {goal.value} listed twice")
            ranks[goal] = len(ranks)
        return cls(ranks)

    def rank(self, goal: Goal) -> Optional[int]:
        return self._ranks.get(goal)

    @staticmethod
    def check_rank(rank: int) -> None:
        if rank < 0:
            raise ValueError("rank must be non-negative")

    def insert(self, goal: Goal, rank: int) -> None:
        self.check_rank(rank)
        self._ranks[goal] = rank

    def remove(self, goal: Goal) -> Optional[int]:
        return self._ranks.pop(goal, None)

    def compare(self, a: Goal, b: Goal) -> Ordering:
        """How `a` is valued relative to `b`. A ranked goal beats an unranked one."""
        ra, rb = self._ranks.get(a), self._ranks.get(b)
        if ra is None and rb is None:
            return Ordering.EQUAL
        if rb is None:
            return Ordering.GREATER
        if ra is None:
            return Ordering.LESS
        return Ordering.of(rb, ra)

    def items(self) -> List[Tuple[Goal, int]]:
        return sorted(self._ranks.items(), key=lambda kv: kv[1])

    def __contains__(self, goal: Goal) -> bool:
        return goal in self._ranks

    def __len__(self) -> int:
        return len(self._ranks)


class GoalQueue:
    """Min-heap of `(rank, goal)`; the root is the most valued goal."""

    def __init__(self) -> None:
        self._heap: List[Tuple[int, Goal]] = []

    def push(self, goal: Goal, rank: int) -> bool:
        if goal in self:
            return False
        heapq.heappush(self._heap, (rank, goal))
        return True

    def peek(self) -> Optional[Goal]:
        return self._heap[0][1] if self._heap else None

    def discard(self, goal: Goal) -> bool:
        # Filtered rebuild, O(n). Only goal retirement should come through here.
        kept = [entry for entry in self._heap if entry[1] != goal]
        if len(kept) == len(self._heap):
            return False
        heapq.heapify(kept)
        self._heap = kept
        return True

    def redecorate(self, hierarchy: GoalHierarchy) -> None:
        entries = []
        for rank, goal in self._heap:
            current = hierarchy.rank(goal)
            entries.append((rank if current is None else current, goal))
        heapq.heapify(entries)
        self._heap = entries

    def goals(self) -> List[Goal]:
        """Goals in priority order."""
        return [goal for _, goal in sorted(self._heap)]

    def __contains__(self, goal: Goal) -> bool:
        return any(g == goal for _, g in self._heap)

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[Goal]:
        return iter(self.goals())


class PreferenceList:
    """
    Item -> queue of the active goals the item can satisfy, plus a parallel
    queue holding every active goal.

    The satisfaction map (goal -> items) is owned here as well since every
    queue update fans out through it.
    """

    def __init__(self, hierarchy: GoalHierarchy, satisfactions: Dict[Goal, List[Item]]):
        self.hierarchy = hierarchy
        self.satisfactions: Dict[Goal, List[Item]] = {}
        self._queues: Dict[Item, GoalQueue] = {}
        self.current = GoalQueue()
        for goal, items in satisfactions.items():
            for item in items:
                self.add_satisfaction(goal, item)

    # ── Goal maintenance ───────────────────────────────────────────────────
    def add_goal(self, goal: Goal) -> None:
        rank = self.hierarchy.rank(goal)
        if rank is None:
            raise InvariantViolation(f"{goal.value} activated without a rank")
        if goal in self.current:
            # already active; its rank may have moved
            self._redecorate(goal)
            return
        for item in self.satisfactions.get(goal, []):
            self._queues[item].push(goal, rank)
        self.current.push(goal, rank)

    def remove_goal(self, goal: Goal) -> bool:
        """Drop `goal` from every queue and from the hierarchy. No-op if absent."""
        removed = False
        for item in self.satisfactions.get(goal, []):
            removed = self._queues[item].discard(goal) or removed
        removed = self.current.discard(goal) or removed
        removed = self.hierarchy.remove(goal) is not None or removed
        return removed

    def rerank(self, goal: Goal, rank: int) -> None:
        """Move `goal` to a new rank and rebuild the queues that hold it."""
        self.hierarchy.insert(goal, rank)
        self._redecorate(goal)

    def _redecorate(self, goal: Goal) -> None:
        for item in self.satisfactions.get(goal, []):
            self._queues[item].redecorate(self.hierarchy)
        self.current.redecorate(self.hierarchy)

    def add_satisfaction(self, goal: Goal, item: Item) -> None:
        items = self.satisfactions.setdefault(goal, [])
        if item in items:
            return
        items.append(item)
        queue = self._queues.setdefault(item, GoalQueue())
        if goal in self.current:
            queue.push(goal, self.hierarchy.rank(goal))  # type: ignore[arg-type]

    # ── Queries ────────────────────────────────────────────────────────────
    def best_goal(self, item: Item) -> Optional[Goal]:
        queue = self._queues.get(item)
        return queue.peek() if queue is not None else None

    def top_goal(self) -> Optional[Goal]:
        return self.current.peek()

    def recognizes(self, item: Item) -> bool:
        return item in self._queues

    def compare_item_values(self, a: Item, b: Item) -> Optional[Ordering]:
        """
        How item `a` is valued relative to `b`, judged by the best goal each
        can currently serve. An item serving any goal outranks one serving
        none, and two idle items are equal. None if the actor has no notion
        of one of the items at all.
        """
        if not (self.recognizes(a) and self.recognizes(b)):
            return None
        best_a, best_b = self.best_goal(a), self.best_goal(b)
        if best_a is None and best_b is None:
            return Ordering.EQUAL
        if best_b is None:
            return Ordering.GREATER
        if best_a is None:
            return Ordering.LESS
        return self.hierarchy.compare(best_a, best_b)

    def value_key(self, item: Item) -> Tuple[int, int]:
        """Sort key, ascending from least to most valuable."""
        best = self.best_goal(item)
        rank = self.hierarchy.rank(best) if best is not None else None
        if rank is None:
            return (0, 0)
        return (1, -rank)

    def ranked(self, item: Item) -> List[Goal]:
        queue = self._queues.get(item)
        return queue.goals() if queue is not None else []

    def as_dict(self) -> Dict[Item, List[Goal]]:
        return {item: queue.goals() for item, queue in self._queues.items()}

    def verify(self) -> None:
        """Raise InvariantViolation unless every queue root, the current-goal queue included, is its most valued active goal."""
        active = set(self.current.goals())
        for goal in active:
            if goal not in self.hierarchy:
                raise InvariantViolation(f"active goal {goal.value} has no rank")
        for item, queue in self._queues.items():
            expected = {g for g in active if item in self.satisfactions.get(g, [])}
            held = set(queue.goals())
            if held != expected:
                raise InvariantViolation(
                    f"{item.value} queue holds {sorted(g.value for g in held)}, "
                    f"expected {sorted(g.value for g in expected)}"
                )
            if expected:
                best = min(expected, key=lambda g: self.hierarchy.rank(g))  # type: ignore[arg-type,return-value]
                if self.hierarchy.rank(queue.peek()) != self.hierarchy.rank(best):  # type: ignore[arg-type]
                    raise InvariantViolation(f"{item.value} queue root is stale")
        if active:
            top = min(self.hierarchy.rank(g) for g in active)  # type: ignore[type-var]
            if self.hierarchy.rank(self.current.peek()) != top:  # type: ignore[arg-type]
                raise InvariantViolation("current goal queue root is stale")
