from __future__ import annotations
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator

import itertools
_id_counter = itertools.count()

def get_instance_id():
    return next(_id_counter)

# ────────────────────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────────────────────

class InvariantViolation(AssertionError):
    """Internal bookkeeping is inconsistent. Always a bug, never a runtime condition."""


class ActorBusy(RuntimeError):
    """Exclusive access to an actor could not be acquired this round."""

    def __init__(self, actor_id: int):
        super().__init__(f"actor {actor_id} is already engaged")
        self.actor_id = actor_id

# ────────────────────────────────────────────────────────────────────────────
# Vocabulary
# ────────────────────────────────────────────────────────────────────────────

class Goal(str, Enum):
    """Ends an actor can pursue."""
    EAT = "Eat"
    SHELTER = "Shelter"
    REST = "Rest"
    LEISURE = "Leisure"


class Item(str, Enum):
    """Discrete goods that can satisfy goals."""
    FOOD_UNIT = "FoodUnit"
    HOUSE_UNIT = "HouseUnit"
    LEISURE_UNIT_1 = "LeisureUnit1"
    LEISURE_UNIT_2 = "LeisureUnit2"


class Ordering(int, Enum):
    LESS = -1
    EQUAL = 0
    GREATER = 1

    @classmethod
    def of(cls, a, b) -> "Ordering":
        if a < b:
            return cls.LESS
        if a > b:
            return cls.GREATER
        return cls.EQUAL

# ────────────────────────────────────────────────────────────────────────────
# Goals
# ────────────────────────────────────────────────────────────────────────────

class GoalRecord(BaseModel):
    """
    Progress bookkeeping for one goal.

    A record without `time_required` is one-shot: once `units` reaches
    `units_required` the goal is gone for good. A recurring record keeps a
    timer that counts ticks since the goal was last dismissed; when it reaches
    `time_required` the goal comes back with its progress cleared.
    """

    id: int = Field(default_factory=get_instance_id)
    goal: Goal
    rank: int = Field(0, ge=0)  # place in the hierarchy when (re)introduced
    units_required: PositiveInt = 1
    units: int = Field(0, ge=0)
    time_required: Optional[PositiveInt] = None
    time: int = Field(0, ge=0)

    @property
    def is_recurring(self) -> bool:
        return self.time_required is not None

    @property
    def is_satisfied(self) -> bool:
        return self.units >= self.units_required

    def record_use(self) -> bool:
        """Divert one unit to this goal. Returns True once the goal is satisfied."""
        self.units += 1
        return self.is_satisfied

    def advance_timer(self) -> bool:
        """Count one tick of dormancy. Returns True when the goal should be re-armed."""
        if not self.is_recurring:
            return False
        self.time += 1
        if self.time >= self.time_required:  # type: ignore[operator]
            self.time = 0
            self.units = 0
            return True
        return False

# ────────────────────────────────────────────────────────────────────────────
# Bargaining states
# ────────────────────────────────────────────────────────────────────────────

class _State(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def is_engaged(self) -> bool:
        """True while the actor is part of a negotiation another searcher must not touch."""
        return False


class SearchingForGoal(_State):
    kind: Literal["searching_for_goal"] = "searching_for_goal"


class WillingToTrade(_State):
    kind: Literal["willing_to_trade"] = "willing_to_trade"
    # position in the actor sequence of the last partner tried; -1 = start over
    cursor: int = -1


class FoundTradePartner(_State):
    kind: Literal["found_trade_partner"] = "found_trade_partner"
    partner: int

    @property
    def is_engaged(self) -> bool:
        return True


class Bidding(_State):
    kind: Literal["bidding"] = "bidding"
    partner: int
    # index into own inventory of the next item offered
    my_offer_index: int = 0
    # index into the partner's list of items matching the goal
    their_offer_index: int = 0

    @property
    def is_engaged(self) -> bool:
        return True


class BidRecipient(_State):
    kind: Literal["bid_recipient"] = "bid_recipient"
    initiator: int
    pending_offer: Optional[Item] = None
    requested_item: Optional[Item] = None

    @property
    def is_engaged(self) -> bool:
        return True


ActorState = Annotated[
    Union[SearchingForGoal, WillingToTrade, FoundTradePartner, Bidding, BidRecipient],
    Field(discriminator="kind"),
]

# ────────────────────────────────────────────────────────────────────────────
# Content definitions (loaded from content/<Model>/*.json)
# ────────────────────────────────────────────────────────────────────────────

class GoalDefinition(BaseModel):
    id: str
    goal: Goal
    rank: int = Field(..., ge=0, description="Position in the default hierarchy, 0 = most valued")
    units_required: PositiveInt = 1
    units: int = Field(0, ge=0, description="Units already accumulated at start")
    time_required: Optional[PositiveInt] = Field(
        None, description="Ticks of dormancy before a satisfied goal recurs. One-shot if absent"
    )

    def to_record(self) -> GoalRecord:
        return GoalRecord(
            goal=self.goal,
            rank=self.rank,
            units_required=self.units_required,
            units=self.units,
            time_required=self.time_required,
        )


class SatisfactionDefinition(BaseModel):
    """Items able to satisfy a goal. Each actor also receives one random pick from `one_of`."""

    id: str
    goal: Goal
    items: List[Item] = Field(default_factory=list)
    one_of: List[Item] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_empty(self):
        if not self.items and not self.one_of:
            raise ValueError(f"satisfaction '{self.id}' lists no items")
        return self


class InventoryKit(BaseModel):
    """A starting inventory an actor may be seeded with."""

    id: str
    items: List[Item]

# ────────────────────────────────────────────────────────────────────────────
# Display
# ────────────────────────────────────────────────────────────────────────────

class ActorSnapshot(BaseModel):
    """Read-only view of one actor for presentation layers."""

    actor_id: int
    name: str
    state: ActorState
    current_goal: Optional[Goal] = None
    goal_hierarchy: Dict[Goal, int] = Field(default_factory=dict)
    goal_registry: Dict[Goal, GoalRecord] = Field(default_factory=dict)
    preference_list: Dict[Item, List[Goal]] = Field(default_factory=dict)
    inventory: List[Item] = Field(default_factory=list)
    units_used: int = 0
    trades: int = 0
