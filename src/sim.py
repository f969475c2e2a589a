import bisect
import logging
import random
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import objects as G
from objects import Goal, Item, Ordering, get_instance_id
from preferences import GoalHierarchy, PreferenceList
from register import register_content, MOD_PATHS, LOCAL_CONTENT

logger = logging.getLogger(__name__)

# Constants
ALL_SOURCES = [LOCAL_CONTENT] + MOD_PATHS

# Load registry
REGISTRY = register_content(ALL_SOURCES)
GoalDefs: Dict[str, G.GoalDefinition] = REGISTRY.get("GoalDefinition", {})  # type: ignore
SatisfactionDefs: Dict[str, G.SatisfactionDefinition] = REGISTRY.get("SatisfactionDefinition", {})  # type: ignore
KitDefs: Dict[str, G.InventoryKit] = REGISTRY.get("InventoryKit", {})  # type: ignore

# -----------------------------------
# Actor
# -----------------------------------

class Actor:
    """
    An acting, valuing individual.

    Goals are ranked ordinally and items are valued only through the best
    goal each can serve. Every tick the actor pursues its most valued active
    goal: it spends an item from inventory if it can, otherwise it looks for
    someone to trade with and haggles over a few ticks.

    A negotiation touches two actors. Only the initiator's tick mutates the
    pair, and it must win `exclusive()` on the partner first; a partner that
    is already engaged is skipped, never waited on.
    """

    def __init__(
        self,
        name: str,
        goals: Iterable[G.GoalRecord],
        satisfactions: Dict[Goal, List[Item]],
        actor_id: Optional[int] = None,
    ):
        self.actor_id = get_instance_id() if actor_id is None else actor_id
        self.name = name
        self.hierarchy = GoalHierarchy()
        self.preferences = PreferenceList(self.hierarchy, satisfactions)
        # records of active goals
        self.registry: Dict[Goal, G.GoalRecord] = {}
        # satisfied recurring goals waiting for their timer
        self.dormant: Dict[Goal, G.GoalRecord] = {}
        self.state: G._State = G.SearchingForGoal()
        self.units_used = 0
        self.trades = 0
        self._inventory: List[Item] = []
        self._lock = threading.Lock()

        records = list(goals)
        seen = [record.goal for record in records]
        if len(set(seen)) != len(seen):
            raise ValueError(f"{name} is given the same goal twice")
        for rank, record in enumerate(records):
            self.add_new_goal(record, rank)

    def __repr__(self) -> str:
        return f"Actor({self.name!r}, id={self.actor_id}, state={self.state.kind})"

    # ── Read-only views ────────────────────────────────────────────────────
    @property
    def inventory(self) -> Tuple[Item, ...]:
        """Held items, least valuable first."""
        return tuple(self._inventory)

    @property
    def goal_hierarchy(self) -> Dict[Goal, int]:
        return dict(self.hierarchy.items())

    @property
    def goal_registry(self) -> Dict[Goal, G.GoalRecord]:
        return {goal: record.model_copy() for goal, record in self.registry.items()}

    @property
    def preference_list(self) -> Dict[Item, List[Goal]]:
        return self.preferences.as_dict()

    @property
    def satisfactions(self) -> Dict[Goal, List[Item]]:
        return {goal: list(items) for goal, items in self.preferences.satisfactions.items()}

    @property
    def current_goal(self) -> Optional[Goal]:
        return self.preferences.top_goal()

    def snapshot(self) -> G.ActorSnapshot:
        return G.ActorSnapshot(
            actor_id=self.actor_id,
            name=self.name,
            state=self.state,
            current_goal=self.current_goal,
            goal_hierarchy=self.goal_hierarchy,
            goal_registry=self.goal_registry,
            preference_list=self.preference_list,
            inventory=list(self._inventory),
            units_used=self.units_used,
            trades=self.trades,
        )

    # ── Exclusive access ───────────────────────────────────────────────────
    @contextmanager
    def exclusive(self) -> Iterator["Actor"]:
        """Try to take this actor for the duration of the block; ActorBusy if it is taken."""
        if not self._lock.acquire(blocking=False):
            raise G.ActorBusy(self.actor_id)
        try:
            yield self
        finally:
            self._lock.release()

    # ── Goals ──────────────────────────────────────────────────────────────
    def add_new_goal(self, record: G.GoalRecord, rank: int) -> None:
        """
        Register `record` and rank its goal at `rank`. A goal that is already
        active moves to the new rank and the queues holding it are rebuilt.
        """
        GoalHierarchy.check_rank(rank)
        record.rank = rank
        self.registry[record.goal] = record
        self.dormant.pop(record.goal, None)
        self.hierarchy.insert(record.goal, rank)
        self.preferences.add_goal(record.goal)
        self._resort()

    def add_goal(self, goal: Goal) -> None:
        """Bring a known goal back into play at its original rank."""
        record = self.registry.get(goal) or self.dormant.pop(goal, None)
        if record is None:
            raise G.InvariantViolation(f"{self.name} has no record for {goal.value}")
        self.registry[goal] = record
        self.hierarchy.insert(goal, record.rank)
        self.preferences.add_goal(goal)
        self._resort()

    def remove_goal(self, goal: Goal) -> bool:
        """
        Retire a goal: drop it from every queue, the hierarchy and the registry.
        Recurring goals move to the dormant list with a fresh timer. Returns
        False, changing nothing, when the goal is not active.
        """
        record = self.registry.pop(goal, None)
        removed = self.preferences.remove_goal(goal)
        if record is None and not removed:
            return False
        if record is not None and record.is_recurring:
            record.time = 0
            self.dormant[goal] = record
        self._resort()
        return True

    def rerank_goal(self, goal: Goal, rank: int) -> None:
        record = self.registry.get(goal)
        if record is None:
            raise G.InvariantViolation(f"{self.name} cannot rerank inactive goal {goal.value}")
        self.preferences.rerank(goal, rank)
        record.rank = rank
        self._resort()

    def add_satisfaction(self, goal: Goal, item: Item) -> None:
        self.preferences.add_satisfaction(goal, item)
        self._resort()

    # ── Items ──────────────────────────────────────────────────────────────
    def best_goal(self, item: Item) -> Optional[Goal]:
        return self.preferences.best_goal(item)

    def compare_item_values(self, a: Item, b: Item) -> Optional[Ordering]:
        return self.preferences.compare_item_values(a, b)

    def _value_order(self, a: Item, b: Item) -> Ordering:
        # same order as compare_item_values, except unknown items count as idle instead of None
        key = self.preferences.value_key
        return Ordering.of(key(a), key(b))

    def _resort(self) -> None:
        self._inventory.sort(key=self.preferences.value_key)

    def add_item(self, item: Item) -> None:
        bisect.insort(self._inventory, item, key=self.preferences.value_key)

    def _take_at(self, index: int) -> Item:
        return self._inventory.pop(index)

    def holding(self, items: Sequence[Item]) -> List[Tuple[int, Item]]:
        """(inventory index, item) for every held item found in `items`."""
        return [(i, item) for i, item in enumerate(self._inventory) if item in items]

    def choose_item_for_goal(self, goal: Goal) -> Optional[Item]:
        """
        An item whose best use is `goal` if one is held, otherwise the least
        valuable held item that can serve it.
        """
        options = self.preferences.satisfactions.get(goal, [])
        fallback = None
        for item in self._inventory:
            if item not in options:
                continue
            if self.preferences.best_goal(item) == goal:
                return item
            if fallback is None:
                fallback = item
        return fallback

    def use_item_for_goal(self, item: Item, goal: Goal) -> bool:
        if item not in self._inventory:
            logger.info("%s does not have item %s for goal %s in inventory", self.name, item.value, goal.value)
            return False
        record = self.registry.get(goal)
        if record is None:
            raise G.InvariantViolation(f"{self.name} uses {item.value} for unregistered goal {goal.value}")
        self._inventory.remove(item)
        self.units_used += 1
        logger.info("%s uses item %s for goal %s", self.name, item.value, goal.value)
        if record.record_use():
            logger.info("%s satisfies %s", self.name, goal.value)
            self.remove_goal(goal)
        return True

    # ── Decision loop ──────────────────────────────────────────────────────
    def tick(self, actors: Sequence["Actor"]) -> None:
        """Run one round of this actor's decision making against `actors`."""
        if not self._lock.acquire(blocking=False):
            logger.debug("%s is engaged elsewhere, skipping tick", self.name)
            return
        try:
            self._advance_recurrences()
            goal = self.preferences.top_goal()
            if goal is not None and goal not in self.registry:
                raise G.InvariantViolation(f"{self.name} selects unregistered goal {goal.value}")
            logger.debug("%s selects %s as a goal", self.name, goal.value if goal else None)

            state = self.state
            if isinstance(state, G.BidRecipient):
                logger.debug("%s is waiting in bid", self.name)
            elif goal is None:
                if isinstance(state, (G.FoundTradePartner, G.Bidding)):
                    self._release(self._partner(actors, state.partner))
                self.state = G.SearchingForGoal()
                logger.debug("%s does not pursue any goals", self.name)
            elif isinstance(state, G.SearchingForGoal):
                self._satisfy(goal)
            elif isinstance(state, G.WillingToTrade):
                self._search(goal, actors, state)
            elif isinstance(state, G.FoundTradePartner):
                self._open_bidding(goal, actors, state)
            elif isinstance(state, G.Bidding):
                self._bid(goal, actors, state)

            if __debug__:
                self.check_invariants()
        finally:
            self._lock.release()

    def _advance_recurrences(self) -> None:
        for goal, record in list(self.dormant.items()):
            if record.advance_timer():
                logger.info("%s reintroduces %s", self.name, goal.value)
                self.add_goal(goal)

    def _satisfy(self, goal: Goal) -> None:
        item = self.choose_item_for_goal(goal)
        if item is not None:
            self.use_item_for_goal(item, goal)
            self.state = G.SearchingForGoal()
        elif self._inventory:
            logger.info("%s is now willing to trade for %s", self.name, goal.value)
            self.state = G.WillingToTrade()
        else:
            self.state = G.SearchingForGoal()

    def check_invariants(self) -> None:
        self.preferences.verify()
        active = set(self.preferences.current.goals())
        if active != set(self.registry):
            raise G.InvariantViolation(
                f"{self.name} registry {sorted(g.value for g in self.registry)} "
                f"does not match active goals {sorted(g.value for g in active)}"
            )
        keys = [self.preferences.value_key(item) for item in self._inventory]
        if keys != sorted(keys):
            raise G.InvariantViolation(f"{self.name} inventory is out of order")

    # -----------------------------------
    # Bargaining
    # -----------------------------------

    def _partner(self, actors: Sequence["Actor"], actor_id: int) -> "Actor":
        for actor in actors:
            if actor.actor_id == actor_id:
                return actor
        raise G.InvariantViolation(f"{self.name} negotiates with unknown actor {actor_id}")

    def _expect_recipient(self, partner: "Actor") -> None:
        state = partner.state
        if not isinstance(state, G.BidRecipient) or state.initiator != self.actor_id:
            raise G.InvariantViolation(f"{partner.name} is not holding a bid from {self.name}")

    @staticmethod
    def _position(actors: Sequence["Actor"], actor: "Actor") -> int:
        for i, candidate in enumerate(actors):
            if candidate is actor:
                return i
        return -1

    def _release(self, partner: "Actor") -> None:
        try:
            with partner.exclusive():
                partner.state = G.SearchingForGoal()
        except G.ActorBusy:
            logger.warning("%s could not release %s", self.name, partner.name)

    def _abandon(self, actors: Sequence["Actor"], partner: "Actor") -> None:
        # caller holds the partner
        partner.state = G.SearchingForGoal()
        self.state = G.WillingToTrade(cursor=self._position(actors, partner))

    def _search(self, goal: Goal, actors: Sequence["Actor"], state: G.WillingToTrade) -> None:
        if self.choose_item_for_goal(goal) is not None or not self._inventory:
            # something in hand serves the goal now, or nothing is left to offer
            self._satisfy(goal)
            return
        wanted = self.preferences.satisfactions.get(goal, [])
        partner = self._find_partner(wanted, actors, state.cursor)
        if partner is None:
            logger.info("%s finds no trade partner for %s this round", self.name, goal.value)
            self.state = G.WillingToTrade()
            return
        self.state = G.FoundTradePartner(partner=partner.actor_id)

    def _find_partner(self, wanted: Sequence[Item], actors: Sequence["Actor"], cursor: int) -> Optional["Actor"]:
        for candidate in actors[cursor + 1:]:
            if candidate is self:
                continue
            try:
                with candidate.exclusive():
                    if candidate.state.is_engaged:
                        logger.debug(
                            "%s: %s is already occupied trading with another actor, skipping",
                            self.name, candidate.name,
                        )
                        continue
                    held = candidate.holding(wanted)
                    if not held:
                        continue
                    logger.info(
                        "%s finds trade partner %s with %d items it is interested in",
                        self.name, candidate.name, len(held),
                    )
                    candidate.state = G.BidRecipient(initiator=self.actor_id)
                    return candidate
            except G.ActorBusy:
                logger.debug("%s: %s is busy, skipping", self.name, candidate.name)
        return None

    def _open_bidding(self, goal: Goal, actors: Sequence["Actor"], state: G.FoundTradePartner) -> None:
        partner = self._partner(actors, state.partner)
        try:
            with partner.exclusive():
                self._expect_recipient(partner)
                held = partner.holding(self.preferences.satisfactions.get(goal, []))
                if not held or not self._inventory:
                    logger.info("%s/%s: nothing to trade", self.name, partner.name)
                    self._abandon(actors, partner)
                    return
                offer, request = self._inventory[0], held[0][1]
                logger.info(
                    "%s/%s: first tentative proposal bid: will give %s for %s",
                    self.name, partner.name, offer.value, request.value,
                )
                if self._value_order(request, offer) != Ordering.GREATER:
                    logger.info("%s/%s: this trade will never work", self.name, partner.name)
                    self._abandon(actors, partner)
                    return
                logger.info("%s prepares to start bidding in earnest", self.name)
                self.state = G.Bidding(partner=partner.actor_id)
                partner.state = G.BidRecipient(
                    initiator=self.actor_id, pending_offer=offer, requested_item=request
                )
        except G.ActorBusy:
            logger.debug("%s: partner %s is busy, waiting", self.name, partner.name)

    def _bid(self, goal: Goal, actors: Sequence["Actor"], state: G.Bidding) -> None:
        partner = self._partner(actors, state.partner)
        try:
            with partner.exclusive():
                self._expect_recipient(partner)
                held = partner.holding(self.preferences.satisfactions.get(goal, []))
                i, j = state.my_offer_index, state.their_offer_index
                if i >= len(self._inventory) or j >= len(held):
                    logger.info("%s/%s: no more items to trade, going to next actor", self.name, partner.name)
                    self._abandon(actors, partner)
                    return

                # the ladder walks positions in the current order, so a resort between bids reprices it
                offer = self._inventory[i]
                request_index, request = held[j]
                logger.info(
                    "%s/%s makes bid: will give %s for %s",
                    self.name, partner.name, offer.value, request.value,
                )
                # each side must not receive less than it gives, by its own ranking
                mine = self._value_order(request, offer) != Ordering.LESS
                theirs = partner._value_order(offer, request) != Ordering.LESS
                if mine and theirs:
                    self._execute_trade(partner, i, request_index)
                    return

                logger.info(
                    "%s/%s: bid rejected by %s, bid is proceeding up",
                    self.name, partner.name, self.name if not mine else partner.name,
                )
                self.state = G.Bidding(partner=partner.actor_id, my_offer_index=i + 1, their_offer_index=j + 1)
                partner.state = G.BidRecipient(
                    initiator=self.actor_id, pending_offer=offer, requested_item=request
                )
        except G.ActorBusy:
            logger.debug("%s: partner %s is busy, waiting", self.name, partner.name)

    def _execute_trade(self, partner: "Actor", offer_index: int, request_index: int) -> None:
        logger.debug("Inventories before: %s %s / %s %s", self.name, self._inventory, partner.name, partner._inventory)
        offer = self._take_at(offer_index)
        request = partner._take_at(request_index)
        self.add_item(request)
        partner.add_item(offer)
        self.trades += 1
        partner.trades += 1
        self.state = G.SearchingForGoal()
        partner.state = G.SearchingForGoal()
        logger.info(
            "%s/%s: trade complete, %s for %s",
            self.name, partner.name, offer.value, request.value,
        )

# -----------------------------------
# World
# -----------------------------------

class World:
    """Ordered actor collection. An actor's id is its position."""

    def __init__(self, actors: Iterable[Actor] = ()):
        self.actors: List[Actor] = []
        for actor in actors:
            self.add_actor(actor)

    def add_actor(self, actor: Actor) -> Actor:
        actor.actor_id = len(self.actors)
        self.actors.append(actor)
        return actor

    def get(self, actor_id: int) -> Optional[Actor]:
        if 0 <= actor_id < len(self.actors):
            return self.actors[actor_id]
        return None

    def by_name(self, name: str) -> Optional[Actor]:
        return next((a for a in self.actors if a.name == name), None)

    def snapshot(self) -> List[G.ActorSnapshot]:
        return [actor.snapshot() for actor in self.actors]


def build_satisfactions(
    defs: Iterable[G.SatisfactionDefinition], rng: random.Random
) -> Dict[Goal, List[Item]]:
    satisfactions: Dict[Goal, List[Item]] = {}
    for sdef in defs:
        items = satisfactions.setdefault(sdef.goal, [])
        picks = list(sdef.items)
        if sdef.one_of:
            picks.append(rng.choice(sdef.one_of))
        for item in picks:
            if item not in items:
                items.append(item)
    return satisfactions


def populate_world(
    world: World,
    count: int,
    rng: random.Random,
    goal_defs: Optional[Dict[str, G.GoalDefinition]] = None,
    satisfaction_defs: Optional[Dict[str, G.SatisfactionDefinition]] = None,
    kits: Optional[Dict[str, G.InventoryKit]] = None,
) -> List[Actor]:
    """Seed `count` actors from content definitions, each with a random starter kit."""
    goal_defs = GoalDefs if goal_defs is None else goal_defs
    satisfaction_defs = SatisfactionDefs if satisfaction_defs is None else satisfaction_defs
    kits = KitDefs if kits is None else kits

    ordered_goals: List[G.GoalDefinition] = []
    for gdef in sorted(goal_defs.values(), key=lambda d: (d.rank, d.id)):
        if any(d.goal == gdef.goal for d in ordered_goals):
            logger.warning("goal definition '%s' repeats %s, keeping the higher ranked one", gdef.id, gdef.goal.value)
            continue
        ordered_goals.append(gdef)
    ordered_sats = [satisfaction_defs[k] for k in sorted(satisfaction_defs)]
    kit_ids = sorted(kits)

    created: List[Actor] = []
    for _ in range(count):
        actor = Actor(
            f"Actor#{len(world.actors)}",
            [d.to_record() for d in ordered_goals],
            build_satisfactions(ordered_sats, rng),
        )
        if kit_ids:
            for item in kits[rng.choice(kit_ids)].items:
                actor.add_item(item)
        created.append(world.add_actor(actor))
    return created

# -----------------------------------
# Behaviors
# -----------------------------------

class Behavior:
    def tick(self, world: World, tick: int, rng: random.Random) -> None:
        raise NotImplementedError

class ActorBehavior(Behavior):
    """Gives every actor its decision step once per round."""

    def __init__(self, shuffle: bool = False) -> None:
        # shuffled rounds draw their order from the manager's seeded RNG
        self.shuffle = shuffle

    def tick(self, world: World, tick: int, rng: random.Random) -> None:
        order = list(world.actors)
        if self.shuffle:
            rng.shuffle(order)
        for actor in order:
            actor.tick(world.actors)

class BehaviorManager:
    """Coordinates all Behaviors and maintains a deterministic random source."""

    def __init__(self, world: World, seed: int = 0):
        self.world = world
        self.behaviors: List[Behavior] = []
        self.tick_count: int = 0
        self.random = random.Random(seed)

    def register(self, behavior: Behavior) -> None:
        self.behaviors.append(behavior)

    def tick(self) -> None:
        self.tick_count += 1
        logger.debug("tick %d", self.tick_count)
        for behavior in self.behaviors:
            behavior.tick(self.world, self.tick_count, self.random)

# -----------------------------------
# Main Simulation Loop
# -----------------------------------

def main(ticks: int = 1, actors: int = 4, seed: int = 0, shuffle: bool = False) -> World:
    """Run the simulation for a number of ticks using the given RNG seed."""

    world = World()
    bm = BehaviorManager(world, seed=seed)
    populate_world(world, actors, bm.random)
    bm.register(ActorBehavior(shuffle=shuffle))

    for _ in range(ticks):
        bm.tick()

    for snap in world.snapshot():
        logger.info(
            "%s: state=%s goal=%s inventory=%s used=%d trades=%d",
            snap.name,
            snap.state.kind,
            snap.current_goal.value if snap.current_goal else None,
            [item.value for item in snap.inventory],
            snap.units_used,
            snap.trades,
        )
    return world

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the ordinal-preference actor simulation")
    parser.add_argument("--ticks", type=int, default=10, help="Number of ticks to run")
    parser.add_argument("--actors", type=int, default=4, help="Number of actors to seed")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed for deterministic runs")
    parser.add_argument("--shuffle", action="store_true", help="Tick actors in a seeded random order each round")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every decision")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    main(ticks=args.ticks, actors=args.actors, seed=args.seed, shuffle=args.shuffle)
