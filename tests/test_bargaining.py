import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import sim  # type: ignore
import objects as G  # type: ignore
from objects import Goal, Item  # type: ignore


BASIC = {Goal.EAT: [Item.FOOD_UNIT], Goal.SHELTER: [Item.HOUSE_UNIT]}


def make_actor(name, goals, items, satisfactions=None):
    actor = sim.Actor(name, [G.GoalRecord(goal=g, units_required=1) for g in goals], dict(satisfactions or BASIC))
    for item in items:
        actor.add_item(item)
    return actor


def setup_pair():
    a = make_actor("A", [Goal.SHELTER], [Item.FOOD_UNIT])
    b = make_actor("B", [Goal.EAT], [Item.HOUSE_UNIT])
    return sim.World([a, b])


def test_scenario_b_completes_swap():
    world = setup_pair()
    a, b = world.actors

    a.tick(world.actors)
    assert a.state == G.WillingToTrade(cursor=-1)

    a.tick(world.actors)
    assert a.state == G.FoundTradePartner(partner=b.actor_id)
    assert b.state == G.BidRecipient(initiator=a.actor_id)

    a.tick(world.actors)
    assert a.state == G.Bidding(partner=b.actor_id, my_offer_index=0, their_offer_index=0)
    assert b.state == G.BidRecipient(
        initiator=a.actor_id, pending_offer=Item.FOOD_UNIT, requested_item=Item.HOUSE_UNIT
    )

    a.tick(world.actors)
    assert a.inventory == (Item.HOUSE_UNIT,)
    assert b.inventory == (Item.FOOD_UNIT,)
    assert isinstance(a.state, G.SearchingForGoal)
    assert isinstance(b.state, G.SearchingForGoal)
    assert a.trades == b.trades == 1
    a.check_invariants()
    b.check_invariants()


def test_scenario_b_in_full_rounds():
    world = setup_pair()
    a, b = world.actors
    bm = sim.BehaviorManager(world, seed=3)
    bm.register(sim.ActorBehavior())
    for _ in range(5):
        bm.tick()
    # both used what they traded for
    assert a.goal_hierarchy == {}
    assert b.goal_hierarchy == {}
    assert a.inventory == b.inventory == ()
    assert a.units_used == b.units_used == 1


def test_recipient_waits_while_held():
    world = setup_pair()
    a, b = world.actors
    b.remove_goal(Goal.EAT)
    b.add_new_goal(G.GoalRecord(goal=Goal.SHELTER), 0)
    a.tick(world.actors)
    a.tick(world.actors)
    assert isinstance(b.state, G.BidRecipient)
    # B holds a HouseUnit that would satisfy its own goal, but it is on the table
    b.tick(world.actors)
    assert b.inventory == (Item.HOUSE_UNIT,)
    assert isinstance(b.state, G.BidRecipient)


def test_scenario_d_all_partners_engaged():
    a = make_actor("A", [Goal.SHELTER], [Item.FOOD_UNIT])
    b = make_actor("B", [Goal.EAT], [Item.HOUSE_UNIT])
    c = make_actor("C", [Goal.EAT], [Item.HOUSE_UNIT])
    world = sim.World([a, b, c])
    b.state = G.Bidding(partner=c.actor_id)
    c.state = G.BidRecipient(initiator=b.actor_id)
    a.state = G.WillingToTrade()

    a.tick(world.actors)

    assert a.state == G.WillingToTrade(cursor=-1)
    assert b.state == G.Bidding(partner=c.actor_id)
    assert c.state == G.BidRecipient(initiator=b.actor_id)
    assert a.inventory == (Item.FOOD_UNIT,)
    assert b.inventory == c.inventory == (Item.HOUSE_UNIT,)


def test_negotiating_initiator_not_selected():
    a = make_actor("A", [Goal.SHELTER], [Item.FOOD_UNIT])
    b = make_actor("B", [Goal.EAT], [Item.HOUSE_UNIT])
    c = make_actor("C", [Goal.SHELTER], [Item.FOOD_UNIT])
    world = sim.World([a, b, c])
    a.state = G.WillingToTrade()
    c.state = G.WillingToTrade()
    a.tick(world.actors)
    assert b.state == G.BidRecipient(initiator=a.actor_id)
    # C wants the same HouseUnit but B is taken
    c.tick(world.actors)
    assert c.state == G.WillingToTrade(cursor=-1)
    assert b.state == G.BidRecipient(initiator=a.actor_id)


def test_busy_candidate_is_skipped():
    a = make_actor("A", [Goal.SHELTER], [Item.FOOD_UNIT])
    b = make_actor("B", [Goal.EAT], [Item.HOUSE_UNIT])
    c = make_actor("C", [Goal.EAT], [Item.HOUSE_UNIT])
    world = sim.World([a, b, c])
    a.state = G.WillingToTrade()
    with b.exclusive():
        a.tick(world.actors)
    assert a.state == G.FoundTradePartner(partner=c.actor_id)
    assert isinstance(b.state, G.SearchingForGoal)


def test_exclusive_is_not_reentrant():
    a = make_actor("A", [Goal.SHELTER], [Item.FOOD_UNIT])
    with a.exclusive():
        with pytest.raises(G.ActorBusy):
            with a.exclusive():
                pass
    with a.exclusive():
        pass


def test_busy_actor_skips_its_tick():
    a = make_actor("A", [Goal.SHELTER], [Item.FOOD_UNIT])
    world = sim.World([a])
    with a.exclusive():
        a.tick(world.actors)
    assert isinstance(a.state, G.SearchingForGoal)


def setup_ladder(partner_houses):
    satisfactions = {
        Goal.SHELTER: [Item.HOUSE_UNIT],
        Goal.LEISURE: [Item.LEISURE_UNIT_1],
        Goal.EAT: [Item.FOOD_UNIT],
    }
    a = make_actor("A", [Goal.SHELTER, Goal.LEISURE], [Item.LEISURE_UNIT_1, Item.FOOD_UNIT], satisfactions)
    b = make_actor(
        "B",
        [Goal.LEISURE, Goal.SHELTER],
        [Item.HOUSE_UNIT] * partner_houses,
        {Goal.LEISURE: [Item.LEISURE_UNIT_1], Goal.SHELTER: [Item.HOUSE_UNIT]},
    )
    world = sim.World([a, b])
    for _ in range(3):
        a.tick(world.actors)
    assert a.state == G.Bidding(partner=b.actor_id)
    return world


def test_rejected_bid_escalates_then_trades():
    world = setup_ladder(partner_houses=2)
    a, b = world.actors
    assert a.inventory == (Item.FOOD_UNIT, Item.LEISURE_UNIT_1)

    # FoodUnit is worthless to B, so the opening bid fails
    a.tick(world.actors)
    assert a.state == G.Bidding(partner=b.actor_id, my_offer_index=1, their_offer_index=1)
    assert b.state == G.BidRecipient(
        initiator=a.actor_id, pending_offer=Item.FOOD_UNIT, requested_item=Item.HOUSE_UNIT
    )

    a.tick(world.actors)
    assert a.inventory == (Item.FOOD_UNIT, Item.HOUSE_UNIT)
    assert b.inventory == (Item.HOUSE_UNIT, Item.LEISURE_UNIT_1)
    assert isinstance(a.state, G.SearchingForGoal)
    assert isinstance(b.state, G.SearchingForGoal)
    b.check_invariants()


def test_exhausted_ladder_moves_on():
    world = setup_ladder(partner_houses=1)
    a, b = world.actors
    a.tick(world.actors)
    a.tick(world.actors)
    assert a.state == G.WillingToTrade(cursor=1)
    assert isinstance(b.state, G.SearchingForGoal)
    assert b.inventory == (Item.HOUSE_UNIT,)

    # B is behind the cursor, so this round finds nobody and the search restarts
    a.tick(world.actors)
    assert a.state == G.WillingToTrade(cursor=-1)


def test_lost_goal_releases_partner():
    world = setup_pair()
    a, b = world.actors
    a.tick(world.actors)
    a.tick(world.actors)
    a.remove_goal(Goal.SHELTER)
    a.tick(world.actors)
    assert isinstance(a.state, G.SearchingForGoal)
    assert isinstance(b.state, G.SearchingForGoal)


def test_unknown_partner_fails_loudly():
    world = setup_pair()
    a, _ = world.actors
    a.state = G.Bidding(partner=99)
    with pytest.raises(G.InvariantViolation):
        a.tick(world.actors)


def test_partner_not_holding_bid_fails_loudly():
    world = setup_pair()
    a, b = world.actors
    a.state = G.FoundTradePartner(partner=b.actor_id)
    with pytest.raises(G.InvariantViolation):
        a.tick(world.actors)


def test_ladder_follows_current_inventory_order():
    satisfactions = {
        Goal.SHELTER: [Item.HOUSE_UNIT],
        Goal.LEISURE: [Item.LEISURE_UNIT_1],
        Goal.EAT: [Item.FOOD_UNIT],
    }
    a = make_actor("A", [Goal.SHELTER, Goal.LEISURE, Goal.EAT], [Item.FOOD_UNIT, Item.LEISURE_UNIT_1], satisfactions)
    b = make_actor("B", [Goal.EAT, Goal.SHELTER], [Item.HOUSE_UNIT, Item.HOUSE_UNIT])
    world = sim.World([a, b])
    assert a.inventory == (Item.FOOD_UNIT, Item.LEISURE_UNIT_1)
    a.state = G.Bidding(partner=b.actor_id, my_offer_index=1, their_offer_index=1)
    b.state = G.BidRecipient(initiator=a.actor_id)

    # Leisure drops below Eat, so position 1 now holds the FoodUnit
    a.rerank_goal(Goal.LEISURE, 5)
    assert a.inventory == (Item.LEISURE_UNIT_1, Item.FOOD_UNIT)

    a.tick(world.actors)
    assert a.inventory == (Item.LEISURE_UNIT_1, Item.HOUSE_UNIT)
    assert b.inventory == (Item.HOUSE_UNIT, Item.FOOD_UNIT)
    assert isinstance(a.state, G.SearchingForGoal)
