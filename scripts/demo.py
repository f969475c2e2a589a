from collections import Counter
from pathlib import Path
import sys
import logging

# Make src modules discoverable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import sim  # type: ignore
from objects import Goal  # type: ignore

# --- Live plotting ---
import matplotlib.pyplot as plt

logger = logging.getLogger("demo")


def setup_world(actors: int, seed: int, shuffle: bool):
    """Seed a world from the shipped content and attach the actor behavior."""
    world = sim.World()
    bm = sim.BehaviorManager(world, seed=seed)
    sim.populate_world(world, actors, bm.random)
    bm.register(sim.ActorBehavior(shuffle=shuffle))
    return world, bm


def run_simulation(ticks: int = 200, actors: int = 30, seed: int = 42, shuffle: bool = True) -> None:
    """Run the actor simulation with live graphing.

    Figure 1 shows how many actors currently pursue each goal.
    Figure 2 shows the total inventory held and the cumulative number of trades.
    """

    world, bm = setup_world(actors, seed, shuffle)

    plt.ion()

    # ---------------------------------------------------------------------
    # Active goals (figure 1)
    # ---------------------------------------------------------------------
    fig_goals, ax_goals = plt.subplots()
    goal_history = {goal: [] for goal in Goal}
    goal_lines = {}
    for goal in Goal:
        (line,) = ax_goals.plot([], [], label=goal.value)
        goal_lines[goal] = line
    ax_goals.set_xlabel("Tick")
    ax_goals.set_ylabel("Actors")
    ax_goals.set_title("Actors Pursuing Each Goal")
    ax_goals.legend()

    # ---------------------------------------------------------------------
    # Inventory + trades (figure 2)
    # ---------------------------------------------------------------------
    fig_stock, ax_stock = plt.subplots()
    (line_items,) = ax_stock.plot([], [], label="items_held")
    (line_trades,) = ax_stock.plot([], [], label="trades")
    items_history: list[int] = []
    trades_history: list[int] = []
    ax_stock.set_xlabel("Tick")
    ax_stock.set_ylabel("Count")
    ax_stock.set_title("Items Held & Cumulative Trades")
    ax_stock.legend()

    for t in range(1, ticks + 1):
        bm.tick()

        snapshots = world.snapshot()
        pursuing = Counter(s.current_goal for s in snapshots if s.current_goal is not None)
        for goal in Goal:
            goal_history[goal].append(pursuing.get(goal, 0))
            goal_lines[goal].set_data(range(1, t + 1), goal_history[goal])

        items_history.append(sum(len(s.inventory) for s in snapshots))
        # every trade is counted by both parties
        trades_history.append(sum(s.trades for s in snapshots) // 2)
        line_items.set_data(range(1, t + 1), items_history)
        line_trades.set_data(range(1, t + 1), trades_history)

        states = Counter(s.state.kind for s in snapshots)
        logger.info(
            "Tick %3d: items=%d trades=%d states=%s",
            t, items_history[-1], trades_history[-1], dict(states),
        )

        ax_goals.relim()
        ax_goals.autoscale_view()
        ax_stock.relim()
        ax_stock.autoscale_view()

        plt.pause(0.001)

    plt.ioff()
    plt.show()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    run_simulation()
