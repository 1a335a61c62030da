#!/usr/bin/env python3
"""
Scenario Runner
Runs the replanner against a built-in scenario in deterministic simulation
and optionally saves a plot of the final planning scene.
"""

import os
import sys
import argparse
import logging
import json

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from corridor_replanner.simulation import SCENARIOS, ScenarioSimulator
from corridor_replanner.utils import load_config, setup_logging, validate_config
from corridor_replanner.utils.visualization import PlanningVisualizer


def parse_arguments():
    parser = argparse.ArgumentParser(description="Run a corridor replanning scenario")
    parser.add_argument("--scenario", choices=sorted(SCENARIOS), default="open_field",
                        help="Scenario to simulate")
    parser.add_argument("--config", type=str, default="config/planner_config.yaml",
                        help="Configuration file")
    parser.add_argument("--duration", type=float, default=30.0,
                        help="Simulated duration in seconds")
    parser.add_argument("--seed", type=int, default=None, help="Sampling tree seed")
    parser.add_argument("--plot", type=str, default=None,
                        help="Save the final planning scene to this image path")
    return parser.parse_args()


def main():
    args = parse_arguments()

    config = load_config(args.config)
    system_logger = setup_logging(config.logging)
    logger = logging.getLogger(__name__)

    errors = validate_config(config)
    if errors:
        for section, messages in errors.items():
            for message in messages:
                logger.error(f"Invalid config [{section}]: {message}")
        return 1

    if args.seed is not None:
        config.planner.setdefault("tree", {})["seed"] = args.seed

    scenario = SCENARIOS[args.scenario]()
    simulator = ScenarioSimulator(scenario, config, system_logger=system_logger)
    result = simulator.run(args.duration)

    hover_commands = sum(1 for command in result.commands if command.hover)
    summary = {
        "scenario": result.scenario,
        "goal_reached": result.goal_reached,
        "sim_time": round(result.sim_time, 3),
        "ticks": len(result.ticks),
        "commands": len(result.commands),
        "hover_commands": hover_commands,
        "final_position": result.final_position.round(3).tolist(),
        "planning": result.statistics.get("planning", {}),
    }
    print(json.dumps(summary, indent=2, default=str))

    if args.plot:
        visualizer = PlanningVisualizer(config.visualization)
        visualizer.plot_planning_scene(simulator.views, obstacles=scenario.obstacles,
                                       start=scenario.start, goal=scenario.goal,
                                       save_path=args.plot)

    return 0


if __name__ == "__main__":
    sys.exit(main())
