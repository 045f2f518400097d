"""Derive a robot from a rule sequence, optimize a trajectory for it, show it.

Usage:
    python -m graphbot examples/walker_grammar.json 0 1 2 2 3 -o -e 3 -j 8
"""
import argparse
import sys
import time

import matplotlib.pyplot as plt
import mujoco as mj
import numpy as np

from graphbot import config
from graphbot.builder import Robot, build_robot
from graphbot.derivation import create_rules, derive_graph
from graphbot.episodes import EpisodeRunner
from graphbot.graph import load_graphs, save_graph_as_json
from graphbot.mppi import SimulationFactory
from graphbot.objectives import SumOfSquaresObjective
from graphbot.plot import make_plot
from graphbot.samplers import DefaultInputSampler
from graphbot.seeding import derive_seed
from graphbot.sim import IDENTITY_QUAT, MujocoSimulation, Prop
from graphbot.value import FCValueEstimator, NullValueEstimator


class RobotWorldFactory(SimulationFactory):
    """Floor plus one robot resting on it."""

    def __init__(self, robot: Robot, time_step: float = config.TIME_STEP):
        self.robot = robot
        self.time_step = time_step
        self.floor = Prop(shape="box", density=0.0, friction=config.FLOOR_FRICTION,
                          half_extents=list(config.FLOOR_HALF_EXTENTS))
        self.z_offset = find_z_offset(robot, time_step)

    def create(self) -> MujocoSimulation:
        sim = MujocoSimulation(self.time_step)
        sim.add_prop(self.floor, config.FLOOR_POS, IDENTITY_QUAT)
        sim.add_robot(self.robot, [0.0, 0.0, self.z_offset], IDENTITY_QUAT)
        return sim


def find_z_offset(robot: Robot, time_step: float) -> float:
    """Height that puts the lowest point of the robot on the ground."""
    temp_sim = MujocoSimulation(time_step)
    robot_idx = temp_sim.add_robot(robot, [0.0, 0.0, 0.0], IDENTITY_QUAT)
    lower, _ = temp_sim.get_robot_world_aabb(robot_idx)
    return float(-lower[2])


def save_image(sim: MujocoSimulation, path: str, width: int = 640, height: int = 480) -> bool:
    """Render one frame to a PNG; failure is reported, not raised."""
    try:
        renderer = mj.Renderer(sim.model, height=height, width=width)
        try:
            camera = mj.MjvCamera()
            mj.mjv_defaultFreeCamera(sim.model, camera)
            camera.distance = 2.0
            camera.elevation = -20
            renderer.update_scene(sim.data, camera=camera)
            pixels = renderer.render()
        finally:
            renderer.close()
        plt.imsave(path, pixels)
    except Exception as e: # no GL context, unwritable path, ...
        print(f"Failed to save image: {e}", file=sys.stderr)
        return False
    return True


def render_trajectory(sim: MujocoSimulation, robot_idx: int, input_sequence: np.ndarray,
                      interval: int = config.INTERVAL) -> None:
    """Replay the trajectory in the MuJoCo viewer in real time, looping."""
    # needs a display, so only imported when rendering
    from mujoco import viewer

    time_step = sim.time_step
    i = j = 0
    with viewer.launch_passive(sim.model, sim.data) as handle:
        sim_time = time.perf_counter()
        while handle.is_running():
            current_time = time.perf_counter()
            while sim_time < current_time:
                if input_sequence.shape[1] > 0:
                    sim.set_joint_target_positions(robot_idx, input_sequence[:, j])
                sim.step()
                sim_time += time_step
                i += 1
                if i >= interval:
                    i = 0
                    j += 1
                if j >= input_sequence.shape[1]:
                    i = j = 0
                    sim.restore_state()
            handle.sync()
            time.sleep(time_step)


class ArgumentParser(argparse.ArgumentParser):
    """Exits with status 1 on bad arguments, like a failed graph load."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def at_least(minimum: int):
    """argparse type for integers no smaller than ``minimum``."""

    def parse(text: str) -> int:
        value = int(text)
        if value < minimum:
            raise argparse.ArgumentTypeError(f"must be at least {minimum}, got {value}")
        return value

    parse.__name__ = "integer"
    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(prog="graphbot", description="Robot design graph viewer.")
    parser.add_argument("graph_file", help="Rule graph file (.json)")
    parser.add_argument("rule_sequence", nargs="*", type=int, help="Rule sequence to apply")
    parser.add_argument("-s", "--seed", type=int, default=0, help="Random seed")
    parser.add_argument("-j", "--jobs", type=at_least(0), default=0, help="Number of jobs/threads, 0 for all cores")
    parser.add_argument("-e", "--episodes", type=at_least(0), default=config.EPISODE_COUNT, help="Number of episodes")
    parser.add_argument("--episode_len", type=at_least(1), default=config.EPISODE_LEN, help="Planning steps per episode")
    parser.add_argument("--horizon", type=at_least(1), default=config.HORIZON, help="Planning horizon in steps")
    parser.add_argument("--samples", type=at_least(1), default=config.SAMPLE_COUNT, help="MPPI samples per update")
    parser.add_argument("-o", "--optim", action="store_true", help="Optimize a trajectory")
    parser.add_argument("-r", "--render", action="store_true", help="Render the trajectory")
    parser.add_argument("--save_image", default="", help="Save PNG image to file")
    parser.add_argument("--save_graph", default="", help="Save the derived robot graph to file")
    parser.add_argument("--value_estimator", choices=["null", "fc"], default="null",
                        help="Value estimator used to bootstrap returns")
    parser.add_argument("--log_csv", default="", help="Write the total reward per episode to a CSV file")
    parser.add_argument("--plot", default="", help="Save a plot of the CSV log to file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # GraphLoadError and RuleError are both ValueErrors
    try:
        rule_graphs = load_graphs(args.graph_file)
        print(f"Number of graphs: {len(rule_graphs)}")
        rules = create_rules(rule_graphs)
        robot_graph = derive_graph(rules, args.rule_sequence)
        robot = build_robot(robot_graph)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1

    if args.save_graph:
        save_graph_as_json(robot_graph, args.save_graph)

    sim_factory = RobotWorldFactory(robot)
    main_sim = sim_factory.create()
    robot_idx = main_sim.find_robot_index(robot)
    dof_count = main_sim.get_robot_dof_count(robot_idx)

    if args.value_estimator == "fc":
        value_estimator = FCValueEstimator(main_sim, robot_idx, seed=derive_seed(args.seed, "value_estimator"))
    else:
        value_estimator = NullValueEstimator()
    objective_fn = SumOfSquaresObjective(robot_idx=robot_idx)
    input_sampler = DefaultInputSampler()
    input_sequence = np.zeros((dof_count, args.episode_len))

    if args.optim:
        runner = EpisodeRunner(
            main_sim, sim_factory, objective_fn, value_estimator, input_sampler,
            robot_idx=robot_idx,
            seed=args.seed,
            thread_count=args.jobs,
            episode_len=args.episode_len,
            horizon=args.horizon,
            sample_count=args.samples,
            log_path=args.log_csv or None,
        )
        runner.run(args.episodes)
        input_sequence = runner.input_sequence
        if args.log_csv and args.plot:
            make_plot(args.log_csv, "total_reward", save_path=args.plot)

    main_sim.save_state()

    if args.save_image:
        save_image(main_sim, args.save_image)

    if args.render:
        render_trajectory(main_sim, robot_idx, input_sequence)

    return 0
