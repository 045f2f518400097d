from pathlib import Path

import numpy as np
import pytest

from graphbot.derivation import create_rules
from graphbot.graph import load_graphs
from graphbot.mppi import SimulationFactory
from graphbot.sim import Simulation

GRAMMAR_PATH = Path(__file__).resolve().parent.parent / "examples" / "walker_grammar.json"


class ServoSimulation(Simulation):
    """Deterministic stand-in for a physics engine.

    Every joint moves a fixed fraction of the way to its target per step and
    the base moves forward with the summed joint speed.
    """

    def __init__(self, dof_count=2, gain=0.5, time_step=0.01):
        self.dof_count = dof_count
        self.gain = gain
        self.time_step = time_step
        self.positions = np.zeros(dof_count)
        self.velocities = np.zeros(dof_count)
        self.targets = np.zeros(dof_count)
        self.base_x = 0.0
        self.base_vel = 0.0
        self.step_count = 0
        self._saved = None

    def add_robot(self, robot, position, orientation):
        return 0

    def add_prop(self, prop, position, orientation):
        return 0

    def step(self):
        new_positions = self.positions + self.gain * (self.targets - self.positions)
        self.velocities = (new_positions - self.positions) / self.time_step
        self.positions = new_positions
        self.base_vel = 0.1 * float(self.velocities.sum())
        self.base_x += self.base_vel * self.time_step
        self.step_count += 1

    def save_state(self):
        self._saved = (
            self.positions.copy(), self.velocities.copy(), self.targets.copy(),
            self.base_x, self.base_vel,
        )

    def restore_state(self):
        positions, velocities, targets, self.base_x, self.base_vel = self._saved
        self.positions, self.velocities, self.targets = positions.copy(), velocities.copy(), targets.copy()

    def set_joint_target_positions(self, robot_idx, targets):
        self.targets = np.array(targets, dtype=np.float64)

    def get_robot_world_aabb(self, robot_idx):
        return np.full(3, self.base_x - 0.1), np.full(3, self.base_x + 0.1)

    def find_robot_index(self, robot):
        return 0

    def get_robot_dof_count(self, robot_idx):
        return self.dof_count

    def get_joint_positions(self, robot_idx):
        return self.positions.copy()

    def get_joint_velocities(self, robot_idx):
        return self.velocities.copy()

    def get_link_velocity(self, robot_idx, link_idx=0):
        return np.array([0.0, 0.0, 0.0, self.base_vel, 0.0, 0.0])


class ServoFactory(SimulationFactory):
    def __init__(self, dof_count=2):
        self.dof_count = dof_count
        self.created = []

    def create(self):
        sim = ServoSimulation(self.dof_count)
        self.created.append(sim)
        return sim


def reach_one(sim):
    """Objective: every joint at position 1."""
    return -float(np.sum((sim.positions - 1.0) ** 2))


@pytest.fixture
def servo_factory():
    return ServoFactory()


@pytest.fixture
def walker_rules():
    return create_rules(load_graphs(GRAMMAR_PATH))
