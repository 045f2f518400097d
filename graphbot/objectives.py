import numpy as np

from graphbot import config
from graphbot.sim import Simulation


class SumOfSquaresObjective:
    """Reward for tracking a base velocity, higher is better.

    Returns the negative weighted squared error between the base link's
    world velocity (angular, linear) and the reference.
    """

    def __init__(self, base_vel_ref=config.BASE_VEL_REF, base_vel_weight=config.BASE_VEL_WEIGHT, robot_idx: int = 0):
        self.base_vel_ref = np.asarray(base_vel_ref, dtype=np.float64)
        self.base_vel_weight = np.asarray(base_vel_weight, dtype=np.float64)
        self.robot_idx = robot_idx

    def __call__(self, sim: Simulation) -> float:
        base_vel = sim.get_link_velocity(self.robot_idx, 0)
        error = base_vel - self.base_vel_ref
        return -float(np.sum(self.base_vel_weight * error ** 2))
