import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np
import numpy.typing as npt

from graphbot import config
from graphbot.mppi import MPPIOptimizer, SimulationFactory
from graphbot.samplers import InputSampler
from graphbot.seeding import derive_seed
from graphbot.sim import Simulation
from graphbot.value import ValueEstimator


class ReplayBuffer:
    """Append-only store of (observation, return) pairs.

    The arrays double their capacity whenever an append does not fit, so the
    amortized cost of an append is linear in its size. Nothing is ever evicted;
    the buffer lives as long as the run.
    """

    def __init__(self, observation_size: int, initial_capacity: int = 256):
        capacity = max(int(initial_capacity), 1)
        self.observation_size = observation_size
        self._observations = np.zeros((capacity, observation_size))
        self._returns = np.zeros(capacity)
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return len(self._returns)

    @property
    def observations(self) -> np.ndarray:
        return self._observations[:self._size]

    @property
    def returns(self) -> np.ndarray:
        return self._returns[:self._size]

    def append(self, observations: npt.ArrayLike, returns: npt.ArrayLike) -> None:
        returns = np.asarray(returns, dtype=np.float64).reshape(-1)
        observations = np.asarray(observations, dtype=np.float64)
        if observations.size != len(returns) * self.observation_size:
            raise ValueError(f"observations of shape {observations.shape} do not fit {len(returns)} returns")
        observations = observations.reshape(len(returns), self.observation_size)

        needed = self._size + len(returns)
        if needed > self.capacity:
            capacity = self.capacity
            while capacity < needed:
                capacity *= 2
            grown_obs = np.zeros((capacity, self.observation_size))
            grown_obs[:self._size] = self.observations
            grown_returns = np.zeros(capacity)
            grown_returns[:self._size] = self.returns
            self._observations, self._returns = grown_obs, grown_returns

        self._observations[self._size:needed] = observations
        self._returns[self._size:needed] = returns
        self._size = needed


def discounted_returns(rewards: npt.ArrayLike, bootstrap_value: float, discount_factor: float) -> np.ndarray:
    """Returns for every step plus the bootstrap at the end (length L + 1)."""
    rewards = np.asarray(rewards, dtype=np.float64)
    returns = np.empty(len(rewards) + 1)
    returns[-1] = bootstrap_value
    for t in range(len(rewards) - 1, -1, -1):
        returns[t] = rewards[t] + discount_factor * returns[t + 1]
    return returns


@dataclass
class EpisodeResult:
    episode_idx: int
    seed: int
    input_sequence: np.ndarray # (dof_count, episode_len)
    rewards: np.ndarray # (episode_len,)
    returns: np.ndarray # (episode_len + 1,)
    observations: np.ndarray # (episode_len + 1, observation_size)

    @property
    def total_reward(self) -> float:
        return float(self.rewards.sum())


class EpisodeRunner:
    """Plans episodes with MPPI and trains the value estimator on their returns.

    ``main_sim`` is the ground truth: it executes the first planned input of
    every step and is restored to its starting state after each episode.
    """

    def __init__(
        self,
        main_sim: Simulation,
        sim_factory: SimulationFactory,
        objective_fn: Callable[[Simulation], float],
        value_estimator: ValueEstimator,
        input_sampler: InputSampler,
        robot_idx: int = 0,
        seed: int = 0,
        thread_count: int = 0,
        episode_len: int = config.EPISODE_LEN,
        interval: int = config.INTERVAL,
        horizon: int = config.HORIZON,
        discount_factor: float = config.DISCOUNT_FACTOR,
        kappa: float = config.KAPPA,
        sample_count: int = config.SAMPLE_COUNT,
        warmup_updates: int = config.WARMUP_UPDATES,
        log_path: str | Path | None = None,
        verbose: bool = True,
    ):
        self.main_sim = main_sim
        self.sim_factory = sim_factory
        self.objective_fn = objective_fn
        self.value_estimator = value_estimator
        self.input_sampler = input_sampler
        self.robot_idx = robot_idx
        self.seed = seed
        self.thread_count = thread_count
        self.episode_len = episode_len
        self.interval = interval
        self.horizon = horizon
        self.discount_factor = discount_factor
        self.kappa = kappa
        self.sample_count = sample_count
        self.warmup_updates = warmup_updates
        self.log_path = log_path
        self.verbose = verbose

        self.dof_count = main_sim.get_robot_dof_count(robot_idx)
        self.replay_buffer = ReplayBuffer(value_estimator.get_observation_size())
        self.input_sequence = np.zeros((self.dof_count, episode_len))

    def run_episode(self, episode_idx: int) -> EpisodeResult:
        length = self.episode_len
        obs_size = self.value_estimator.get_observation_size()
        input_sequence = np.zeros((self.dof_count, length))
        observations = np.zeros((length + 1, obs_size))
        rewards = np.zeros(length)

        opt_seed = derive_seed(self.seed, "episode", episode_idx)
        optimizer = MPPIOptimizer(
            kappa=self.kappa,
            discount_factor=self.discount_factor,
            dof_count=self.dof_count,
            interval=self.interval,
            horizon=self.horizon,
            sample_count=self.sample_count,
            thread_count=self.thread_count,
            seed=opt_seed,
            sim_factory=self.sim_factory,
            objective_fn=self.objective_fn,
            value_estimator=self.value_estimator,
            input_sampler=self.input_sampler,
            robot_idx=self.robot_idx,
        )
        with optimizer:
            for _ in range(self.warmup_updates):
                optimizer.update()

            # run the main simulation in lockstep with the optimizer's simulations
            self.main_sim.save_state()
            for j in range(length):
                optimizer.update()
                input_sequence[:, j] = optimizer.input_sequence[:, 0]
                optimizer.advance(1)

                observations[j] = self.value_estimator.get_observation(self.main_sim)
                for _ in range(self.interval):
                    self.main_sim.set_joint_target_positions(self.robot_idx, input_sequence[:, j])
                    self.main_sim.step()
                    rewards[j] += self.objective_fn(self.main_sim)
            observations[length] = self.value_estimator.get_observation(self.main_sim)
            self.main_sim.restore_state()

        bootstrap = float(self.value_estimator.estimate_value(observations[length:])[0])
        returns = discounted_returns(rewards, bootstrap, self.discount_factor)

        self.replay_buffer.append(observations[:length], returns[:length])
        self.value_estimator.train(self.replay_buffer.observations, self.replay_buffer.returns)

        self.input_sequence = input_sequence
        return EpisodeResult(episode_idx, opt_seed, input_sequence, rewards, returns, observations)

    def run(self, episode_count: int = config.EPISODE_COUNT) -> list[EpisodeResult]:
        csvfile = None
        if self.log_path is not None:
            # written incrementally so results survive an interrupted run
            csvfile = open(self.log_path, "w", newline="")
            csv_writer = csv.writer(csvfile)
            csv_writer.writerow(["episode", "total_reward"])

        results = []
        try:
            for episode_idx in range(episode_count):
                if self.verbose:
                    print(f"Episode {episode_idx}")
                result = self.run_episode(episode_idx)
                results.append(result)
                if self.verbose:
                    print(f"Total reward: {result.total_reward}")
                if csvfile is not None:
                    csv_writer.writerow([episode_idx, result.total_reward])
                    csvfile.flush()
        finally:
            if csvfile is not None:
                csvfile.close()
        return results
