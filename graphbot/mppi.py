"""Model predictive path integral (MPPI) trajectory optimization.

Each ``update`` perturbs the nominal input sequence ``sample_count`` times,
rolls every candidate out in simulation, and moves the nominal sequence by the
softmax-weighted average perturbation. ``advance`` executes the head of the
plan on the optimizer's own simulations and shifts the window.
"""
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import numpy as np
import numpy.typing as npt

from graphbot.samplers import InputSampler
from graphbot.seeding import make_rng
from graphbot.sim import Simulation
from graphbot.value import ValueEstimator


class SimulationFactory:
    """Creates independent simulations, all in the same initial state."""

    def create(self) -> Simulation:
        raise NotImplementedError


def compute_weights(costs: npt.ArrayLike, kappa: float) -> np.ndarray:
    """Softmax of -cost / kappa, shifted by the minimum cost so it cannot overflow."""
    costs = np.asarray(costs, dtype=np.float64)
    weights = np.exp(-(costs - costs.min()) / kappa)
    # the minimum cost contributes exp(0) = 1, so the sum is at least 1
    return weights / weights.sum()


class MPPIOptimizer:
    def __init__(
        self,
        kappa: float,
        discount_factor: float,
        dof_count: int,
        interval: int,
        horizon: int,
        sample_count: int,
        thread_count: int,
        seed: int,
        sim_factory: SimulationFactory,
        objective_fn: Callable[[Simulation], float],
        value_estimator: ValueEstimator,
        input_sampler: InputSampler,
        robot_idx: int = 0,
    ):
        if sample_count < 1:
            raise ValueError(f"sample_count must be at least 1, got {sample_count}")
        if horizon < 1 or interval < 1:
            raise ValueError(f"horizon and interval must be at least 1, got {horizon} and {interval}")
        if kappa <= 0:
            raise ValueError(f"kappa must be positive, got {kappa}")
        if thread_count < 0:
            raise ValueError(f"thread_count must be 0 (all cores) or more, got {thread_count}")

        self.kappa = kappa
        self.discount_factor = discount_factor
        self.dof_count = dof_count
        self.interval = interval
        self.horizon = horizon
        self.sample_count = sample_count
        self.seed = seed
        self.objective_fn = objective_fn
        self.value_estimator = value_estimator
        self.input_sampler = input_sampler
        self.robot_idx = robot_idx

        if thread_count == 0:
            thread_count = os.cpu_count() or 1
        # one simulation per worker, never more workers than samples
        self.thread_count = min(thread_count, sample_count)
        self.sims = [sim_factory.create() for _ in range(self.thread_count)]
        self._executor = ThreadPoolExecutor(max_workers=self.thread_count) if self.thread_count > 1 else None

        self.input_sequence = np.zeros((dof_count, horizon))
        self.sample_returns = np.zeros(sample_count)
        self.update_count = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _run_on_sims(self, fn: Callable, items: list) -> None:
        """Call fn(sim, item) for each pooled simulation and wait for all of them."""
        if self._executor is None:
            for sim, item in zip(self.sims, items):
                fn(sim, item)
            return
        futures = [self._executor.submit(fn, sim, item) for sim, item in zip(self.sims, items)]
        for future in futures:
            future.result()

    def _rollout(self, sim: Simulation, inputs: np.ndarray) -> float:
        """Discounted reward of one candidate, bootstrapped with the value estimate."""
        sim.save_state()
        try:
            total, discount = 0.0, 1.0
            for j in range(self.horizon):
                step_reward = 0.0
                for _ in range(self.interval):
                    sim.set_joint_target_positions(self.robot_idx, inputs[:, j])
                    sim.step()
                    step_reward += self.objective_fn(sim)
                total += discount * step_reward
                discount *= self.discount_factor
            obs = self.value_estimator.get_observation(sim)
            total += discount * float(self.value_estimator.estimate_value(obs[np.newaxis, :])[0])
        finally:
            sim.restore_state()
        return total

    def update(self) -> np.ndarray:
        """One MPPI iteration on the current window, returns the sample weights."""
        update_idx = self.update_count
        self.update_count += 1

        perturbations = np.empty((self.sample_count, self.dof_count, self.horizon))
        for k in range(self.sample_count):
            rng = make_rng(self.seed, update_idx, k)
            perturbations[k] = self.input_sampler.sample_perturbation(self.input_sequence, rng)
        candidates = self.input_sequence + perturbations

        # results land at their sample index, completion order does not matter
        returns = np.empty(self.sample_count)

        def evaluate(sim, sample_ids):
            for k in sample_ids:
                returns[k] = self._rollout(sim, candidates[k])

        chunks = np.array_split(np.arange(self.sample_count), len(self.sims))
        self._run_on_sims(evaluate, chunks)

        weights = compute_weights(-returns, self.kappa)
        self.input_sequence = self.input_sequence + np.tensordot(weights, perturbations, axes=1)
        self.sample_returns = returns
        return weights

    def advance(self, steps: int = 1) -> None:
        """Execute the first ``steps`` planned inputs and shift the window.

        The freed tail is filled with zeros.
        """
        steps = min(max(int(steps), 0), self.horizon)
        if steps == 0:
            return
        executed = self.input_sequence[:, :steps].copy()

        def execute(sim, _):
            for j in range(steps):
                for _ in range(self.interval):
                    sim.set_joint_target_positions(self.robot_idx, executed[:, j])
                    sim.step()

        self._run_on_sims(execute, [None] * len(self.sims))
        self.input_sequence = np.concatenate(
            [self.input_sequence[:, steps:], np.zeros((self.dof_count, steps))], axis=1
        )
