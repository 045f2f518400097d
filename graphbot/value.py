import numpy as np
import numpy.typing as npt
import torch
import torch.nn as nn

from graphbot import config
from graphbot.sim import Simulation


class ValueEstimator:
    """Maps observations to value estimates, trainable from observed returns.

    Observations are rows: ``estimate_value`` takes an array of shape
    (batch, observation size) and returns one value per row.
    """

    def get_observation_size(self) -> int:
        raise NotImplementedError

    def get_observation(self, sim: Simulation) -> np.ndarray:
        raise NotImplementedError

    def estimate_value(self, observations: npt.ArrayLike) -> np.ndarray:
        raise NotImplementedError

    def train(self, observations: npt.ArrayLike, returns: npt.ArrayLike) -> None:
        raise NotImplementedError


class NullValueEstimator(ValueEstimator):
    """No bootstrapping: empty observations, value 0."""

    def get_observation_size(self) -> int:
        return 0

    def get_observation(self, sim: Simulation) -> np.ndarray:
        return np.zeros(0)

    def estimate_value(self, observations: npt.ArrayLike) -> np.ndarray:
        return np.zeros(len(np.atleast_2d(observations)))

    def train(self, observations: npt.ArrayLike, returns: npt.ArrayLike) -> None:
        pass


class ValueNet(nn.Module):
    def __init__(self, input_size, first_hidden_size=config.FIRST_HIDDEN_SIZE,
                 second_hidden_size=config.SECOND_HIDDEN_SIZE):
        super().__init__()

        self.net = nn.Sequential(
            nn.Linear(input_size, first_hidden_size),
            nn.Tanh(),
            nn.Linear(first_hidden_size, second_hidden_size),
            nn.Tanh(),
            nn.Linear(second_hidden_size, 1),
        )

    def forward(self, x):
        if x.dim() == 1:
            x = x.unsqueeze(0)
        return self.net(x).squeeze(-1)


class FCValueEstimator(ValueEstimator):
    """Fully connected value network.

    The observation is the base link velocity followed by the joint positions
    and joint velocities of one robot. Training runs a few epochs of Adam on
    the mean squared error against the returns, with shuffling seeded so two
    runs with the same seed train the same network.
    """

    def __init__(self, sim: Simulation, robot_idx: int = 0, seed: int = 0,
                 learning_rate: float = config.LEARNING_RATE,
                 batch_size: int = config.BATCH_SIZE,
                 epochs: int = config.TRAIN_EPOCHS):
        self.robot_idx = robot_idx
        self.dof_count = sim.get_robot_dof_count(robot_idx)
        self.batch_size = batch_size
        self.epochs = epochs

        self.generator = torch.Generator().manual_seed(seed)
        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(seed)
            self.net = ValueNet(self.get_observation_size()).double()
        self.optimizer = torch.optim.Adam(self.net.parameters(), lr=learning_rate)
        self.loss_fn = nn.MSELoss()

    def get_observation_size(self) -> int:
        return 6 + 2 * self.dof_count

    def get_observation(self, sim: Simulation) -> np.ndarray:
        return np.concatenate([
            sim.get_link_velocity(self.robot_idx, 0),
            sim.get_joint_positions(self.robot_idx),
            sim.get_joint_velocities(self.robot_idx),
        ])

    def estimate_value(self, observations: npt.ArrayLike) -> np.ndarray:
        obs = torch.as_tensor(np.asarray(observations, dtype=np.float64))
        with torch.no_grad():
            return self.net(obs).numpy().reshape(-1)

    def train(self, observations: npt.ArrayLike, returns: npt.ArrayLike) -> None:
        obs = torch.as_tensor(np.asarray(observations, dtype=np.float64))
        targets = torch.as_tensor(np.asarray(returns, dtype=np.float64))
        if len(obs) == 0:
            return

        self.net.train()
        for _ in range(self.epochs):
            order = torch.randperm(len(obs), generator=self.generator)
            for start in range(0, len(obs), self.batch_size):
                batch = order[start:start + self.batch_size]
                self.optimizer.zero_grad()
                loss = self.loss_fn(self.net(obs[batch]), targets[batch])
                loss.backward()
                self.optimizer.step()
        self.net.eval()

    def loss(self, observations: npt.ArrayLike, returns: npt.ArrayLike) -> float:
        predictions = self.estimate_value(observations)
        return float(np.mean((predictions - np.asarray(returns, dtype=np.float64)) ** 2))
