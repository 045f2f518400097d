import numpy as np

from graphbot import config


class InputSampler:
    """Draws perturbations of a nominal input sequence."""

    def sample_perturbation(self, nominal: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError


class DefaultInputSampler(InputSampler):
    """Independent Gaussian noise on every joint target and planning step."""

    def __init__(self, noise_std: float = config.NOISE_STD):
        self.noise_std = noise_std

    def sample_perturbation(self, nominal: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        return rng.normal(0.0, self.noise_std, size=nominal.shape)
