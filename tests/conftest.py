"""Pytest configuration and shared fixtures for termopt tests.

This module provides:
- Deterministic RNG fixtures for numpy and torch
- A factory for the two-variable quadratic used across evaluation tests
"""

import os

import numpy as np
import pytest
import torch

from termopt.autodiff import TorchTerm
from termopt.function import Function


@pytest.fixture(scope="function")
def rng() -> np.random.Generator:
    """Provide a deterministic numpy RNG for tests.

    Uses seed from TEST_RNG_SEED environment variable (default: 0).
    """
    seed = int(os.environ.get("TEST_RNG_SEED", "0"))
    return np.random.default_rng(seed)


@pytest.fixture(scope="function", autouse=True)
def set_random_seeds() -> None:
    """Seed numpy and torch globally so every test is reproducible."""
    seed = int(os.environ.get("TEST_RNG_SEED", "0"))
    np.random.seed(seed)
    torch.manual_seed(seed)


@pytest.fixture
def quadratic_function():
    """Factory building f = (x1 - 1)^2 + 10 (x1 - x2)^2 over two scalars.

    Returns ``(function, x1, x2)`` where ``x1`` and ``x2`` are the user
    buffers, both initialised to zero.
    """
    created = []

    def factory(number_of_threads: int = 1, **kwargs):
        x1 = np.zeros(1)
        x2 = np.zeros(1)
        function = Function(number_of_threads=number_of_threads, **kwargs)
        h1 = function.add_variable(x1)
        h2 = function.add_variable(x2)
        term = TorchTerm(
            lambda a, b: (a[0] - 1) ** 2 + 10 * (a[0] - b[0]) ** 2, [1, 1]
        )
        function.add_term(term, [h1, h2])
        created.append(function)
        return function, x1, x2

    yield factory
    for function in created:
        function.close()
