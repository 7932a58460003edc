"""Reproducibility utilities for deterministic explanations."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Blum Blum Shub primes, both congruent to 3 mod 4.
_BBS_P = 26017
_BBS_Q = 98893


@dataclass(frozen=True)
class PerturbationContext:
    """Deterministic source of randomness for sampling and perturbation.

    The context only stores the seed. Every consumer asks for a fresh
    generator, so two computations built from equal contexts observe the
    same random stream no matter what ran in between.

    Attributes:
        seed: Seed for ``numpy.random.default_rng``.
        no_of_perturbations: How many features a perturbation touches.
        noise_scale: Relative scale of numeric perturbations.
    """

    seed: int = 0
    no_of_perturbations: int = 1
    noise_scale: float = 0.1

    def generator(self) -> np.random.Generator:
        """Return a new generator positioned at the start of the stream."""
        return np.random.default_rng(self.seed)

    def child(self, offset: int) -> PerturbationContext:
        """Derive a context with a deterministic child seed."""
        return PerturbationContext(
            seed=child_seed(self.seed, offset),
            no_of_perturbations=self.no_of_perturbations,
            noise_scale=self.noise_scale,
        )


def child_seed(parent_seed: int | None, offset: int) -> int | None:
    """Derive a deterministic child seed from a parent seed."""
    if parent_seed is None:
        return None
    return int(parent_seed) + int(offset)


def blum_blum_shub(rows: int, cols: int, seed: int | str) -> np.ndarray:
    """Generate a deterministic matrix with the Blum Blum Shub generator.

    Each entry squares the running state modulo ``p * q`` and is scaled by
    ``1e-9``. The arithmetic uses Python integers, so the stream is identical
    on every platform and matches other implementations of the same
    construction.

    Args:
        rows: Number of rows.
        cols: Number of columns.
        seed: Initial state.

    Returns:
        Array of shape ``(rows, cols)``.
    """
    modulus = _BBS_P * _BBS_Q
    state = int(seed)
    out = np.empty((rows, cols), dtype=np.float64)
    for i in range(rows):
        for j in range(cols):
            state = pow(state, 2, modulus)
            out[i, j] = state / 1e9
    return out
