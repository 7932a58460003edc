"""
Coalition sampling and Shapley kernel weighting.

A coalition is a boolean mask over the varying feature columns: True keeps
the explained instance's value, False substitutes the background value. The
full and the empty coalition carry the efficiency constraint rather than
information, so they are never produced.

Small coalition spaces are enumerated exhaustively. Larger ones are covered
size by size, pairing each size k with its complement size M - k and
starting from the sizes with the largest kernel mass (1 and M - 1). Sizes
whose layer fits the remaining budget are enumerated completely; the rest of
the budget is drawn at random and the drawn coalitions share the kernel mass
that enumeration did not cover.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from itertools import combinations

import numpy as np

from explainability_system.monitoring.logger import TRACE

logger = logging.getLogger(__name__)

# Largest combination count drawn through an integer index
_MAX_INDEXABLE = 2 ** 62


@dataclass(frozen=True)
class CoalitionSample:
    """Coalitions with their kernel weights.

    Attributes:
        masks: Boolean array of shape ``(n, M)``.
        weights: Kernel weight of each coalition, shape ``(n,)``.
        exhaustive: Whether every non-trivial coalition is present.
        n_features: Number of varying feature columns M.
    """

    masks: np.ndarray
    weights: np.ndarray
    exhaustive: bool
    n_features: int

    def __len__(self) -> int:
        return int(self.masks.shape[0])

    @property
    def space_size(self) -> int:
        """Number of non-trivial coalitions, ``2^M - 2``."""
        return max(2 ** self.n_features - 2, 0)

    @property
    def sampled_fraction(self) -> float:
        """Share of the coalition space covered by this sample."""
        if self.space_size == 0:
            return 1.0
        return len(self) / self.space_size

    def design_matrix(self) -> np.ndarray:
        """Masks as a float 0/1 matrix."""
        return self.masks.astype(np.float64)


def kernel_weight(n_features: int, size: int) -> float:
    """Shapley kernel weight of a coalition of ``size`` present features."""
    if size <= 0 or size >= n_features:
        return math.inf
    return (n_features - 1) / (math.comb(n_features, size) * size * (n_features - size))


def unrank_combination(n: int, k: int, index: int) -> tuple[int, ...]:
    """Return the ``index``-th k-combination of ``range(n)`` in lexicographic order.

    Raises:
        ValueError: If ``index`` is outside ``[0, C(n, k))``.
    """
    total = math.comb(n, k)
    if not 0 <= index < total:
        raise ValueError(f"index {index} outside [0, {total})")
    combo = []
    element = 0
    for position in range(k):
        remaining = k - position - 1
        while True:
            count = math.comb(n - element - 1, remaining)
            if index < count:
                combo.append(element)
                element += 1
                break
            index -= count
            element += 1
    return tuple(combo)


def enumerate_coalitions(n_features: int) -> CoalitionSample:
    """Enumerate every non-trivial coalition, smallest sizes first."""
    masks = []
    weights = []
    for size in range(1, n_features):
        weight = kernel_weight(n_features, size)
        for combo in combinations(range(n_features), size):
            mask = np.zeros(n_features, dtype=bool)
            mask[list(combo)] = True
            masks.append(mask)
            weights.append(weight)
    return CoalitionSample(
        masks=np.array(masks, dtype=bool).reshape(len(masks), n_features),
        weights=np.array(weights, dtype=np.float64),
        exhaustive=True,
        n_features=n_features,
    )


def sample_coalitions(
    n_features: int,
    n_samples: int,
    rng: np.random.Generator,
    exhaustive_limit: int = 65536,
) -> CoalitionSample:
    """Produce coalitions over ``n_features`` varying columns.

    Args:
        n_features: Number of varying columns M (at least 2).
        n_samples: Coalition budget.
        rng: Random generator; only consumed when sampling is needed.
        exhaustive_limit: Largest space enumerated in full.

    Returns:
        CoalitionSample with at most ``n_samples`` coalitions, unless the
        space is enumerated exhaustively.
    """
    if n_features < 2:
        raise ValueError("at least two varying features are needed to form coalitions")

    space = 2 ** n_features - 2
    if space <= n_samples and space <= exhaustive_limit:
        logger.debug(f"Enumerating all {space} coalitions of {n_features} features")
        return enumerate_coalitions(n_features)

    num_sizes = math.ceil((n_features - 1) / 2)
    num_paired = (n_features - 1) // 2
    size_mass = np.array(
        [(n_features - 1) / (k * (n_features - k)) for k in range(1, num_sizes + 1)],
        dtype=np.float64,
    )
    size_mass[:num_paired] *= 2
    size_mass /= size_mass.sum()

    masks: list[np.ndarray] = []
    weights: list[float] = []
    index_of: dict[bytes, int] = {}

    def add(mask: np.ndarray, weight: float) -> None:
        index_of[mask.tobytes()] = len(masks)
        masks.append(mask)
        weights.append(weight)

    # Enumerate whole layers while they fit the remaining budget
    samples_left = n_samples
    num_full = 0
    remaining_mass = size_mass.copy()
    for k_idx in range(num_sizes):
        size = k_idx + 1
        layer = math.comb(n_features, size)
        paired = size <= num_paired
        n_subsets = layer * 2 if paired else layer
        if n_subsets > samples_left or samples_left * remaining_mass[k_idx] / n_subsets < 1 - 1e-8:
            break
        num_full += 1
        samples_left -= n_subsets
        if remaining_mass[k_idx] < 1:
            remaining_mass /= 1 - remaining_mass[k_idx]
        weight = size_mass[k_idx] / n_subsets
        for combo in combinations(range(n_features), size):
            mask = np.zeros(n_features, dtype=bool)
            mask[list(combo)] = True
            add(mask, weight)
            if paired:
                add(~mask, weight)

    n_fixed = len(masks)
    logger.log(
        TRACE,
        f"Enumerated {num_full}/{num_sizes} coalition sizes ({n_fixed} coalitions), "
        f"{samples_left} samples left"
    )

    if num_full < num_sizes and samples_left > 0:
        draw_mass = size_mass.copy()
        draw_mass[:num_paired] /= 2
        draw_mass = draw_mass[num_full:]
        draw_mass /= draw_mass.sum()
        size_draws = rng.choice(len(draw_mass), size=4 * samples_left, p=draw_mass)

        for draw in size_draws:
            if samples_left <= 0:
                break
            size = int(draw) + num_full + 1
            mask = np.zeros(n_features, dtype=bool)
            mask[list(_draw_combination(n_features, size, rng))] = True
            key = mask.tobytes()
            new_sample = key not in index_of
            if new_sample:
                add(mask, 1.0)
                samples_left -= 1
            else:
                weights[index_of[key]] += 1.0

            if samples_left > 0 and size <= num_paired:
                complement = ~mask
                if new_sample:
                    add(complement, 1.0)
                    samples_left -= 1
                else:
                    weights[index_of[complement.tobytes()]] += 1.0

        # Drawn coalitions share the kernel mass of the layers not enumerated
        drawn = np.array(weights[n_fixed:], dtype=np.float64)
        if drawn.size:
            weight_left = float(size_mass[num_full:].sum())
            weights[n_fixed:] = list(drawn * (weight_left / drawn.sum()))

    exhaustive = num_full == num_sizes
    return CoalitionSample(
        masks=np.array(masks, dtype=bool).reshape(len(masks), n_features),
        weights=np.array(weights, dtype=np.float64),
        exhaustive=exhaustive,
        n_features=n_features,
    )


def _draw_combination(n: int, k: int, rng: np.random.Generator) -> tuple[int, ...]:
    total = math.comb(n, k)
    if total <= _MAX_INDEXABLE:
        return unrank_combination(n, k, int(rng.integers(0, total)))
    return tuple(sorted(int(i) for i in rng.choice(n, size=k, replace=False)))
