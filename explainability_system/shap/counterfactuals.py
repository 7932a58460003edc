"""
Collection of counterfactual byproducts.

While coalitions are evaluated, every synthetic input whose primary output
differs from the explained prediction is a counterfactual for free. The
tracker keeps them and hands them back in a stable order.
"""

from __future__ import annotations

import math
import numbers

from explainability_system.core.data_types import (
    CounterfactualByproduct,
    Output,
    PredictionInput,
    PredictionOutput,
)


def outputs_differ(reference: Output, candidate: Output, tolerance: float = 1e-9) -> bool:
    """Whether ``candidate`` differs from ``reference``.

    Numeric values differ when they are more than ``tolerance`` apart (two
    NaNs are equal). Any other values are compared for equality.
    """
    a, b = reference.as_number(), candidate.as_number()
    if _is_numeric(reference.value) and _is_numeric(candidate.value):
        if math.isnan(a) or math.isnan(b):
            return math.isnan(a) != math.isnan(b)
        return abs(a - b) > tolerance
    return reference.value != candidate.value


def _is_numeric(value: object) -> bool:
    return isinstance(value, numbers.Number)


class CounterfactualTracker:
    """Accumulates counterfactual byproducts of one explanation.

    Only the explanation's own pipeline thread feeds a tracker; it is never
    shared between calls.
    """

    def __init__(self, reference: PredictionOutput, tolerance: float = 1e-9) -> None:
        if len(reference) == 0:
            raise ValueError("reference prediction has no outputs")
        self.reference = reference
        self.tolerance = tolerance
        self._found: list[CounterfactualByproduct] = []
        self.observed = 0

    def observe(
        self,
        coalition_index: int,
        background_index: int,
        prediction_input: PredictionInput,
        prediction_output: PredictionOutput,
    ) -> bool:
        """Record a synthetic evaluation; returns whether it was kept."""
        self.observed += 1
        if len(prediction_output) == 0:
            return False
        if not outputs_differ(self.reference[0], prediction_output[0], self.tolerance):
            return False
        self._found.append(
            CounterfactualByproduct(
                input=prediction_input,
                output=prediction_output,
                coalition_index=coalition_index,
                background_index=background_index,
            )
        )
        return True

    def __len__(self) -> int:
        return len(self._found)

    def results(self) -> tuple[CounterfactualByproduct, ...]:
        """Byproducts ordered by coalition, then background row."""
        return tuple(sorted(self._found, key=lambda cf: (cf.coalition_index, cf.background_index)))
