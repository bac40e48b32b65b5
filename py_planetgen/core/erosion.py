"""
Implicit stream-power erosion.

Each iteration sweeps the drainage forest from the river mouths upstream, so
a cell is always updated after its receiver:

    H_new = (H + dt * (U + K * sqrt(A) * H_r / L)) / (1 + K * sqrt(A) * dt / L)

followed by a thermal slope cap ``H_new <= H_r + L * tan(max_slope)``.
"""

import math
from dataclasses import dataclass
from typing import Callable

import numpy as np
import structlog

from .hydrology import NO_RECEIVER, DrainageGraph

logger = structlog.get_logger()

MIN_UPLIFT = 0.01
MIN_EDGE_LENGTH = 0.001


@dataclass
class ErosionOptions:
    """Erosion solver parameters."""
    erosion_rate: float = 4.5  # K
    time_step: float = 0.2  # dt
    convergence_threshold: float = 20.0  # max |dH| that counts as converged
    max_iterations: int = 20
    max_slope_angle: float = 30.0  # degrees

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_slope = math.tan(math.radians(self.max_slope_angle))

    @classmethod
    def from_settings(cls, settings) -> "ErosionOptions":
        return cls(
            erosion_rate=settings.erosion_rate,
            time_step=settings.erosion_time_step,
            convergence_threshold=settings.erosion_convergence_threshold,
            max_iterations=settings.max_erosion_iterations,
            max_slope_angle=settings.max_erosion_slope_angle,
        )


@dataclass
class ErosionReport:
    """Outcome of one solver iteration."""
    iteration: int
    max_change: float
    total_change: float
    processed: int
    converged: bool
    hit_iteration_cap: bool


class ErosionSolver:
    """Runs erosion iterations and tracks convergence across them."""

    def __init__(self, options: ErosionOptions, distance: Callable[[int, int], float]):
        """
        Args:
            options: Solver parameters
            distance: Edge length between a cell and its receiver
        """
        self.options = options
        self.distance = distance
        self.iteration = 0

    def reset(self) -> None:
        self.iteration = 0

    def step(self, drainage: DrainageGraph, heights: np.ndarray, uplift: np.ndarray) -> ErosionReport:
        """
        Run one erosion iteration, updating ``heights`` in place.

        Args:
            drainage: Drainage graph from the current hydrology pass
            heights: Height per cell
            uplift: Uplift per cell

        Returns:
            ErosionReport for this iteration
        """
        opts = self.options
        K = opts.erosion_rate
        dt = opts.time_step
        receivers = drainage.receivers
        mouths = drainage.river_mouths
        areas = drainage.drainage_area

        max_change = 0.0
        total_change = 0.0
        processed = 0

        for cell in drainage.downstream_order():
            if mouths[cell]:
                continue
            receiver = int(receivers[cell])
            if receiver == NO_RECEIVER:
                continue

            length = float(self.distance(cell, receiver))
            if length < MIN_EDGE_LENGTH:
                continue

            old = float(heights[cell])
            receiver_height = float(heights[receiver])
            u = max(float(uplift[cell]), MIN_UPLIFT)
            term = K * math.sqrt(float(areas[cell])) / length

            new = (old + dt * (u + term * receiver_height)) / (1.0 + term * dt)

            cap = receiver_height + length * opts.max_slope
            if new > cap:
                new = cap

            heights[cell] = new
            change = abs(new - old)
            max_change = max(max_change, change)
            total_change += change
            processed += 1

        self.iteration += 1
        hit_cap = self.iteration >= opts.max_iterations
        converged = bool(max_change < opts.convergence_threshold or hit_cap)

        logger.info(
            "Erosion iteration",
            iteration=self.iteration,
            max_change=round(float(max_change), 4),
            total_change=round(float(total_change), 2),
            processed=processed,
            converged=converged,
        )

        return ErosionReport(
            iteration=self.iteration,
            max_change=float(max_change),
            total_change=float(total_change),
            processed=processed,
            converged=converged,
            hit_iteration_cap=bool(hit_cap and max_change >= opts.convergence_threshold),
        )
