"""
Multilateration Solver (N-anchor, 3D).

Solves for the tag position p that best explains the estimated ranges to a
set of anchors, using a Levenberg-Marquardt iteration on the residuals

    squared mode (default):  r_i = |p - a_i|^2 - d_i^2
    range mode:              r_i = |p - a_i|   - d_i

Squared residuals weight distant anchors more heavily than range residuals
do. They are the default because existing deployments were tuned against
them; range mode is available for geometric correctness.

The iteration starts from the unweighted anchor centroid. Exhausting the
iteration budget is not fatal: the best iterate is returned and flagged
LOW_CONFIDENCE.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from atl_core.proto.position_estimate import SolveStatus
from atl_core.metrics import get_metrics

logger = logging.getLogger(__name__)

RESIDUAL_SQUARED = "squared"
RESIDUAL_RANGE = "range"


@dataclass
class MultilaterationConfig:
    """
    Configuration for the multilateration solver.

    Attributes:
        max_iterations: Iteration budget (accepted and rejected steps)
        damping: Initial and minimum Levenberg-Marquardt damping. Tiny values
            make the solver behave like Gauss-Newton near the solution.
        damping_step_factor: Damping multiplier on a rejected step (divisor
            on an accepted one)
        max_damping: Damping at which the solve is considered stalled at a
            minimum
        gradient_difference: Forward finite-difference step for the Jacobian
            (length units). None uses the analytic Jacobian. Must be well
            above the coordinate resolution (ECEF ~1e-9 m).
        step_tolerance: Relative step size below which the solve converged
        cost_tolerance: Relative cost decrease below which the solve converged
        residual_mode: "squared" or "range"
    """

    max_iterations: int = 100000
    damping: float = 1e-25
    damping_step_factor: float = 10.0
    max_damping: float = 1e16
    gradient_difference: Optional[float] = None
    step_tolerance: float = 1e-12
    cost_tolerance: float = 1e-15
    residual_mode: str = RESIDUAL_SQUARED

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1: {self.max_iterations}")
        if self.damping <= 0:
            raise ValueError(f"damping must be positive: {self.damping}")
        if self.damping_step_factor <= 1:
            raise ValueError(f"damping_step_factor must exceed 1: {self.damping_step_factor}")
        if self.gradient_difference is not None and self.gradient_difference <= 0:
            raise ValueError(f"gradient_difference must be positive: {self.gradient_difference}")
        if self.residual_mode not in (RESIDUAL_SQUARED, RESIDUAL_RANGE):
            raise ValueError(f"Unknown residual mode: {self.residual_mode}")


@dataclass
class SolveResult:
    """
    Output of one multilateration solve.

    Attributes:
        position: Solved position, same frame as the anchors (np.ndarray, (3,))
        status: CONVERGED, LOW_CONFIDENCE or DIVERGED
        iterations: Iterations spent
        cost: Final half sum of squared residuals (in the residual mode's units)
        residual_rms: RMS of |p - a_i| - d_i at the solution (length units)
    """

    position: np.ndarray
    status: SolveStatus
    iterations: int
    cost: float
    residual_rms: float

    @property
    def converged(self) -> bool:
        return self.status == SolveStatus.CONVERGED


def centroid(positions: Sequence[Sequence[float]]) -> np.ndarray:
    """Unweighted centroid of a set of 3D positions."""
    return np.mean(np.asarray(positions, dtype=float), axis=0)


class MultilaterationSolver:
    """
    Solve a tag position from anchor positions and estimated ranges.

    Usage:
        solver = MultilaterationSolver(MultilaterationConfig())
        result = solver.solve(anchor_positions, ranges)
        if result.converged:
            print(result.position)
    """

    def __init__(self, config: Optional[MultilaterationConfig] = None):
        """
        Initialize solver.

        Args:
            config: Solver configuration (uses defaults if None)
        """
        self.config = config or MultilaterationConfig()
        self.metrics = get_metrics()

    def solve(
        self,
        anchor_positions: Sequence[Sequence[float]],
        ranges: Sequence[float],
        initial_guess: Optional[Sequence[float]] = None,
    ) -> SolveResult:
        """
        Solve for the most likely position.

        Args:
            anchor_positions: Anchor positions, shape (N, 3)
            ranges: Estimated range to each anchor, length N
            initial_guess: Starting point (defaults to the anchor centroid)

        Returns:
            SolveResult with the best iterate found

        Raises:
            ValueError: On malformed input or fewer than 3 anchors
        """
        anchors = np.asarray(anchor_positions, dtype=float)
        measured = np.asarray(ranges, dtype=float)

        if anchors.ndim != 2 or anchors.shape[1] != 3:
            raise ValueError(f"Anchor positions must have shape (N, 3): {anchors.shape}")
        if measured.shape != (anchors.shape[0],):
            raise ValueError(
                f"Got {measured.size} ranges for {anchors.shape[0]} anchors"
            )
        if anchors.shape[0] < 3:
            raise ValueError(f"Need at least 3 anchors, got {anchors.shape[0]}")

        if initial_guess is None:
            x = centroid(anchors)
        else:
            x = np.array(initial_guess, dtype=float)

        cfg = self.config
        identity = np.eye(3)
        lam = cfg.damping
        residuals = self._residuals(x, anchors, measured)
        cost = 0.5 * float(residuals @ residuals)
        status = SolveStatus.LOW_CONFIDENCE
        iterations = 0

        while iterations < cfg.max_iterations:
            if cost == 0.0:
                status = SolveStatus.CONVERGED
                break

            iterations += 1
            jacobian = self._jacobian(x, anchors, measured, residuals)

            # Damped normal equations: (J^T J + lam I) dx = -J^T r
            jtj = jacobian.T @ jacobian
            jtr = jacobian.T @ residuals
            try:
                step = np.linalg.lstsq(jtj + lam * identity, -jtr, rcond=None)[0]
            except np.linalg.LinAlgError:
                status = SolveStatus.DIVERGED
                break

            candidate = x + step
            candidate_residuals = self._residuals(candidate, anchors, measured)
            candidate_cost = 0.5 * float(candidate_residuals @ candidate_residuals)

            if not (np.all(np.isfinite(candidate)) and np.isfinite(candidate_cost)):
                status = SolveStatus.DIVERGED
                break

            if candidate_cost < cost:
                improvement = cost - candidate_cost
                x, residuals, cost = candidate, candidate_residuals, candidate_cost
                lam = max(lam / cfg.damping_step_factor, cfg.damping)

                small_step = np.linalg.norm(step) <= cfg.step_tolerance * (
                    np.linalg.norm(x) + cfg.step_tolerance
                )
                small_gain = improvement <= cfg.cost_tolerance * (cost + improvement)
                if small_step or small_gain:
                    status = SolveStatus.CONVERGED
                    break
            else:
                lam *= cfg.damping_step_factor
                if lam > cfg.max_damping:
                    # No step reduces the cost: local minimum at machine precision
                    status = SolveStatus.CONVERGED
                    break

        if status == SolveStatus.LOW_CONFIDENCE:
            logger.warning(
                "Multilateration did not converge in %d iterations (cost=%.3g)",
                iterations, cost,
            )
        elif status == SolveStatus.DIVERGED:
            logger.warning("Multilateration diverged after %d iterations", iterations)

        range_errors = np.linalg.norm(x - anchors, axis=1) - measured
        residual_rms = float(np.sqrt(np.mean(range_errors ** 2)))

        self.metrics.record_histogram('solver_iterations', iterations)
        self.metrics.record_histogram('solver_residual_m', residual_rms)

        return SolveResult(
            position=x,
            status=status,
            iterations=iterations,
            cost=cost,
            residual_rms=residual_rms,
        )

    def _residuals(
        self,
        x: np.ndarray,
        anchors: np.ndarray,
        measured: np.ndarray,
    ) -> np.ndarray:
        """Residual vector at x for the configured mode."""
        diff = x - anchors
        if self.config.residual_mode == RESIDUAL_SQUARED:
            return np.sum(diff ** 2, axis=1) - measured ** 2
        return np.linalg.norm(diff, axis=1) - measured

    def _jacobian(
        self,
        x: np.ndarray,
        anchors: np.ndarray,
        measured: np.ndarray,
        residuals: np.ndarray,
    ) -> np.ndarray:
        """Jacobian of the residuals w.r.t. x, shape (N, 3)."""
        h = self.config.gradient_difference
        if h is not None:
            jacobian = np.zeros((anchors.shape[0], 3))
            for k in range(3):
                shifted = x.copy()
                shifted[k] += h
                jacobian[:, k] = (self._residuals(shifted, anchors, measured) - residuals) / h
            return jacobian

        diff = x - anchors
        if self.config.residual_mode == RESIDUAL_SQUARED:
            return 2.0 * diff

        distances = np.linalg.norm(diff, axis=1)
        jacobian = np.zeros_like(diff)
        nonzero = distances > 1e-6
        jacobian[nonzero] = diff[nonzero] / distances[nonzero, None]
        return jacobian
