# pingstats/brain/rules.py
from pingstats.schemas import EchoResult

GRID_LADDER_MS = ((300.0, 100.0), (150.0, 50.0), (75.0, 25.0), (30.0, 10.0))
RESCALE_THRESHOLD = 0.2


def ewma_weight(weight_constant: float, count: int) -> float:
    """
    Adaptive EWMA weight: 1 for the first sample (no smoothing), shrinking as
    1/count until it settles at 1/weight_constant.
    """
    if count < 1:
        return 1.0
    return max(1.0 / weight_constant, 1.0 / count)


def ewma(previous: float, value: float, weight: float) -> float:
    return (1.0 - weight) * previous + weight * value


def clean_reply(result: EchoResult) -> bool:
    return result.error is None and result.status == "success"


def hop_expired(result: EchoResult) -> bool:
    return result.error is None and result.status == "ttl_exceeded"


def grid_spacing(visible_ms: float) -> float:
    for at_least, grid in GRID_LADDER_MS:
        if visible_ms >= at_least:
            return grid
    return 5.0


def needs_rescale(optimal_pixel_per_ms: float, current_pixel_per_ms: float) -> bool:
    """Only rescale once the ideal scale drifted more than 20%; keeps the plot still."""
    diff = abs(optimal_pixel_per_ms - current_pixel_per_ms)
    return diff / optimal_pixel_per_ms > RESCALE_THRESHOLD


def display_scale(mean_ms: float, jitter_ms: float, height_px: float) -> tuple[float, float, float]:
    """
    (pixel_per_ms, optimal_pixel_per_ms, grid_ms) for a plot `height_px` tall
    that should fit twice the mean plus the jitter.
    """
    span = mean_ms * 2.0 + jitter_ms
    optimal = height_px / span if span > 0 else height_px / 5.0
    if optimal >= height_px / 5.0:
        return height_px / 5.0, optimal, 1.0
    pixel_per_ms = min(height_px / 20.0, optimal)
    return pixel_per_ms, optimal, grid_spacing(height_px / pixel_per_ms)


def precision(x: float, a: int = 0, b: int = 1, c: int = 2) -> int:
    # digits after the point for a value shown in a 4-wide column
    return 0 if x >= 1000 else a if x >= 100 else b if x >= 10 else c
