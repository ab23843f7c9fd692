"""
Tide Curve Synthesis

Rebuilds a continuous sea-level curve for one day from a sparse list of
high/low tide events.

Between two known extrema the height follows a half-cycle raised cosine:

    h(t) = (h1 + h2)/2 + (h1 - h2)/2 * cos(pi * (t - t1) / (t2 - t1))

which passes exactly through both events and has zero slope at each of them,
giving the smooth S-shaped rise and fall of a semidiurnal tide.

Before the first and after the last event of the day there is no real
neighbour, so a virtual one is placed half a semidiurnal period away with a
heuristic height (boundary +/- 2.5 m). This keeps the curve continuous up to
midnight without needing data from the adjacent days. The 2.5 m figure is an
approximation with no accuracy guarantee.
"""
import math
from typing import List, Sequence, Tuple

import numpy as np

from .errors import DegenerateIntervalError
from .models import CurrentState, CurvePoint, TideEvent, TideType

# Half of the 12.42 h semidiurnal period
SEMIDIURNAL_HALF_PERIOD_HOURS = 6.21

# Height difference assumed between a boundary event and its virtual neighbour
VIRTUAL_TIDE_AMPLITUDE_M = 2.5

# 15 minute curve resolution
CURVE_STEP_HOURS = 0.25

# Forward offset used for the rising/falling check (one minute)
SLOPE_PROBE_HOURS = 1.0 / 60.0

COEFFICIENT_MIN = 20
COEFFICIENT_MAX = 120
# Tidal range (m) that maps to a coefficient of 100
COEFFICIENT_REFERENCE_RANGE_M = 4.0


def _sorted_events(events: Sequence[TideEvent]) -> List[TideEvent]:
    """Sort events by time, rejecting pairs that share a time."""
    ordered = sorted(events, key=lambda e: e.time)
    for previous, current in zip(ordered, ordered[1:]):
        if current.time == previous.time:
            raise DegenerateIntervalError(
                f"Two tide events share the time {current.clock}"
            )
    return ordered


def _virtual_height(boundary: TideEvent, amplitude: float) -> float:
    # After a high comes a low, after a low comes a high
    if boundary.type == TideType.HIGH:
        return max(0.0, boundary.height - amplitude)
    return boundary.height + amplitude


def _bounding_segment(
    time_decimal: float,
    ordered: List[TideEvent],
    half_period: float,
    amplitude: float,
) -> Tuple[float, float, float, float]:
    """Return (t1, h1, t2, h2) of the segment containing time_decimal."""
    first, last = ordered[0], ordered[-1]

    if time_decimal <= first.time:
        return (
            first.time - half_period, _virtual_height(first, amplitude),
            first.time, first.height,
        )

    if time_decimal >= last.time:
        return (
            last.time, last.height,
            last.time + half_period, _virtual_height(last, amplitude),
        )

    for start, end in zip(ordered, ordered[1:]):
        if start.time <= time_decimal <= end.time:
            return start.time, start.height, end.time, end.height

    # Unreachable for sorted input bounded by first/last above
    raise ValueError(f"No tide segment contains {time_decimal}")


def _cosine_interpolate(t: float, t1: float, h1: float, t2: float, h2: float) -> float:
    duration = t2 - t1
    if duration == 0:
        raise DegenerateIntervalError(f"Zero-length tide interval at {t1}")
    if t == t1:
        return h1
    if t == t2:
        return h2
    angle = math.pi * (t - t1) / duration
    return (h1 + h2) / 2 + (h1 - h2) / 2 * math.cos(angle)


def height_at(
    time_decimal: float,
    events: Sequence[TideEvent],
    half_period: float = SEMIDIURNAL_HALF_PERIOD_HOURS,
    amplitude: float = VIRTUAL_TIDE_AMPLITUDE_M,
) -> float:
    """
    Estimate the tide height at a decimal hour of the day.

    Args:
        time_decimal: Hour of the day (0-24, values outside are extrapolated)
        events: Tide events for the day, in any order
        half_period: Offset of the virtual events past the day's boundaries
        amplitude: Height difference of the virtual events

    Returns:
        Height in meters

    Raises:
        ValueError: If events is empty
        DegenerateIntervalError: If two events share a time
    """
    if not events:
        raise ValueError("At least one tide event is required")

    ordered = _sorted_events(events)
    t1, h1, t2, h2 = _bounding_segment(time_decimal, ordered, half_period, amplitude)
    return _cosine_interpolate(time_decimal, t1, h1, t2, h2)


def sample_curve(
    events: Sequence[TideEvent],
    step_hours: float = CURVE_STEP_HOURS,
) -> List[CurvePoint]:
    """
    Sample the day's curve over [0, 24] inclusive at a fixed step.

    Fewer than 2 events cannot bound a segment, so an empty list is returned.
    """
    if len(events) < 2:
        return []
    if step_hours <= 0:
        raise ValueError("step_hours must be positive")

    ordered = _sorted_events(events)
    num_points = int(round(24.0 / step_hours)) + 1
    times = np.linspace(0.0, 24.0, num_points)

    return [
        CurvePoint(time=round(float(t), 4), height=round(height_at(float(t), ordered), 2))
        for t in times
    ]


def estimate_now(
    events: Sequence[TideEvent],
    now_decimal: float,
    probe_hours: float = SLOPE_PROBE_HOURS,
) -> CurrentState:
    """
    Current height and direction of the tide.

    The direction comes from a forward finite difference using the same
    interpolation as the height, so both always agree with the drawn curve.
    """
    ordered = _sorted_events(events)
    height_now = height_at(now_decimal, ordered)
    height_next = height_at(now_decimal + probe_hours, ordered)
    return CurrentState(height=round(height_now, 2), is_rising=height_next > height_now)


def tidal_coefficient(events: Sequence[TideEvent]) -> int:
    """
    Tidal coefficient (20-120) derived from the day's height range.

    A 4 m range maps to 100; results are clamped to the conventional scale.
    """
    if not events:
        raise ValueError("At least one tide event is required")

    heights = [event.height for event in events]
    tidal_range = max(heights) - min(heights)
    raw = math.floor(tidal_range / COEFFICIENT_REFERENCE_RANGE_M * 100 + 0.5)
    return int(min(COEFFICIENT_MAX, max(COEFFICIENT_MIN, raw)))
