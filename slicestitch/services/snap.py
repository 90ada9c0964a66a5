"""
Zoom assist for stitch items.

While a user zooms an item, scales close to "cover" (1.0) or "contain" are
pulled onto those exact values. The decision itself is pure; the feedback
pulse (a haptic tick in a client) is an injected callable, debounced here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from slicestitch.models.compose import StitchItem
from slicestitch.services.projection import contain_scale


logger = logging.getLogger(__name__)

MIN_SCALE = 0.01
MAX_SCALE = 5.0
COVER_SCALE = 1.0
SNAP_THRESHOLD = 0.05
# Scale changes smaller than this count as "no change".
SCALE_EPSILON = 1e-4
PULSE_DEBOUNCE_SECONDS = 0.150


@dataclass(slots=True, frozen=True)
class SnapDecision:
    scale: float
    # "cover", "contain" or None.
    target: Optional[str]
    did_snap: bool
    # True when the new scale differs from the previous one.
    changed: bool


def decide_snap(current_scale: float, delta: float, image_aspect: float, slot_aspect: float) -> SnapDecision:
    """
    Apply `delta` to `current_scale`, clamp it, and snap onto cover/contain.

    Cover wins when both are within the threshold and cover is at least as
    close.
    """
    new_scale = min(max(MIN_SCALE, current_scale + delta), MAX_SCALE)
    contain = contain_scale(image_aspect, slot_aspect)

    dist_cover = abs(new_scale - COVER_SCALE)
    dist_contain = abs(new_scale - contain)
    target = None
    if dist_cover < SNAP_THRESHOLD and dist_cover <= dist_contain:
        new_scale, target = COVER_SCALE, "cover"
    elif dist_contain < SNAP_THRESHOLD:
        new_scale, target = contain, "contain"

    return SnapDecision(
        scale=new_scale,
        target=target,
        did_snap=target is not None,
        changed=abs(current_scale - new_scale) >= SCALE_EPSILON,
    )


def snap_state(item: StitchItem, image_aspect: float) -> Optional[str]:
    """Which fit an item currently rests on ("cover"/"contain"), if centered."""
    if item.x != 0 or item.y != 0:
        return None
    if abs(item.scale - COVER_SCALE) < SNAP_THRESHOLD:
        return "cover"
    if abs(item.scale - contain_scale(image_aspect, item.slot_aspect(image_aspect))) < SNAP_THRESHOLD:
        return "contain"
    return None


class SnapAssist:
    """
    Stateful zoom controller for one editing session.

    `feedback` is called once per snap that changes the scale, at most every
    150 ms, so holding a gesture on a snap point does not repeat it.
    """

    def __init__(
        self,
        feedback: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._feedback = feedback
        self._clock = clock
        self._last_pulse: float | None = None

    def apply_zoom(self, item: StitchItem, delta: float, image_aspect: float) -> StitchItem:
        """Return `item` zoomed by `delta`; a snapped item is re-centered."""
        if item.locked:
            return item
        decision = decide_snap(item.scale, delta, image_aspect, item.slot_aspect(image_aspect))
        if decision.did_snap and decision.changed:
            self._pulse()
        if decision.did_snap:
            return replace(item, scale=decision.scale, x=0.0, y=0.0)
        return replace(item, scale=decision.scale)

    def _pulse(self) -> None:
        now = self._clock()
        if self._last_pulse is not None and now - self._last_pulse <= PULSE_DEBOUNCE_SECONDS:
            return
        self._last_pulse = now
        if self._feedback is not None:
            self._feedback()
