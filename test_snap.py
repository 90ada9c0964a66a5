"""
Tests for the zoom snap assist.
"""

import math

from slicestitch.api.v1.schemas import AspectRatio
from slicestitch.models.compose import StitchItem
from slicestitch.services.snap import MAX_SCALE, MIN_SCALE, SnapAssist, decide_snap, snap_state


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_snaps_to_cover():
    decision = decide_snap(0.9, 0.08, 1.5, 1.0)

    assert decision.scale == 1.0
    assert decision.target == "cover"
    assert decision.did_snap is True
    assert decision.changed is True


def test_snaps_to_contain():
    # 2:1 image in a square slot fits entirely at 0.5.
    decision = decide_snap(0.6, -0.08, 2.0, 1.0)

    assert decision.scale == 0.5
    assert decision.target == "contain"
    assert decision.did_snap is True


def test_no_snap_away_from_targets():
    decision = decide_snap(0.8, 0.0, 2.0, 1.0)

    assert math.isclose(decision.scale, 0.8)
    assert decision.target is None
    assert decision.did_snap is False
    assert decision.changed is False


def test_scale_is_clamped():
    assert decide_snap(4.9, 1.0, 1.0, 1.0).scale == MAX_SCALE
    assert decide_snap(0.02, -1.0, 3.0, 1.0).scale == MIN_SCALE


def test_closer_target_wins_when_both_are_near():
    # Contain is 1 / 1.04 ~= 0.9615 here.
    assert decide_snap(0.98, 0.0, 1.04, 1.0).target == "contain"
    assert decide_snap(0.985, 0.0, 1.04, 1.0).target == "cover"


def test_cover_wins_ties():
    # Image and slot share a shape, so contain == cover == 1.0.
    assert decide_snap(1.02, 0.0, 0.75, 0.75).target == "cover"


def test_snap_is_idempotent_and_pulses_once():
    pulses = []
    assist = SnapAssist(feedback=lambda: pulses.append(1), clock=FakeClock())
    item = StitchItem("a", AspectRatio.SQUARE, scale=0.9, x=10, y=-4)

    snapped = assist.apply_zoom(item, 0.08, 1.5)
    again = assist.apply_zoom(snapped, 0.01, 1.5)

    assert (snapped.scale, snapped.x, snapped.y) == (1.0, 0.0, 0.0)
    assert again.scale == 1.0
    assert len(pulses) == 1
    print("✓ repeated snap does not pulse again")


def test_zero_delta_at_contain_stays_put_past_debounce():
    pulses = []
    clock = FakeClock()
    assist = SnapAssist(feedback=lambda: pulses.append(clock.now), clock=clock)
    # 2:1 image in a square slot rests at contain = 0.5.
    item = assist.apply_zoom(StitchItem("a", AspectRatio.SQUARE, scale=0.6), -0.08, 2.0)
    assert item.scale == 0.5

    for now in (0.1, 0.2, 0.4, 0.6):
        clock.now = now
        item = assist.apply_zoom(item, 0.0, 2.0)
        assert item.scale == 0.5
        assert snap_state(item, 2.0) == "contain"

    assert pulses == [0.0]


def test_zero_delta_at_cover_stays_put_past_debounce():
    pulses = []
    clock = FakeClock()
    assist = SnapAssist(feedback=lambda: pulses.append(clock.now), clock=clock)
    item = StitchItem("a", AspectRatio.SQUARE, scale=1.0)

    for now in (0.0, 0.2, 0.5):
        clock.now = now
        item = assist.apply_zoom(item, 0.0, 1.5)
        assert item.scale == 1.0

    assert pulses == []


def test_pulses_are_debounced():
    pulses = []
    clock = FakeClock()
    assist = SnapAssist(feedback=lambda: pulses.append(clock.now), clock=clock)
    item = StitchItem("a", AspectRatio.SQUARE, scale=0.9)

    assist.apply_zoom(item, 0.08, 1.5)
    clock.now = 0.1
    assist.apply_zoom(item, 0.08, 1.5)
    clock.now = 0.3
    assist.apply_zoom(item, 0.08, 1.5)

    assert pulses == [0.0, 0.3]


def test_unsnapped_zoom_keeps_pan():
    assist = SnapAssist()
    item = StitchItem("a", AspectRatio.SQUARE, scale=1.5, x=10, y=-4)

    zoomed = assist.apply_zoom(item, 0.3, 1.0)

    assert math.isclose(zoomed.scale, 1.8)
    assert (zoomed.x, zoomed.y) == (10, -4)


def test_locked_items_are_never_zoomed():
    pulses = []
    assist = SnapAssist(feedback=lambda: pulses.append(1))
    item = StitchItem("anchor-0", AspectRatio.SQUARE, scale=0.9, locked=True)

    assert assist.apply_zoom(item, 0.08, 1.0) is item
    assert pulses == []


def test_snap_state():
    assert snap_state(StitchItem("a", AspectRatio.SQUARE), 2.0) == "cover"
    assert snap_state(StitchItem("a", AspectRatio.SQUARE, scale=0.5), 2.0) == "contain"
    assert snap_state(StitchItem("a", AspectRatio.SQUARE, scale=0.7), 2.0) is None
    assert snap_state(StitchItem("a", AspectRatio.SQUARE, x=5), 2.0) is None
