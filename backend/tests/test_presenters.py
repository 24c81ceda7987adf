"""Tests for display metadata of the closed vocabularies."""

from datetime import datetime, timezone

import pytest

from scenarioflow.api.presenters import COLORS, LABELS, UNKNOWN, display, iso
from scenarioflow.core.enums import RunStatus, StepStatus


class TestPresenters:
    @pytest.mark.parametrize("enum_cls", list(LABELS))
    def test_every_member_has_a_label(self, enum_cls):
        assert set(LABELS[enum_cls]) == set(enum_cls)
        assert all(label.strip() for label in LABELS[enum_cls].values())

    @pytest.mark.parametrize("enum_cls", list(COLORS))
    def test_every_member_has_a_color(self, enum_cls):
        assert set(COLORS[enum_cls]) == set(enum_cls)

    def test_display_known_value(self):
        assert display(RunStatus, "awaiting_approval") == {
            "label": "Awaiting Approval", "color": "purple",
        }
        assert display(StepStatus, StepStatus.SKIPPED) == {"label": "Skipped", "color": "slate"}

    def test_display_unknown_value_falls_back(self):
        assert display(RunStatus, "exploded") == UNKNOWN

    def test_iso_treats_naive_as_utc(self):
        assert iso(datetime(2026, 3, 2, 9, 0)) == "2026-03-02T09:00:00+00:00"
        assert iso(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)) == "2026-03-02T09:00:00+00:00"
        assert iso(None) is None
