"""
Tests for allocation line parsing and the 100% effort rule.

Covers:
  - empty / non-list payloads
  - per-line field errors keyed by line index
  - fte bounds and percentage → fraction conversion
  - total effort tolerance and the reported total
  - 4 dp apportioning and seeded random partitions of 100%
"""

import random
from decimal import Decimal

import pytest

from hrms.core.exceptions import ValidationError
from hrms.models.funding import GrantItemSource, OrgFundedSource
from hrms.services.funding_allocation_service import (
    AllocationLine,
    apportion_fte,
    parse_allocation_lines,
    validate_total_effort,
)


class TestParseAllocationLines:
    def test_empty_list_rejected(self):
        with pytest.raises(ValidationError, match="At least one allocation"):
            parse_allocation_lines([])

    def test_none_rejected(self):
        with pytest.raises(ValidationError):
            parse_allocation_lines(None)

    def test_parses_both_source_kinds(self):
        lines = parse_allocation_lines([
            {"allocation_type": "org_funded", "grant_id": 7, "fte": 60},
            {"allocation_type": "grant", "grant_item_id": "3", "fte": "40"},
        ])
        assert lines[0].source == OrgFundedSource(grant_id=7)
        assert lines[0].fte == Decimal("0.6")
        assert lines[1].source == GrantItemSource(grant_item_id=3)
        assert lines[1].fte == Decimal("0.4")

    def test_grant_line_requires_item(self):
        with pytest.raises(ValidationError) as exc:
            parse_allocation_lines([{"allocation_type": "grant", "fte": 100}])
        assert "allocations.0.grant_item_id" in exc.value.details

    def test_org_funded_line_requires_grant(self):
        with pytest.raises(ValidationError) as exc:
            parse_allocation_lines([
                {"allocation_type": "grant", "grant_item_id": 1, "fte": 50},
                {"allocation_type": "org_funded", "grant_item_id": 1, "fte": 50},
            ])
        assert list(exc.value.details) == ["allocations.1.grant_id"]

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            parse_allocation_lines([{"allocation_type": "loan", "grant_id": 1, "fte": 100}])
        assert "allocations.0.allocation_type" in exc.value.details

    @pytest.mark.parametrize("fte", [0, -5, 100.5, "abc", None, "NaN"])
    def test_bad_fte(self, fte):
        with pytest.raises(ValidationError) as exc:
            parse_allocation_lines([{"allocation_type": "org_funded", "grant_id": 1, "fte": fte}])
        assert "allocations.0.fte" in exc.value.details

    def test_fte_below_stored_precision(self):
        with pytest.raises(ValidationError) as exc:
            parse_allocation_lines([{"allocation_type": "org_funded", "grant_id": 1, "fte": 0.001}])
        assert exc.value.details["allocations.0.fte"] == "must be at least 0.01"

    def test_all_errors_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            parse_allocation_lines([
                {"allocation_type": "grant", "fte": 50},
                "not-an-object",
                {"allocation_type": "org_funded", "grant_id": 2, "fte": 0},
            ])
        assert set(exc.value.details) == {
            "allocations.0.grant_item_id", "allocations.1", "allocations.2.fte",
        }


def _lines(*fractions):
    return [
        AllocationLine(index=i, source=OrgFundedSource(grant_id=1), fte=Decimal(f))
        for i, f in enumerate(fractions)
    ]


class TestValidateTotalEffort:
    def test_exactly_one(self):
        validate_total_effort(_lines("0.6", "0.4"))

    def test_thirds_at_stored_precision_rejected(self):
        # 3 × 0.3333 = 0.9999, outside the 1e-6 tolerance
        with pytest.raises(ValidationError, match="Current total: 99.99%"):
            validate_total_effort(_lines("0.3333", "0.3333", "0.3333"))

    def test_thirds_that_sum_to_one(self):
        validate_total_effort(_lines("0.3333", "0.3333", "0.3334"))

    def test_under_allocated_message(self):
        with pytest.raises(ValidationError) as exc:
            validate_total_effort(_lines("0.5", "0.3"))
        assert exc.value.message == (
            "Total effort of all allocations must equal exactly 100%. Current total: 80%"
        )

    def test_over_allocated(self):
        with pytest.raises(ValidationError, match="Current total: 120%"):
            validate_total_effort(_lines("0.6", "0.6"))

    def test_submitted_values_are_checked_before_rounding(self):
        lines = parse_allocation_lines([
            {"allocation_type": "org_funded", "grant_id": 1, "fte": "33.33335"},
            {"allocation_type": "org_funded", "grant_id": 2, "fte": "33.33335"},
            {"allocation_type": "org_funded", "grant_id": 3, "fte": "33.3333"},
        ])
        validate_total_effort(lines)


class TestApportionFte:
    def test_already_at_stored_precision_unchanged(self):
        assert apportion_fte([Decimal("0.6"), Decimal("0.4")]) == [Decimal("0.6"), Decimal("0.4")]

    def test_remainder_goes_to_largest_fractions(self):
        stored = apportion_fte([Decimal("0.3333335"), Decimal("0.3333335"), Decimal("0.333333")])
        assert stored == [Decimal("0.3334"), Decimal("0.3333"), Decimal("0.3333")]
        assert sum(stored) == Decimal("1")

    def test_equal_thirds(self):
        third = Decimal(1) / Decimal(3)
        stored = apportion_fte([third, third, third])
        assert sum(stored) == Decimal("1")
        assert all(s in (Decimal("0.3333"), Decimal("0.3334")) for s in stored)


# Partitions are drawn in units of 0.00001% so most lines carry 5 dp.
_PCT_UNIT = Decimal("0.00001")
_TOTAL_UNITS = 10_000_000


def _random_partition(rng, n):
    pieces = [rng.randint(1_000, 2_000_000) for _ in range(n - 1)]
    pieces.append(_TOTAL_UNITS - sum(pieces))
    return [Decimal(p) * _PCT_UNIT for p in pieces]


def _payload(pcts):
    return [
        {"allocation_type": "org_funded", "grant_id": i + 1, "fte": str(pct)}
        for i, pct in enumerate(pcts)
    ]


class TestTotalEffortPartitions:
    @pytest.mark.parametrize("n", [1, 2, 3, 4, 5])
    def test_partitions_of_100_accepted(self, n):
        rng = random.Random(1000 + n)
        for _ in range(200):
            pcts = _random_partition(rng, n)
            assert sum(pcts) == Decimal("100")
            lines = parse_allocation_lines(_payload(pcts))
            validate_total_effort(lines)

            stored = apportion_fte([line.fte for line in lines])
            assert sum(stored) == Decimal("1")
            assert all(s > 0 for s in stored)
            for line, s in zip(lines, stored):
                assert abs(s - line.fte) < Decimal("0.0001")

    @pytest.mark.parametrize("n", [1, 2, 3, 4, 5])
    def test_partitions_off_100_rejected(self, n):
        rng = random.Random(2000 + n)
        for _ in range(200):
            pcts = _random_partition(rng, n)
            drift = Decimal(rng.choice([-1, 1]) * rng.randint(1_000, 500_000)) * _PCT_UNIT
            target = rng.randrange(n)
            if pcts[target] + drift < Decimal("0.01") or pcts[target] + drift > 100:
                drift = -drift
            pcts[target] += drift
            lines = parse_allocation_lines(_payload(pcts))
            with pytest.raises(ValidationError, match="must equal exactly 100%"):
                validate_total_effort(lines)
