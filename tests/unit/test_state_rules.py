"""
Unit tests for state usury rules.
"""
import pytest

from dealforge.services.rules.state_rules import (
    STATE_RULES,
    apply_usury_cap,
    check_usury,
    get_disclosure_requirements,
    get_state_rule,
)


class TestStateTable:
    """Tests for the jurisdiction table."""

    def test_all_jurisdictions_present(self):
        """Test fifty states plus DC."""
        assert len(STATE_RULES) == 51

    def test_lookup_normalizes(self):
        """Test lookups ignore case and whitespace."""
        assert get_state_rule(" tx ").abbreviation == "TX"
        assert get_state_rule("ZZ") is None
        assert get_state_rule(None) is None


class TestCheckUsury:
    """Tests for check_usury."""

    def test_within_limit(self):
        """Test a rate under the civil cap."""
        result = check_usury("TX", 0.10, 500_000, is_commercial=True)

        assert result.violates is False
        assert result.limit == 0.28

    def test_consumer_over_limit(self):
        """Test a non-commercial loan above the cap violates."""
        result = check_usury("PA", 0.0775, 500_000, is_commercial=False)

        assert result.violates is True
        assert result.limit == 0.06

    def test_commercial_exemption(self):
        """Test commercial loans above the threshold are exempt."""
        result = check_usury("PA", 0.30, 500_000, is_commercial=True)

        assert result.violates is False
        assert result.limit is None

    def test_exemption_raises_cap(self):
        """Test Florida's exemption raises the cap instead of removing it."""
        result = check_usury("FL", 0.26, 600_000, is_commercial=True)

        assert result.violates is True
        assert result.limit == 0.25

    def test_criminal_cap_survives_civil_exemption(self):
        """Test New York's criminal cap applies below $2.5M."""
        result = check_usury("NY", 0.30, 1_000_000, is_commercial=True)

        assert result.violates is True
        assert result.limit == 0.25
        assert "criminal" in result.message

    def test_large_loans_fully_exempt(self):
        """Test New York loans of $2.5M or more are fully exempt."""
        result = check_usury("NY", 0.30, 3_000_000, is_commercial=True)

        assert result.violates is False
        assert result.limit is None

    def test_criminal_cap_without_civil_cap(self):
        """Test Georgia's criminal cap applies when no civil cap exists."""
        result = check_usury("GA", 0.70, 2_000, is_commercial=True)

        assert result.violates is True
        assert result.limit == 0.60

    def test_no_limit_state(self):
        """Test states with no usury limit never violate."""
        assert check_usury("NV", 0.99, 10_000, is_commercial=False).violates is False

    def test_unknown_state(self):
        """Test unknown states are not checked."""
        result = check_usury("ZZ", 0.99, 10_000, is_commercial=False)

        assert result.violates is False
        assert result.limit is None


class TestApplyUsuryCap:
    """Tests for apply_usury_cap."""

    def test_rate_capped_at_ceiling(self):
        """Test a rate above the ceiling becomes exactly the ceiling."""
        result = apply_usury_cap(0.0775, "PA", 500_000, is_commercial=False)

        assert result.adjusted is True
        assert result.rate == 0.06
        assert "capped at 6.00%" in result.message

    def test_rate_within_ceiling_unchanged(self):
        """Test a compliant rate is returned as is."""
        result = apply_usury_cap(0.0775, "TX", 500_000, is_commercial=True)

        assert result.adjusted is False
        assert result.rate == 0.0775

    @pytest.mark.parametrize("rate", [0.059, 0.06])
    def test_ceiling_is_inclusive(self, rate):
        """Test rates at or below the ceiling are not adjusted."""
        assert apply_usury_cap(rate, "PA", 500_000, is_commercial=False).adjusted is False


def test_disclosures():
    """Test disclosure requirements per state."""
    assert "Commercial financing disclosure (SB 1235)" in get_disclosure_requirements("CA")
    assert get_disclosure_requirements("NV") == []
    assert get_disclosure_requirements(None) == []
