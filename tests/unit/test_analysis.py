"""
Unit tests for financial analysis of verified extractions.
"""
import pytest

from dealforge.services.analysis import (
    UNBOUNDED_RESERVES,
    IncomeAnalysis,
    RiskFlag,
    analyze_debt,
    analyze_deal,
    analyze_income,
    analyze_liquidity,
    calculate_risk_score,
    risk_rating,
)
from dealforge.services.verification.cross_document import DocumentExtraction


def w2(year, wages, employer="Acme Manufacturing"):
    return DocumentExtraction("W2", {"metadata": {"employerName": employer}, "wagesTips": wages}, year=year)


def form_1040(year, wages=0, interest=0, schedule_c=None):
    data = {"income": {"wages_line1": wages, "taxableInterest_line2b": interest}}
    if schedule_c is not None:
        data["scheduleC"] = [{"businessName": "Acme Consulting", "netProfit_line31": schedule_c}]
    return DocumentExtraction("FORM_1040", data, year=year)


def statement(end_date, ending, payments=(), account="1234", **summary):
    return {
        "metadata": {"accountNumber": account},
        "statementPeriod": {"endDate": end_date},
        "summary": dict(endingBalance=ending, **summary),
        "regularPaymentsDetected": list(payments),
    }


class TestIncome:
    """Tests for income analysis."""

    def test_w2_supersedes_1040_wages(self):
        """Test W-2 wages replace the 1040 wage line for the same year."""
        income = analyze_income([w2(2023, 100_000), form_1040(2023, wages=100_000, interest=1_000)])

        assert [s.type for s in income.sources] == ["w2", "interest"]
        assert income.qualifying_income == 101_000
        assert "Less than 2 years of income history provided" in income.notes

    def test_declining_self_employment_uses_lower_year(self):
        """Test declining self-employment income qualifies at the latest year."""
        income = analyze_income([form_1040(2022, schedule_c=80_000), form_1040(2023, schedule_c=60_000)])

        assert income.qualifying_income == 60_000
        assert income.trend == "declining"
        assert income.trend_percent == -0.25
        assert income.notes[0].startswith("Self-employment income: Declining")

    def test_increasing_self_employment_is_averaged(self):
        """Test rising self-employment income qualifies at the two-year average."""
        income = analyze_income([form_1040(2022, schedule_c=50_000), form_1040(2023, schedule_c=70_000)])

        assert income.qualifying_income == 60_000
        assert income.trend == "increasing"

    def test_no_sources(self):
        """Test documents without income leave a note."""
        income = analyze_income([DocumentExtraction("RENT_ROLL", {})])

        assert income.qualifying_income == 0
        assert income.notes == ["No income sources identified from provided documents"]


class TestDebt:
    """Tests for debt service analysis."""

    def test_recurring_payments_and_ratios(self):
        """Test debt detection, deduplication, DSCR and DTI."""
        payments = [
            {"description": "Mortgage payment", "amount": -2_000},
            {"description": "Chase credit card", "amount": 500},
            {"description": "Streaming subscription", "amount": 15},
        ]
        statements = [statement("2024-01-31", 10_000, payments), statement("2024-02-29", 10_000, payments)]

        debt = analyze_debt(IncomeAnalysis(qualifying_income=120_000), statements, None, 1_000)

        assert len(debt.debt_items) == 2
        assert debt.existing_monthly_debt == 2_500
        assert debt.monthly_housing_expense == 3_000
        assert debt.noi == 120_000
        assert debt.global_dscr == 2.86
        assert debt.front_end_dti == 0.3
        assert debt.back_end_dti == 0.35

    def test_payment_frequency_normalized(self):
        """Test biweekly payments are converted to monthly."""
        payments = [{"description": "Auto pay Toyota", "amount": 300, "frequency": "biweekly"}]

        debt = analyze_debt(IncomeAnalysis(qualifying_income=60_000), [statement("2024-01-31", 0, payments)], None, 0)

        assert debt.existing_monthly_debt == 650.0

    def test_property_noi_preferred(self):
        """Test rent roll NOI drives DSCR when present."""
        rental = {"summary": {"totalAnnualRent": 120_000, "operatingExpenses": 40_000}}

        debt = analyze_debt(IncomeAnalysis(qualifying_income=50_000), [], rental, 5_000)

        assert debt.noi == 80_000
        assert debt.property_dscr == pytest.approx(1.33)

    def test_no_debt_service(self):
        """Test DSCR is undefined without any debt service."""
        debt = analyze_debt(IncomeAnalysis(qualifying_income=0), [], None, 0)

        assert debt.global_dscr is None
        assert debt.back_end_dti is None
        assert len(debt.notes) == 2


class TestLiquidity:
    """Tests for liquidity analysis."""

    def test_latest_balance_per_account(self):
        """Test only the latest statement per account counts toward liquid assets."""
        statements = [
            statement("2024-01-31", 20_000, averageDailyBalance=25_000, minimumBalance=5_000, nsfCount=1),
            statement("2024-02-29", 30_000, averageDailyBalance=27_000, minimumBalance=8_000),
        ]

        liquidity = analyze_liquidity(statements, None, 3_500)

        assert liquidity.total_liquid_assets == 30_000
        assert liquidity.average_daily_balance == 26_000
        assert liquidity.minimum_balance == 5_000
        assert liquidity.nsf_count == 1
        assert liquidity.months_of_reserves == 8.57

    def test_balance_sheet_cash_and_ratios(self):
        """Test balance sheet cash and ratios."""
        balance_sheet = {
            "cash": 50_000,
            "totalCurrentAssets": 90_000,
            "totalCurrentLiabilities": 45_000,
            "totalLiabilities": 100_000,
            "totalEquity": 200_000,
        }

        liquidity = analyze_liquidity([statement("2024-01-31", 10_000)], balance_sheet, 5_000)

        assert liquidity.total_liquid_assets == 50_000
        assert liquidity.current_ratio == 2.0
        assert liquidity.debt_to_equity == 0.5
        assert liquidity.months_of_reserves == 10.0

    def test_unbounded_reserves(self):
        """Test reserves are unbounded without debt service."""
        liquidity = analyze_liquidity([statement("2024-01-31", 10_000)], None, 0)

        assert liquidity.months_of_reserves == UNBOUNDED_RESERVES


class TestRisk:
    """Tests for risk scoring."""

    @pytest.mark.parametrize("score,rating", [
        (0, "low"), (25, "low"), (26, "moderate"), (45, "moderate"),
        (46, "elevated"), (70, "elevated"), (71, "high"),
    ])
    def test_rating_bands(self, score, rating):
        """Test score to rating bands."""
        assert risk_rating(score) == rating

    def test_score_capped(self):
        """Test the score never exceeds 100."""
        flags = [RiskFlag("high", "x", "t", "d")] * 6

        assert calculate_risk_score(flags) == 100


class TestAnalyzeDeal:
    """Tests for the full analysis."""

    def test_healthy_borrower(self):
        """Test a well-covered borrower rates low."""
        docs = [
            w2(2023, 100_000),
            DocumentExtraction(
                "BANK_STATEMENT_CHECKING",
                statement("2024-01-31", 60_000, [{"description": "Mortgage payment", "amount": 1_500}]),
            ),
        ]

        result = analyze_deal(docs, proposed_monthly_payment=1_000)

        assert result.debt.global_dscr == 3.33
        assert result.debt.back_end_dti == 0.3
        assert result.liquidity.months_of_reserves == 24.0
        assert result.risk_flags == []
        assert result.risk_rating == "low"
        assert result.to_dict()["summary"]["qualifying_income"] == 100_000

    def test_declining_income_flagged(self):
        """Test a steep income decline is a high-severity flag."""
        result = analyze_deal([form_1040(2022, schedule_c=80_000), form_1040(2023, schedule_c=60_000)])

        titles = [f.title for f in result.risk_flags]
        assert "Significant Income Decline" in titles
        assert result.risk_flags[0].severity == "high"

    def test_unbalanced_balance_sheet_flagged(self):
        """Test a balance sheet that does not balance is flagged."""
        sheet = DocumentExtraction(
            "BALANCE_SHEET", {"totalAssets": 500_000, "totalLiabilities": 200_000, "totalEquity": 250_000},
        )

        result = analyze_deal([w2(2023, 100_000), sheet])

        assert "Balance Sheet Does Not Balance" in [f.title for f in result.risk_flags]
