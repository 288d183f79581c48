"""
Unit tests for cross-document consistency checks.
"""
from dealforge.services.verification.cross_document import (
    CHECK_FAIL,
    CHECK_PASS,
    CHECK_WARNING,
    DocumentExtraction,
    build_check,
    run_cross_document_checks,
)


def w2(wages):
    return DocumentExtraction("W2", {"wagesTips": wages})


def form_1040(**income):
    return DocumentExtraction("FORM_1040", {"income": income})


def statement(begin, end, deposits, start_date, end_date):
    return DocumentExtraction("BANK_STATEMENT_CHECKING", {
        "summary": {"beginningBalance": begin, "endingBalance": end, "totalDeposits": deposits},
        "statementPeriod": {"startDate": start_date, "endDate": end_date},
    })


class TestThresholds:
    """Tests for build_check status bands."""

    def test_within_one_dollar_passes(self):
        """Test the absolute tolerance."""
        assert build_check("t", "A", "a", 10.0, "B", "b", 11.0).status == CHECK_PASS

    def test_warning_band(self):
        """Test differences between the fail and warning thresholds warn."""
        assert build_check("t", "A", "a", 83000, "B", "b", 80000).status == CHECK_WARNING

    def test_fail_band(self):
        """Test differences beyond the warning threshold fail."""
        check = build_check("t", "A", "a", 100000, "B", "b", 80000)

        assert check.status == CHECK_FAIL
        assert check.difference == 20000
        assert check.percent_diff == 0.2


class TestChecks:
    """Tests for the individual checks."""

    def test_w2_vs_1040_pass(self):
        """Test summed W-2 wages against line 1."""
        checks = run_cross_document_checks([w2(50000), w2(30000), form_1040(wages_line1=80000)])

        assert len(checks) == 1
        assert checks[0].status == CHECK_PASS
        assert checks[0].doc1_value == 80000

    def test_w2_vs_1040_warning(self):
        """Test a 4% wage gap warns."""
        checks = run_cross_document_checks([w2(83000), form_1040(wages_line1=80000)])

        assert checks[0].status == CHECK_WARNING

    def test_schedule_c_vs_pnl(self):
        """Test Schedule C against the P&L with loose thresholds."""
        docs = [
            DocumentExtraction("FORM_1040", {"scheduleC": [{"grossReceipts_line1": 100000, "netProfit_line31": 30000}]}),
            DocumentExtraction("PROFIT_AND_LOSS", {"netRevenue": 104000, "netIncome": 30000}),
        ]

        checks = run_cross_document_checks(docs)

        assert [c.status for c in checks] == [CHECK_PASS, CHECK_PASS]

    def test_annualized_deposits(self):
        """Test one month of deposits is extrapolated to twelve."""
        docs = [
            statement(1000, 2000, 10000, "2024-01-01", "2024-01-31"),
            form_1040(totalIncome_line9=100000),
        ]

        checks = run_cross_document_checks(docs)

        deposits = [c for c in checks if c.doc1_field == "annualizedDeposits"][0]
        assert deposits.doc1_value == 120000
        assert deposits.status == CHECK_PASS

    def test_statement_chain_sorted_by_period(self):
        """Test statements are chained in date order regardless of input order."""
        docs = [
            statement(5000, 6000, 0, "2024-02-01", "2024-02-29"),
            statement(4000, 5000, 0, "2024-01-01", "2024-01-31"),
        ]

        checks = run_cross_document_checks(docs)

        assert len(checks) == 1
        assert checks[0].status == CHECK_PASS
        assert "2024-01-01 to 2024-01-31" in checks[0].description

    def test_statement_chain_break_fails(self):
        """Test any chain gap beyond $1 fails."""
        docs = [
            statement(4000, 5200, 0, "2024-01-01", "2024-01-31"),
            statement(5000, 6000, 0, "2024-02-01", "2024-02-29"),
        ]

        checks = run_cross_document_checks(docs)

        assert checks[0].status == CHECK_FAIL
        assert checks[0].difference == 200

    def test_officer_comp_vs_w2(self):
        """Test 1120S officer compensation against W-2 wages."""
        docs = [
            DocumentExtraction("FORM_1120S", {"deductions": {"compensationOfOfficers_line7": 90000}}),
            w2(90000),
        ]

        checks = run_cross_document_checks(docs)

        assert checks[0].doc1_type == "FORM_1120S"
        assert checks[0].status == CHECK_PASS

    def test_documents_without_data_ignored(self):
        """Test empty payloads produce no checks."""
        assert run_cross_document_checks([w2(0), DocumentExtraction("FORM_1040", {})]) == []

    def test_empty_input(self):
        """Test no documents means no checks."""
        assert run_cross_document_checks([]) == []
