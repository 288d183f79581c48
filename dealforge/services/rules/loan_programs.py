"""
Loan program configuration.

Each program fixes everything downstream of intake: structuring limits,
fees, covenants, compliance checks and the documents to generate. The
rules engine owns every number here; generative steps never set them.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class StructuringRules:
    max_ltv: float
    min_dscr: float
    max_dti: float
    base_rate: str  # prime | sofr | treasury
    spread_range: Tuple[float, float]
    max_term: int  # months
    max_amortization: int  # months; 0 for interest-only facilities
    max_loan_amount: Optional[float]
    min_loan_amount: float
    prepayment_penalty: bool
    requires_appraisal: bool
    requires_personal_guaranty: bool
    collateral_types: Tuple[str, ...]
    interest_only: bool


@dataclass(frozen=True)
class Covenant:
    name: str
    description: str
    frequency: str  # annual | quarterly | monthly
    threshold: Optional[float] = None


@dataclass(frozen=True)
class Fee:
    name: str
    type: str  # percent | flat
    value: float
    description: str


@dataclass(frozen=True)
class LoanProgram:
    id: str
    name: str
    description: str
    category: str
    structuring: StructuringRules
    regulations: Tuple[str, ...]
    covenants: Tuple[Covenant, ...]
    output_docs: Tuple[str, ...]
    compliance_checks: Tuple[str, ...]
    fees: Tuple[Fee, ...]
    late_fee_percent: float = 0.05
    late_fee_grace_days: int = 15
    state_specific_rules: bool = True
    required_documents: Tuple[str, ...] = field(default=())


UNIVERSAL_FORMS = (
    "irs_4506c", "irs_w9", "flood_determination", "privacy_notice",
    "patriot_act_notice", "disbursement_authorization",
)
UNIVERSAL_FORMS_NO_FLOOD = tuple(f for f in UNIVERSAL_FORMS if f != "flood_determination")

CLOSING_DOCS = (
    "commitment_letter", "corporate_resolution", "settlement_statement",
    "borrowers_certificate", "compliance_certificate", "amortization_schedule", "opinion_letter",
)

SBA_FORMS = ("sba_form_1919", "sba_form_159", "sba_form_148", "sba_form_1050")

ANNUAL_FINANCIALS = Covenant(
    "Annual Financial Statements",
    "Borrower must provide annual financial statements within 90 days of fiscal year end.",
    "annual",
)

BUSINESS_DOCS = ("FORM_1040", "FORM_1120", "PROFIT_AND_LOSS", "BALANCE_SHEET", "BANK_STATEMENT_CHECKING")


SBA_7A = LoanProgram(
    id="sba_7a",
    name="SBA 7(a)",
    description="Small business loan up to $5M with SBA guaranty.",
    category="commercial",
    required_documents=BUSINESS_DOCS,
    structuring=StructuringRules(
        max_ltv=0.85, min_dscr=1.15, max_dti=0.50, base_rate="prime",
        spread_range=(0.0, 0.03), max_term=300, max_amortization=300,
        max_loan_amount=5_000_000, min_loan_amount=25_000,
        prepayment_penalty=True, requires_appraisal=True, requires_personal_guaranty=True,
        collateral_types=("real_estate", "equipment", "inventory", "accounts_receivable"),
        interest_only=False,
    ),
    regulations=(
        "SBA SOP 50 10", "TILA/Reg Z", "ECOA/Reg B", "SBA Size Standards (13 CFR 121)",
        "SBA Credit Elsewhere Test", "Flood Disaster Protection Act", "BSA/AML", "13 CFR 120",
    ),
    covenants=(
        ANNUAL_FINANCIALS,
        Covenant("Annual Tax Returns", "Borrower must provide personal and business tax returns within 30 days of filing.", "annual"),
        Covenant("Minimum DSCR", "Maintain minimum debt service coverage ratio.", "annual", 1.15),
        Covenant("Life Insurance", "Key-man life insurance in amount equal to SBA-guaranteed portion.", "annual"),
        Covenant("Hazard Insurance", "Maintain adequate hazard insurance on collateral.", "annual"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "sba_authorization", "security_agreement",
        "deed_of_trust", "environmental_indemnity", "assignment_of_leases", "ucc_financing_statement",
    ) + CLOSING_DOCS + SBA_FORMS + UNIVERSAL_FORMS,
    compliance_checks=(
        "sba_size_standard", "sba_credit_elsewhere", "sba_use_of_proceeds",
        "ofac_screening", "usury_check", "flood_zone",
    ),
    fees=(
        Fee("SBA Guaranty Fee", "percent", 0.03, "3.0% of guaranteed portion"),
        Fee("Packaging Fee", "flat", 2500, "SBA loan packaging and processing"),
        Fee("Closing Fee", "percent", 0.005, "0.5% of loan amount"),
    ),
)

SBA_504 = LoanProgram(
    id="sba_504",
    name="SBA 504",
    description="Fixed-asset financing through CDC structure.",
    category="commercial",
    required_documents=BUSINESS_DOCS,
    structuring=StructuringRules(
        max_ltv=0.90, min_dscr=1.15, max_dti=0.50, base_rate="treasury",
        spread_range=(0.005, 0.015), max_term=300, max_amortization=300,
        max_loan_amount=5_500_000, min_loan_amount=100_000,
        prepayment_penalty=True, requires_appraisal=True, requires_personal_guaranty=True,
        collateral_types=("real_estate", "heavy_equipment"), interest_only=False,
    ),
    regulations=(
        "SBA SOP 50 10", "13 CFR 120", "TILA/Reg Z", "ECOA/Reg B", "SBA Size Standards",
        "SBA Job Creation Requirements", "Flood Disaster Protection Act", "BSA/AML",
    ),
    covenants=(
        ANNUAL_FINANCIALS,
        Covenant("Job Creation Reporting", "Borrower must report on job creation/retention goals.", "annual"),
        Covenant("Occupancy Requirement", "Borrower must occupy at least 51% of the property.", "annual"),
        Covenant("Hazard Insurance", "Maintain adequate hazard insurance.", "annual"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "sba_authorization", "security_agreement",
        "cdc_debenture", "deed_of_trust", "environmental_indemnity", "assignment_of_leases",
        "ucc_financing_statement",
    ) + CLOSING_DOCS + SBA_FORMS + UNIVERSAL_FORMS,
    compliance_checks=(
        "sba_size_standard", "sba_504_eligibility", "job_creation", "ofac_screening", "usury_check", "flood_zone",
    ),
    fees=(
        Fee("CDC Processing Fee", "percent", 0.015, "1.5% of CDC portion"),
        Fee("SBA Guaranty Fee", "percent", 0.005, "0.5% guarantee fee"),
        Fee("Closing Fee", "percent", 0.005, "0.5% of loan amount"),
    ),
)

COMMERCIAL_CRE = LoanProgram(
    id="commercial_cre",
    name="Commercial Real Estate",
    description="Term loan for commercial property acquisition or refinance.",
    category="commercial",
    required_documents=BUSINESS_DOCS + ("RENT_ROLL",),
    structuring=StructuringRules(
        max_ltv=0.75, min_dscr=1.25, max_dti=0.45, base_rate="sofr",
        spread_range=(0.02, 0.04), max_term=120, max_amortization=360,
        max_loan_amount=None, min_loan_amount=250_000,
        prepayment_penalty=True, requires_appraisal=True, requires_personal_guaranty=True,
        collateral_types=("commercial_real_estate",), interest_only=False,
    ),
    regulations=("TILA/Reg Z", "RESPA/Reg X", "ECOA/Reg B", "CRA", "FIRREA"),
    covenants=(
        Covenant("Annual Operating Statements", "Provide annual property operating statements within 90 days of year end.", "annual"),
        Covenant("Annual Rent Roll", "Provide updated rent roll annually.", "annual"),
        # Maintenance floor sits below the origination minimum
        Covenant("Minimum DSCR", "Maintain minimum DSCR on the property.", "annual", 1.20),
        Covenant("Hazard Insurance", "Maintain property insurance with lender as loss payee.", "annual"),
        Covenant("Environmental Compliance", "Maintain compliance with all environmental regulations.", "annual"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "security_agreement", "deed_of_trust",
        "assignment_of_leases", "ucc_financing_statement", "environmental_indemnity", "snda",
        "estoppel_certificate",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS,
    compliance_checks=("ofac_screening", "usury_check", "flood_zone", "environmental_phase1"),
    late_fee_grace_days=10,
    fees=(
        Fee("Origination Fee", "percent", 0.01, "1% of loan amount"),
        Fee("Appraisal Fee", "flat", 4500, "Commercial appraisal"),
        Fee("Environmental Phase I", "flat", 3000, "Phase I ESA"),
        Fee("Legal Fees", "flat", 5000, "Lender's counsel"),
    ),
)

DSCR = LoanProgram(
    id="dscr",
    name="DSCR Loan",
    description="Investment property loan qualified by property cash flow. 1-4 unit residential.",
    category="residential",
    required_documents=("RENT_ROLL", "BANK_STATEMENT_CHECKING"),
    structuring=StructuringRules(
        max_ltv=0.80, min_dscr=1.00, max_dti=1.0, base_rate="sofr",
        spread_range=(0.03, 0.06), max_term=360, max_amortization=360,
        max_loan_amount=3_000_000, min_loan_amount=75_000,
        prepayment_penalty=False, requires_appraisal=True, requires_personal_guaranty=False,
        collateral_types=("residential_1_4",), interest_only=True,
    ),
    regulations=("TILA/Reg Z", "RESPA/Reg X", "ECOA/Reg B", "HMDA/Reg C", "ATR/QM (non-QM)", "State licensing requirements"),
    covenants=(
        Covenant("Property Insurance", "Maintain hazard insurance with lender as loss payee.", "annual"),
        Covenant("Annual Rent Roll", "Provide updated rent roll.", "annual"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "deed_of_trust", "closing_disclosure", "loan_estimate",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS,
    compliance_checks=("ofac_screening", "usury_check", "flood_zone", "hpml_check", "atr_check"),
    fees=(
        Fee("Origination Fee", "percent", 0.015, "1.5% of loan amount"),
        Fee("Appraisal Fee", "flat", 600, "Residential appraisal"),
        Fee("Processing Fee", "flat", 1500, "Loan processing"),
    ),
)

BANK_STATEMENT = LoanProgram(
    id="bank_statement",
    name="Bank Statement Loan",
    description="Self-employed borrower program using 12-24 months of bank deposits.",
    category="residential",
    required_documents=("BANK_STATEMENT_CHECKING", "PROFIT_AND_LOSS"),
    structuring=StructuringRules(
        max_ltv=0.80, min_dscr=1.0, max_dti=0.50, base_rate="sofr",
        spread_range=(0.035, 0.06), max_term=360, max_amortization=360,
        max_loan_amount=3_000_000, min_loan_amount=100_000,
        prepayment_penalty=False, requires_appraisal=True, requires_personal_guaranty=False,
        collateral_types=("residential_1_4", "residential_condo"), interest_only=True,
    ),
    regulations=("TILA/Reg Z", "RESPA/Reg X", "ECOA/Reg B", "HMDA/Reg C", "ATR/QM (non-QM)", "State licensing requirements"),
    covenants=(Covenant("Property Insurance", "Maintain hazard insurance.", "annual"),),
    output_docs=(
        "promissory_note", "loan_agreement", "deed_of_trust", "closing_disclosure", "loan_estimate",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS,
    compliance_checks=("ofac_screening", "usury_check", "flood_zone", "atr_check", "hpml_check"),
    fees=(
        Fee("Origination Fee", "percent", 0.02, "2% of loan amount"),
        Fee("Appraisal Fee", "flat", 600, "Residential appraisal"),
        Fee("Processing Fee", "flat", 1500, "Loan processing"),
        Fee("Underwriting Fee", "flat", 1000, "Underwriting review"),
    ),
)

CONVENTIONAL_BUSINESS = LoanProgram(
    id="conventional_business",
    name="Conventional Business Term",
    description="Standard unsecured or partially secured business term loan.",
    category="commercial",
    required_documents=BUSINESS_DOCS,
    structuring=StructuringRules(
        max_ltv=0.70, min_dscr=1.25, max_dti=0.45, base_rate="prime",
        spread_range=(0.01, 0.035), max_term=84, max_amortization=84,
        max_loan_amount=None, min_loan_amount=50_000,
        prepayment_penalty=False, requires_appraisal=False, requires_personal_guaranty=True,
        collateral_types=("equipment", "inventory", "accounts_receivable", "blanket_lien"),
        interest_only=False,
    ),
    regulations=("TILA/Reg Z (if applicable)", "ECOA/Reg B", "UCC Article 9"),
    covenants=(
        ANNUAL_FINANCIALS,
        Covenant("Annual Tax Returns", "Provide personal and business tax returns.", "annual"),
        Covenant("Minimum DSCR", "Maintain minimum DSCR.", "annual", 1.20),
        Covenant("Minimum Working Capital", "Maintain positive working capital.", "quarterly"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "security_agreement", "ucc_financing_statement",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS_NO_FLOOD,
    compliance_checks=("ofac_screening", "usury_check", "flood_zone"),
    late_fee_grace_days=10,
    fees=(
        Fee("Origination Fee", "percent", 0.01, "1% of loan amount"),
        Fee("Documentation Fee", "flat", 500, "Document preparation"),
    ),
)

LINE_OF_CREDIT = LoanProgram(
    id="line_of_credit",
    name="Business Line of Credit",
    description="Revolving credit facility for working capital needs.",
    category="commercial",
    required_documents=BUSINESS_DOCS,
    structuring=StructuringRules(
        max_ltv=0.60, min_dscr=1.20, max_dti=0.45, base_rate="prime",
        spread_range=(0.005, 0.025), max_term=12, max_amortization=0,
        max_loan_amount=None, min_loan_amount=25_000,
        prepayment_penalty=False, requires_appraisal=False, requires_personal_guaranty=True,
        collateral_types=("accounts_receivable", "inventory", "blanket_lien"), interest_only=True,
    ),
    regulations=("TILA/Reg Z (if applicable)", "ECOA/Reg B", "UCC Article 9"),
    covenants=(
        ANNUAL_FINANCIALS,
        Covenant("Borrowing Base Certificate", "Monthly borrowing base certificate.", "monthly"),
        Covenant("Annual Clean-Up", "Zero balance for 30 consecutive days annually.", "annual"),
        Covenant("Minimum Current Ratio", "Maintain minimum current ratio of 1.2:1.", "quarterly", 1.2),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "security_agreement", "ucc_financing_statement",
        "borrowing_base_agreement",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS_NO_FLOOD,
    compliance_checks=("ofac_screening", "usury_check"),
    late_fee_grace_days=10,
    fees=(
        Fee("Commitment Fee", "percent", 0.0025, "0.25% on unused portion"),
        Fee("Annual Renewal Fee", "flat", 500, "Annual line renewal"),
    ),
)

EQUIPMENT_FINANCING = LoanProgram(
    id="equipment_financing",
    name="Equipment Financing",
    description="Asset-based loan for equipment purchase.",
    category="commercial",
    required_documents=("FORM_1040", "FORM_1120", "BANK_STATEMENT_CHECKING", "BALANCE_SHEET"),
    structuring=StructuringRules(
        max_ltv=0.85, min_dscr=1.15, max_dti=0.50, base_rate="prime",
        spread_range=(0.02, 0.045), max_term=84, max_amortization=84,
        max_loan_amount=None, min_loan_amount=10_000,
        prepayment_penalty=True, requires_appraisal=True, requires_personal_guaranty=True,
        collateral_types=("equipment",), interest_only=False,
    ),
    regulations=("UCC Article 9", "ECOA/Reg B", "TILA/Reg Z (if consumer purpose)"),
    covenants=(
        Covenant("Equipment Insurance", "Maintain insurance on financed equipment.", "annual"),
        ANNUAL_FINANCIALS,
        Covenant("Equipment Maintenance", "Maintain equipment in good working condition.", "annual"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "security_agreement", "ucc_financing_statement",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS_NO_FLOOD,
    compliance_checks=("ofac_screening", "usury_check", "ucc_lien_search"),
    late_fee_grace_days=10,
    state_specific_rules=False,
    fees=(
        Fee("Documentation Fee", "flat", 500, "Document preparation"),
        Fee("UCC Filing Fee", "flat", 150, "UCC-1 filing"),
    ),
)

BRIDGE = LoanProgram(
    id="bridge",
    name="Bridge Loan",
    description="Short-term financing for acquisition, renovation, or repositioning.",
    category="commercial",
    required_documents=("FORM_1040", "BANK_STATEMENT_CHECKING", "BALANCE_SHEET"),
    structuring=StructuringRules(
        max_ltv=0.70, min_dscr=1.0, max_dti=0.50, base_rate="prime",
        spread_range=(0.04, 0.08), max_term=36, max_amortization=0,
        max_loan_amount=None, min_loan_amount=100_000,
        prepayment_penalty=False, requires_appraisal=True, requires_personal_guaranty=True,
        collateral_types=("real_estate", "commercial_real_estate"), interest_only=True,
    ),
    regulations=("TILA/Reg Z (if consumer purpose)", "ECOA/Reg B", "FIRREA"),
    covenants=(
        Covenant("Exit Strategy", "Borrower must demonstrate viable exit strategy (refinance or sale).", "quarterly"),
        Covenant("Construction Progress", "If renovation, provide progress reports.", "monthly"),
        Covenant("Property Insurance", "Maintain builder's risk or hazard insurance.", "annual"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "guaranty", "deed_of_trust", "security_agreement",
        "environmental_indemnity", "assignment_of_leases",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS,
    compliance_checks=("ofac_screening", "usury_check", "flood_zone"),
    late_fee_percent=0.06,
    late_fee_grace_days=5,
    fees=(
        Fee("Origination Fee", "percent", 0.02, "2% of loan amount"),
        Fee("Exit Fee", "percent", 0.01, "1% at payoff"),
        Fee("Appraisal Fee", "flat", 4500, "As-is and as-stabilized appraisal"),
    ),
)

CRYPTO_COLLATERAL = LoanProgram(
    id="crypto_collateral",
    name="Crypto-Collateralized Loan",
    description="Loan secured by digital assets with margin monitoring.",
    category="specialty",
    required_documents=("BANK_STATEMENT_CHECKING", "FORM_1040"),
    structuring=StructuringRules(
        max_ltv=0.70, min_dscr=0, max_dti=0.50, base_rate="sofr",
        spread_range=(0.04, 0.08), max_term=60, max_amortization=60,
        max_loan_amount=10_000_000, min_loan_amount=50_000,
        prepayment_penalty=False, requires_appraisal=False, requires_personal_guaranty=False,
        collateral_types=("digital_assets",), interest_only=True,
    ),
    regulations=(
        "TILA/Reg Z", "ECOA/Reg B", "BSA/AML", "State money transmitter laws",
        "FinCEN requirements", "State digital asset lending laws",
    ),
    covenants=(
        Covenant("Margin Call", "If LTV exceeds 80%, borrower must post additional collateral within 24 hours.", "monthly"),
        Covenant("Liquidation Trigger", "If LTV exceeds 90%, lender may liquidate collateral.", "monthly"),
        Covenant("Wallet Verification", "Collateral must remain in custodial wallet.", "monthly"),
    ),
    output_docs=(
        "promissory_note", "loan_agreement", "digital_asset_pledge", "custody_agreement",
    ) + CLOSING_DOCS + UNIVERSAL_FORMS_NO_FLOOD,
    compliance_checks=("ofac_screening", "usury_check", "bsa_aml", "source_of_funds"),
    late_fee_grace_days=10,
    fees=(
        Fee("Origination Fee", "percent", 0.015, "1.5% of loan amount"),
        Fee("Custody Fee", "percent", 0.005, "0.5% annual custody fee on collateral"),
    ),
)

LOAN_PROGRAMS: Dict[str, LoanProgram] = {
    program.id: program
    for program in (
        SBA_7A, SBA_504, COMMERCIAL_CRE, DSCR, BANK_STATEMENT,
        CONVENTIONAL_BUSINESS, LINE_OF_CREDIT, EQUIPMENT_FINANCING, BRIDGE, CRYPTO_COLLATERAL,
    )
}


def get_loan_program(program_id: Optional[str]) -> Optional[LoanProgram]:
    return LOAN_PROGRAMS.get(program_id or "")
