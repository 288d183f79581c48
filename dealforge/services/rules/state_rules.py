"""
State lending rules: usury limits, licensing and disclosures.

Rates are annual decimals (0.25 == 25%). A max_rate of None means the
state has no civil usury ceiling for agreed rates.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

APR = "APR disclosure"
COMMERCIAL = "Commercial financing disclosure"


@dataclass(frozen=True)
class StateRule:
    name: str
    abbreviation: str
    max_rate: Optional[float]
    commercial_exemption: bool
    exemption_threshold: float
    requires_license: bool = True
    disclosures: Tuple[str, ...] = (APR,)
    exemption_cap: Optional[float] = None      # exemption raises the cap instead of removing it
    criminal_cap: Optional[float] = None       # applies even when civil usury is exempt
    criminal_exemption_threshold: Optional[float] = None
    commercial_disclosure: bool = False
    notes: str = ""


_RULES = (
    StateRule("Alabama", "AL", 0.08, True, 2000, notes="8% default; parties may agree to higher for commercial"),
    StateRule("Alaska", "AK", 0.105, True, 25000, requires_license=False, disclosures=(),
              notes="10.5% or 5% above Federal Reserve discount rate"),
    StateRule("Arizona", "AZ", None, True, 0, notes="No usury cap for agreed-upon rates; 10% default"),
    StateRule("Arkansas", "AR", 0.17, False, 0, disclosures=(APR, "Total interest cost"),
              notes="Constitutional cap at 17%"),
    StateRule("California", "CA", 0.10, True, 300000, commercial_disclosure=True,
              disclosures=(APR, "CFL disclosure", "Commercial financing disclosure (SB 1235)"),
              notes="10% for personal; commercial >$300K exempt for entity borrowers with business purpose"),
    StateRule("Colorado", "CO", 0.12, True, 75000, notes="12% consumer cap; 45% criminal usury; commercial >$75K exempt"),
    StateRule("Connecticut", "CT", 0.12, True, 0, commercial_disclosure=True, disclosures=(APR, COMMERCIAL),
              notes="12% general; commercial loans generally exempt"),
    StateRule("Delaware", "DE", 0.105, True, 100000, requires_license=False, disclosures=(),
              notes="5% over Fed discount rate; >$100K exempt"),
    StateRule("Florida", "FL", 0.18, True, 500000, exemption_cap=0.25, commercial_disclosure=True,
              disclosures=(APR, COMMERCIAL), notes="18% for <$500K; >$500K capped at 25%"),
    StateRule("Georgia", "GA", None, True, 3000, criminal_cap=0.60, commercial_disclosure=True,
              disclosures=(APR, COMMERCIAL),
              notes="Civil usury uncapped for loans >$3K by written agreement; criminal usury at 60%/yr"),
    StateRule("Hawaii", "HI", 0.12, True, 750000, notes="12% general; non-consumer transactions above $750K exempt"),
    StateRule("Idaho", "ID", 0.12, True, 0, requires_license=False, disclosures=(),
              notes="No usury statute; parties free to agree"),
    StateRule("Illinois", "IL", 0.09, True, 5000, notes="9% general; business loans >$5K exempt"),
    StateRule("Indiana", "IN", 0.21, True, 0, notes="21% consumer cap; commercial generally exempt"),
    StateRule("Iowa", "IA", None, True, 25000, notes="No cap for written commercial agreements"),
    StateRule("Kansas", "KS", 0.15, True, 25000, commercial_disclosure=True, disclosures=(APR, COMMERCIAL),
              notes="15% general; commercial >$25K exempt"),
    StateRule("Kentucky", "KY", 0.19, True, 15000, notes="19% for consumer; commercial generally exempt"),
    StateRule("Louisiana", "LA", 0.12, True, 0, commercial_disclosure=True, disclosures=(APR, COMMERCIAL),
              notes="12% conventional; 21% for certain categories"),
    StateRule("Maine", "ME", None, True, 250000, notes="UCCC governs lending; no cap for commercial"),
    StateRule("Maryland", "MD", 0.08, True, 275000, disclosures=(APR, "Total cost of credit"),
              notes="8% legal; 24% criminal usury; commercial >$275K exempt"),
    StateRule("Massachusetts", "MA", 0.20, True, 0, notes="20% criminal usury; commercial generally exempt"),
    StateRule("Michigan", "MI", 0.07, True, 250000, notes="7% legal; 25% criminal usury; commercial >$250K exempt"),
    StateRule("Minnesota", "MN", 0.08, True, 100000, notes="8% legal; commercial loans >$100K exempt"),
    StateRule("Mississippi", "MS", 0.10, True, 5000, notes="10% or 5% over discount rate; business loans >$5K exempt"),
    StateRule("Missouri", "MO", 0.10, True, 5000, commercial_disclosure=True, disclosures=(APR, COMMERCIAL),
              notes="10% general; business loans may be higher"),
    StateRule("Montana", "MT", 0.15, True, 0, notes="15% contract rate; no usury for business"),
    StateRule("Nebraska", "NE", 0.16, True, 0, notes="16% general; licensee exemptions available"),
    StateRule("Nevada", "NV", None, True, 0, disclosures=(), notes="No usury limit; parties free to contract"),
    StateRule("New Hampshire", "NH", None, True, 0, disclosures=(), notes="No usury statute"),
    StateRule("New Jersey", "NJ", 0.16, True, 50000,
              notes="16% for written agreements; 30% criminal threshold; commercial >$50K exempt"),
    StateRule("New Mexico", "NM", 0.15, True, 0, notes="No usury for commercial; 15% legal for consumer"),
    StateRule("New York", "NY", 0.16, True, 250000, criminal_cap=0.25, criminal_exemption_threshold=2500000,
              commercial_disclosure=True, disclosures=(APR, "Rate/fee schedule", COMMERCIAL),
              notes="16% civil; 25% criminal; commercial $250K-$2.5M exempt from civil only; >$2.5M fully exempt"),
    StateRule("North Carolina", "NC", 0.08, True, 25000, notes="8% general; business entities >$25K exempt"),
    StateRule("North Dakota", "ND", 0.06, True, 35000, notes="6% per annum; >$35K commercial exempt"),
    StateRule("Ohio", "OH", 0.08, True, 100000, notes="8% general; 25% criminal usury; commercial >$100K exempt"),
    StateRule("Oklahoma", "OK", None, True, 0, notes="Freedom of contract; commercial exempt"),
    StateRule("Oregon", "OR", 0.12, True, 50000, notes="12% or 5% above discount rate; commercial >$50K exempt"),
    StateRule("Pennsylvania", "PA", 0.06, True, 10000, notes="6% legal; business loans >$10K exempt"),
    StateRule("Rhode Island", "RI", 0.21, True, 0, notes="21% alternate max; commercial generally exempt"),
    StateRule("South Carolina", "SC", 0.0875, True, 50000, notes="8.75% legal; commercial >$50K exempt"),
    StateRule("South Dakota", "SD", None, True, 0, requires_license=False, disclosures=(),
              notes="No usury limit; parties free to contract"),
    StateRule("Tennessee", "TN", 0.24, True, 250000, notes="Max 24% or 4% above avg prime; commercial >$250K exempt"),
    StateRule("Texas", "TX", 0.28, True, 3000000, commercial_disclosure=True, disclosures=(APR, COMMERCIAL),
              notes="28% ceiling; real-property-secured exemption threshold $3M"),
    StateRule("Utah", "UT", None, True, 0, commercial_disclosure=True, disclosures=(COMMERCIAL,),
              notes="No usury limit; commercial financing disclosure required"),
    StateRule("Vermont", "VT", 0.12, True, 0, notes="12% general; commercial generally exempt"),
    StateRule("Virginia", "VA", 0.12, True, 5000, commercial_disclosure=True, disclosures=(APR, COMMERCIAL),
              notes="12% legal; business loans >$5K exempt"),
    StateRule("Washington", "WA", 0.12, True, 100000, notes="12% or 4% above 26-week T-bill; commercial >$100K exempt"),
    StateRule("West Virginia", "WV", 0.08, True, 100000, notes="8% legal; commercial >$100K exempt"),
    StateRule("Wisconsin", "WI", 0.12, True, 150000, notes="12% general; business >$150K exempt"),
    StateRule("Wyoming", "WY", 0.07, True, 25000, requires_license=False, disclosures=(),
              notes="7% legal; commercial >$25K exempt"),
    StateRule("District of Columbia", "DC", 0.24, True, 0, notes="24% max; commercial generally exempt"),
)

STATE_RULES: Dict[str, StateRule] = {rule.abbreviation: rule for rule in _RULES}


@dataclass(frozen=True)
class UsuryCheck:
    violates: bool
    limit: Optional[float]
    message: str


@dataclass(frozen=True)
class UsuryCapResult:
    rate: float
    adjusted: bool
    limit: Optional[float]
    message: str


def get_state_rule(state: Optional[str]) -> Optional[StateRule]:
    if not state:
        return None
    return STATE_RULES.get(state.strip().upper())


def _pct(rate: float) -> str:
    return f"{rate * 100:.2f}%"


def check_usury(state: Optional[str], rate: float, loan_amount: float, is_commercial: bool) -> UsuryCheck:
    """
    Check an annual rate against a state's usury rules.

    The limit is the ceiling that governs this loan; None means no ceiling.
    """
    rule = get_state_rule(state)
    if rule is None:
        return UsuryCheck(False, None, "State not found; no usury check possible")

    if is_commercial and rule.commercial_exemption and loan_amount >= rule.exemption_threshold:
        if rule.exemption_cap is not None:
            if rate > rule.exemption_cap:
                return UsuryCheck(
                    True, rule.exemption_cap,
                    f"Rate {_pct(rate)} exceeds {rule.name} commercial cap of {_pct(rule.exemption_cap)}",
                )
            return UsuryCheck(False, rule.exemption_cap, "Commercial exemption applies (higher cap)")

        if rule.criminal_cap is not None:
            fully_exempt = (
                rule.criminal_exemption_threshold is not None
                and loan_amount >= rule.criminal_exemption_threshold
            )
            if not fully_exempt:
                if rate > rule.criminal_cap:
                    return UsuryCheck(
                        True, rule.criminal_cap,
                        f"Rate {_pct(rate)} exceeds {rule.name} criminal usury cap of {_pct(rule.criminal_cap)} "
                        f"(civil exemption applies but criminal cap still in effect)",
                    )
                return UsuryCheck(False, rule.criminal_cap, "Commercial exemption applies; criminal cap in effect")

        return UsuryCheck(False, None, "Commercial exemption applies")

    if rule.max_rate is None:
        if rule.criminal_cap is not None:
            if rate > rule.criminal_cap:
                return UsuryCheck(
                    True, rule.criminal_cap,
                    f"Rate {_pct(rate)} exceeds {rule.name} criminal usury cap of {_pct(rule.criminal_cap)} "
                    f"(no civil cap but criminal cap applies)",
                )
            return UsuryCheck(False, rule.criminal_cap, f"{rule.name} has no civil usury limit")
        return UsuryCheck(False, None, f"{rule.name} has no usury limit")

    if rate > rule.max_rate:
        return UsuryCheck(
            True, rule.max_rate,
            f"Rate {_pct(rate)} exceeds {rule.name} usury limit of {_pct(rule.max_rate)}",
        )
    return UsuryCheck(False, rule.max_rate, "Within state limit")


def apply_usury_cap(rate: float, state: Optional[str], loan_amount: float, is_commercial: bool) -> UsuryCapResult:
    """
    Cap a computed rate at the governing state ceiling.

    A rate already within the ceiling is returned unchanged; a rate above
    it is replaced by exactly the ceiling and flagged as adjusted.
    """
    usury = check_usury(state, rate, loan_amount, is_commercial)
    if usury.violates and usury.limit is not None:
        return UsuryCapResult(
            rate=usury.limit,
            adjusted=True,
            limit=usury.limit,
            message=f"{usury.message}; rate capped at {_pct(usury.limit)}",
        )
    return UsuryCapResult(rate=rate, adjusted=False, limit=usury.limit, message=usury.message)


def get_disclosure_requirements(state: Optional[str]) -> List[str]:
    rule = get_state_rule(state)
    return list(rule.disclosures) if rule else []
