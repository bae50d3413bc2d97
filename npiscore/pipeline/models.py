# ========================
# npiscore/pipeline/models.py
# ========================

"""
Aggregate Data Models

In-memory shapes produced by ingestion and consumed by the writer, the
packager and the score calculator. Money is held as integer cents and
service counts as Decimal so every sum is exact.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Any, Optional

from .codes import EM_LEVELS, BENCHMARK_EM_LEVELS, PROGRAM_GROUPS, PROGRAM_NAMES, program_for_code

TOP_CODES_LIMIT = 20


def to_number(value: Decimal) -> Any:
    """Render a Decimal as an int when integral, else a float."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def to_decimal(value: Any) -> Decimal:
    """Parse a JSON/SQL number back to Decimal without float noise."""
    if value is None:
        return Decimal(0)
    return Decimal(str(value))


@dataclass
class CodeBreakdown:
    """Services, payment and beneficiaries for one provider and one code."""

    code: str
    services: Decimal = Decimal(0)
    payment_cents: int = 0
    beneficiaries: int = 0

    def add(self, services: Decimal, payment_cents: int, beneficiaries: int) -> None:
        self.services += services
        self.payment_cents += payment_cents
        self.beneficiaries += beneficiaries

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'services': to_number(self.services),
            'payment_cents': self.payment_cents,
            'beneficiaries': self.beneficiaries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CodeBreakdown':
        return cls(
            code=data['code'],
            services=to_decimal(data.get('services')),
            payment_cents=int(data.get('payment_cents', 0)),
            beneficiaries=int(data.get('beneficiaries', 0)),
        )


@dataclass
class ProgramTotals:
    """Summed services and payment over one program group's code set."""

    services: Decimal = Decimal(0)
    payment_cents: int = 0

    @property
    def adopted(self) -> bool:
        return self.services > 0


@dataclass
class ProviderAggregate:
    """
    Everything known about one provider after a single ingestion pass.

    Descriptive fields come from the first row seen for the provider.
    total_beneficiaries is the largest per-code beneficiary count, never a sum.
    """

    npi: str
    last_name: str = ''
    first_name: str = ''
    credential: str = ''
    specialty: str = ''
    state: str = ''
    city: str = ''
    total_services: Decimal = Decimal(0)
    total_payment_cents: int = 0
    total_beneficiaries: int = 0
    codes: Dict[str, CodeBreakdown] = field(default_factory=dict)
    revenue_score: Optional[int] = None

    def add_row(self, code: str, services: Decimal, payment_cents: int, beneficiaries: int) -> None:
        """
        Fold one source row into the aggregate.

        Args:
            code (str): Billing code
            services (Decimal): Service count on the row
            payment_cents (int): Row payment in cents
            beneficiaries (int): Beneficiary count on the row
        """
        self.total_services += services
        self.total_payment_cents += payment_cents

        breakdown = self.codes.get(code)
        if breakdown is None:
            breakdown = CodeBreakdown(code)
            self.codes[code] = breakdown
        breakdown.add(services, payment_cents, beneficiaries)

        if breakdown.beneficiaries > self.total_beneficiaries:
            self.total_beneficiaries = breakdown.beneficiaries

    def em_services(self, level: str) -> Decimal:
        breakdown = self.codes.get(level)
        return breakdown.services if breakdown else Decimal(0)

    @property
    def em_total(self) -> Decimal:
        return sum((self.em_services(level) for level in EM_LEVELS), Decimal(0))

    def program_totals(self) -> Dict[str, ProgramTotals]:
        """Summed services and payment per program group."""
        totals = {name: ProgramTotals() for name in PROGRAM_NAMES}
        for code, breakdown in self.codes.items():
            group = program_for_code(code)
            if group is not None:
                totals[group.name].services += breakdown.services
                totals[group.name].payment_cents += breakdown.payment_cents
        return totals

    def top_codes(self, limit: int = TOP_CODES_LIMIT) -> List[CodeBreakdown]:
        """Codes with the highest payment, ties broken by code."""
        ordered = sorted(self.codes.values(), key=lambda c: (-c.payment_cents, c.code))
        return ordered[:limit]

    @property
    def distinct_codes(self) -> int:
        return len(self.codes)

    def to_dict(self, top_limit: int = TOP_CODES_LIMIT) -> Dict[str, Any]:
        """Serialize the aggregate for the per-provider record file."""
        record = {
            'npi': self.npi,
            'last_name': self.last_name,
            'first_name': self.first_name,
            'credential': self.credential,
            'specialty': self.specialty,
            'state': self.state,
            'city': self.city,
            'total_beneficiaries': self.total_beneficiaries,
            'total_services': to_number(self.total_services),
            'total_payment_cents': self.total_payment_cents,
        }
        for level in EM_LEVELS:
            record[f'em_{level}'] = to_number(self.em_services(level))
        record['em_total'] = to_number(self.em_total)
        for name, totals in self.program_totals().items():
            record[f'{name}_services'] = to_number(totals.services)
            record[f'{name}_payment_cents'] = totals.payment_cents
        record['top_codes'] = [c.to_dict() for c in self.top_codes(top_limit)]
        record['codes'] = [self.codes[code].to_dict() for code in sorted(self.codes)]
        return record

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProviderAggregate':
        """Rebuild an aggregate from a per-provider record."""
        aggregate = cls(
            npi=data['npi'],
            last_name=data.get('last_name', ''),
            first_name=data.get('first_name', ''),
            credential=data.get('credential', ''),
            specialty=data.get('specialty', ''),
            state=data.get('state', ''),
            city=data.get('city', ''),
            total_services=to_decimal(data.get('total_services')),
            total_payment_cents=int(data.get('total_payment_cents', 0)),
            total_beneficiaries=int(data.get('total_beneficiaries', 0)),
            revenue_score=data.get('revenue_score'),
        )
        for item in data.get('codes', []):
            breakdown = CodeBreakdown.from_dict(item)
            aggregate.codes[breakdown.code] = breakdown
        return aggregate


@dataclass
class SpecialtyAccumulator:
    """Running per-specialty totals, fed once per provider."""

    specialty: str
    provider_count: int = 0
    total_beneficiaries: int = 0
    total_payment_cents: int = 0
    total_services: Decimal = Decimal(0)
    em_levels: Dict[str, Decimal] = field(
        default_factory=lambda: {level: Decimal(0) for level in BENCHMARK_EM_LEVELS}
    )
    em_total: Decimal = Decimal(0)
    program_providers: Dict[str, int] = field(
        default_factory=lambda: {group.name: 0 for group in PROGRAM_GROUPS}
    )

    def add_provider(self, provider: ProviderAggregate) -> None:
        self.provider_count += 1
        self.total_beneficiaries += provider.total_beneficiaries
        self.total_payment_cents += provider.total_payment_cents
        self.total_services += provider.total_services

        for level in BENCHMARK_EM_LEVELS:
            self.em_levels[level] += provider.em_services(level)
        self.em_total += provider.em_total

        for name, totals in provider.program_totals().items():
            if totals.adopted:
                self.program_providers[name] += 1


@dataclass
class SpecialtyBenchmark:
    """Statistical summary for one canonical specialty."""

    specialty: str
    provider_count: int
    avg_beneficiaries: int
    avg_payment_cents: int
    avg_revenue_per_beneficiary_cents: int
    avg_services: int
    pct_99213: float
    pct_99214: float
    pct_99215: float
    ccm_adoption: float
    rpm_adoption: float
    bhi_adoption: float
    awv_adoption: float

    def adoption(self, program: str) -> float:
        return getattr(self, f'{program}_adoption')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'specialty': self.specialty,
            'provider_count': self.provider_count,
            'avg_beneficiaries': self.avg_beneficiaries,
            'avg_payment_cents': self.avg_payment_cents,
            'avg_revenue_per_beneficiary_cents': self.avg_revenue_per_beneficiary_cents,
            'avg_services': self.avg_services,
            'pct_99213': self.pct_99213,
            'pct_99214': self.pct_99214,
            'pct_99215': self.pct_99215,
            'ccm_adoption': self.ccm_adoption,
            'rpm_adoption': self.rpm_adoption,
            'bhi_adoption': self.bhi_adoption,
            'awv_adoption': self.awv_adoption,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SpecialtyBenchmark':
        return cls(
            specialty=data['specialty'],
            provider_count=int(data['provider_count']),
            avg_beneficiaries=int(data['avg_beneficiaries']),
            avg_payment_cents=int(data['avg_payment_cents']),
            avg_revenue_per_beneficiary_cents=int(data['avg_revenue_per_beneficiary_cents']),
            avg_services=int(data['avg_services']),
            pct_99213=float(data['pct_99213']),
            pct_99214=float(data['pct_99214']),
            pct_99215=float(data['pct_99215']),
            ccm_adoption=float(data['ccm_adoption']),
            rpm_adoption=float(data['rpm_adoption']),
            bhi_adoption=float(data['bhi_adoption']),
            awv_adoption=float(data['awv_adoption']),
        )


# Fallback when a provider's specialty has no benchmark and the store holds
# no Internal Medicine row either.
DEFAULT_BENCHMARK = SpecialtyBenchmark(
    specialty='Internal Medicine',
    provider_count=88703,
    avg_beneficiaries=169,
    avg_payment_cents=7729700,
    avg_revenue_per_beneficiary_cents=45700,
    avg_services=0,
    pct_99213=0.2988,
    pct_99214=0.6073,
    pct_99215=0.0665,
    ccm_adoption=0.045,
    rpm_adoption=0.0199,
    bhi_adoption=0.0011,
    awv_adoption=0.3536,
)
