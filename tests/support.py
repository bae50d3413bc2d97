# ========================
# tests/support.py
# ========================

"""Shared fixtures for the test modules."""

import csv
import os
import sys
from decimal import Decimal

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from npiscore.pipeline.models import ProviderAggregate, SpecialtyAccumulator, SpecialtyBenchmark

HEADER = [
    'Rndrng_NPI', 'Rndrng_Prvdr_Last_Org_Name', 'Rndrng_Prvdr_First_Name',
    'Rndrng_Prvdr_Crdntls', 'Rndrng_Prvdr_City', 'Rndrng_Prvdr_State_Abrvtn',
    'Rndrng_Prvdr_Type', 'HCPCS_Cd', 'Tot_Benes', 'Tot_Srvcs', 'Avg_Mdcr_Pymt_Amt',
]


def claim_row(npi, code, services, avg_payment, benes, specialty='Internal Medicine',
              last_name='Doe', first_name='Jane', credential='MD', city='Austin', state='TX'):
    """A source row in HEADER order."""
    return [npi, last_name, first_name, credential, city, state, specialty,
            code, benes, services, avg_payment]


def write_csv(path, rows, header=HEADER):
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)


def make_provider(npi, specialty='Internal Medicine', codes=None, **fields):
    """
    Build an aggregate from {code: (services, payment_cents, beneficiaries)}.
    """
    provider = ProviderAggregate(npi=npi, specialty=specialty,
                                 last_name=fields.get('last_name', 'Doe'),
                                 first_name=fields.get('first_name', 'Jane'),
                                 state=fields.get('state', 'TX'),
                                 city=fields.get('city', 'Austin'))
    for code, (services, payment_cents, benes) in (codes or {}).items():
        provider.add_row(code, Decimal(str(services)), payment_cents, benes)
    return provider


def accumulate(specialty, providers):
    accumulator = SpecialtyAccumulator(specialty)
    for provider in providers:
        accumulator.add_provider(provider)
    return accumulator


def make_benchmark(specialty='Cardiology', **overrides):
    values = dict(
        specialty=specialty, provider_count=100, avg_beneficiaries=100,
        avg_payment_cents=5_000_000, avg_revenue_per_beneficiary_cents=50_000,
        avg_services=400, pct_99213=0.3, pct_99214=0.5, pct_99215=0.1,
        ccm_adoption=0.05, rpm_adoption=0.0, bhi_adoption=0.005, awv_adoption=0.4,
    )
    values.update(overrides)
    return SpecialtyBenchmark(**values)
