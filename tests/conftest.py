"""
Shared fixtures: an in-memory SQLite database per test and helpers to seed
contracts, rules, mappings and vendors.
"""

import os

# The API module initialises its database at import time
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from royalty_engine.models import SaleTransaction
from royalty_engine.storage.base import Base
from royalty_engine.storage.engine import build_engine
from royalty_engine.storage.models import (
    CalculationRuleRow,
    ContractRow,
    OrgCalculationSettingsRow,
    TermMappingRow,
    VendorRow,
)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    session = factory()
    yield session
    session.close()


def seed_contract(session, company_id="company-1", approach=None, name="Nursery License"):
    contract = ContractRow(company_id=company_id, name=name)
    session.add(contract)
    if approach is not None and company_id:
        session.add(OrgCalculationSettingsRow(company_id=company_id, calculation_approach=approach))
    session.flush()
    return contract


def seed_rule(session, contract, position=0, **fields):
    fields.setdefault("rule_name", f"Rule {position}")
    fields.setdefault("rule_type", "percentage")
    rule = CalculationRuleRow(contract_id=contract.id, position=position, **fields)
    session.add(rule)
    session.flush()
    return rule


def seed_mapping(session, contract, original_term, erp_field_name, status="confirmed", **fields):
    mapping = TermMappingRow(
        contract_id=contract.id,
        company_id=contract.company_id,
        original_term=original_term,
        erp_field_name=erp_field_name,
        status=status,
        **fields,
    )
    session.add(mapping)
    session.flush()
    return mapping


def seed_vendor(session, company_id, vendor_name, vendor_status="Active"):
    vendor = VendorRow(company_id=company_id, vendor_name=vendor_name, vendor_status=vendor_status)
    session.add(vendor)
    session.flush()
    return vendor


def make_sale(id="s1", product_name="Widget", category="", territory="", quantity="1",
              gross_amount="100", transaction_date=date(2025, 2, 10), **fields):
    """Sale transaction with neutral defaults (February: no seasonal key in the test rules)."""
    return SaleTransaction(
        id=id,
        product_name=product_name,
        category=category,
        territory=territory,
        quantity=Decimal(str(quantity)),
        gross_amount=Decimal(str(gross_amount)),
        transaction_date=transaction_date,
        **fields,
    )
