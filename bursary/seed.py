"""
Seed data: the standard school chart of accounts and default approval rules.

Seeding is idempotent; accounts are matched by code and rules by name.
"""

from decimal import Decimal
from typing import Dict

from .accounts import ChartOfAccounts, AccountType, NormalBalance
from .approval_rules import ApprovalRuleEngine, VOID_TRANSACTION_TYPE
from .ledger import EntryType
from .logging_config import get_logger

logger = get_logger("bursary.seed")

# code, name, type, normal balance
STANDARD_CHART = [
    # Assets
    ("1010", "Cash on Hand", AccountType.ASSET, NormalBalance.DEBIT),
    ("1020", "Bank Account - KCB", AccountType.ASSET, NormalBalance.DEBIT),
    ("1030", "Bank Account - Equity", AccountType.ASSET, NormalBalance.DEBIT),
    ("1100", "Accounts Receivable - Students", AccountType.ASSET, NormalBalance.DEBIT),
    ("1200", "Inventory - Supplies", AccountType.ASSET, NormalBalance.DEBIT),
    ("1300", "Fixed Assets - Buildings", AccountType.ASSET, NormalBalance.DEBIT),
    ("1310", "Fixed Assets - Vehicles", AccountType.ASSET, NormalBalance.DEBIT),
    ("1320", "Fixed Assets - Furniture", AccountType.ASSET, NormalBalance.DEBIT),
    ("1390", "Accumulated Depreciation", AccountType.ASSET, NormalBalance.CREDIT),  # contra asset

    # Liabilities
    ("2010", "Accounts Payable", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2020", "Student Credit Balances", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2100", "Salary Payable", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2110", "PAYE Payable", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2120", "NSSF Payable", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2130", "NHIF/SHIF Payable", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2140", "Housing Levy Payable", AccountType.LIABILITY, NormalBalance.CREDIT),
    ("2200", "Loans Payable", AccountType.LIABILITY, NormalBalance.CREDIT),

    # Equity
    ("3010", "Capital", AccountType.EQUITY, NormalBalance.CREDIT),
    ("3020", "Retained Earnings", AccountType.EQUITY, NormalBalance.CREDIT),
    ("3030", "Current Year Surplus/Deficit", AccountType.EQUITY, NormalBalance.CREDIT),

    # Revenue
    ("4010", "Tuition Fees", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4020", "Boarding Fees", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4030", "Transport Fees", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4040", "Activity Fees", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4050", "Exam Fees", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4100", "Government Grants - Capitation", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4200", "Donations", AccountType.REVENUE, NormalBalance.CREDIT),
    ("4300", "Other Income", AccountType.REVENUE, NormalBalance.CREDIT),

    # Expenses
    ("5010", "Salaries - Teaching Staff", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5020", "Salaries - Non-Teaching Staff", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5030", "Statutory Deductions - NSSF", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5040", "Statutory Deductions - NHIF/SHIF", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5050", "Statutory Deductions - Housing Levy", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5100", "Food & Catering - Boarding", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5200", "Transport - Fuel & Maintenance", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5210", "Transport - Driver Salaries", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5300", "Utilities - Electricity", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5310", "Utilities - Water", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5400", "Supplies - Stationery", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5410", "Supplies - Cleaning", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5500", "Repairs & Maintenance", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5600", "Depreciation Expense", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5700", "Bank Charges", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5800", "Professional Fees", AccountType.EXPENSE, NormalBalance.DEBIT),
    ("5900", "Miscellaneous Expenses", AccountType.EXPENSE, NormalBalance.DEBIT),
]

DEFAULT_APPROVAL_RULES = [
    {
        "name": "High Value Void",
        "transaction_type": VOID_TRANSACTION_TYPE,
        "min_amount": Decimal("50000"),
        "required_approver_role": "FINANCE_MANAGER",
        "description": "High-value transaction voids require Finance Manager approval",
    },
    {
        "name": "Aged Transaction Void",
        "transaction_type": VOID_TRANSACTION_TYPE,
        "min_age_days": 7,
        "required_approver_role": "FINANCE_MANAGER",
        "description": "Voids of transactions a week or more old require approval",
    },
    {
        "name": "Large Payment",
        "transaction_type": EntryType.FEE_PAYMENT.value,
        "min_amount": Decimal("100000"),
        "required_approver_role": "FINANCE_MANAGER",
        "description": "Large fee payments require approval",
    },
    {
        "name": "All Refunds",
        "transaction_type": EntryType.REFUND.value,
        "required_approver_role": "FINANCE_MANAGER",
        "description": "Refunds require approval",
    },
]


def seed_chart_of_accounts(chart: ChartOfAccounts) -> int:
    """Create any missing standard accounts; returns how many were created"""
    created = 0
    for code, name, account_type, normal_balance in STANDARD_CHART:
        if chart.get_account_by_code(code):
            continue
        chart.create_account(
            code=code,
            name=name,
            account_type=account_type,
            normal_balance=normal_balance,
            is_system_account=True,
            created_by="system"
        )
        created += 1
    return created


def seed_approval_rules(rule_engine: ApprovalRuleEngine) -> int:
    """Create any missing default approval rules; returns how many were created"""
    created = 0
    for rule in DEFAULT_APPROVAL_RULES:
        if rule_engine.get_rule_by_name(rule["name"]):
            continue
        rule_engine.create_rule(created_by="system", **rule)
        created += 1
    return created


def seed_all(chart: ChartOfAccounts, rule_engine: ApprovalRuleEngine) -> Dict[str, int]:
    result = {
        "accounts": seed_chart_of_accounts(chart),
        "approval_rules": seed_approval_rules(rule_engine),
    }
    if result["accounts"] or result["approval_rules"]:
        logger.info("Seeded %d accounts and %d approval rules",
                    result["accounts"], result["approval_rules"])
    return result
