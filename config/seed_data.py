"""Seed data: default roles and a starter chart of accounts.

The starter chart is a small general-ledger layout; companies are expected
to extend it.
"""

DEFAULT_ROLES = [
    {
        "name": "admin",
        "description": "Full access to all features and data",
        "permissions": {"all": True},
    },
    {
        "name": "auditor",
        "description": "Read-only access with audit trail visibility",
        "permissions": {"read": True, "audit": True},
    },
    {
        "name": "finance_team",
        "description": "Can update ledger and approve expenses",
        "permissions": {"read": True, "write": True, "approve": True},
    },
]

STARTER_CHART_OF_ACCOUNTS = [
    # Assets
    {"account_code": "1000", "account_name": "Cash", "account_type": "asset", "balance_type": "debit"},
    {"account_code": "1010", "account_name": "Bank", "account_type": "asset", "balance_type": "debit"},
    {"account_code": "1100", "account_name": "Accounts Receivable", "account_type": "asset", "balance_type": "debit"},
    {"account_code": "1200", "account_name": "Inventory", "account_type": "asset", "balance_type": "debit"},
    {"account_code": "1500", "account_name": "Equipment", "account_type": "asset", "balance_type": "debit"},
    # Liabilities
    {"account_code": "2000", "account_name": "Accounts Payable", "account_type": "liability", "balance_type": "credit"},
    {"account_code": "2100", "account_name": "Taxes Payable", "account_type": "liability", "balance_type": "credit"},
    {"account_code": "2500", "account_name": "Loans Payable", "account_type": "liability", "balance_type": "credit"},
    # Equity
    {"account_code": "3000", "account_name": "Owner's Equity", "account_type": "equity", "balance_type": "credit"},
    {"account_code": "3100", "account_name": "Retained Earnings", "account_type": "equity", "balance_type": "credit"},
    # Revenue
    {"account_code": "4000", "account_name": "Sales Revenue", "account_type": "revenue", "balance_type": "credit"},
    {"account_code": "4100", "account_name": "Service Revenue", "account_type": "revenue", "balance_type": "credit"},
    # Expenses
    {"account_code": "5000", "account_name": "Cost of Goods Sold", "account_type": "expense", "balance_type": "debit"},
    {"account_code": "6000", "account_name": "Rent Expense", "account_type": "expense", "balance_type": "debit"},
    {"account_code": "6100", "account_name": "Salaries Expense", "account_type": "expense", "balance_type": "debit"},
    {"account_code": "6200", "account_name": "Utilities Expense", "account_type": "expense", "balance_type": "debit"},
]
