import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("FINANCE_DATABASE_URL", "")
    jwt_secret: str = os.getenv("FINANCE_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("FINANCE_JWT_ALGORITHM", "HS256")
    jwt_leeway_seconds: int = int(os.getenv("FINANCE_JWT_LEEWAY_SECONDS", "0"))
    default_due_days: int = int(os.getenv("FINANCE_DEFAULT_DUE_DAYS", "30"))
    receivable_account_code: str = os.getenv("FINANCE_AR_ACCOUNT_CODE", "1301")
    receivable_account_name: str = os.getenv("FINANCE_AR_ACCOUNT_NAME", "Accounts Receivable")
    revenue_account_code: str = os.getenv("FINANCE_REVENUE_ACCOUNT_CODE", "4101")
    revenue_account_name: str = os.getenv("FINANCE_REVENUE_ACCOUNT_NAME", "Fee Revenue")
    cash_account_code: str = os.getenv("FINANCE_CASH_ACCOUNT_CODE", "1101")
    cash_account_name: str = os.getenv("FINANCE_CASH_ACCOUNT_NAME", "Cash and Bank")
    expense_account_code: str = os.getenv("FINANCE_EXPENSE_ACCOUNT_CODE", "5101")
    expense_account_name: str = os.getenv("FINANCE_EXPENSE_ACCOUNT_NAME", "Operating Expense")


settings = Settings()
