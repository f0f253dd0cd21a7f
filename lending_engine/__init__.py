"""
Lending Engine

Financial accrual and repayment core for a lending back office: simple
interest accrual, loan repayment and creditor payout allocation, schedule
matching and guarantor tiering, with Decimal math and atomic persistence.
"""

__version__ = "1.0.0"
