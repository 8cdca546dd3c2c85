"""
Financing records of committed power plants.

A Loan is a series of equal payments from a borrower to a lender, attached to the plant
it finances: the manufacturer's down-payment installments and the bank's annuity loan.
A CashFlow is a single payment recorded in the model ledger.
"""
from dataclasses import dataclass
from typing import Any, Optional

DOWNPAYMENT = "DOWNPAYMENT"
CASH_FLOW_CATEGORIES = (DOWNPAYMENT,)


@dataclass
class Loan:
    """
    Attributes:
        loan_id: Unique identifier.
        borrower: Paying party (the energy producer).
        lender: Receiving party (manufacturer or bank).
        amount_per_payment: Payment due each tick.
        total_number_of_payments: Number of payments in the loan term.
        loan_start_time: Tick the loan was created.
        regarding_power_plant: Plant the loan finances.
    """

    loan_id: str
    borrower: Any
    lender: Any
    amount_per_payment: float
    total_number_of_payments: int
    loan_start_time: int
    regarding_power_plant: Any = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any parameter is invalid
        """
        if self.amount_per_payment < 0:
            raise ValueError(
                f"amount_per_payment cannot be negative, got {self.amount_per_payment}"
            )
        if self.total_number_of_payments < 0:
            raise ValueError(
                f"total_number_of_payments cannot be negative, got {self.total_number_of_payments}"
            )


@dataclass
class CashFlow:
    """A single payment between two parties at a tick."""

    payer: Any
    payee: Any
    money: float
    category: str
    time: int
    regarding_power_plant: Optional[Any] = None

    def __post_init__(self):
        if self.category not in CASH_FLOW_CATEGORIES:
            raise ValueError(
                f"category must be one of {CASH_FLOW_CATEGORIES}, got {self.category!r}"
            )
