# imprints/models/accounting.py
# Income and Expense ledger entries. Written by accounting side effects,
# never authoritative for order or issue state.
import enum
from datetime import datetime

from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime, Enum

from imprints.db.base import Base, new_id


class IncomeStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REVERSED = "REVERSED"


class IncomeCategory(str, enum.Enum):
    PRODUCT_SALES = "PRODUCT_SALES"
    OTHER = "OTHER"


class ExpenseCategory(str, enum.Enum):
    MATERIALS = "MATERIALS"
    SHIPPING = "SHIPPING"
    OTHER = "OTHER"


class Income(Base):
    __tablename__ = "incomes"

    id = Column(String(36), primary_key=True, default=new_id)
    income_number = Column(String(50), unique=True, nullable=False)
    order_id = Column(String(36), nullable=True, index=True)
    category = Column(Enum(IncomeCategory), nullable=False)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="GBP", nullable=False)
    customer_name = Column(String(255), nullable=True)
    income_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    tax_year = Column(String(9), nullable=False)
    vat_amount = Column(Numeric(10, 2), nullable=True)
    vat_rate = Column(Numeric(5, 2), nullable=True)
    is_vat_included = Column(Boolean, default=True, nullable=False)
    external_reference = Column(String(255), nullable=True)
    status = Column(Enum(IncomeStatus), default=IncomeStatus.PENDING, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=new_id)
    expense_number = Column(String(50), unique=True, nullable=False)
    category = Column(Enum(ExpenseCategory), nullable=False)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="GBP", nullable=False)
    external_reference = Column(String(255), nullable=True)
    purchase_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    tax_year = Column(String(9), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
