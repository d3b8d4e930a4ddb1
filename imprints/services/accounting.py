# imprints/services/accounting.py
# Ledger entries created from order and issue events.
# These run outside the request transaction through the accounting outbox;
# a ledger failure never changes the outcome for the customer.
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.core.config import settings
from imprints.models.accounting import (
    Expense, ExpenseCategory, Income, IncomeCategory, IncomeStatus,
)
from imprints.models.order import Order
from imprints.models.user import User

logger = logging.getLogger(__name__)


def get_tax_year(day: date) -> str:
    """UK tax year runs April 6 to April 5, e.g. '2024/2025'."""
    if day.month < 4 or (day.month == 4 and day.day < 6):
        return f"{day.year - 1}/{day.year}"
    return f"{day.year}/{day.year + 1}"


def vat_included(amount) -> Decimal:
    """VAT part of a VAT-inclusive amount (amount / 6 at the standard 20%)."""
    rate = settings.VAT_RATE
    return (Decimal(amount) * rate / (100 + rate)).quantize(Decimal("0.01"))


async def generate_income_number(db: AsyncSession, today: Optional[date] = None) -> str:
    """INC-YYYYMMDD-NNNN, sequence per day."""
    today = today or datetime.utcnow().date()
    count = await db.scalar(
        select(func.count(Income.id)).where(
            Income.created_at >= datetime.combine(today, time.min),
            Income.created_at <= datetime.combine(today, time.max),
        )
    )
    return f"INC-{today:%Y%m%d}-{count + 1:04d}"


async def generate_expense_number(db: AsyncSession, today: Optional[date] = None) -> str:
    """EXP-YYYYMM-NNNN, continuing from the latest number of the month."""
    today = today or datetime.utcnow().date()
    prefix = f"EXP-{today:%Y%m}-"
    latest = await db.scalar(
        select(Expense.expense_number)
        .where(Expense.expense_number.like(f"{prefix}%"))
        .order_by(Expense.expense_number.desc())
        .limit(1)
    )
    sequence = int(latest.rsplit("-", 1)[1]) + 1 if latest else 1
    return f"{prefix}{sequence:04d}"


async def _customer_name(db: AsyncSession, order: Order) -> Optional[str]:
    customer = await db.get(User, order.customer_id)
    if customer is None:
        return None
    return customer.name or customer.email


async def create_income_from_order(
    db: AsyncSession, order_id: str, status: IncomeStatus = IncomeStatus.PENDING
) -> Optional[Income]:
    """Income entry for a paid order; does nothing if one already exists."""
    existing = await db.scalar(select(Income).where(Income.order_id == order_id).limit(1))
    if existing:
        logger.info(f"Income entry already exists for order {order_id}")
        return None

    order = await db.get(Order, order_id)
    if order is None:
        logger.warning(f"Cannot record income: order {order_id} not found")
        return None

    total = Decimal(order.total_price)
    vat = vat_included(total)
    income = Income(
        income_number=await generate_income_number(db),
        order_id=order.id,
        category=IncomeCategory.PRODUCT_SALES,
        description=f"Order #{order.id[:8].upper()} - Online Sale",
        amount=total,
        currency=settings.CURRENCY,
        customer_name=await _customer_name(db, order),
        income_date=datetime.utcnow(),
        tax_year=get_tax_year(date.today()),
        vat_amount=vat,
        vat_rate=settings.VAT_RATE,
        is_vat_included=True,
        external_reference=order.id,
        status=status,
        notes=f"Auto-generated from order payment. Net: £{total - vat:.2f}, VAT: £{vat:.2f}",
    )
    db.add(income)
    await db.commit()
    logger.info(f"Income entry {income.income_number} created for order {order_id} (status: {status.value})")
    return income


async def update_income_status(db: AsyncSession, order_id: str, status: IncomeStatus) -> bool:
    """Moves the order's income entry to status, e.g. CONFIRMED on delivery."""
    income = await db.scalar(
        select(Income).where(Income.order_id == order_id, Income.amount > 0).limit(1)
    )
    if income is None:
        logger.warning(f"No income entry found for order {order_id}")
        return False

    income.status = status
    await db.commit()
    logger.info(f"Income {income.income_number} status updated to {status.value}")
    return True


async def create_refund_entry(db: AsyncSession, order_id: str, amount, reason: str) -> Optional[Income]:
    """
    Negative income entry for a refund. The original positive entry, if any,
    is marked REVERSED in the same commit.
    """
    order = await db.get(Order, order_id)
    if order is None:
        logger.warning(f"Cannot record refund: order {order_id} not found")
        return None

    amount = Decimal(amount)
    vat = vat_included(amount)
    entry = Income(
        income_number=await generate_income_number(db),
        order_id=order.id,
        category=IncomeCategory.PRODUCT_SALES,
        description=f"REFUND - Order #{order.id[:8].upper()} - {reason}",
        amount=-amount,
        currency=settings.CURRENCY,
        customer_name=await _customer_name(db, order),
        income_date=datetime.utcnow(),
        tax_year=get_tax_year(date.today()),
        vat_amount=-vat,
        vat_rate=settings.VAT_RATE,
        is_vat_included=True,
        external_reference=order.id,
        # refunds are confirmed immediately
        status=IncomeStatus.CONFIRMED,
        notes=f"Auto-generated refund entry. Reason: {reason}",
    )
    db.add(entry)

    original = await db.scalar(
        select(Income).where(Income.order_id == order.id, Income.amount > 0).limit(1)
    )
    if original is not None:
        original.status = IncomeStatus.REVERSED

    await db.commit()
    logger.info(f"Refund entry {entry.income_number} created for order {order_id} (£{amount:.2f})")
    return entry


async def create_reprint_expense(
    db: AsyncSession, original_order_id: str, reprint_order_id: str, reason: str
) -> Expense:
    """Expense entry for the estimated material cost of a free reprint."""
    cost = settings.REPRINT_MATERIAL_COST
    expense = Expense(
        expense_number=await generate_expense_number(db),
        category=ExpenseCategory.MATERIALS,
        description=f"Reprint for Order #{original_order_id[:8].upper()} - {reason}",
        amount=cost,
        currency=settings.CURRENCY,
        external_reference=reprint_order_id,
        purchase_date=datetime.utcnow(),
        tax_year=get_tax_year(date.today()),
        notes=(
            f"Auto-generated estimated material cost. Original order: {original_order_id}, "
            f"reprint order: {reprint_order_id}"
        ),
    )
    db.add(expense)
    await db.commit()
    logger.info(f"Expense {expense.expense_number} created for reprint order {reprint_order_id} (£{cost:.2f})")
    return expense
