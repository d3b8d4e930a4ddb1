"""
Shared fixtures: a fresh SQLite database per test, a data factory working in
its own sessions, a fake payment gateway and a running accounting outbox.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import func, select

from imprints.db.base import Base
from imprints.db.session import make_engine, make_session_factory
from imprints.models.issue import Issue, IssueMessage, IssueReason, IssueStatus, MessageSender
from imprints.models.order import Order, OrderItem, OrderStatus
from imprints.models.payment import Payment, PaymentStatus
from imprints.models.user import RoleEnum, User
import imprints.models.accounting  # noqa: F401
from imprints.services.outbox import AccountingOutbox
from imprints.services.stripe_gateway import RefundResult, ResolvedPaymentIntent


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'imprints.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    """Session handed to the services under test."""
    async with session_factory() as session:
        yield session


# ============================================================================
# Data factory
# ============================================================================


class Factory:
    """Creates rows in short-lived sessions and reads them back fresh."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._seq = 0

    async def _save(self, *objects):
        async with self.session_factory() as s:
            s.add_all(objects)
            await s.commit()
        return objects[0]

    async def user(self, role: RoleEnum = RoleEnum.customer, email: Optional[str] = None) -> User:
        self._seq += 1
        return await self._save(User(
            email=email or f"user{self._seq}@example.com",
            name=f"User {self._seq}",
            role=role,
        ))

    async def order(
        self,
        customer: Optional[User] = None,
        status: OrderStatus = OrderStatus.delivered,
        total: str = "50.00",
        payment_ref: Optional[str] = "pi_123",
        payment_status: PaymentStatus = PaymentStatus.COMPLETED,
        with_payment: bool = True,
        item_metadata: Optional[dict] = None,
        updated_at: Optional[datetime] = None,
    ) -> Order:
        """Order with one item of the full total and, unless disabled, a payment."""
        customer = customer or await self.user()
        amount = Decimal(total)
        order = Order(
            customer_id=customer.id,
            status=status,
            subtotal=amount,
            total_price=amount,
            design_id="design-1",
            print_size="A3",
            material="matte",
            orientation="portrait",
            shipping_address={"line1": "1 High Street", "city": "London", "postcode": "E1 6AN"},
        )
        if updated_at is not None:
            order.created_at = updated_at
            order.updated_at = updated_at
        order.items = [OrderItem(
            product_id="product-1",
            design_id="design-1",
            quantity=1,
            unit_price=amount,
            total_price=amount,
            customization={"frame": "none"},
            item_metadata=item_metadata,
        )]
        if with_payment:
            order.payment = Payment(
                amount=amount,
                status=payment_status,
                stripe_payment_id=payment_ref,
                paid_at=datetime.utcnow(),
            )
        return await self._save(order)

    async def issue(
        self,
        order: Order,
        status: IssueStatus = IssueStatus.AWAITING_REVIEW,
        reason: IssueReason = IssueReason.PRINTING_ERROR,
        **fields,
    ) -> Issue:
        return await self._save(Issue(
            order_item_id=order.items[0].id,
            reason=reason,
            status=status,
            created_by=order.customer_id,
            **fields,
        ))

    async def message(
        self,
        issue: Issue,
        sender: MessageSender,
        content: str = "Hello",
        created_at: Optional[datetime] = None,
        read_at: Optional[datetime] = None,
    ) -> IssueMessage:
        return await self._save(IssueMessage(
            issue_id=issue.id,
            sender=sender,
            sender_id=None,
            content=content,
            created_at=created_at or datetime.utcnow(),
            read_at=read_at,
        ))

    async def get(self, model, id_):
        async with self.session_factory() as s:
            return await s.get(model, id_)

    async def count(self, model, *where) -> int:
        async with self.session_factory() as s:
            return await s.scalar(select(func.count()).select_from(model).where(*where))

    async def all(self, model, *where) -> list:
        async with self.session_factory() as s:
            return list(await s.scalars(select(model).where(*where)))


@pytest.fixture
def factory(session_factory):
    return Factory(session_factory)


@pytest.fixture
async def customer(factory):
    return await factory.user()


@pytest.fixture
async def admin(factory):
    return await factory.user(role=RoleEnum.admin, email="admin@example.com")


# ============================================================================
# Collaborators
# ============================================================================


class FakeGateway:
    """Payment gateway double; records every call."""

    def __init__(self):
        self.resolved = ResolvedPaymentIntent(payment_intent_id="pi_123", is_paid=True)
        self.refund = RefundResult(success=True, refund_id="re_1", amount=Decimal("50.00"))
        self.refund_error: Optional[Exception] = None
        self.resolve_calls: list[str] = []
        self.refund_calls: list[dict] = []

    async def resolve_payment_intent_id(self, payment_id: str) -> ResolvedPaymentIntent:
        self.resolve_calls.append(payment_id)
        return self.resolved

    async def create_refund(self, payment_intent_id, reason="requested_by_customer", amount=None, idempotency_key=None):
        self.refund_calls.append({
            "payment_intent_id": payment_intent_id,
            "reason": reason,
            "amount": amount,
            "idempotency_key": idempotency_key,
        })
        if self.refund_error is not None:
            raise self.refund_error
        return self.refund


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def outbox(session_factory):
    outbox = AccountingOutbox(session_factory, maxsize=10, max_attempts=2, retry_delay=0)
    outbox.start()
    yield outbox
    await outbox.stop(timeout=5)
