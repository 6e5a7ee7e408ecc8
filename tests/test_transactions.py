"""
Tests for the transaction service

Tests cover:
1. Transfers (conservation, self-transfer, insufficient balance)
2. Redemption lifecycle (file, process once, conflict on re-processing)
3. Purchases with automatic and one-time promotions
4. Adjustments and the suspicious flag
5. Event awards bounded by the event budget
6. Ledger reads and filters
7. Concurrent redemption processing and transfers on separate sessions
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from loyalty.db import Base
from loyalty.errors import (
    BudgetExceededError,
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from loyalty.models.event import Event
from loyalty.models.promotion import PromotionType, UserPromotion
from loyalty.models.transaction import Transaction, TransactionType
from loyalty.models.user import Role, User
from loyalty.services import transactions as tx_service
from loyalty.utils.auth import Identity


def balance(db, user):
    db.expire_all()
    return db.get(User, user.id).points


class TestTransfer:

    def test_transfer_moves_points_and_writes_one_row(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001", points=0)

        tx = tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=30)

        assert balance(db, alice) == 70
        assert balance(db, bob) == 30
        rows = db.query(Transaction).filter(Transaction.type == TransactionType.TRANSFER).all()
        assert len(rows) == 1
        assert rows[0].id == tx.id
        assert tx.sender_id == alice.id
        assert tx.recipient_id == bob.id
        assert tx.amount == 30

    def test_total_points_conserved(self, db, make_user, identity):
        users = [make_user(f"user000{i}", points=50) for i in range(3)]
        tx_service.create_transfer(db, identity(users[0]), recipient_id=users[1].id, amount=20)
        tx_service.create_transfer(db, identity(users[1]), recipient_id=users[2].id, amount=45)
        assert sum(balance(db, u) for u in users) == 150

    def test_self_transfer_rejected(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        with pytest.raises(ValidationError):
            tx_service.create_transfer(db, identity(alice), recipient_id=alice.id, amount=10)
        assert balance(db, alice) == 100

    def test_insufficient_balance_rejected_and_nothing_written(self, db, make_user, identity):
        alice = make_user("alice001", points=10)
        bob = make_user("bob00001")
        with pytest.raises(InsufficientFundsError):
            tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=11)
        assert balance(db, alice) == 10
        assert balance(db, bob) == 0
        assert db.query(Transaction).count() == 0

    def test_unverified_sender_forbidden(self, db, make_user, identity):
        alice = make_user("alice001", points=100, verified=False)
        bob = make_user("bob00001")
        with pytest.raises(ForbiddenError):
            tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=10)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, db, make_user, identity, amount):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001")
        with pytest.raises(ValidationError):
            tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=amount)

    def test_unknown_recipient(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        with pytest.raises(NotFoundError):
            tx_service.create_transfer(db, identity(alice), recipient_id=9999, amount=10)
        assert balance(db, alice) == 100


class TestRedemption:

    def test_redemption_scenario(self, db, make_user, identity):
        student = make_user("student1", points=200)
        cashier = make_user("cashier1", role=Role.CASHIER)

        tx = tx_service.create_redemption(db, identity(student), amount=50)
        assert balance(db, student) == 200
        assert tx.processed_by_id is None

        processed = tx_service.process_redemption(db, identity(cashier), tx.id)
        assert balance(db, student) == 150
        assert processed.processed_by_id == cashier.id

        with pytest.raises(ConflictError):
            tx_service.process_redemption(db, identity(cashier), tx.id)
        assert balance(db, student) == 150

    def test_redeem_more_than_balance(self, db, make_user, identity):
        student = make_user("student1", points=20)
        with pytest.raises(InsufficientFundsError):
            tx_service.create_redemption(db, identity(student), amount=21)

    def test_processing_non_redemption_rejected(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001")
        cashier = make_user("cashier1", role=Role.CASHIER)
        transfer = tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=5)
        with pytest.raises(ValidationError):
            tx_service.process_redemption(db, identity(cashier), transfer.id)

    def test_regular_user_cannot_file_for_someone_else(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        make_user("bob00001", points=100)
        with pytest.raises(ForbiddenError):
            tx_service.create_redemption(db, identity(alice), amount=10, utorid="bob00001")

    def test_cashier_files_for_customer(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        bob = make_user("bob00001", points=100)
        tx = tx_service.create_redemption(db, identity(cashier), amount=10, utorid="bob00001")
        assert tx.user_id == bob.id
        assert tx.created_by_id == cashier.id


class TestPurchase:

    def test_base_rate_rounds_half_up(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        customer = make_user("student1")
        tx = tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal("19.99"))
        # 19.99 * 4 = 79.96
        assert tx.amount == 80
        assert balance(db, customer) == 80

    def test_automatic_promotion_applied_once(self, db, make_user, make_promotion, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        customer = make_user("student1")
        promo = make_promotion("double", rate=0.01, min_spending=5)
        make_promotion("big-spender", points=100, min_spending=500)

        tx = tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal("10"))

        # 40 base + 10 * 100 * 0.01
        assert tx.amount == 50
        assert tx.promotion_ids == [promo.id]
        assert balance(db, customer) == 50

    def test_one_time_promotion_cannot_be_reused(self, db, make_user, make_promotion, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        customer = make_user("student1")
        promo = make_promotion("welcome", type=PromotionType.ONE_TIME, points=25)

        tx = tx_service.create_purchase(
            db, identity(cashier), utorid="student1", spent=Decimal("1"), promotion_ids=[promo.id],
        )
        assert tx.amount == 29
        mark = db.query(UserPromotion).filter_by(user_id=customer.id, promotion_id=promo.id).one()
        assert mark.used is True

        with pytest.raises(ConflictError):
            tx_service.create_purchase(
                db, identity(cashier), utorid="student1", spent=Decimal("1"), promotion_ids=[promo.id],
            )
        assert balance(db, customer) == 29

    def test_unknown_or_inactive_promotion_rejected(self, db, make_user, make_promotion, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        make_user("student1")
        future = make_promotion("later", type=PromotionType.ONE_TIME, starts_in=timedelta(days=2))

        with pytest.raises(ValidationError):
            tx_service.create_purchase(
                db, identity(cashier), utorid="student1", spent=Decimal("5"), promotion_ids=[9999],
            )
        with pytest.raises(ValidationError):
            tx_service.create_purchase(
                db, identity(cashier), utorid="student1", spent=Decimal("5"), promotion_ids=[future.id],
            )
        assert db.query(Transaction).count() == 0

    def test_suspicious_cashier_purchase_credits_nothing(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER, suspicious=True)
        customer = make_user("student1")
        tx = tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal("10"))
        assert tx.suspicious is True
        assert tx.amount == 40
        assert balance(db, customer) == 0

        # clearing the flag releases the points
        tx_service.set_suspicious(db, tx.id, False)
        assert balance(db, customer) == 40

    def test_non_positive_spent_rejected(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        make_user("student1")
        with pytest.raises(ValidationError):
            tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal("0"))


class TestAdjustmentAndModeration:

    def _purchase(self, db, cashier, identity, spent="10"):
        return tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal(spent))

    def test_adjustment_credits_and_debits(self, db, make_user, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        cashier = make_user("cashier1", role=Role.CASHIER)
        customer = make_user("student1")
        purchase = self._purchase(db, cashier, identity)

        tx_service.create_adjustment(db, identity(manager), utorid="student1", amount=-15, related_id=purchase.id)
        assert balance(db, customer) == 25
        tx_service.create_adjustment(db, identity(manager), utorid="student1", amount=5, related_id=purchase.id)
        assert balance(db, customer) == 30

    def test_adjustment_cannot_overdraw(self, db, make_user, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        cashier = make_user("cashier1", role=Role.CASHIER)
        customer = make_user("student1")
        purchase = self._purchase(db, cashier, identity)
        with pytest.raises(InsufficientFundsError):
            tx_service.create_adjustment(db, identity(manager), utorid="student1", amount=-41, related_id=purchase.id)
        assert balance(db, customer) == 40

    def test_adjustment_needs_existing_related_transaction(self, db, make_user, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        make_user("student1")
        with pytest.raises(NotFoundError):
            tx_service.create_adjustment(db, identity(manager), utorid="student1", amount=5, related_id=999)

    def test_zero_adjustment_rejected(self, db, make_user, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        make_user("student1")
        with pytest.raises(ValidationError):
            tx_service.create_adjustment(db, identity(manager), utorid="student1", amount=0, related_id=1)

    def test_flag_suspicious_takes_points_back(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        customer = make_user("student1")
        purchase = self._purchase(db, cashier, identity)

        tx_service.set_suspicious(db, purchase.id, True)
        assert balance(db, customer) == 0
        # same value again is a no-op
        tx_service.set_suspicious(db, purchase.id, True)
        assert balance(db, customer) == 0
        tx_service.set_suspicious(db, purchase.id, False)
        assert balance(db, customer) == 40

    def test_flagging_pending_redemption_moves_nothing(self, db, make_user, identity):
        student = make_user("student1", points=100)
        cashier = make_user("cashier1", role=Role.CASHIER)
        tx = tx_service.create_redemption(db, identity(student), amount=50)

        tx_service.set_suspicious(db, tx.id, True)
        assert balance(db, student) == 100
        with pytest.raises(ValidationError):
            tx_service.process_redemption(db, identity(cashier), tx.id)
        assert balance(db, student) == 100

        tx_service.set_suspicious(db, tx.id, False)
        assert balance(db, student) == 100
        tx_service.process_redemption(db, identity(cashier), tx.id)
        assert balance(db, student) == 50

    def test_flagging_processed_redemption_refunds(self, db, make_user, identity):
        student = make_user("student1", points=100)
        cashier = make_user("cashier1", role=Role.CASHIER)
        tx = tx_service.create_redemption(db, identity(student), amount=50)
        tx_service.process_redemption(db, identity(cashier), tx.id)
        assert balance(db, student) == 50

        tx_service.set_suspicious(db, tx.id, True)
        assert balance(db, student) == 100
        tx_service.set_suspicious(db, tx.id, False)
        assert balance(db, student) == 50

    def test_flagging_transfer_reverses_both_sides(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001")
        tx = tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=30)

        tx_service.set_suspicious(db, tx.id, True)
        assert (balance(db, alice), balance(db, bob)) == (100, 0)
        tx_service.set_suspicious(db, tx.id, False)
        assert (balance(db, alice), balance(db, bob)) == (70, 30)

    def test_flagging_spent_transfer_fails_without_side_effects(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001")
        carol = make_user("carol001")
        tx = tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=30)
        tx_service.create_transfer(db, identity(bob), recipient_id=carol.id, amount=30)

        with pytest.raises(InsufficientFundsError):
            tx_service.set_suspicious(db, tx.id, True)
        assert (balance(db, alice), balance(db, bob)) == (70, 0)
        db.expire_all()
        assert db.get(Transaction, tx.id).suspicious is False


class TestEventAward:

    def test_award_within_budget(self, db, make_user, make_event, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        guests = [make_user("guest001"), make_user("guest002")]
        event = make_event(points=100, guests=guests)

        created = tx_service.award_event_points(db, identity(manager), event_id=event.id, amount=50)

        assert len(created) == 2
        assert all(tx.related_id == event.id for tx in created)
        assert [balance(db, g) for g in guests] == [50, 50]
        assert db.get(Event, event.id).points_remain == 0

    def test_award_over_budget_is_all_or_nothing(self, db, make_user, make_event, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        guests = [make_user("guest001"), make_user("guest002")]
        event = make_event(points=100, guests=guests)

        with pytest.raises(BudgetExceededError):
            tx_service.award_event_points(db, identity(manager), event_id=event.id, amount=60)

        assert [balance(db, g) for g in guests] == [0, 0]
        assert db.get(Event, event.id).points_remain == 100
        assert db.query(Transaction).count() == 0

    def test_single_guest_award_by_organizer(self, db, make_user, make_event, identity):
        organizer = make_user("organiz1")
        guest = make_user("guest001")
        event = make_event(points=10, organizers=[organizer], guests=[guest])

        created = tx_service.award_event_points(
            db, identity(organizer), event_id=event.id, amount=10, utorid="guest001",
        )
        assert len(created) == 1
        assert balance(db, guest) == 10

        with pytest.raises(BudgetExceededError):
            tx_service.award_event_points(db, identity(organizer), event_id=event.id, amount=1, utorid="guest001")

    def test_non_guest_and_outsider(self, db, make_user, make_event, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        outsider = make_user("outside1")
        make_user("notguest")
        event = make_event(points=100, guests=[make_user("guest001")])

        with pytest.raises(ValidationError):
            tx_service.award_event_points(db, identity(manager), event_id=event.id, amount=5, utorid="notguest")
        with pytest.raises(ForbiddenError):
            tx_service.award_event_points(db, identity(outsider), event_id=event.id, amount=5)

    def test_empty_utorid_is_not_award_all(self, db, make_user, make_event, identity):
        manager = make_user("manager1", role=Role.MANAGER)
        guests = [make_user("guest001"), make_user("guest002")]
        event = make_event(points=100, guests=guests)

        with pytest.raises(ValidationError):
            tx_service.award_event_points(db, identity(manager), event_id=event.id, amount=5, utorid="")
        assert [balance(db, g) for g in guests] == [0, 0]
        assert db.get(Event, event.id).points_remain == 100


class TestLedgerReads:

    def test_filters(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        make_user("student1")
        make_user("student2")
        tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal("10"))
        tx_service.create_purchase(db, identity(cashier), utorid="student2", spent=Decimal("1"))

        count, items = tx_service.list_transactions(db, name="student1")
        assert count == 1 and items[0].amount == 40

        count, _ = tx_service.list_transactions(db, amount=10, operator="gte")
        assert count == 1
        count, _ = tx_service.list_transactions(db, created_by="cashier1", type="purchase")
        assert count == 2

    def test_related_id_requires_type(self, db):
        with pytest.raises(ValidationError):
            tx_service.list_transactions(db, related_id=1)

    def test_amount_requires_operator(self, db):
        with pytest.raises(ValidationError):
            tx_service.list_transactions(db, amount=5)

    def test_pagination_newest_first(self, db, make_user, identity):
        cashier = make_user("cashier1", role=Role.CASHIER)
        make_user("student1")
        ids = [
            tx_service.create_purchase(db, identity(cashier), utorid="student1", spent=Decimal(i)).id
            for i in range(1, 4)
        ]
        count, page1 = tx_service.list_transactions(db, page=1, limit=2)
        _, page2 = tx_service.list_transactions(db, page=2, limit=2)
        assert count == 3
        assert [t.id for t in page1 + page2] == sorted(ids, reverse=True)

    def test_transfer_visible_to_both_sides(self, db, make_user, identity):
        alice = make_user("alice001", points=100)
        bob = make_user("bob00001")
        tx_service.create_transfer(db, identity(alice), recipient_id=bob.id, amount=30)

        assert tx_service.list_transactions(db, owner_id=alice.id)[0] == 1
        assert tx_service.list_transactions(db, owner_id=bob.id)[0] == 1


@pytest.fixture
def file_sessions(tmp_path):
    """Separate sessions over a file-backed database, one per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _seed_user(factory, utorid, role=Role.REGULAR, points=0):
    session = factory()
    try:
        user = User(
            utorid=utorid,
            name=utorid.capitalize(),
            email=f"{utorid}@mail.utoronto.ca",
            role=role,
            points=points,
            verified=True,
        )
        session.add(user)
        session.commit()
        return Identity(id=user.id, utorid=user.utorid, role=user.role)
    finally:
        session.close()


def _race(factory, calls):
    """Runs every call at once, each in its own thread and session."""
    barrier = threading.Barrier(len(calls))

    def run(call):
        session = factory()
        try:
            barrier.wait()
            call(session)
            return "ok"
        except ConflictError:
            return "conflict"
        except InsufficientFundsError:
            return "insufficient"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(run, calls))


def _points(factory, user_id):
    session = factory()
    try:
        return session.get(User, user_id).points
    finally:
        session.close()


class TestConcurrentWrites:

    def test_redemption_processed_at_most_once(self, file_sessions):
        student = _seed_user(file_sessions, "student1", points=100)
        cashiers = [_seed_user(file_sessions, f"cashier{i}", role=Role.CASHIER) for i in range(5)]

        session = file_sessions()
        try:
            tx_id = tx_service.create_redemption(session, student, amount=50).id
        finally:
            session.close()

        outcomes = _race(
            file_sessions,
            [lambda s, c=c: tx_service.process_redemption(s, c, tx_id) for c in cashiers],
        )

        assert sorted(outcomes) == ["conflict"] * 4 + ["ok"]
        assert _points(file_sessions, student.id) == 50

    def test_racing_transfers_cannot_overdraw(self, file_sessions):
        alice = _seed_user(file_sessions, "alice001", points=100)
        bob = _seed_user(file_sessions, "bob00001")
        carol = _seed_user(file_sessions, "carol001")

        outcomes = _race(
            file_sessions,
            [
                lambda s: tx_service.create_transfer(s, alice, recipient_id=bob.id, amount=60),
                lambda s: tx_service.create_transfer(s, alice, recipient_id=carol.id, amount=60),
            ],
        )

        assert sorted(outcomes) == ["insufficient", "ok"]
        assert _points(file_sessions, alice.id) == 40
        assert _points(file_sessions, bob.id) + _points(file_sessions, carol.id) == 60

        session = file_sessions()
        try:
            assert session.query(Transaction).filter_by(type=TransactionType.TRANSFER).count() == 1
        finally:
            session.close()
