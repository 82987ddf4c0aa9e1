"""
Conservation tests over randomised sequences.

Verifies:
- However many customers race for the same product, units sold never exceed
  the stock there was, stock never goes negative, and every unit that left
  stock belongs to an order
- A wallet's balance after any mix of credits and debits equals the sum of
  the operations that went through, and matches its transaction log
"""

import random

import pytest
from sqlalchemy import func

from storefront.errors import InsufficientFunds, StockConflict
from storefront.models import Order, OrderItem, Product, WalletTransaction
from storefront.services import checkout_service, wallet_service
from storefront.services.auth_service import create_user

from conftest import PASSWORD, line, reload, shipping


SEEDS = [3, 17, 42, 2026, 9001]


# =============================================================================
# STOCK
# =============================================================================


class TestStockNeverOversold:

    @pytest.mark.parametrize("seed", SEEDS)
    def test_units_sold_bounded_by_stock(self, db_session, store, make_product, seed):
        rng = random.Random(seed)
        stock = rng.randint(1, 12)
        rice = make_product(name="Jasmine Rice 5kg", price_cents=1250, quantity=stock)

        shoppers = []
        for i in range(rng.randint(3, 7)):
            user = create_user(f"shopper{i}", f"shopper{i}@example.com", PASSWORD)
            session_key = f"session-{seed}-{i}"
            quantity = rng.randint(1, stock)
            pending, _ = checkout_service.begin(store, session_key, user, [line(rice, quantity)], shipping())
            shoppers.append((user, session_key, pending.total_cents))

        rng.shuffle(shoppers)
        sold = 0
        for user, session_key, total in shoppers:
            try:
                result = checkout_service.apply_partial_payment(
                    store, session_key, user, "card", total, provider_ref=f"cs_{session_key}"
                )
            except StockConflict:
                continue
            assert result.order_id is not None
            sold += total // 1250

        remaining = reload(Product, rice.id).quantity
        ordered = db_session.query(func.coalesce(func.sum(OrderItem.quantity), 0)).scalar()
        assert sold <= stock
        assert remaining >= 0
        assert ordered == sold
        assert remaining == stock - sold
        assert db_session.query(Order).count() <= len(shoppers)

    def test_conflicted_checkout_keeps_its_payment(self, db_session, store, make_product):
        rice = make_product(name="Jasmine Rice 5kg", price_cents=1250, quantity=3)
        first = create_user("first", "first@example.com", PASSWORD)
        second = create_user("second", "second@example.com", PASSWORD)
        for user, key in ((first, "s-first"), (second, "s-second")):
            checkout_service.begin(store, key, user, [line(rice, 2)], shipping())

        checkout_service.apply_partial_payment(store, "s-first", first, "card", 2500, provider_ref="cs_first")
        with pytest.raises(StockConflict):
            checkout_service.apply_partial_payment(store, "s-second", second, "card", 2500, provider_ref="cs_second")

        pending = checkout_service.get_pending(store, "s-second")
        assert pending.paid_cents == 2500
        assert reload(Product, rice.id).quantity == 1
        assert db_session.query(Order).count() == 1


# =============================================================================
# WALLET
# =============================================================================


class TestWalletConservation:

    @pytest.mark.parametrize("seed", SEEDS)
    def test_balance_equals_committed_operations(self, db_session, customer, seed):
        rng = random.Random(seed)
        expected = 0
        refused = 0

        for _ in range(40):
            amount = rng.randint(1, 5000)
            if rng.random() < 0.5:
                balance = wallet_service.add_funds(customer.id, amount, wallet_service.METHOD_ADMIN_CREDIT)
                expected += amount
            else:
                try:
                    balance = wallet_service.deduct_funds(customer.id, amount)
                except InsufficientFunds as e:
                    refused += 1
                    assert e.details["requested_cents"] == amount
                    assert e.details["balance_cents"] < amount
                    continue
                expected -= amount
            assert balance == expected
            assert balance >= 0

        logged = (
            db_session.query(func.coalesce(func.sum(WalletTransaction.amount_cents), 0))
            .filter_by(user_id=customer.id)
            .scalar()
        )
        assert wallet_service.get_balance(customer.id) == expected
        assert logged == expected
        assert db_session.query(WalletTransaction).filter_by(user_id=customer.id).count() == 40 - refused

    def test_refused_debit_changes_nothing(self, db_session, customer):
        wallet_service.add_funds(customer.id, 300, wallet_service.METHOD_ADMIN_CREDIT)

        with pytest.raises(InsufficientFunds):
            wallet_service.deduct_funds(customer.id, 301)

        assert wallet_service.get_balance(customer.id) == 300
        assert db_session.query(WalletTransaction).filter_by(user_id=customer.id).count() == 1
