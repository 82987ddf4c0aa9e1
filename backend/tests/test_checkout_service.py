"""
Staged checkout tests.

Verifies:
- Staging validation (empty cart, shipping details) and re-entry
- paid + remaining == total after every partial payment
- Store credit covers what it can and leaves the rest outstanding
- Replayed payment references never apply twice
"""

import pytest

from storefront.errors import (
    AuthorizationError,
    EmptyCart,
    InsufficientFunds,
    InvalidMethod,
    ItemRemoved,
    MissingShippingDetails,
    NoPendingCheckout,
    PaymentNotCompleted,
    StepUpFailed,
    ValidationError,
)
from storefront.models import Order, Product
from storefront.services import cart_service, checkout_service, order_service, wallet_service

from conftest import PASSWORD, SESSION_KEY, line, shipping


class TestBegin:

    def test_begin_stages_snapshot(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=200)

        pending, created = checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 3)], shipping())

        assert created
        assert pending.total_cents == 600
        assert pending.remaining_cents == 600
        assert pending.paid_cents == 0

    def test_begin_twice_reenters(self, db_session, store, customer, make_product):
        milk = make_product()
        first, _ = checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 1)], shipping())

        second, created = checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 4)], shipping())

        assert not created
        assert second is first
        assert second.total_cents == 200

    def test_begin_from_persisted_cart(self, db_session, store, customer, make_product):
        milk = make_product()
        cart_service.add_item(customer.id, milk.id, 2)

        pending, _ = checkout_service.begin_from_cart(store, SESSION_KEY, customer, shipping())

        assert pending.lines[0]["quantity"] == 2

    def test_empty_cart_rejected(self, db_session, store, customer):
        with pytest.raises(EmptyCart):
            checkout_service.begin(store, SESSION_KEY, customer, [], shipping())

    @pytest.mark.parametrize("missing", ["name", "address"])
    def test_shipping_name_and_address_required(self, db_session, store, customer, make_product, missing):
        milk = make_product()
        with pytest.raises(MissingShippingDetails):
            checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 1)], shipping(**{missing: "  "}))
        assert store.get(checkout_service.NAMESPACE, SESSION_KEY) is None

    def test_client_prices_are_ignored(self, db_session, store, customer, make_product):
        tv = make_product(name="Television", price_cents=99900, quantity=5)
        snapshot = [{"product_id": tv.id, "quantity": 2, "price_cents": 0, "name": "Free TV"}]

        pending, _ = checkout_service.begin(store, SESSION_KEY, customer, snapshot, shipping())

        assert pending.total_cents == 199800
        assert pending.remaining_cents == 199800
        assert pending.lines[0]["price_cents"] == 99900
        assert pending.lines[0]["name"] == "Television"

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, db_session, store, customer, make_product, quantity):
        tv = make_product(price_cents=99900)
        gum = make_product(name="Gum", price_cents=100)

        with pytest.raises(ValidationError):
            checkout_service.begin(
                store, SESSION_KEY, customer, [line(tv, 1), line(gum, quantity)], shipping()
            )
        assert store.get(checkout_service.NAMESPACE, SESSION_KEY) is None

    def test_unpriced_product_rejected(self, db_session, store, customer, make_product):
        sample = make_product(name="Free Sample", price_cents=0)
        with pytest.raises(ValidationError):
            checkout_service.begin(store, SESSION_KEY, customer, [line(sample, 1)], shipping())

    def test_removed_product_rejected(self, db_session, store, customer):
        with pytest.raises(ItemRemoved):
            checkout_service.begin(store, SESSION_KEY, customer, [{"product_id": 9999, "quantity": 1}], shipping())

    def test_no_pending_checkout(self, db_session, store):
        with pytest.raises(NoPendingCheckout):
            checkout_service.get_pending(store, SESSION_KEY)

    def test_select_unknown_method(self, db_session, store, customer, make_product):
        checkout_service.begin(store, SESSION_KEY, customer, [line(make_product(), 1)], shipping())
        with pytest.raises(InvalidMethod):
            checkout_service.select_method(store, SESSION_KEY, "bitcoin")


class TestPartialPayments:

    def test_conservation_across_partials(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=500, quantity=10)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 2)], shipping())

        for amount, ref in [(300, "p1"), (450, "p2")]:
            result = checkout_service.apply_partial_payment(
                store, SESSION_KEY, customer, "card", amount, provider_ref=ref
            )
            pending = result.pending
            assert pending.paid_cents + pending.remaining_cents == pending.total_cents
            assert pending.remaining_cents >= 0

        assert pending.remaining_cents == 250

    def test_overpayment_applies_only_remaining(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=200, quantity=10)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 1)], shipping())

        result = checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 900, provider_ref="big")

        assert result.order_id is not None
        order = db_session.get(Order, result.order_id)
        assert order.summary["paid_cents"] == 200
        assert order.summary["partial_payments"][0]["meta"]["charged_cents"] == 900

    def test_same_reference_applied_once(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=500, quantity=10)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 2)], shipping())

        checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 300, provider_ref="dup")
        result = checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 300, provider_ref="dup")

        assert result.duplicate
        assert result.pending.remaining_cents == 700

    def test_final_payment_finalizes_and_clears_slot(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=200, quantity=5)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 3)], shipping())

        result = checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "paypal", 600, provider_ref="ORDER-1")

        assert result.order_id is not None
        assert store.get(checkout_service.NAMESPACE, SESSION_KEY) is None

    def test_replay_after_finalize_returns_same_order(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=200, quantity=5)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 1)], shipping())
        first = checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 200, provider_ref="cs_x")

        replay = checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 200, provider_ref="cs_x")

        assert replay.duplicate
        assert replay.order_id == first.order_id
        assert db_session.query(Order).count() == 1

    def test_replay_by_another_customer_rejected(self, db_session, store, customer, other_customer, make_product):
        milk = make_product(price_cents=200, quantity=5)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 1)], shipping())
        checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 200, provider_ref="cs_alice")

        checkout_service.begin(store, "bob-session", other_customer, [line(milk, 1)], shipping(name="Bob"))
        with pytest.raises(AuthorizationError):
            checkout_service.apply_partial_payment(
                store, "bob-session", other_customer, "card", 200, provider_ref="cs_alice"
            )
        with pytest.raises(AuthorizationError):
            checkout_service.confirm_provider_payment(store, "bob-session", other_customer, None, "cs_alice")

        assert checkout_service.get_pending(store, "bob-session").paid_cents == 0
        assert db_session.query(Order).count() == 1

    def test_abandon_returns_unrefunded_partials(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=500, quantity=10)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 2)], shipping())
        checkout_service.apply_partial_payment(store, SESSION_KEY, customer, "card", 300, provider_ref="p1")

        abandoned = checkout_service.abandon(store, SESSION_KEY)

        assert abandoned.paid_cents == 300
        with pytest.raises(NoPendingCheckout):
            checkout_service.get_pending(store, SESSION_KEY)


class TestStoreCredit:

    def test_wallet_covers_part_of_total(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=1000, quantity=5)
        wallet_service.add_funds(customer.id, 400, wallet_service.METHOD_ADMIN_CREDIT)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 1)], shipping())

        result = checkout_service.pay_with_store_credit(store, SESSION_KEY, customer, PASSWORD)

        assert result.order_id is None
        assert result.pending.remaining_cents == 600
        assert result.pending.partial_payments[0].method == "store_credit"
        assert wallet_service.get_balance(customer.id) == 0

    def test_wallet_covers_whole_total(self, db_session, store, customer, make_product):
        milk = make_product(price_cents=250, quantity=5)
        wallet_service.add_funds(customer.id, 1000, wallet_service.METHOD_ADMIN_CREDIT)
        checkout_service.begin(store, SESSION_KEY, customer, [line(milk, 2)], shipping())

        result = checkout_service.pay_with_store_credit(store, SESSION_KEY, customer, PASSWORD)

        assert result.order_id is not None
        assert wallet_service.get_balance(customer.id) == 500
        order = db_session.get(Order, result.order_id)
        assert order.payment_method == "store_credit"

    def test_wrong_password_debits_nothing(self, db_session, store, customer, make_product):
        wallet_service.add_funds(customer.id, 1000, wallet_service.METHOD_ADMIN_CREDIT)
        checkout_service.begin(store, SESSION_KEY, customer, [line(make_product(), 1)], shipping())

        with pytest.raises(StepUpFailed):
            checkout_service.pay_with_store_credit(store, SESSION_KEY, customer, "wrong")

        assert wallet_service.get_balance(customer.id) == 1000

    def test_empty_wallet(self, db_session, store, customer, make_product):
        checkout_service.begin(store, SESSION_KEY, customer, [line(make_product(), 1)], shipping())
        with pytest.raises(InsufficientFunds):
            checkout_service.pay_with_store_credit(store, SESSION_KEY, customer, PASSWORD)


class TestProviderConfirmation:

    def test_unknown_reference_rejected(self, db_session, store, customer, make_product):
        checkout_service.begin(store, SESSION_KEY, customer, [line(make_product(), 1)], shipping())
        with pytest.raises(ValidationError):
            checkout_service.confirm_provider_payment(store, SESSION_KEY, customer, "paypal", "never-issued")


class TestUnpaidFinalize:

    def test_retry_finalize_requires_payment(self, db_session, store, customer, make_product):
        tv = make_product(name="Television", price_cents=99900, quantity=5)
        checkout_service.begin(store, SESSION_KEY, customer, [{"product_id": tv.id, "quantity": 2, "price_cents": 0}], shipping())

        with pytest.raises(PaymentNotCompleted):
            checkout_service.retry_finalize(store, SESSION_KEY, customer)

        assert db_session.query(Order).count() == 0

    def test_settlement_refuses_checkout_with_no_payment(self, db_session, store, customer, make_product):
        tv = make_product(name="Television", price_cents=99900, quantity=5)
        pending, _ = checkout_service.begin(store, SESSION_KEY, customer, [line(tv, 2)], shipping())
        pending.remaining_cents = 0

        with pytest.raises(PaymentNotCompleted):
            order_service.finalize(customer, pending, None)

        assert db_session.query(Order).count() == 0
        assert db_session.get(Product, tv.id).quantity == 5
