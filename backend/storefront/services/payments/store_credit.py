# Overview: Store-credit rail; password step-up and partial tender against the wallet ledger.

from __future__ import annotations

import uuid

from ...extensions import db
from ...models import User, WalletTransaction
from ...errors import InsufficientFunds, OriginalPaymentMissing, StepUpFailed
from .. import wallet_service
from ..auth_service import verify_password
from .base import (
    PaymentAdapter,
    PaymentIntent,
    PaymentStatus,
    RefundResult,
    STATE_COMPLETED,
    STATE_FAILED,
)


class StoreCreditAdapter(PaymentAdapter):
    """
    Pays from the customer's wallet.

    Unlike the external rails this one supports partial tender: it debits
    whatever the wallet can cover, up to the requested amount, and leaves the
    rest of the checkout for another method. The account password is
    required for every debit so a hijacked session cannot spend stored value.
    """

    method = "store_credit"
    supports_partial = True

    def __init__(self, user: User | None = None, password: str | None = None):
        self.user = user
        self.password = password

    def create_intent(self, amount_cents: int, currency: str, *, reference: str | None = None) -> PaymentIntent:
        if self.user is None or not verify_password(self.password or "", self.user.password_hash):
            raise StepUpFailed("Incorrect password")

        balance_before = wallet_service.get_balance(self.user.id)
        applied = min(balance_before, amount_cents)
        if applied <= 0:
            raise InsufficientFunds("No store credit available", details={"balance_cents": balance_before})

        provider_ref = f"wallet:{reference or uuid.uuid4().hex}"
        balance_after = wallet_service.deduct_funds(
            self.user.id,
            applied,
            wallet_service.METHOD_STORE_CREDIT,
            provider_ref=provider_ref,
        )
        return PaymentIntent(
            method=self.method,
            provider_ref=provider_ref,
            amount_cents=applied,
            currency=currency,
            raw={
                "balance_before_cents": balance_before,
                "balance_after_cents": balance_after,
                "partial": applied < amount_cents,
            },
        )

    def check_status(self, provider_ref: str) -> PaymentStatus:
        txn = db.session.query(WalletTransaction).filter_by(provider_ref=provider_ref).first()
        if txn is None:
            return PaymentStatus(state=STATE_FAILED, provider_ref=provider_ref)
        return PaymentStatus(
            state=STATE_COMPLETED,
            provider_ref=provider_ref,
            amount_cents=-txn.amount_cents,
            charge_ref=provider_ref,
        )

    def refund(self, charge_ref: str, amount_cents: int, currency: str) -> RefundResult:
        raise OriginalPaymentMissing("Store credit payments are refunded as store credit")
