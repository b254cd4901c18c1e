"""Tests for SessionValidator: ids, entities, price tolerance, affiliate handling, split, log row."""
from decimal import Decimal

from app.models.audit_log import AuditLog
from app.models.transaction import Transaction
from app.models.webhook_validation_log import WebhookValidationLog
from app.schemas.webhooks import CheckoutSession
from app.services.settlement import errors as codes
from app.services.settlement.validator import SessionValidator, parse_id


def _validate(db, payload, event_id="evt_1"):
    return SessionValidator(db).validate(CheckoutSession.model_validate(payload), event_id=event_id)


class TestParseId:
    def test_positive_integers(self):
        assert parse_id("42") == 42
        assert parse_id(7) == 7
        assert parse_id(" 3 ") == 3

    def test_rejects_missing_zero_negative_and_garbage(self):
        for value in (None, "", "0", "-1", "abc", "1.5", "12abc"):
            assert parse_id(value) is None

    def test_rejects_non_ascii_digits(self):
        for value in ("\u00b2", "\u0661\u0662", "\uff11"):
            assert parse_id(value) is None


class TestValidate:
    def test_valid_session_breakdown(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller, price=Decimal("29.99"))

        result = _validate(db, checkout_session(product, buyer, seller))

        assert result.valid is True
        assert result.errors == []
        b = result.breakdown
        assert b.total == Decimal("29.99")
        assert b.platform_fee == Decimal("8.70")
        assert b.affiliate_commission == Decimal("0.00")
        assert b.seller_amount == Decimal("21.29")
        assert b.currency == "EUR"
        assert b.needs_review is False
        assert b.buyer_email == buyer.email

    def test_missing_ids_are_accumulated(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller)
        payload = checkout_session(product, buyer, seller, product_id="", buyer_id="abc", seller_id="0")

        result = _validate(db, payload)

        assert result.valid is False
        assert {e.field for e in result.errors} == {"product_id", "buyer_id", "seller_id"}
        assert all(e.code == codes.INVALID_ID for e in result.errors)

    def test_superscript_id_is_a_validation_error(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller)
        payload = checkout_session(product, buyer, seller, product_id="²")

        result = _validate(db, payload)

        assert result.valid is False
        assert [(e.field, e.code) for e in result.errors] == [("product_id", codes.INVALID_ID)]
        assert db.query(WebhookValidationLog).one().validation_passed is False

    def test_product_owner_differs_from_seller(self, db, make_user, make_product, checkout_session):
        owner = make_user()
        impostor = make_user()
        buyer = make_user()
        product = make_product(owner)

        result = _validate(db, checkout_session(product, buyer, impostor))

        assert result.valid is False
        assert result.breakdown is None
        assert result.has_error(codes.SELLER_MISMATCH)
        mismatch = [e for e in result.errors if e.code == codes.SELLER_MISMATCH][0]
        assert mismatch.field == "seller_id"
        assert db.query(Transaction).count() == 0

    def test_missing_entities(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller)
        payload = checkout_session(product, buyer, seller, product_id="999", buyer_id="998")

        result = _validate(db, payload)

        assert result.valid is False
        not_found = {e.field for e in result.errors if e.code == codes.ENTITY_NOT_FOUND}
        assert not_found == {"product_id", "buyer_id"}

    def test_price_within_one_cent_ignored(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller, price=Decimal("29.99"))

        result = _validate(db, checkout_session(product, buyer, seller, amount_total=3000, platform_fee="870"))

        assert result.valid is True
        assert result.warnings == []
        assert result.breakdown.total == Decimal("30.00")

    def test_price_deviation_under_ten_percent_is_warning(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller, price=Decimal("100.00"))

        result = _validate(db, checkout_session(product, buyer, seller, amount_total=9500, platform_fee="2755"))

        assert result.valid is True
        assert [w.code for w in result.warnings] == [codes.AMOUNT_MISMATCH]
        assert result.breakdown.total == Decimal("95.00")

    def test_price_deviation_over_ten_percent_is_error(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller, price=Decimal("100.00"))

        result = _validate(db, checkout_session(product, buyer, seller, amount_total=5000, platform_fee="1450"))

        assert result.valid is False
        assert result.has_error(codes.AMOUNT_MISMATCH)

    def test_negative_seller_amount_rejected(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller, price=Decimal("10.00"))

        result = _validate(db, checkout_session(product, buyer, seller, platform_fee="900", affiliate_commission="0"))
        assert result.valid is True

        payload = checkout_session(product, buyer, seller, session_id="cs_neg", platform_fee="1200")
        result = _validate(db, payload)
        assert result.valid is False
        assert result.has_error(codes.NEGATIVE_SETTLEMENT)

    def test_unknown_promoter_is_warning_and_commission_goes_to_platform(
        self, db, make_user, make_product, checkout_session
    ):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller, price=Decimal("29.99"))
        payload = checkout_session(product, buyer, seller, promoter_id="777", affiliate_commission="174")

        result = _validate(db, payload)

        assert result.valid is True
        assert [w.code for w in result.warnings] == [codes.AFFILIATE_SKIPPED]
        b = result.breakdown
        assert b.affiliate_id is None
        assert b.affiliate_commission == Decimal("0.00")
        assert b.platform_fee == Decimal("10.44")
        assert b.seller_amount == Decimal("19.55")
        assert b.seller_amount + b.platform_fee + b.affiliate_commission == b.total

    def test_self_referral_skipped(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller)

        result = _validate(db, checkout_session(product, buyer, seller, promoter=buyer, affiliate_commission="100"))

        assert result.valid is True
        assert result.breakdown.affiliate_id is None
        assert result.warnings[0].code == codes.AFFILIATE_SKIPPED

    def test_valid_affiliate_with_link(
        self, db, make_user, make_product, make_affiliate_link, checkout_session
    ):
        seller = make_user()
        buyer = make_user()
        promoter = make_user()
        product = make_product(seller, price=Decimal("29.99"))
        make_affiliate_link(promoter, product, code="ANNA10")
        payload = checkout_session(
            product, buyer, seller, promoter=promoter, affiliate_commission="174", promoter_code="ANNA10"
        )

        result = _validate(db, payload)

        assert result.valid is True
        assert result.warnings == []
        b = result.breakdown
        assert b.affiliate_id == promoter.id
        assert b.affiliate_link_code == "ANNA10"
        assert b.affiliate_commission == Decimal("1.74")
        assert b.seller_amount == Decimal("19.55")

    def test_inactive_link_skips_commission(
        self, db, make_user, make_product, make_affiliate_link, checkout_session
    ):
        seller = make_user()
        buyer = make_user()
        promoter = make_user()
        product = make_product(seller)
        make_affiliate_link(promoter, product, code="OLD", is_active=False)
        payload = checkout_session(
            product, buyer, seller, promoter=promoter, affiliate_commission="174", promoter_code="OLD"
        )

        result = _validate(db, payload)

        assert result.breakdown.affiliate_id is None
        assert result.warnings[0].field == "promoter_code"

    def test_platform_fee_off_tier_flags_review(self, db, make_user, make_product, checkout_session):
        seller = make_user(level=1)
        buyer = make_user()
        product = make_product(seller, price=Decimal("100.00"))

        result = _validate(db, checkout_session(product, buyer, seller, platform_fee="500"))

        assert result.valid is True
        assert result.breakdown.needs_review is True
        assert [w.code for w in result.warnings] == [codes.PLATFORM_FEE_DEVIATION]

    def test_lower_tier_fee_accepted_after_level_up(self, db, make_user, make_product, checkout_session):
        # Checkout at level 1 (29%), seller reached level 2 before the webhook arrived.
        seller = make_user(level=2, total_earnings=Decimal("150"))
        buyer = make_user()
        product = make_product(seller, price=Decimal("100.00"))

        result = _validate(db, checkout_session(product, buyer, seller, platform_fee="2900"))

        assert result.breakdown.needs_review is False

    def test_writes_validation_log_for_every_outcome(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        other = make_user()
        product = make_product(seller)

        _validate(db, checkout_session(product, buyer, seller, session_id="cs_ok"), event_id="evt_ok")
        _validate(db, checkout_session(product, buyer, other, session_id="cs_bad"), event_id="evt_bad")

        rows = {r.stripe_session_id: r for r in db.query(WebhookValidationLog).all()}
        assert rows["cs_ok"].validation_passed is True
        assert rows["cs_ok"].validated_data["seller_amount"] == "21.29"
        assert rows["cs_bad"].validation_passed is False
        assert rows["cs_bad"].validated_data is None
        assert rows["cs_bad"].validation_errors[0]["code"] == codes.SELLER_MISMATCH
        assert rows["cs_bad"].stripe_event_id == "evt_bad"
        assert rows["cs_bad"].metadata_received["seller_id"] == str(other.id)

    def test_duplicate_session_short_circuits(self, db, make_user, make_product, checkout_session):
        seller = make_user()
        buyer = make_user()
        product = make_product(seller)
        tx = Transaction(
            product_id=product.id,
            buyer_id=buyer.id,
            seller_id=seller.id,
            amount=Decimal("29.99"),
            platform_fee=Decimal("8.70"),
            seller_amount=Decimal("21.29"),
            stripe_session_id="cs_dup",
        )
        db.add(tx)
        db.flush()

        result = _validate(db, checkout_session(product, buyer, seller, session_id="cs_dup"))

        assert result.duplicate is True
        assert result.valid is False
        assert result.existing_transaction_id == tx.id
        assert result.errors == []
        log = db.query(WebhookValidationLog).filter(WebhookValidationLog.stripe_session_id == "cs_dup").one()
        assert log.is_duplicate is True
        alert = db.query(AuditLog).filter(AuditLog.action == "duplicate_processing_attempt").one()
        assert alert.entity_id == str(tx.id)
