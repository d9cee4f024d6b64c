"""Tests for the database layer."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from bookstore.database import (
    AutoMatchingRule,
    Book,
    Bundle,
    BundleBook,
    PaymentConfig,
    Profile,
    UserLibrary,
    WalletConfig,
    get_active_payment_configs,
    get_active_rules,
    get_active_wallets,
    get_item,
    get_library_entry,
    get_profile_by_email,
    get_setting,
    set_setting,
)


class TestModels:
    def test_defaults(self, db):
        book = Book(title="Oromay", author="Bealu Girma")
        db.add(book)
        db.commit()

        assert len(book.id) == 36
        assert book.status == "approved"
        assert book.is_free is False
        assert book.price == 0.0
        assert isinstance(book.created_at, datetime)

    def test_profile_email_is_unique(self, db, make_user):
        make_user(email="dup@astewai.test")
        db.add(Profile(email="dup@astewai.test", password_hash="x"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_library_entry_is_unique_per_book(self, db, make_user, make_book):
        profile, _ = make_user()
        book = make_book()
        db.add(UserLibrary(user_id=profile.id, book_id=book.id))
        db.commit()

        db.add(UserLibrary(user_id=profile.id, book_id=book.id))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_bundle_books_are_ordered_by_title(self, db, make_book, make_bundle):
        bundle = make_bundle([make_book(title="Zeraf"), make_book(title="Abay")])
        db.expire_all()
        assert [b.title for b in db.get(Bundle, bundle.id).books] == ["Abay", "Zeraf"]

    def test_deleting_a_book_drops_bundle_links(self, db, make_book, make_bundle):
        book = make_book(title="A")
        make_bundle([book, make_book(title="B")])

        db.delete(book)
        db.commit()

        assert db.query(BundleBook).count() == 1


class TestHelpers:
    def test_get_item(self, db, make_book, make_bundle):
        book = make_book()
        bundle = make_bundle([book])

        assert get_item(db, "book", book.id) is book
        assert get_item(db, "bundle", bundle.id) is bundle
        assert get_item(db, "magazine", book.id) is None

    def test_profile_lookup_is_case_insensitive(self, db, make_user):
        profile, _ = make_user(email="tigist@astewai.test")
        assert get_profile_by_email(db, "  Tigist@Astewai.test ") is profile

    def test_library_entry(self, db, make_user, make_book):
        profile, _ = make_user()
        book = make_book()
        assert get_library_entry(db, profile.id, book.id) is None
        db.add(UserLibrary(user_id=profile.id, book_id=book.id))
        db.commit()
        assert get_library_entry(db, profile.id, book.id).status == "owned"

    def test_active_config_ordering(self, db):
        db.add_all([
            PaymentConfig(config_type="bank_account", provider_name="Awash", account_number="2",
                          account_name="Astewai", display_order=2),
            PaymentConfig(config_type="bank_account", provider_name="CBE", account_number="1",
                          account_name="Astewai", display_order=1),
            PaymentConfig(config_type="mobile_money", provider_name="Off", account_number="3",
                          account_name="Astewai", is_active=False),
            WalletConfig(wallet_name="Telebirr", wallet_type="mobile_money"),
            WalletConfig(wallet_name="CBE Birr", wallet_type="mobile_money"),
            AutoMatchingRule(rule_name="low", rule_type="user_history", priority=1),
            AutoMatchingRule(rule_name="high", rule_type="amount_match", priority=5),
            AutoMatchingRule(rule_name="off", rule_type="amount_match", priority=9, is_active=False),
        ])
        db.commit()

        assert [c.provider_name for c in get_active_payment_configs(db)] == ["CBE", "Awash"]
        assert [w.wallet_name for w in get_active_wallets(db)] == ["CBE Birr", "Telebirr"]
        assert [r.rule_name for r in get_active_rules(db)] == ["high", "low"]

    def test_settings(self, db):
        assert get_setting(db, "usd_to_birr_rate", 120.0) == 120.0
        set_setting(db, "usd_to_birr_rate", 130.5)
        set_setting(db, "usd_to_birr_rate", 131.0)
        assert get_setting(db, "usd_to_birr_rate") == 131.0

    def test_created_at_is_recent(self, db, make_book):
        book = make_book()
        assert datetime.utcnow() - book.created_at < timedelta(minutes=1)
