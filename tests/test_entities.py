"""Tests for domain entities and validation."""

from datetime import date
from decimal import Decimal

import pytest

from conti.domain.entities import (
    Account,
    AccountKind,
    PaymentFrequency,
    Subscription,
    Transaction,
    to_cents,
)
from conti.domain.errors import DomainError, ValidationError
from conti.domain.validation import (
    is_valid_iban,
    normalize_iban,
    validate_account,
    validate_subscription,
    validate_transaction,
)


def make_subscription(**overrides) -> Subscription:
    fields = dict(
        name="Spotify",
        amount=Decimal("12.99"),
        frequency=PaymentFrequency.QUARTERLY,
        start_date=date(2025, 1, 1),
        next_renewal_date=date(2025, 4, 1),
        account_id=1,
    )
    fields.update(overrides)
    return Subscription(**fields)


class TestTransaction:
    """Tests for Transaction classification."""

    def test_positive_amount_is_income(self):
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("10.00"))
        assert txn.is_income
        assert not txn.is_expense

    def test_negative_amount_is_expense(self):
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("-0.01"))
        assert txn.is_expense
        assert not txn.is_income

    def test_zero_is_neither(self):
        """Zero is neither income nor expense."""
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("0"))
        assert not txn.is_income
        assert not txn.is_expense

    def test_immutability(self):
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("1"))
        with pytest.raises(Exception):  # dataclass frozen raises FrozenInstanceError
            txn.amount = Decimal("2")


class TestSubscriptionCosts:
    """Tests for monthly and annual cost projections."""

    def test_quarterly_costs(self):
        """12.99 every quarter costs 4.33 a month and 51.96 a year."""
        subscription = make_subscription()
        assert subscription.monthly_cost == Decimal("4.33")
        assert subscription.annual_cost == Decimal("51.96")

    @pytest.mark.parametrize(
        "frequency, monthly, annual",
        [
            (PaymentFrequency.MONTHLY, Decimal("12.00"), Decimal("144.00")),
            (PaymentFrequency.SEMIANNUAL, Decimal("2.00"), Decimal("24.00")),
            (PaymentFrequency.ANNUAL, Decimal("1.00"), Decimal("12.00")),
        ],
    )
    def test_other_frequencies(self, frequency, monthly, annual):
        subscription = make_subscription(amount=Decimal("12.00"), frequency=frequency)
        assert subscription.monthly_cost == monthly
        assert subscription.annual_cost == annual

    def test_next_renewal_clamps_to_month_end(self):
        assert PaymentFrequency.MONTHLY.next_renewal_after(date(2025, 1, 31)) == date(2025, 2, 28)
        assert PaymentFrequency.ANNUAL.next_renewal_after(date(2024, 2, 29)) == date(2025, 2, 28)

    def test_renewal_charge(self):
        subscription = make_subscription(id=7, category="Music")
        charge = subscription.renewal_charge()
        assert charge.amount == Decimal("-12.99")
        assert charge.date == date(2025, 4, 1)
        assert charge.account_id == 1
        assert charge.description == "Spotify"
        assert charge.category == "Music"
        assert charge.is_recurring
        assert charge.subscription_id == 7
        assert subscription.renewal_charge(date(2025, 4, 3)).date == date(2025, 4, 3)

    def test_renewed_moves_one_period(self):
        subscription = make_subscription()
        assert subscription.renewed().next_renewal_date == date(2025, 7, 1)
        assert subscription.next_renewal_date == date(2025, 4, 1)

    def test_to_cents_rounds_half_up(self):
        assert to_cents(Decimal("0.125")) == Decimal("0.13")
        assert to_cents(Decimal("-0.125")) == Decimal("-0.13")


class TestAccountKind:
    def test_parse_is_case_insensitive(self):
        assert AccountKind.parse("card_wallet") is AccountKind.CARD_WALLET

    def test_parse_unknown_falls_back_to_other(self):
        assert AccountKind.parse("savings") is AccountKind.OTHER


class TestIban:
    """Tests for syntactic IBAN validation."""

    def test_italian_iban_with_spaces(self):
        assert is_valid_iban("IT60 X054 2811 1010 0000 0123 456")

    def test_italian_iban_lowercase(self):
        assert is_valid_iban("it60x0542811101000000123456")

    def test_italian_iban_wrong_layout(self):
        # Check character after the digits must be a letter
        assert not is_valid_iban("IT6010542811101000000123456")

    def test_foreign_iban(self):
        assert is_valid_iban("DE89370400440532013000")

    def test_too_short(self):
        assert not is_valid_iban("DE8937040044")

    def test_normalize(self):
        assert normalize_iban("de89 3704 0044 0532 0130 00") == "DE89370400440532013000"


class TestValidation:
    """Tests for write-boundary validation."""

    def test_valid_account(self):
        validate_account(Account(name="Main", opening_balance=Decimal("10")))

    def test_account_needs_name(self):
        with pytest.raises(ValidationError):
            validate_account(Account(name="  "))

    def test_account_currency_code(self):
        with pytest.raises(ValidationError, match="currency"):
            validate_account(Account(name="Main", currency="euro"))

    def test_account_invalid_iban(self):
        with pytest.raises(ValidationError, match="IBAN"):
            validate_account(Account(name="Main", iban="IT00"))

    def test_validation_error_is_value_error(self):
        """Domain errors stay catchable as ValueError."""
        with pytest.raises(ValueError):
            validate_account(Account(name=""))
        assert issubclass(ValidationError, DomainError)

    def test_recurring_transaction_needs_subscription(self):
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("-5"), is_recurring=True)
        with pytest.raises(ValidationError):
            validate_transaction(txn)

    def test_subscription_link_requires_recurring_flag(self):
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("-5"), subscription_id=3)
        with pytest.raises(ValidationError):
            validate_transaction(txn)

    def test_non_finite_amount(self):
        txn = Transaction(account_id=1, date=date(2025, 1, 1), amount=Decimal("NaN"))
        with pytest.raises(ValidationError):
            validate_transaction(txn)

    def test_subscription_amount_positive(self):
        with pytest.raises(ValidationError):
            validate_subscription(make_subscription(amount=Decimal("0")))

    def test_renewal_before_start(self):
        with pytest.raises(ValidationError):
            validate_subscription(make_subscription(next_renewal_date=date(2024, 12, 31)))

    def test_active_subscription_with_end_date(self):
        with pytest.raises(ValidationError):
            validate_subscription(make_subscription(end_date=date(2025, 2, 1)))

    def test_inactive_subscription_without_end_date(self):
        with pytest.raises(ValidationError):
            validate_subscription(make_subscription(active=False))

    def test_ended_subscription(self):
        validate_subscription(make_subscription(active=False, end_date=date(2025, 2, 1)))
