"""Fee configuration table, defaults and providers"""

import logging
import threading
import time
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from payout_gateway.domain.exceptions import ConfigurationError
from payout_gateway.domain.models import FeeConfig, OperationType, PaymentMethod
from payout_gateway.domain.money import ensure_cents, parse_money, validate_percent

logger = logging.getLogger(__name__)

FeeKey = Tuple[OperationType, Optional[PaymentMethod], Optional[int]]

# Credit card settlement tiers in days; shorter terms cost more
CARD_SETTLEMENT_TERMS = (2, 7, 15, 30)

ACQUIRER_FEE_PER_TRANSACTION = 60  # R$ 0.60 per approved card transaction


class FeeSchedule:
    """
    Validated, immutable set of FeeConfig rows.

    Lookup order for (operation, method, days):
    1. exact row for that settlement term
    2. row with settlement_term_days=None (any term)
    3. ConfigurationError - never a silent default
    """

    def __init__(self, rows: Iterable[FeeConfig]):
        self._rows: Dict[FeeKey, FeeConfig] = {}
        for row in rows:
            row = self._validate(row)
            if row.key in self._rows:
                raise ConfigurationError(f"Duplicate fee configuration for {_describe_key(row.key)}")
            self._rows[row.key] = row

    @staticmethod
    def _validate(row: FeeConfig) -> FeeConfig:
        """Checked row with both percentages as Decimal"""
        where = _describe_key(row.key)
        percent_fee = validate_percent(row.percent_fee, f"percent_fee ({where})")
        reserve = validate_percent(row.security_reserve_percent, f"security_reserve_percent ({where})")
        for name in ("fixed_fee", "acquirer_fee_per_transaction"):
            value = ensure_cents(getattr(row, name), name)
            if value < 0:
                raise ConfigurationError(f"{name} cannot be negative ({where})")
        if row.operation_type == OperationType.WITHDRAWAL and row.payment_method is not None:
            raise ConfigurationError("Withdrawal fees are not keyed by payment method")
        if row.operation_type != OperationType.WITHDRAWAL and row.payment_method is None:
            raise ConfigurationError(f"{row.operation_type.value} rows require a payment method")
        return replace(row, percent_fee=percent_fee, security_reserve_percent=reserve)

    def resolve(
        self,
        operation_type: OperationType,
        payment_method: Optional[PaymentMethod] = None,
        settlement_term_days: Optional[int] = None,
    ) -> FeeConfig:
        """Return the single row for the tuple or raise ConfigurationError"""
        exact = self._rows.get((operation_type, payment_method, settlement_term_days))
        if exact is not None:
            return exact
        any_term = self._rows.get((operation_type, payment_method, None))
        if any_term is not None:
            return any_term
        raise ConfigurationError(
            f"No fee configuration for {_describe_key((operation_type, payment_method, settlement_term_days))}"
        )

    def rows(self) -> Tuple[FeeConfig, ...]:
        return tuple(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)

    @classmethod
    def from_settings(cls, settings_map: Mapping[str, str]) -> "FeeSchedule":
        """
        Build a schedule from a key/value settings table.

        Values are major-unit strings ("4.99" percent, "1.49" reais). Missing
        keys fall back to the documented defaults in DEFAULT_SETTINGS.
        """

        def percent(key: str) -> Decimal:
            return validate_percent(settings_map.get(key, DEFAULT_SETTINGS[key]), key)

        def money(key: str) -> int:
            return parse_money(settings_map.get(key, DEFAULT_SETTINGS[key]))

        acquirer = money("acquirer_fee")
        sale = OperationType.SALE
        rows = [
            FeeConfig(sale, PaymentMethod.PIX, None, percent("pix_instant_percent"), money("pix_instant_fixed"),
                      0, percent("reserve_pix_percent")),
            FeeConfig(sale, PaymentMethod.BOLETO, None, percent("boleto_percent"), money("boleto_fixed")),
            FeeConfig(sale, PaymentMethod.DEBIT_CARD, None, percent("debit_card_percent"),
                      money("debit_card_fixed"), acquirer),
            FeeConfig(sale, PaymentMethod.BALANCE, None, Decimal("0"), 0),
        ]
        for days in CARD_SETTLEMENT_TERMS:
            reserve_key = f"reserve_card_{days}d"
            rows.append(
                FeeConfig(
                    sale,
                    PaymentMethod.CREDIT_CARD,
                    days,
                    percent(f"card_{days}d_percent"),
                    money(f"card_{days}d_fixed"),
                    acquirer,
                    percent(reserve_key),
                )
            )
        rows.append(
            FeeConfig(OperationType.WITHDRAWAL, None, None, percent("withdrawal_percent"), money("withdrawal_fee"))
        )
        for method in (PaymentMethod.PIX, PaymentMethod.BOLETO, PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD):
            rows.append(
                FeeConfig(
                    OperationType.SUBSCRIPTION,
                    method,
                    None,
                    percent("subscription_percent"),
                    money("subscription_fixed"),
                    acquirer if method.is_card else 0,
                )
            )
        return cls(rows)


def _describe_key(key: FeeKey) -> str:
    operation, method, days = key
    method_text = method.value if method else "-"
    days_text = f"{days}d" if days is not None else "any term"
    return f"({operation.value}, {method_text}, {days_text})"


# Settings-table keys and their documented defaults (major units)
DEFAULT_SETTINGS: Dict[str, str] = {
    "pix_instant_percent": "4.99",
    "pix_instant_fixed": "1.49",
    "reserve_pix_percent": "0",
    "boleto_percent": "5.99",
    "boleto_fixed": "1.49",
    "debit_card_percent": "5.99",
    "debit_card_fixed": "1.49",
    "card_2d_percent": "6.99",
    "card_2d_fixed": "1.49",
    "card_7d_percent": "6.99",
    "card_7d_fixed": "1.49",
    "card_15d_percent": "6.99",
    "card_15d_fixed": "1.49",
    "card_30d_percent": "4.99",
    "card_30d_fixed": "1.49",
    "reserve_card_2d": "10",
    "reserve_card_7d": "10",
    "reserve_card_15d": "10",
    "reserve_card_30d": "10",
    "acquirer_fee": "0.60",
    "withdrawal_percent": "0",
    "withdrawal_fee": "4.90",
    "subscription_percent": "4.99",
    "subscription_fixed": "0",
}

DEFAULT_FEE_CONFIG = FeeSchedule.from_settings({})


class StaticFeeConfigProvider:
    """Schedule loaded once at process start"""

    def __init__(self, schedule: FeeSchedule = DEFAULT_FEE_CONFIG):
        self._schedule = schedule

    def get_schedule(self) -> FeeSchedule:
        return self._schedule


class SettingsFeeConfigProvider:
    """
    Schedule fetched from a live settings table, cached for ttl_seconds.

    The loader returns the raw key/value mapping. An invalid table raises
    ConfigurationError on the first fetch after it changed; the previous
    schedule is not reused.
    """

    def __init__(
        self,
        loader: Callable[[], Mapping[str, str]],
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._schedule: Optional[FeeSchedule] = None
        self._loaded_at = 0.0

    def get_schedule(self) -> FeeSchedule:
        with self._lock:
            now = self._clock()
            if self._schedule is None or now - self._loaded_at >= self._ttl:
                self._schedule = FeeSchedule.from_settings(self._loader())
                self._loaded_at = now
                logger.info("Fee schedule loaded", extra={"rows": len(self._schedule)})
            return self._schedule

    def invalidate(self) -> None:
        with self._lock:
            self._schedule = None
