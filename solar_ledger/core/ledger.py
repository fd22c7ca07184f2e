"""
core/ledger.py

Four vessels, six currencies, one tension.

The ledger holds balances for User_A, User_B, User_C and the
Tax_Archive. Every transfer adds a small amount of tension; the
autonomy scalar divides it back down toward zero.

Reads never mutate. Damping happens only in sync_with_autonomy(),
which mutating operations call themselves and which the autonomy
timer calls on every tick once the ledger is attached.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from solar_ledger.services.store import (
    DEFAULT_STATE_KEY,
    InMemoryStateStore,
    StateStore,
)

from .autonomy import Autonomy

logger = logging.getLogger(__name__)


CURRENCIES = ("USD", "JPY", "EUR", "BTC", "ETH", "MATIC")
TAX_ARCHIVE = "Tax_Archive"
DEFAULT_USER = "User_A"

INITIAL_ACCOUNTS: Dict[str, Dict[str, float]] = {
    name: {currency: 0.0 for currency in CURRENCIES}
    for name in ("User_A", "User_B", "User_C", TAX_ARCHIVE)
}

STATUS_INITIALIZED = "System Integrity Initialized"
STATUS_RESTORED = "Core State Restored"

TRANSFER_TENSION_RATE = 0.0001  # Tension added per unit transferred


# ==================== Errors ====================

class LedgerError(Exception):
    """Base class for ledger operation failures."""


class UnknownUserError(LedgerError):
    """Raised when an operation names an account that does not exist."""

    def __init__(self, user: str):
        super().__init__(f"User {user} not found.")
        self.user = user


class InvalidAmountError(LedgerError, ValueError):
    """Raised when an amount is outside what an operation accepts."""


class InsufficientBalanceError(LedgerError):
    """Raised when a sender cannot cover a transfer."""

    def __init__(self, sender: str, currency: str, balance: float, amount: float):
        super().__init__(f"{sender} balance insufficient for {currency}.")
        self.sender = sender
        self.currency = currency
        self.balance = balance
        self.amount = amount


# ==================== State ====================

@dataclass
class TensionRecord:
    """Accumulated stress of the ledger."""
    value: float = 0.0
    max_limit: float = 1.0
    increase_rate: float = 0.00001

    def to_dict(self) -> Dict[str, float]:
        return {
            "value": self.value,
            "max_limit": self.max_limit,
            "increase_rate": self.increase_rate,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> TensionRecord:
        return cls(
            value=float(d.get("value", 0.0)),
            max_limit=float(d.get("max_limit", 1.0)),
            increase_rate=float(d.get("increase_rate", 0.00001)),
        )


@dataclass
class LedgerState:
    """Everything the ledger persists."""
    status_message: str = STATUS_INITIALIZED
    active_user: str = DEFAULT_USER
    accounts: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: copy.deepcopy(INITIAL_ACCOUNTS)
    )
    tension: TensionRecord = field(default_factory=TensionRecord)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_message": self.status_message,
            "active_user": self.active_user,
            "accounts": copy.deepcopy(self.accounts),
            "tension": self.tension.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> LedgerState:
        """
        Build state from its persisted shape.

        Accounts stored as null are dropped so the restore step can
        repair them. Raises KeyError, TypeError or ValueError on other
        malformed input.
        """
        accounts = {
            str(name): {str(cur): float(bal) for cur, bal in balances.items()}
            for name, balances in d["accounts"].items()
            if balances is not None
        }
        return cls(
            status_message=d.get("status_message", STATUS_INITIALIZED),
            active_user=d.get("active_user", DEFAULT_USER),
            accounts=accounts,
            tension=TensionRecord.from_dict(d.get("tension") or {}),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: str) -> LedgerState:
        d = json.loads(data)
        if not isinstance(d, dict):
            raise TypeError(f"Expected a JSON object, got {type(d).__name__}")
        return cls.from_dict(d)


def initialize_state() -> LedgerState:
    """Fresh state: every balance zero, no tension."""
    return LedgerState()


# ==================== Ledger ====================

class Ledger:
    """
    State holder and transfer processor.

    Owns its state, the store it persists to and the power source it
    damps tension against. Nothing here is module-global.
    """

    def __init__(
        self,
        store: Optional[StateStore] = None,
        autonomy: Optional[Autonomy] = None,
        state_key: str = DEFAULT_STATE_KEY,
    ):
        self.store = store if store is not None else InMemoryStateStore()
        self.autonomy = autonomy if autonomy is not None else Autonomy()
        self.state_key = state_key

        self._lock = threading.RLock()
        self._attached: Optional[Autonomy] = None

        self.state = self._restore()

    # ==================== Persistence ====================

    def _restore(self) -> LedgerState:
        """Load the stored snapshot, or start fresh."""
        saved = self.store.get(self.state_key)

        if saved is None:
            state = initialize_state()
            self.state = state
            self._persist()
            logger.info("No stored ledger found, initialized fresh state")
            return state

        try:
            state = LedgerState.from_json(saved)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load state: {e}")
            return initialize_state()

        if TAX_ARCHIVE not in state.accounts:
            logger.warning(f"Stored ledger lacks {TAX_ARCHIVE}, restoring it")
            state.accounts[TAX_ARCHIVE] = copy.deepcopy(INITIAL_ACCOUNTS[TAX_ARCHIVE])

        state.status_message = STATUS_RESTORED
        self.state = state
        self.sync_with_autonomy()
        logger.info(f"Ledger restored from store key {self.state_key!r}")
        return state

    def _persist(self) -> None:
        self.store.set(self.state_key, self.state.to_json())

    def _snapshot(self) -> LedgerState:
        return copy.deepcopy(self.state)

    def _rollback(self, snapshot: LedgerState) -> None:
        """Put accounts and tension back in place on the live state."""
        self.state.active_user = snapshot.active_user
        self.state.accounts = snapshot.accounts
        self.state.tension = snapshot.tension

    def update_state(self, new_state: LedgerState) -> None:
        """Replace the live state and persist it."""
        with self._lock:
            self.state = new_state
            self._persist()

    # ==================== Autonomy coupling ====================

    def sync_with_autonomy(self, power: Optional[float] = None) -> float:
        """
        Damp tension by the current autonomy scalar.

        value = max(0, value / power), skipped when power <= 0.
        Returns the resulting tension value. Does not persist.
        """
        with self._lock:
            if power is None:
                power = self.autonomy.get_power()
            if power > 0:
                self.state.tension.value = max(
                    0.0, self.state.tension.value * (1.0 / power)
                )
            return self.state.tension.value

    def attach(self, autonomy: Optional[Autonomy] = None) -> None:
        """Resync on every tick of autonomy (defaults to our own)."""
        autonomy = autonomy or self.autonomy
        self.detach()
        self.autonomy = autonomy
        autonomy.add_listener(self.sync_with_autonomy)
        self._attached = autonomy

    def detach(self) -> None:
        if self._attached is not None:
            self._attached.remove_listener(self.sync_with_autonomy)
            self._attached = None

    # ==================== Reads ====================

    def get_current_state(self) -> LedgerState:
        return self.state

    def get_tension(self) -> TensionRecord:
        return self.state.tension

    def get_active_user_balance(self, user: str) -> Dict[str, float]:
        """Balances of user, or an empty mapping if unknown."""
        return self.state.accounts.get(user, {})

    def total_balance(self, currency: str) -> float:
        """Sum of every account's balance in currency."""
        return sum(
            balances.get(currency, 0.0) for balances in self.state.accounts.values()
        )

    # ==================== Mutations ====================

    def set_active_user(self, user: str) -> None:
        with self._lock:
            if user not in self.state.accounts:
                raise UnknownUserError(user)
            self.state.active_user = user
            self._persist()

    def add_tension(self, amount: float) -> None:
        """Add to tension, clamp at zero, damp, persist."""
        with self._lock:
            tension = self.state.tension
            tension.value = max(0.0, tension.value + amount)
            self.sync_with_autonomy()
            self._persist()

    def deposit(self, user: str, amount: float, currency: str) -> Dict[str, float]:
        """Credit an account from outside the ledger. Amount must be >= 0."""
        with self._lock:
            if user not in self.state.accounts:
                raise UnknownUserError(user)
            if amount < 0:
                raise InvalidAmountError(f"Deposit amount must be non-negative, got {amount}")

            snapshot = self._snapshot()
            try:
                balances = self.state.accounts[user]
                balances[currency] = balances.get(currency, 0.0) + amount
                self._persist()
            except Exception:
                self._rollback(snapshot)
                raise
            return self.state.accounts[user]

    def act_transfer(
        self,
        sender: str,
        recipient: str,
        amount: float,
        currency: str,
    ) -> LedgerState:
        """
        Move amount of currency from sender to recipient.

        Unknown recipients receive nothing: the debited amount leaves the
        ledger. Tension grows with the amount either way. If the store
        write fails the in-memory state is rolled back before re-raising.

        Raises:
            InsufficientBalanceError: sender cannot cover amount; an unknown
                sender reads as a zero balance, so this is what it gets for
                any positive amount
            UnknownUserError: sender does not exist and amount <= 0
        """
        with self._lock:
            accounts = self.state.accounts
            is_internal = recipient in accounts

            balance = accounts.get(sender, {}).get(currency, 0.0)
            if balance < amount:
                raise InsufficientBalanceError(sender, currency, balance, amount)
            if sender not in accounts:
                raise UnknownUserError(sender)

            snapshot = self._snapshot()
            try:
                accounts[sender][currency] = balance - amount

                if is_internal:
                    received = accounts[recipient]
                    received[currency] = received.get(currency, 0.0) + amount

                self.add_tension(amount * TRANSFER_TENSION_RATE)
                self._persist()
            except Exception:
                self._rollback(snapshot)
                logger.error(f"Transfer {sender} -> {recipient} rolled back")
                raise

            if not is_internal:
                logger.info(
                    f"{sender} sent {amount} {currency} to external {recipient}"
                )
            return self.state

    def delete_accounts(self) -> None:
        """Erase the stored snapshot and return to the initial state."""
        with self._lock:
            self.store.delete(self.state_key)
            self.state = initialize_state()
        logger.info("Ledger reset to initial state")

    def __repr__(self) -> str:
        return (
            f"Ledger(active_user={self.state.active_user!r}, "
            f"accounts={len(self.state.accounts)}, "
            f"tension={self.state.tension.value:.6g})"
        )
