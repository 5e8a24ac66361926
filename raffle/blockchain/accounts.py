"""In-process value ledger standing in for chain balances."""

from __future__ import annotations

from threading import RLock
from typing import Callable, Dict, Optional

from eth_account import Account
from web3 import Web3

from raffle.lottery.errors import InsufficientBalance
from raffle.utils.common import normalize_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)

# Called with (sender, amount) after the recipient has been credited.
# Returning False (or raising) refuses the payment.
ReceiveHook = Callable[[str, int], Optional[bool]]


class AccountBook:
    """Wei balances per address, with recipient hooks for value transfers.

    ``send_value`` follows low-level call semantics: it reports failure
    instead of raising, and a failed send leaves every balance as it was
    before the call, including changes made by the recipient's hook.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        # the host lock: every state-changing call on the book, the raffle
        # and the coordinator runs under it
        self.lock = self._lock
        self._balances: Dict[str, int] = {}
        self._hooks: Dict[str, ReceiveHook] = {}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def new_account(self, balance: int = 0) -> str:
        """Create a fresh random address, optionally pre-funded."""
        address = Account.create().address
        if balance:
            self.mint(address, balance)
        return address

    def balance_of(self, address: str) -> int:
        address = normalize_address(address)
        with self._lock:
            return self._balances.get(address, 0)

    def mint(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        address = normalize_address(address)
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount
        logger.debug("Minted %s ETH to %s", Web3.from_wei(amount, "ether"), address)

    def set_receive_hook(self, address: str, hook: Optional[ReceiveHook]) -> None:
        address = normalize_address(address)
        with self._lock:
            if hook is None:
                self._hooks.pop(address, None)
            else:
                self._hooks[address] = hook

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------
    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move value without invoking recipient hooks.

        Raises:
            InsufficientBalance: If the sender cannot cover ``amount``
        """
        if amount < 0:
            raise ValueError("amount must not be negative")
        sender = normalize_address(sender)
        recipient = normalize_address(recipient)
        with self._lock:
            self._debit(sender, amount)
            self._balances[recipient] = self._balances.get(recipient, 0) + amount

    def send_value(self, sender: str, recipient: str, amount: int) -> bool:
        """Transfer value and hand control to the recipient's hook.

        Returns False (with balances restored) when the sender is short or
        the hook refuses or raises.
        """
        sender = normalize_address(sender)
        recipient = normalize_address(recipient)
        with self._lock:
            snapshot = self.snapshot()
            try:
                self.transfer(sender, recipient, amount)
            except InsufficientBalance as exc:
                logger.warning("Send from %s failed: %s", sender, exc)
                return False

            hook = self._hooks.get(recipient)
            if hook is None:
                return True
            try:
                accepted = hook(sender, amount)
            except Exception as exc:
                logger.warning("Recipient %s reverted on receive: %s", recipient, exc)
                self.restore(snapshot)
                return False
            if accepted is False:
                logger.warning("Recipient %s refused %d wei", recipient, amount)
                self.restore(snapshot)
                return False
            return True

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._balances)

    def restore(self, snapshot: Dict[str, int]) -> None:
        with self._lock:
            self._balances = dict(snapshot)

    def _debit(self, address: str, amount: int) -> None:
        balance = self._balances.get(address, 0)
        if balance < amount:
            raise InsufficientBalance(address, balance, amount)
        self._balances[address] = balance - amount
