# aimuse/wallet.py
"""
Wallet connection context.

A WalletConnection is created on connect, passed explicitly through every
chain call of one flow, and closed on disconnect. It is never shared between
unrelated flows.

Env vars (used by connect_from_env):
- CHAIN_RPC_URL: JSON-RPC endpoint of the wallet/node
- MINTER_PRIVATE_KEY: optional; when set transactions are signed locally
"""

import os
from typing import Any, Callable, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.types import RPCEndpoint

from aimuse import monitoring
from aimuse.errors import MuseError, WalletRequestError, WalletUnavailableError
from aimuse.utils import truncate_address

logger = monitoring.logger

CHAIN_RPC_URL = os.getenv("CHAIN_RPC_URL", "")
MINTER_PRIVATE_KEY = os.getenv("MINTER_PRIVATE_KEY", "")

ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"
DISCONNECT = "disconnect"
EVENTS = (ACCOUNTS_CHANGED, CHAIN_CHANGED, DISCONNECT)


class WalletConnection:
    def __init__(self, w3: Web3, account=None, address: Optional[str] = None,
                 chain_id: Optional[int] = None):
        self.w3 = w3
        self.account = account
        self.address = address or (account.address if account is not None else None)
        self.chain_id = chain_id
        self.closed = False
        self.errors: List[MuseError] = []
        self._handlers: Dict[str, List[Callable[[Any], None]]] = {e: [] for e in EVENTS}

    @classmethod
    def connect(cls, provider_url: str, private_key: Optional[str] = None) -> "WalletConnection":
        """Open a connection to `provider_url`; raises WalletUnavailableError if no account is usable."""
        if not provider_url:
            raise WalletUnavailableError("No wallet provider URL configured")
        w3 = Web3(Web3.HTTPProvider(provider_url))
        account = Account.from_key(private_key) if private_key else None
        conn = cls(w3, account=account)
        try:
            conn.refresh()
        except Exception as e:
            raise WalletUnavailableError(f"Wallet provider unreachable: {e}") from e
        if not conn.address:
            raise WalletUnavailableError("Wallet exposes no accounts")
        logger.info("Wallet connected", extra={"address": truncate_address(conn.address), "chain_id": conn.chain_id})
        return conn

    # ------------------------------------------------------------------
    # Wallet primitives
    # ------------------------------------------------------------------
    def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send a raw JSON-RPC request to the wallet; errors raise WalletRequestError."""
        if self.closed:
            raise WalletUnavailableError("Wallet connection is closed")
        resp = self.w3.provider.make_request(RPCEndpoint(method), params or [])
        err = resp.get("error") if isinstance(resp, dict) else None
        if err:
            if isinstance(err, dict):
                raise WalletRequestError(err.get("message", "wallet error"), code=err.get("code"))
            raise WalletRequestError(str(err))
        return resp.get("result") if isinstance(resp, dict) else resp

    def refresh(self) -> Optional[int]:
        """Re-derive account and network id from the wallet."""
        if self.account is None:
            accounts = self.w3.eth.accounts
            self.address = accounts[0] if accounts else None
        self.chain_id = int(self.w3.eth.chain_id)
        return self.chain_id

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------
    def subscribe(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register `handler` for `event`; returns a callable that unregisters it."""
        if event not in self._handlers:
            raise ValueError(f"Unknown wallet event: {event}")
        self._handlers[event].append(handler)

        def unsubscribe():
            if handler in self._handlers.get(event, []):
                self._handlers[event].remove(handler)

        return unsubscribe

    def _emit(self, event: str, payload: Any):
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Wallet event handler failed", extra={"event": event})

    def handle_accounts_changed(self, accounts: List[str]):
        new_address = accounts[0] if accounts else None
        same = (
            new_address is not None and self.address is not None
            and new_address.lower() == self.address.lower()
        )
        self._emit(ACCOUNTS_CHANGED, accounts)
        if not same:
            # a different signer must open a fresh connection
            self.close()

    def handle_chain_changed(self, chain_id):
        self.chain_id = int(chain_id, 16) if isinstance(chain_id, str) else int(chain_id)
        self._emit(CHAIN_CHANGED, self.chain_id)

    def handle_disconnect(self, error: Any = None):
        self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._emit(DISCONNECT, None)
        for handlers in self._handlers.values():
            handlers.clear()

    # ------------------------------------------------------------------
    # Error reporting scoped to this connection
    # ------------------------------------------------------------------
    def report(self, error: MuseError):
        self.errors.append(error)
        logger.warning("Wallet flow error", extra={"error_code": error.error_code, "error": error.message})

    @property
    def last_error(self) -> Optional[MuseError]:
        return self.errors[-1] if self.errors else None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def connect_from_env() -> WalletConnection:
    return WalletConnection.connect(CHAIN_RPC_URL, MINTER_PRIVATE_KEY or None)
