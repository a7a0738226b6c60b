# aimuse/errors.py
"""
Error taxonomy shared by the record store, chain client, orchestrator and API.

Each error carries a stable error_code (used in API bodies and metrics labels)
and the HTTP status the API layer responds with.
"""

from typing import Optional

E_VALIDATION = "E_VALIDATION"
E_NOT_FOUND = "E_NOT_FOUND"
E_CONFLICT = "E_CONFLICT"
E_NETWORK_MISMATCH = "E_NETWORK_MISMATCH"
E_CHAIN_TX = "E_CHAIN_TX"
E_STORE_UNAVAILABLE = "E_STORE_UNAVAILABLE"
E_WALLET_UNAVAILABLE = "E_WALLET_UNAVAILABLE"
E_METADATA_FAIL = "E_METADATA_FAIL"
E_UPLOAD_FAIL = "E_UPLOAD_FAIL"
E_MIRROR_NOT_UPDATED = "E_MIRROR_NOT_UPDATED"
E_INTERNAL = "E_INTERNAL"


class MuseError(Exception):
    error_code = E_INTERNAL
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"status": "error", "error_code": self.error_code, "message": self.message}


class ValidationError(MuseError):
    error_code = E_VALIDATION
    http_status = 400


class NotFoundError(MuseError):
    error_code = E_NOT_FOUND
    http_status = 404


class ConflictError(MuseError):
    error_code = E_CONFLICT
    http_status = 409


class NetworkMismatchError(MuseError):
    """Wallet is on an unaccepted network and the switch was declined or failed."""
    error_code = E_NETWORK_MISMATCH
    http_status = 409


class ChainTransactionError(MuseError):
    """Reverted tx, missing mint event, rejected signature or confirmation timeout."""
    error_code = E_CHAIN_TX
    http_status = 502


class StoreUnavailableError(MuseError):
    error_code = E_STORE_UNAVAILABLE
    http_status = 503


class WalletUnavailableError(MuseError):
    error_code = E_WALLET_UNAVAILABLE
    http_status = 503


class WalletRequestError(MuseError):
    """JSON-RPC error answered by the wallet (EIP-1193 codes, e.g. 4001, 4902)."""
    error_code = E_NETWORK_MISMATCH
    http_status = 409

    # EIP-1193 / EIP-3085 codes
    USER_REJECTED = 4001
    UNRECOGNIZED_CHAIN = 4902

    def __init__(self, message: str = "", code: Optional[int] = None):
        super().__init__(message)
        self.code = code
