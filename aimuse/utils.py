# aimuse/utils.py
"""Display helpers for addresses, hashes and token ids."""

MAINNET_EXPLORER = "https://basescan.org"
TESTNET_EXPLORER = "https://goerli.basescan.org"


def truncate_address(address: str, chars: int = 4) -> str:
    """0x1234...5678"""
    if not address:
        return ""
    return f"{address[:chars + 2]}...{address[-chars:]}"


def format_tx_hash(tx_hash: str) -> str:
    if not tx_hash:
        return ""
    return f"{tx_hash[:6]}...{tx_hash[-4:]}"


def format_nft_id(token_id) -> str:
    return f"#{str(token_id).zfill(4)}"


def get_explorer_url(tx_hash: str, is_testnet: bool = False) -> str:
    base = TESTNET_EXPLORER if is_testnet else MAINNET_EXPLORER
    return f"{base}/tx/{tx_hash}"
