# tests/test_utils.py
from aimuse.utils import format_nft_id, format_tx_hash, get_explorer_url, truncate_address


def test_truncate_address():
    assert truncate_address("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...5678"
    assert truncate_address("") == ""


def test_format_tx_hash():
    assert format_tx_hash("0xabcdef0123456789") == "0xabcd...6789"


def test_format_nft_id():
    assert format_nft_id(7) == "#0007"
    assert format_nft_id(12345) == "#12345"


def test_explorer_url():
    assert get_explorer_url("0xabc") == "https://basescan.org/tx/0xabc"
    assert get_explorer_url("0xabc", is_testnet=True) == "https://goerli.basescan.org/tx/0xabc"
