# aimuse/connectors/chain_client.py
"""
Chain client for the AI-Muse NFT contract.

Every call takes an explicit WalletConnection. Writes check (and if needed
switch) the wallet network first and are submitted at most once: a failed or
rejected transaction is reported on the connection and returned as None, never
resubmitted.

Env vars:
- CONTRACT_ADDRESS
- BASE_MAINNET_CHAIN_ID (default: 8453)
- BASE_TESTNET_CHAIN_ID (default: 84531)
- CHAIN_CONFIRMATION_TIMEOUT seconds (default: 120)
"""

import os
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from aimuse import monitoring
from aimuse.errors import (
    ChainTransactionError, MuseError, NetworkMismatchError, WalletRequestError,
)
from aimuse.utils import format_tx_hash

logger = monitoring.logger

CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS", "0x0000000000000000000000000000000000000000")
BASE_MAINNET_CHAIN_ID = int(os.getenv("BASE_MAINNET_CHAIN_ID", "8453"))
BASE_TESTNET_CHAIN_ID = int(os.getenv("BASE_TESTNET_CHAIN_ID", "84531"))
CONFIRMATION_TIMEOUT = float(os.getenv("CHAIN_CONFIRMATION_TIMEOUT", "120"))

# wallet_addEthereumChain parameters for the switch target
BASE_TESTNET_PARAMS: Dict[str, Any] = {
    "chainId": hex(BASE_TESTNET_CHAIN_ID),
    "chainName": "Base Goerli Testnet",
    "nativeCurrency": {"name": "ETH", "symbol": "ETH", "decimals": 18},
    "rpcUrls": ["https://goerli.base.org"],
    "blockExplorerUrls": ["https://goerli.basescan.org"],
}

AIMUSE_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [],
        "name": "mintFee",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "string", "name": "tokenURI", "type": "string"}],
        "name": "mintNFT",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"internalType": "string", "name": "newTokenURI", "type": "string"},
        ],
        "name": "updateMetadata",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "tokenURI",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"indexed": True, "internalType": "address", "name": "owner", "type": "address"},
            {"indexed": False, "internalType": "string", "name": "tokenURI", "type": "string"},
        ],
        "name": "NFTMinted",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"indexed": False, "internalType": "string", "name": "newTokenURI", "type": "string"},
        ],
        "name": "MetadataUpdated",
        "type": "event",
    },
]


class MintResult(NamedTuple):
    token_id: int
    tx_hash: str


class ChainClient:
    def __init__(
        self,
        contract_address: str = None,
        abi: Optional[List[Dict[str, Any]]] = None,
        accepted_chain_ids: Sequence[int] = None,
        switch_target: Optional[Dict[str, Any]] = None,
        confirmation_timeout: float = None,
    ):
        self.contract_address = contract_address or CONTRACT_ADDRESS
        self.abi = abi or AIMUSE_ABI
        self.accepted_chain_ids = tuple(accepted_chain_ids or (BASE_MAINNET_CHAIN_ID, BASE_TESTNET_CHAIN_ID))
        self.switch_target = switch_target or BASE_TESTNET_PARAMS
        self.confirmation_timeout = confirmation_timeout or CONFIRMATION_TIMEOUT

    def _contract(self, connection):
        return connection.w3.eth.contract(
            address=Web3.to_checksum_address(self.contract_address), abi=self.abi
        )

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------
    def ensure_network(self, connection) -> bool:
        """
        True if the connection is (now) on an accepted network.

        Off-network connections get a wallet_switchEthereumChain request; if the
        wallet does not know the target chain (4902) it is registered with
        wallet_addEthereumChain and the switch is retried. Rejections are a
        normal False result.
        """
        if connection.chain_id in self.accepted_chain_ids:
            return True

        target = {"chainId": self.switch_target["chainId"]}
        logger.info("Requesting network switch", extra={"from_chain_id": connection.chain_id, "to_chain_id": target["chainId"]})
        try:
            try:
                connection.request("wallet_switchEthereumChain", [target])
            except WalletRequestError as e:
                if e.code != WalletRequestError.UNRECOGNIZED_CHAIN:
                    raise
                logger.info("Target chain unknown to wallet, adding it", extra={"chain_id": target["chainId"]})
                connection.request("wallet_addEthereumChain", [self.switch_target])
                connection.request("wallet_switchEthereumChain", [target])
            connection.refresh()
        except MuseError as e:
            connection.report(NetworkMismatchError(f"Network switch failed: {e.message}"))
            return False
        except Exception as e:
            connection.report(NetworkMismatchError(f"Network switch failed: {e}"))
            return False

        if connection.chain_id in self.accepted_chain_ids:
            return True
        connection.report(NetworkMismatchError(
            f"Wallet is on network {connection.chain_id}, expected one of {list(self.accepted_chain_ids)}"
        ))
        return False

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def _send(self, connection, fn, value: int = None):
        """Submit a contract call once; returns the transaction hash."""
        params: Dict[str, Any] = {"from": connection.address}
        if value:
            params["value"] = value
        if connection.account is not None:
            w3 = connection.w3
            params["nonce"] = w3.eth.get_transaction_count(connection.address, "pending")
            tx = fn.build_transaction(params)
            signed = connection.account.sign_transaction(tx)
            return w3.eth.send_raw_transaction(signed.raw_transaction)
        return fn.transact(params)

    def wait_for_receipt(self, connection, tx_hash, timeout: float = None):
        """
        Bounded wait for confirmation. Returns the receipt of a successful
        transaction, raises ChainTransactionError on timeout or revert.
        """
        timeout = timeout or self.confirmation_timeout
        try:
            receipt = connection.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise ChainTransactionError(
                f"Transaction {Web3.to_hex(tx_hash)} not confirmed within {timeout}s"
            ) from e
        if receipt.get("status") != 1:
            raise ChainTransactionError(f"Transaction {Web3.to_hex(tx_hash)} reverted")
        return receipt

    def _extract_token_id(self, contract, receipt) -> Optional[int]:
        events = contract.events.NFTMinted().process_receipt(receipt, errors=DISCARD)
        if not events:
            return None
        return int(events[0]["args"]["tokenId"])

    def _fail_write(self, connection, operation: str, error: Exception) -> None:
        if not isinstance(error, MuseError):
            error = ChainTransactionError(f"{operation} failed: {error}")
        connection.report(error)
        monitoring.inc_chain_tx(operation, "fail")

    def mint(self, token_uri: str, connection) -> Optional[MintResult]:
        if not self.ensure_network(connection):
            monitoring.inc_chain_tx("mint", "network_mismatch")
            return None

        try:
            contract = self._contract(connection)
            fee = contract.functions.mintFee().call()
            tx_hash = self._send(connection, contract.functions.mintNFT(token_uri), value=fee)
            receipt = self.wait_for_receipt(connection, tx_hash)
            token_id = self._extract_token_id(contract, receipt)
        except ContractLogicError as e:
            self._fail_write(connection, "mint", ChainTransactionError(f"Mint reverted: {e}"))
            return None
        except Exception as e:
            self._fail_write(connection, "mint", e)
            return None

        tx_hex = Web3.to_hex(receipt["transactionHash"])
        if token_id is None:
            # confirmed on-chain, but the ABI no longer matches the contract's event
            logger.error("Mint receipt has no NFTMinted event", extra={"tx_hash": tx_hex})
            self._fail_write(connection, "mint", ChainTransactionError(
                f"Mint {tx_hex} confirmed but NFTMinted event missing from receipt"
            ))
            return None

        monitoring.inc_chain_tx("mint", "success")
        logger.info("NFT minted", extra={"token_id": token_id, "tx_hash": format_tx_hash(tx_hex)})
        return MintResult(token_id=token_id, tx_hash=tx_hex)

    def update_metadata(self, token_id: int, token_uri: str, connection) -> Optional[str]:
        if not self.ensure_network(connection):
            monitoring.inc_chain_tx("update_metadata", "network_mismatch")
            return None

        try:
            contract = self._contract(connection)
            tx_hash = self._send(connection, contract.functions.updateMetadata(int(token_id), token_uri))
            receipt = self.wait_for_receipt(connection, tx_hash)
        except ContractLogicError as e:
            self._fail_write(connection, "update_metadata", ChainTransactionError(f"Update reverted: {e}"))
            return None
        except Exception as e:
            self._fail_write(connection, "update_metadata", e)
            return None

        tx_hex = Web3.to_hex(receipt["transactionHash"])
        monitoring.inc_chain_tx("update_metadata", "success")
        logger.info("NFT metadata updated", extra={"token_id": token_id, "tx_hash": format_tx_hash(tx_hex)})
        return tx_hex

    # ------------------------------------------------------------------
    # Reads (display paths: safe defaults, never raise)
    # ------------------------------------------------------------------
    def _read_failed(self, connection, what: str, error: Exception):
        connection.report(ChainTransactionError(f"Reading {what} failed: {error}"))

    def read_token_uri(self, token_id: int, connection) -> Optional[str]:
        try:
            return self._contract(connection).functions.tokenURI(int(token_id)).call()
        except Exception as e:
            self._read_failed(connection, "tokenURI", e)
            return None

    def read_owner(self, token_id: int, connection) -> Optional[str]:
        try:
            return self._contract(connection).functions.ownerOf(int(token_id)).call()
        except Exception as e:
            self._read_failed(connection, "ownerOf", e)
            return None

    def read_balance(self, owner: str, connection) -> int:
        try:
            owner = Web3.to_checksum_address(owner)
            return int(self._contract(connection).functions.balanceOf(owner).call())
        except Exception as e:
            self._read_failed(connection, "balanceOf", e)
            return 0
