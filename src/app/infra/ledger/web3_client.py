# src/app/infra/ledger/web3_client.py
"""
RecipeRegistry client over an EVM JSON-RPC node (Ganache in development).

The client owns one signing identity. It is built explicitly, initialized
lazily on first use and reused until ``close()``. Transaction submission is
serialized per identity so concurrent anchors never race for a nonce.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any, Optional

import requests
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound
from web3.providers import HTTPProvider

from src.app.config import LedgerSettings
from src.app.domain.errors import (
    ContractNotDeployedError,
    DuplicateHashError,
    EstimationRevertError,
    LedgerCancelledError,
    LedgerConfigurationError,
    LedgerConnectionError,
    LedgerError,
    LedgerFailureKind,
    LedgerTimeoutError,
    LedgerValidationError,
    TransactionFailedError,
    classify_revert_reason,
)
from src.app.domain.models import (
    AnchorResult,
    ConnectionStatus,
    HashLookup,
    LedgerFailure,
    LedgerInitResult,
)
from src.app.infra.ledger.base import LedgerClient
from src.app.infra.ledger.contract_abi import (
    RECIPE_REGISTERED_EVENT_SIGNATURE,
    RECIPE_REGISTRY_ABI,
)

logger = logging.getLogger(__name__)

HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
_REVERT_PREFIXES = (
    "execution reverted: ",
    "vm exception while processing transaction: revert ",
    "vm exception while processing transaction: reverted with reason string ",
)


def _structured_reason(data: Any) -> Optional[str]:
    # Ganache 2.x: {"reason": ...} or {"0x<txhash>": {"error": "revert", "reason": ...}}
    if not isinstance(data, dict):
        return None
    reason = data.get("reason")
    if isinstance(reason, str) and reason:
        return reason
    for value in data.values():
        if isinstance(value, dict):
            reason = value.get("reason")
            if isinstance(reason, str) and reason:
                return reason
    return None


def raw_error_message(exc: BaseException) -> str:
    """
    Most specific message carried by an RPC/contract error.

    Checks the chained cause first, then a structured revert reason in
    ``data``, then ``reason``, then ``message``, then the raw payload.
    """
    cause = exc.__cause__
    if cause is not None:
        return raw_error_message(cause)

    structured = _structured_reason(getattr(exc, "data", None))
    if structured:
        return structured

    reason = getattr(exc, "reason", None)
    if isinstance(reason, str) and reason:
        return reason

    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message

    data = getattr(exc, "data", None)
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])

    if exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]
        structured = _structured_reason(payload.get("data"))
        if structured:
            return structured
        if payload.get("message"):
            return str(payload["message"])

    return str(exc) or exc.__class__.__name__


def revert_reason(message: str) -> str:
    """Strip every node/library revert prefix, however deeply they are stacked."""
    text = message.strip().strip("'\"")
    stripped = True
    while stripped:
        stripped = False
        lowered = text.lower()
        for prefix in _REVERT_PREFIXES:
            if lowered.startswith(prefix):
                text = text[len(prefix):].strip().strip("'\"")
                stripped = True
                break
    return text


def failure_from_exception(exc: BaseException) -> LedgerFailure:
    """Tag a raw fault as close to its origin as possible."""
    if isinstance(exc, LedgerError):
        return LedgerFailure(exc.kind, str(exc))

    raw = raw_error_message(exc)
    if isinstance(exc, ContractLogicError) or "revert" in raw.lower():
        return LedgerFailure(classify_revert_reason(raw), revert_reason(raw))
    if isinstance(exc, (TimeExhausted, requests.exceptions.Timeout)):
        return LedgerFailure(LedgerFailureKind.TIMEOUT, raw)
    if isinstance(exc, requests.exceptions.ConnectionError):
        return LedgerFailure(LedgerFailureKind.CONNECTION, raw)
    return LedgerFailure(LedgerFailureKind.RPC, raw)


class Web3LedgerClient(LedgerClient):
    def __init__(self, config: LedgerSettings, web3: Optional[Web3] = None):
        self._config = config
        self._injected_web3 = web3
        self._web3: Optional[Web3] = None
        self._account: Optional[LocalAccount] = None
        self._contract: Any = None
        self._chain_id: Optional[int] = None
        self._warnings: list[str] = []
        self._init_lock = threading.Lock()
        self._submit_lock = threading.Lock()
        self._closing = threading.Event()

    @property
    def contract_configured(self) -> bool:
        return self._config.has_contract

    @property
    def account_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    # ------------------------------------------------------------------
    # Connection / identity
    # ------------------------------------------------------------------

    def _create_web3(self) -> Web3:
        if self._injected_web3 is not None:
            return self._injected_web3
        provider = HTTPProvider(
            self._config.node_url,
            request_kwargs={"timeout": self._config.rpc_timeout_seconds},
        )
        return Web3(provider)

    def check_connection(self) -> ConnectionStatus:
        url = self._config.node_url
        if not url:
            return ConnectionStatus(success=False, error="LEDGER_NODE_URL is not set")

        try:
            w3 = self._create_web3()
            if not w3.is_connected():
                return ConnectionStatus(
                    success=False,
                    url=url,
                    error=f"Cannot connect to ledger node at {url}. Make sure the node is running.",
                )
            network_id = str(w3.net.version)
            chain_id = int(w3.eth.chain_id)
        except Exception as exc:
            return ConnectionStatus(success=False, url=url, error=raw_error_message(exc))

        return ConnectionStatus(
            success=True,
            connected=True,
            network_id=network_id,
            chain_id=chain_id,
            url=url,
        )

    def initialize(self) -> LedgerInitResult:
        try:
            self._ensure_initialized()
        except Exception as exc:
            failure = failure_from_exception(exc)
            logger.warning("Ledger initialization failed: kind=%s error=%s", failure.kind.value, failure.message)
            return LedgerInitResult(success=False, error=failure.message, failure=failure)

        return LedgerInitResult(
            success=True,
            account=self.account_address,
            contract_address=self._contract.address if self._contract is not None else None,
            warnings=list(self._warnings),
        )

    def _ensure_initialized(self) -> None:
        with self._init_lock:
            if self._account is not None and self._web3 is not None:
                return

            check = self._config.validate(require_contract=False)
            if not check.is_valid:
                raise LedgerConfigurationError(check.errors)

            self._closing.clear()
            w3 = self._create_web3()
            if not w3.is_connected():
                raise LedgerConnectionError(self._config.node_url)

            try:
                account: LocalAccount = Account.from_key(self._config.private_key)
            except Exception as exc:
                raise LedgerConfigurationError(["LEDGER_PRIVATE_KEY is not a valid private key"]) from exc

            contract = None
            if self._config.has_contract:
                if not Web3.is_address(self._config.contract_address):
                    raise LedgerConfigurationError(["RECIPE_REGISTRY_ADDRESS is not a valid address"])
                contract = w3.eth.contract(
                    address=Web3.to_checksum_address(self._config.contract_address),
                    abi=RECIPE_REGISTRY_ABI,
                )

            self._chain_id = int(w3.eth.chain_id)
            self._web3 = w3
            self._account = account
            self._contract = contract
            self._warnings = list(check.warnings)

            for warning in check.warnings:
                logger.warning(warning)
            logger.info(
                "Ledger client initialized: account=%s chain_id=%s contract=%s",
                account.address,
                self._chain_id,
                self._config.contract_address or "-",
            )

    def _ready_contract(self) -> tuple[Web3, Any]:
        self._ensure_initialized()
        if self._contract is None:
            raise ContractNotDeployedError(
                "Contract instance not initialized. Deploy the contract and set RECIPE_REGISTRY_ADDRESS."
            )
        return self._web3, self._contract

    def close(self) -> None:
        self._closing.set()
        with self._init_lock:
            self._web3 = None
            self._account = None
            self._contract = None
            self._chain_id = None
        logger.info("Ledger client closed")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_hash(recipe_hash: Any, label: str = "Recipe hash") -> str:
        if not recipe_hash or not isinstance(recipe_hash, str):
            raise LedgerValidationError(f"{label} is required and must be a string")
        if not HASH_PATTERN.match(recipe_hash):
            raise LedgerValidationError(f"{label} must be 64 hexadecimal characters")
        return recipe_hash.lower()

    @staticmethod
    def _validate_address(address: Any) -> str:
        if not address or not isinstance(address, str) or not Web3.is_address(address):
            raise LedgerValidationError("Valid author wallet address is required")
        return Web3.to_checksum_address(address)

    def _require_contract_address(self) -> None:
        if not self._config.has_contract:
            raise ContractNotDeployedError(
                "Contract address not set. Please deploy contract first and set RECIPE_REGISTRY_ADDRESS"
            )

    # ------------------------------------------------------------------
    # State-changing calls
    # ------------------------------------------------------------------

    def register_recipe_hash(self, recipe_hash: str, author_address: str) -> AnchorResult:
        try:
            normalized = self._validate_hash(recipe_hash)
            author = self._validate_address(author_address)
            self._require_contract_address()
            w3, contract = self._ready_contract()
            call = contract.functions.registerRecipe(normalized, author)
            return self._transact(w3, call, "registerRecipe")
        except Exception as exc:
            return self._anchor_failure("registerRecipe", exc)

    def update_recipe_hash(self, old_hash: str, new_hash: str, author_address: str) -> AnchorResult:
        try:
            if not old_hash or not new_hash:
                raise LedgerValidationError("Both old and new hash are required")
            old_normalized = self._validate_hash(old_hash, "Old hash")
            new_normalized = self._validate_hash(new_hash, "New hash")
            author = self._validate_address(author_address)
            self._require_contract_address()
            w3, contract = self._ready_contract()
            call = contract.functions.updateRecipe(old_normalized, new_normalized, author)
            return self._transact(w3, call, "updateRecipe")
        except Exception as exc:
            return self._anchor_failure("updateRecipe", exc)

    def _anchor_failure(self, operation: str, exc: BaseException) -> AnchorResult:
        failure = failure_from_exception(exc)
        logger.warning("Ledger %s failed: kind=%s error=%s", operation, failure.kind.value, failure.message)
        return AnchorResult.failed(failure.message, failure.kind)

    def _transact(self, w3: Web3, call: Any, operation: str) -> AnchorResult:
        sender = self._account.address

        # Dry run: a revert here means nothing is submitted.
        try:
            gas_estimate = int(call.estimate_gas({"from": sender}))
        except Exception as exc:
            failure = failure_from_exception(exc)
            if failure.kind == LedgerFailureKind.DUPLICATE:
                raise DuplicateHashError(failure.message) from exc
            if failure.kind == LedgerFailureKind.REVERTED:
                raise EstimationRevertError(failure.message) from exc
            raise

        gas_limit = self._config.gas_limit
        if gas_limit and gas_estimate > gas_limit:
            raise LedgerValidationError(
                f"Estimated gas {gas_estimate} exceeds configured limit {gas_limit}"
            )

        with self._submit_lock:
            if self._closing.is_set():
                raise LedgerCancelledError(operation)
            nonce = w3.eth.get_transaction_count(sender, "pending")
            tx = call.build_transaction(
                {
                    "from": sender,
                    "nonce": nonce,
                    "gas": gas_estimate,
                    "gasPrice": self._gas_price(w3),
                    "chainId": self._chain_id,
                }
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = Web3.to_hex(w3.eth.send_raw_transaction(signed.raw_transaction))

        logger.info("Ledger %s submitted: tx=%s nonce=%s gas=%s", operation, tx_hash, nonce, gas_estimate)

        receipt = self._wait_for_receipt(w3, tx_hash, operation)
        if not receipt or receipt.get("status") != 1:
            raise TransactionFailedError(tx_hash)

        result = AnchorResult.confirmed(
            transaction_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            gas_used=receipt["gasUsed"],
        )
        logger.info(
            "Ledger %s confirmed: tx=%s block=%s gas_used=%s",
            operation,
            tx_hash,
            result.block_number,
            result.gas_used,
        )
        return result

    def _gas_price(self, w3: Web3) -> int:
        if self._config.gas_price:
            return int(self._config.gas_price)
        return int(w3.eth.gas_price)

    def _wait_for_receipt(self, w3: Web3, tx_hash: str, operation: str) -> Any:
        timeout = self._config.receipt_timeout_seconds
        poll = max(self._config.receipt_poll_seconds, 0.01)
        deadline = time.monotonic() + timeout

        while True:
            try:
                receipt = w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None
            if receipt is not None:
                return receipt

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LedgerTimeoutError(f"{operation} receipt", timeout)
            if self._closing.wait(min(poll, remaining)):
                raise LedgerCancelledError(f"{operation} receipt")

    # ------------------------------------------------------------------
    # Read-only calls
    # ------------------------------------------------------------------

    def verify_recipe_hash(self, recipe_hash: str) -> HashLookup:
        return self._lookup(recipe_hash, with_registration=False)

    def get_recipe_info(self, recipe_hash: str) -> HashLookup:
        return self._lookup(recipe_hash, with_registration=True)

    def _lookup(self, recipe_hash: str, with_registration: bool) -> HashLookup:
        if not self._config.has_contract:
            return HashLookup.failed("Contract not deployed yet", LedgerFailureKind.CONTRACT_NOT_DEPLOYED)

        try:
            normalized = self._validate_hash(recipe_hash)
            w3, contract = self._ready_contract()
            exists, author, block_timestamp = contract.functions.verifyRecipe(normalized).call()
        except Exception as exc:
            failure = failure_from_exception(exc)
            return HashLookup.failed(failure.message, failure.kind)

        lookup = HashLookup(success=True, exists=bool(exists))
        if lookup.exists:
            lookup.author = author
            if block_timestamp:
                lookup.block_timestamp = int(block_timestamp)
                lookup.timestamp = datetime.fromtimestamp(int(block_timestamp), tz=timezone.utc)
            if with_registration:
                self._attach_registration(w3, contract, normalized, lookup)
        return lookup

    def _attach_registration(self, w3: Web3, contract: Any, recipe_hash: str, lookup: HashLookup) -> None:
        # Indexed strings are stored as the keccak of their text.
        topics = [
            Web3.to_hex(Web3.keccak(text=RECIPE_REGISTERED_EVENT_SIGNATURE)),
            Web3.to_hex(Web3.keccak(text=recipe_hash)),
        ]
        try:
            logs = w3.eth.get_logs(
                {
                    "address": contract.address,
                    "fromBlock": 0,
                    "toBlock": "latest",
                    "topics": topics,
                }
            )
        except Exception as exc:
            logger.warning("RecipeRegistered lookup failed for %s: %s", recipe_hash, raw_error_message(exc))
            return

        if not logs:
            return
        latest = logs[-1]
        lookup.transaction_hash = Web3.to_hex(latest["transactionHash"])
        lookup.block_number = int(latest["blockNumber"])
