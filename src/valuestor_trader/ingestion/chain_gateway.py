"""Bonding-curve contract access: curve reads, trade submission and log polling."""

from __future__ import annotations

import asyncio
import threading
from decimal import ROUND_DOWN, Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.providers.rpc import HTTPProvider

from ..config.settings import ChainConfig, get_app_config
from ..datalake.schemas import CurveState, IssuanceEvent, TradeEvent
from ..errors import GatewayError, SlippageExceededError, WalletNotConfiguredError
from ..execution.wallet import Wallet
from ..monitoring.logger import get_logger
from ..utils.constants import FACTORY_ABI, TOKEN_DECIMALS

EventT = TypeVar("EventT")
EventCallback = Callable[[EventT], Awaitable[None]]
Unsubscribe = Callable[[], None]

TOKEN_CREATED_SIGNATURE = "TokenCreated(address,address,string,string,string,uint256)"
TOKEN_TRADED_SIGNATURE = "TokenTraded(address,address,bool,uint256,uint256,uint256,uint256)"

_TRANSIENT_ERRORS = (requests.RequestException, Web3Exception, TimeoutError, ConnectionError)


class ChainGateway(Protocol):
    """Everything the pipeline needs from the chain. Reads and writes are blocking."""

    def read_curve_state(self, token: str) -> CurveState:
        ...

    def submit_buy(self, token: str, native_amount: Decimal, *, max_price: Optional[Decimal] = None) -> str:
        ...

    def submit_sell(self, token: str, token_amount: Decimal, *, min_proceeds: Optional[Decimal] = None) -> str:
        ...

    def subscribe_issuance_created(self, callback: EventCallback[IssuanceEvent]) -> Unsubscribe:
        ...

    def subscribe_trade_executed(self, callback: EventCallback[TradeEvent]) -> Unsubscribe:
        ...


def from_base_units(value: Any) -> Decimal:
    return Decimal(int(value)).scaleb(-TOKEN_DECIMALS)


def to_base_units(value: Decimal) -> int:
    return int((value * (Decimal(10) ** TOKEN_DECIMALS)).to_integral_value(rounding=ROUND_DOWN))


def event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


def _log_field(log: Any, key: str) -> Any:
    value = log.get(key) if hasattr(log, "get") else None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


def _issuance_from_log(decoded: Any) -> IssuanceEvent:
    args = decoded["args"]
    return IssuanceEvent(
        token_address=args["token"],
        creator_address=args["creator"],
        name=args["name"],
        symbol=args["symbol"],
        metadata_uri=args["uri"],
        timestamp=int(args["timestamp"]),
        block_number=int(decoded["blockNumber"]),
        tx_hash=Web3.to_hex(decoded["transactionHash"]),
    )


def _trade_from_log(decoded: Any) -> TradeEvent:
    args = decoded["args"]
    return TradeEvent(
        token_address=args["token"],
        trader=args["trader"],
        is_buy=bool(args["isBuy"]),
        native_amount=from_base_units(args["ethAmount"]),
        token_amount=from_base_units(args["tokenAmount"]),
        new_price=from_base_units(args["newPrice"]),
        timestamp=int(args["timestamp"]),
        block_number=int(decoded["blockNumber"]),
        tx_hash=Web3.to_hex(decoded["transactionHash"]),
    )


class LogSubscription:
    """Polls ``eth_getLogs`` for one event and awaits the callback per log in order."""

    def __init__(
        self,
        name: str,
        fetch_head: Callable[[], int],
        fetch_events: Callable[[int, int], List[Any]],
        callback: EventCallback[Any],
        *,
        poll_interval: float,
        chunk_size: int,
        start_block: Optional[int] = None,
    ) -> None:
        self.name = name
        self._fetch_head = fetch_head
        self._fetch_events = fetch_events
        self._callback = callback
        self._poll_interval = poll_interval
        self._chunk_size = chunk_size
        self._next_block = start_block
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._logger = get_logger(__name__)

    def start(self) -> "LogSubscription":
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"logs:{self.name}")
        return self

    def stop(self) -> None:
        """Stop polling. An event already being dispatched is allowed to finish."""

        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        while not self._stop.is_set():
            caught_up = True
            try:
                caught_up = await self._poll_once()
            except GatewayError as exc:
                self._logger.warning(
                    "Log poll failed", extra={"subscription": self.name, "error": str(exc)}
                )
            except Exception:  # noqa: BLE001
                self._logger.exception("Log poll crashed", extra={"subscription": self.name})
            if self._stop.is_set():
                break
            if caught_up:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def _poll_once(self) -> bool:
        head = await asyncio.to_thread(self._fetch_head)
        if self._next_block is None:
            self._next_block = head
        if self._next_block > head:
            return True
        to_block = min(head, self._next_block + self._chunk_size - 1)
        try:
            events = await asyncio.to_thread(self._fetch_events, self._next_block, to_block)
        except GatewayError:
            raise
        except Exception:  # noqa: BLE001
            self._logger.exception(
                "Skipping undecodable block range",
                extra={"subscription": self.name, "from_block": self._next_block, "to_block": to_block},
            )
            self._next_block = to_block + 1
            return to_block >= head
        for event in events:
            if self._stop.is_set():
                return True
            try:
                await self._callback(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("Event callback failed", extra={"subscription": self.name})
        self._next_block = to_block + 1
        return to_block >= head


class BondingCurveGateway:
    """web3.py adapter for the issuance factory contract."""

    def __init__(
        self,
        config: Optional[ChainConfig] = None,
        wallet: Optional[Wallet] = None,
        *,
        web3: Optional[Web3] = None,
    ) -> None:
        self._config = config or get_app_config().chain
        self._web3 = web3 or Web3(
            HTTPProvider(str(self._config.rpc_url), request_kwargs={"timeout": self._config.request_timeout})
        )
        self._factory_address = Web3.to_checksum_address(self._config.factory_address)
        self._contract = self._web3.eth.contract(address=self._factory_address, abi=FACTORY_ABI)
        self._wallet = wallet
        self._send_lock = threading.Lock()
        self._subscriptions: List[LogSubscription] = []
        self._logger = get_logger(__name__)

    @property
    def address(self) -> Optional[str]:
        return self._wallet.address if self._wallet else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        reraise=True,
    )
    def _call_curve_info(self, token: str) -> List[Any]:
        return list(self._contract.functions.getBondingCurveInfo(Web3.to_checksum_address(token)).call())

    def read_curve_state(self, token: str) -> CurveState:
        try:
            price, supply, reserve, market_cap, graduated = self._call_curve_info(token)
        except (*_TRANSIENT_ERRORS, ValueError) as exc:
            raise GatewayError(f"getBondingCurveInfo({token}) failed: {exc}") from exc
        return CurveState(
            current_price=from_base_units(price),
            total_supply=from_base_units(supply),
            reserve_value=from_base_units(reserve),
            market_cap=from_base_units(market_cap),
            graduated=bool(graduated),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def submit_buy(self, token: str, native_amount: Decimal, *, max_price: Optional[Decimal] = None) -> str:
        self._require_wallet()
        if max_price is not None:
            price = self.read_curve_state(token).current_price
            if price > max_price:
                raise SlippageExceededError(f"price {price} above ceiling {max_price} for {token}")
        fn = self._contract.functions.buyTokens(Web3.to_checksum_address(token))
        return self._send(fn, value=to_base_units(native_amount), label="buyTokens")

    def submit_sell(self, token: str, token_amount: Decimal, *, min_proceeds: Optional[Decimal] = None) -> str:
        self._require_wallet()
        if min_proceeds is not None:
            price = self.read_curve_state(token).current_price
            expected = token_amount * price
            if expected < min_proceeds:
                raise SlippageExceededError(
                    f"expected proceeds {expected} below floor {min_proceeds} for {token}"
                )
        fn = self._contract.functions.sellTokens(
            Web3.to_checksum_address(token), to_base_units(token_amount)
        )
        return self._send(fn, value=0, label="sellTokens")

    def _require_wallet(self) -> Wallet:
        if self._wallet is None:
            raise WalletNotConfiguredError("Gateway has no signing account; provide PRIVATE_KEY")
        return self._wallet

    def _send(self, fn: Any, *, value: int, label: str) -> str:
        wallet = self._require_wallet()
        sender = wallet.address
        with self._send_lock:
            try:
                base_tx: Dict[str, Any] = {
                    "chainId": self._config.chain_id,
                    "from": sender,
                    "nonce": self._web3.eth.get_transaction_count(sender, "pending"),
                    "value": value,
                }
                estimate = fn.estimate_gas({"from": sender, "value": value})
                gas = int(estimate * self._config.gas_limit_multiplier)
                tx = fn.build_transaction({**base_tx, "gas": gas})
                signed = wallet.account.sign_transaction(tx)
                raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
                tx_hash = self._web3.eth.send_raw_transaction(raw)
            except (*_TRANSIENT_ERRORS, ValueError) as exc:
                raise GatewayError(f"{label} submission failed: {exc}") from exc
        result = self._web3.to_hex(tx_hash)
        self._logger.info("Submitted transaction", extra={"function": label, "tx_hash": result})
        return result

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        reraise=True,
    )
    def _get_logs(self, topic: str, from_block: int, to_block: int) -> List[Any]:
        return list(
            self._web3.eth.get_logs(
                {
                    "address": self._factory_address,
                    "topics": [topic],
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
        )

    def _head(self) -> int:
        try:
            return int(self._web3.eth.block_number)
        except _TRANSIENT_ERRORS as exc:
            raise GatewayError(f"eth_blockNumber failed: {exc}") from exc

    def _decode_logs(self, event_name: str, logs: List[Any], build: Callable[[Any], EventT]) -> List[EventT]:
        decoder = getattr(self._contract.events, event_name)()
        events: List[EventT] = []
        for log in logs:
            try:
                events.append(build(decoder.process_log(log)))
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "Skipping undecodable log",
                    extra={
                        "event": event_name,
                        "block_number": _log_field(log, "blockNumber"),
                        "tx_hash": _log_field(log, "transactionHash"),
                        "error": str(exc),
                    },
                )
        return events

    def fetch_issuances(self, from_block: int, to_block: int) -> List[IssuanceEvent]:
        try:
            logs = self._get_logs(event_topic(TOKEN_CREATED_SIGNATURE), from_block, to_block)
        except _TRANSIENT_ERRORS as exc:
            raise GatewayError(f"TokenCreated log query failed: {exc}") from exc
        return self._decode_logs("TokenCreated", logs, _issuance_from_log)

    def fetch_trades(self, from_block: int, to_block: int) -> List[TradeEvent]:
        try:
            logs = self._get_logs(event_topic(TOKEN_TRADED_SIGNATURE), from_block, to_block)
        except _TRANSIENT_ERRORS as exc:
            raise GatewayError(f"TokenTraded log query failed: {exc}") from exc
        return self._decode_logs("TokenTraded", logs, _trade_from_log)

    def _subscribe(self, name: str, fetch: Callable[[int, int], List[Any]], callback: EventCallback[Any]) -> Unsubscribe:
        subscription = LogSubscription(
            name,
            self._head,
            fetch,
            callback,
            poll_interval=self._config.poll_interval_seconds,
            chunk_size=self._config.log_chunk_size,
            start_block=self._config.start_block,
        ).start()
        self._subscriptions.append(subscription)
        return subscription.stop

    def subscribe_issuance_created(self, callback: EventCallback[IssuanceEvent]) -> Unsubscribe:
        return self._subscribe("TokenCreated", self.fetch_issuances, callback)

    def subscribe_trade_executed(self, callback: EventCallback[TradeEvent]) -> Unsubscribe:
        return self._subscribe("TokenTraded", self.fetch_trades, callback)

    async def wait_closed(self) -> None:
        """Wait for every stopped subscription task to exit."""

        await asyncio.gather(*(sub.wait_closed() for sub in self._subscriptions))


__all__ = [
    "BondingCurveGateway",
    "ChainGateway",
    "EventCallback",
    "LogSubscription",
    "Unsubscribe",
    "event_topic",
    "from_base_units",
    "to_base_units",
]
