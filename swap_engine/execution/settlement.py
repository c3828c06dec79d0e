"""
Settlement layer clients.

The engine never signs or lands transactions itself. It hands the unsigned
transaction to a settlement client and waits for confirmation.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from swap_engine.exceptions import ConfigurationError, SettlementError

logger = logging.getLogger(__name__)


@dataclass
class SettlementReceipt:
    """Confirmation result for a submitted transaction."""
    tx_hash: str
    status: str = "confirmed"
    slot: Optional[int] = None
    amount_out: Optional[Decimal] = None  # Realized output when the layer reports it

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status,
            "slot": self.slot,
            "amount_out": str(self.amount_out) if self.amount_out is not None else None,
        }


class SettlementClient(ABC):
    """Submission and confirmation of swap transactions."""

    @abstractmethod
    async def submit(self, unsigned_tx: str, order_id: str) -> str:
        """
        Submit a transaction.

        Returns:
            Transaction hash (signature)

        Raises:
            SettlementError: Submission was rejected or the layer is unreachable
        """

    @abstractmethod
    async def confirm(self, tx_hash: str) -> SettlementReceipt:
        """
        Wait for a submitted transaction to confirm.

        Raises:
            SettlementError: The transaction failed or did not confirm in time
        """

    async def close(self) -> None:
        pass


class SimulatedSettlement(SettlementClient):
    """
    Mock settlement for development and demos.

    Sleeps for a short while and returns synthetic transaction hashes.
    """

    def __init__(self, submit_delay: float = 0.5, confirm_delay: float = 1.0):
        self.submit_delay = submit_delay
        self.confirm_delay = confirm_delay
        self.submitted: List[str] = []

    async def submit(self, unsigned_tx: str, order_id: str) -> str:
        if not unsigned_tx:
            raise SettlementError("Empty transaction")
        await asyncio.sleep(self.submit_delay)
        tx_hash = f"{order_id[:8]}tx{int(time.time() * 1000)}"
        self.submitted.append(tx_hash)
        logger.info(f"[SIMULATED] Submitted {order_id} as {tx_hash}")
        return tx_hash

    async def confirm(self, tx_hash: str) -> SettlementReceipt:
        await asyncio.sleep(self.confirm_delay)
        logger.info(f"[SIMULATED] Confirmed {tx_hash}")
        return SettlementReceipt(tx_hash=tx_hash)


class SolanaRpcSettlement(SettlementClient):
    """
    Settlement through Solana JSON-RPC.

    When ``forward_url`` is set, unsigned transactions are posted to that
    signing relay (which returns the signature). Otherwise the transaction is
    sent with ``sendTransaction`` directly.
    """

    FINAL_STATUSES = ("confirmed", "finalized")

    def __init__(
        self,
        rpc_url: str,
        forward_url: Optional[str] = None,
        confirm_timeout: float = 60.0,
        poll_interval: float = 1.0,
        request_timeout: float = 15.0,
    ):
        self.rpc_url = rpc_url
        self.forward_url = forward_url
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise SettlementError(f"Settlement HTTP {response.status}: {text}")
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Settlement network error: {e}")
            raise SettlementError(f"Network error: {e}") from e

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        body = await self._post(self.rpc_url, payload)
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise SettlementError(f"RPC {method} failed: {message}")
        return body.get("result")

    async def submit(self, unsigned_tx: str, order_id: str) -> str:
        if self.forward_url:
            body = await self._post(self.forward_url, {"orderId": order_id, "transaction": unsigned_tx})
            signature = body.get("signature") or body.get("txHash")
        else:
            signature = await self._rpc(
                "sendTransaction",
                [unsigned_tx, {"encoding": "base64", "preflightCommitment": "confirmed"}],
            )

        if not signature:
            raise SettlementError(f"No signature returned for order {order_id}")
        logger.info(f"Submitted order {order_id}: {signature}")
        return signature

    async def confirm(self, tx_hash: str) -> SettlementReceipt:
        deadline = time.monotonic() + self.confirm_timeout
        while True:
            result = await self._rpc(
                "getSignatureStatuses",
                [[tx_hash], {"searchTransactionHistory": True}],
            )
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]

            if status:
                if status.get("err"):
                    raise SettlementError(f"Transaction failed on-chain: {status['err']}", tx_hash=tx_hash)
                if status.get("confirmationStatus") in self.FINAL_STATUSES:
                    return SettlementReceipt(
                        tx_hash=tx_hash,
                        status=status["confirmationStatus"],
                        slot=status.get("slot"),
                    )

            if time.monotonic() >= deadline:
                raise SettlementError(
                    f"Transaction not confirmed within {self.confirm_timeout}s", tx_hash=tx_hash
                )
            await asyncio.sleep(self.poll_interval)


def create_settlement(config) -> SettlementClient:
    """Settlement client for ``config.settlement_mode``."""
    mode = config.settlement_mode
    if mode == "simulated":
        return SimulatedSettlement()
    if mode == "rpc":
        return SolanaRpcSettlement(
            rpc_url=config.solana_rpc_url,
            forward_url=config.settlement_forward_url,
            confirm_timeout=config.confirm_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown settlement mode: {mode}")
