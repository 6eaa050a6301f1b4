# core/paystack.py
import asyncio
import httpx
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

from veaportal.core.errors import GatewayError

logger = logging.getLogger("vea")

SPLIT_NAME = "School Fees Revenue Split"
MAX_LOOKUP_PAGES = 10
PAGE_SIZE = 50


@dataclass(frozen=True)
class PartnerSplitConfiguration:
    split_code: str
    subaccount_code: str


class PaystackClient:
    """
    Thin async wrapper over the Paystack REST API.

    ``verify_transaction`` returns Paystack's JSON body as-is, including
    ``{"status": false}`` rejections; only transport and parse failures raise.
    """

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.PAYSTACK_BASE_URL.rstrip("/")
        self.timeout = settings.PAYSTACK_TIMEOUT_SECONDS
        self._transport = transport

        self._subaccount_code: Optional[str] = (settings.PAYSTACK_PARTNER_SUBACCOUNT_CODE or "").strip() or None
        self._split_code: Optional[str] = (settings.PAYSTACK_PARTNER_SPLIT_CODE or "").strip() or None
        self._split_lock = asyncio.Lock()

    # ----------------------------
    # Transport
    # ----------------------------
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.paystack_secret}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(f"Paystack {method} {path} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Paystack {method} {path} returned non-JSON body (HTTP {response.status_code})"
            ) from e

        if not isinstance(payload, dict):
            raise GatewayError(f"Paystack {method} {path} returned unexpected payload")
        return payload

    # ----------------------------
    # Transactions
    # ----------------------------
    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        return await self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")

    async def initialize_transaction(
        self,
        *,
        email: str,
        amount_kobo: int,
        metadata: Dict[str, Any],
        split_code: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "email": email,
            "amount": int(amount_kobo),
            "metadata": metadata,
        }
        if split_code:
            body["split_code"] = split_code
        if callback_url:
            body["callback_url"] = callback_url
        return await self._request("POST", "/transaction/initialize", json=body)

    # ----------------------------
    # Partner revenue split
    # ----------------------------
    async def ensure_partner_split_configuration(self) -> PartnerSplitConfiguration:
        """
        Subaccount and split used for the platform share. Env overrides win;
        otherwise they are created (or found, if creation is refused) once and
        cached for the life of the client.
        """
        if self._split_code and self._subaccount_code:
            return PartnerSplitConfiguration(self._split_code, self._subaccount_code)

        async with self._split_lock:
            if not self._subaccount_code:
                self._subaccount_code = await self._ensure_subaccount_code()
            if not self._split_code:
                self._split_code = await self._ensure_split_code(self._subaccount_code)

        return PartnerSplitConfiguration(self._split_code, self._subaccount_code)

    async def _paged(self, path: str):
        for page in range(1, MAX_LOOKUP_PAGES + 1):
            payload = await self._request("GET", path, params={"page": page, "perPage": PAGE_SIZE})
            data = payload.get("data")
            if not isinstance(data, list):
                return
            for entry in data:
                if isinstance(entry, dict):
                    yield entry
            meta = payload.get("meta") or {}
            if not (isinstance(meta.get("next"), str) and meta["next"].strip()):
                return

    async def _find_existing_subaccount_code(self) -> Optional[str]:
        async for entry in self._paged("/subaccount"):
            if (
                entry.get("account_number") == self.settings.PARTNER_ACCOUNT_NUMBER
                and entry.get("settlement_bank") == self.settings.PARTNER_BANK_CODE
            ):
                code = str(entry.get("subaccount_code") or "").strip()
                if code:
                    return code
        return None

    async def _ensure_subaccount_code(self) -> str:
        payload = await self._request("POST", "/subaccount", json={
            "business_name": self.settings.PARTNER_ACCOUNT_NAME,
            "settlement_bank": self.settings.PARTNER_BANK_CODE,
            "account_number": self.settings.PARTNER_ACCOUNT_NUMBER,
            "active": True,
            "percentage_charge": 0,
            "description": "Automated revenue share beneficiary for school fees",
        })
        if payload.get("status") is True:
            code = str((payload.get("data") or {}).get("subaccount_code") or "").strip()
            if code:
                logger.info(f"Paystack partner subaccount created: {code}")
                return code

        existing = await self._find_existing_subaccount_code()
        if existing:
            return existing

        message = payload.get("message") or "Unable to create Paystack subaccount"
        raise GatewayError(
            f"{message}. Please set PAYSTACK_PARTNER_SUBACCOUNT_CODE with the beneficiary's subaccount code manually."
        )

    def _is_partner_split(self, entry: Dict[str, Any], subaccount_code: str) -> bool:
        if entry.get("type") != "percentage":
            return False
        if str(entry.get("name") or "").strip().lower() != SPLIT_NAME.lower():
            return False
        for sub in entry.get("subaccounts") or []:
            if not isinstance(sub, dict):
                continue
            try:
                share = float(sub.get("share"))
            except (TypeError, ValueError):
                continue
            target = sub.get("subaccount")
            if isinstance(target, dict):
                target = target.get("subaccount_code")
            if target == subaccount_code and abs(share - self.settings.DEVELOPER_REVENUE_SHARE_PERCENTAGE) < 0.0001:
                return True
        return False

    async def _find_existing_split_code(self, subaccount_code: str) -> Optional[str]:
        async for entry in self._paged("/split"):
            if self._is_partner_split(entry, subaccount_code):
                code = str(entry.get("split_code") or "").strip()
                if code:
                    return code
        return None

    async def _ensure_split_code(self, subaccount_code: str) -> str:
        payload = await self._request("POST", "/split", json={
            "name": SPLIT_NAME,
            "type": "percentage",
            "currency": "NGN",
            "subaccounts": [
                {"subaccount": subaccount_code, "share": self.settings.DEVELOPER_REVENUE_SHARE_PERCENTAGE},
            ],
            "bearer_type": "account",
        })
        if payload.get("status") is True:
            code = str((payload.get("data") or {}).get("split_code") or "").strip()
            if code:
                logger.info(f"Paystack revenue split created: {code}")
                return code

        existing = await self._find_existing_split_code(subaccount_code)
        if existing:
            return existing

        message = payload.get("message") or "Unable to create Paystack split"
        raise GatewayError(
            f"{message}. Please set PAYSTACK_PARTNER_SPLIT_CODE with a valid Paystack split code manually."
        )
