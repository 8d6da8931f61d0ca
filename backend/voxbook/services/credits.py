"""Client for the central credits ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from voxbook.core.constants import JobKind
from voxbook.schemas.config import CreditsConfig

logger = logging.getLogger(__name__)


class CreditsError(RuntimeError):
    pass


class InsufficientCredits(CreditsError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits: required {required}, available {available}")
        self.required = required
        self.available = available


@dataclass
class CreditBalance:
    balance: int
    plan: str = ""
    role: str = ""


def job_cost(cfg: CreditsConfig, kind: Union[JobKind, str], total_items: int) -> int:
    kind = JobKind(kind)
    if kind is JobKind.TEXT_TO_SPEECH:
        return cfg.text_to_speech_cost
    if kind is JobKind.SPEECH_TO_TEXT:
        return cfg.speech_to_text_cost
    return cfg.bulk_cost_per_book * total_items


def _parse_balance(data: Any) -> CreditBalance:
    if not isinstance(data, dict):
        return CreditBalance(balance=0)
    try:
        balance = int(data.get("balance") or 0)
    except (TypeError, ValueError):
        balance = 0
    return CreditBalance(
        balance=balance,
        plan=str(data.get("plan") or ""),
        role=str(data.get("role") or ""),
    )


class CreditsClient:
    def _request(
        self,
        cfg: CreditsConfig,
        method: str,
        endpoint: str,
        *,
        user_id: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> CreditBalance:
        url = f"{cfg.base_url.rstrip('/')}/credits/{endpoint}"
        headers = {"Content-Type": "application/json", "X-User-Id": user_id}
        try:
            with httpx.Client(timeout=cfg.timeout_s) as client:
                resp = client.request(method, url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise CreditsError(f"Credits {endpoint} request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise CreditsError(f"Credits {endpoint} failed: {resp.status_code} {resp.text[:300]}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise CreditsError(f"Credits {endpoint} returned invalid JSON") from exc
        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("error") if isinstance(body, dict) else None
            raise CreditsError(f"Credits {endpoint} rejected: {message or 'unknown error'}")
        return _parse_balance(body.get("data"))

    def get_balance(self, cfg: CreditsConfig, user_id: str) -> CreditBalance:
        return self._request(cfg, "GET", "balance", user_id=user_id)

    def deduct(self, cfg: CreditsConfig, user_id: str, amount: int, reason: str) -> CreditBalance:
        logger.info("Deducting %d credits from user %s: %s", amount, user_id, reason)
        return self._request(
            cfg,
            "POST",
            "deduct",
            user_id=user_id,
            payload={"amount": amount, "reason": reason, "app_id": cfg.app_id},
        )

    def refund(self, cfg: CreditsConfig, user_id: str, amount: int, reason: str) -> CreditBalance:
        logger.info("Refunding %d credits to user %s: %s", amount, user_id, reason)
        return self._request(
            cfg,
            "POST",
            "refund",
            user_id=user_id,
            payload={"amount": amount, "reason": reason, "app_id": cfg.app_id},
        )
