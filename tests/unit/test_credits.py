from __future__ import annotations

import json

import httpx
import pytest

from voxbook.core.constants import JobKind
from voxbook.schemas.config import CreditsConfig
from voxbook.services import credits
from voxbook.services.credits import CreditsClient, CreditsError, job_cost


def _patch_transport(monkeypatch, handler) -> None:
    real_client = httpx.Client
    monkeypatch.setattr(
        credits.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


def test_job_cost() -> None:
    cfg = CreditsConfig()
    assert job_cost(cfg, JobKind.TEXT_TO_SPEECH, 5) == 100
    assert job_cost(cfg, JobKind.SPEECH_TO_TEXT, 1) == 75
    assert job_cost(cfg, "bulk_text_to_speech", 4) == 400


def test_balance_reads_envelope(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/credits/balance"
        assert request.headers["X-User-Id"] == "user-1"
        return httpx.Response(200, json={"success": True, "data": {"balance": 250, "plan": "pro", "role": "admin"}})

    _patch_transport(monkeypatch, handler)
    balance = CreditsClient().get_balance(CreditsConfig(), "user-1")

    assert balance.balance == 250
    assert balance.plan == "pro"
    assert balance.role == "admin"


def test_refund_sends_amount_and_app(monkeypatch) -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.read()))
        return httpx.Response(200, json={"success": True, "data": {"balance": 100}})

    _patch_transport(monkeypatch, handler)
    CreditsClient().refund(CreditsConfig(), "user-1", 100, "Refund for failed job abc")

    assert sent == [{"amount": 100, "reason": "Refund for failed job abc", "app_id": "voxbook"}]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"success": False, "error": "Insufficient credits"}),
        httpx.Response(200, text="not json"),
    ],
)
def test_ledger_errors_raise(monkeypatch, response: httpx.Response) -> None:
    _patch_transport(monkeypatch, lambda request: response)

    with pytest.raises(CreditsError):
        CreditsClient().deduct(CreditsConfig(), "user-1", 100, "Text to speech")
