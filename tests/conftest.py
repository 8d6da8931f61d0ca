from __future__ import annotations

import os
import tempfile

os.environ.setdefault("VOXBOOK_RUNTIME_DIR", tempfile.mkdtemp(prefix="voxbook-tests-"))

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from voxbook.db.base import Base  # noqa: E402
from voxbook.db.session import SessionLocal, engine  # noqa: E402
from voxbook.models import Job, JobEvent  # noqa: E402,F401
from voxbook.services.credits import CreditBalance, CreditsError  # noqa: E402
from voxbook.services.speech import ProviderError, Transcription  # noqa: E402
from voxbook.services.storage import StorageError  # noqa: E402


class FakeSpeech:
    def __init__(self) -> None:
        self.synthesized: list[str] = []
        self.transcribed: list[bytes] = []
        self.fail_when = lambda text: False
        self.transcript = "hello world"

    def synthesize(self, cfg, text, voice) -> bytes:
        self.synthesized.append(text)
        if self.fail_when(text):
            raise ProviderError("provider rejected input")
        return f"<audio {len(self.synthesized)}>".encode()

    def transcribe(self, cfg, audio, filename="audio.mp3") -> Transcription:
        self.transcribed.append(audio)
        return Transcription(text=self.transcript)


class MemoryStorage:
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail = False

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        if self.fail:
            raise StorageError("bucket unavailable")
        self.objects[path] = (data, content_type)

    def get_public_url(self, path: str) -> str:
        return f"https://cdn.example.test/{path}"


class FakeCredits:
    def __init__(self) -> None:
        self.balance = 1000
        self.role = ""
        self.deducted: list[tuple[str, int]] = []
        self.refunded: list[tuple[str, int]] = []
        self.fail_refunds = False

    def get_balance(self, cfg, user_id: str) -> CreditBalance:
        return CreditBalance(balance=self.balance, role=self.role)

    def deduct(self, cfg, user_id: str, amount: int, reason: str) -> CreditBalance:
        self.deducted.append((user_id, amount))
        self.balance -= amount
        return CreditBalance(balance=self.balance)

    def refund(self, cfg, user_id: str, amount: int, reason: str) -> CreditBalance:
        if self.fail_refunds:
            raise CreditsError("ledger offline")
        self.refunded.append((user_id, amount))
        self.balance += amount
        return CreditBalance(balance=self.balance)


@pytest.fixture
def db() -> Session:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def fake_credits() -> FakeCredits:
    return FakeCredits()
