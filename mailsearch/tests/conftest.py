"""
Shared fixtures: in-memory database, settings pointing at tmp_path and
small factories for messages and fake archive objects.
"""
import pytest

from mailsearch.core.config import Settings
from mailsearch.core.database import Database, MailRepository
from mailsearch.core.email.models import AttachmentRef, Importance, NormalizedMessage


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the developer's .env"""
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        database_url="sqlite://",
        insert_batch_size=2,
    )


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def repository(database):
    return MailRepository(database)


@pytest.fixture
def make_message():
    """Factory for NormalizedMessage with sensible defaults"""
    def _make(subject="Status update", body="Hello world", sender="alice@example.com",
              date="2025-01-06T09:30:00", attachments=None, **kwargs):
        return NormalizedMessage(
            subject=subject,
            sender=sender,
            date=date,
            body=body,
            importance=kwargs.pop("importance", Importance.NORMAL),
            attachments=attachments or [],
            **kwargs,
        )
    return _make


@pytest.fixture
def attachment_ref():
    def _make(original_name="report.pdf", extracted_text=None, stored_name=None):
        stored = stored_name or f"0_1700000000000_{original_name}"
        return AttachmentRef(
            original_name=original_name,
            stored_name=stored,
            relative_path=f"_tmp/key/{stored}",
            size=10,
            mime_type="application/pdf",
            extracted_text=extracted_text,
        )
    return _make


class FakeEmbedder:
    """
    Deterministic embedder keyed on substrings.

    vectors maps a keyword to a vector; the first keyword found in the text
    decides. Text without a keyword gets the default (or [] for failure).
    """

    def __init__(self, vectors=None, default=None):
        self.vectors = vectors or {}
        self.default = default if default is not None else []
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return list(vector)
        return list(self.default)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder
