import sys
import threading
import time
import zipfile
from pathlib import Path
from typing import Callable, List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cvdispatch.config import (  # noqa: E402
    AlertSettings,
    BackoffPolicy,
    CoverLetterSettings,
    DispatchSettings,
    ExtractionSettings,
    LedgerSettings,
    PipelineConfig,
)
from cvdispatch.errors import DispatchError, PersistenceError  # noqa: E402
from cvdispatch.ledger import SqliteApplicationStore  # noqa: E402
from cvdispatch.metrics import MetricsRegistry  # noqa: E402
from cvdispatch.notifications import LoggingMailer, LoggingRequesterChannel, OutboundMessage  # noqa: E402
from cvdispatch.reaper import ResourceReaper  # noqa: E402
from cvdispatch.timeouts import TimeoutRunner  # noqa: E402


JANE_CV = """Jane A. Okoro
jane.okoro@mail.com | +2348012345678

Professional Summary
Chartered accountant with 5 years experience in audit and financial reporting.

Education
BSc Accounting, University of Lagos
"""

HEADING_ONLY_CV = """CURRICULUM VITAE
Lagos, Nigeria
Accountant
Experienced in bookkeeping and payroll.
"""


class FakeCompletionClient:
    """
    Stands in for CompletionClient.

    responder(system_prompt, user_prompt) returns the completion text or
    raises. Calls are recorded.
    """

    def __init__(self, responder: Optional[Callable[[str, str], str]] = None, *, delay_s: float = 0.0):
        self._responder = responder or (lambda system, user: "")
        self._delay_s = delay_s
        self._lock = threading.Lock()
        self.calls: List[dict] = []

    def complete(self, system_prompt, user_prompt, *, op_name, temperature=0.2, max_tokens=None, json_mode=False):
        with self._lock:
            self.calls.append({
                "system": system_prompt,
                "user": user_prompt,
                "op_name": op_name,
                "temperature": temperature,
                "json_mode": json_mode,
            })
        if self._delay_s:
            time.sleep(self._delay_s)
        return self._responder(system_prompt, user_prompt)


class FailingMailer(LoggingMailer):
    """Raises DispatchError for recipients in fail_for."""

    def __init__(self, fail_for=()):
        super().__init__()
        self.fail_for = set(fail_for)

    def send(self, message: OutboundMessage) -> None:
        if message.to in self.fail_for:
            raise DispatchError(f"relay rejected {message.to}")
        super().send(message)


class FlakyStore(SqliteApplicationStore):
    """Fails the first `failures` inserts (optionally only for some targets)."""

    def __init__(self, failures: int = 1, *, only_targets=None):
        super().__init__(":memory:")
        self.remaining = failures
        self.only_targets = set(only_targets) if only_targets else None
        self.insert_calls = 0

    def insert_if_absent(self, record):
        self.insert_calls += 1
        applies = self.only_targets is None or record.target_id in self.only_targets
        if applies and self.remaining > 0:
            self.remaining -= 1
            raise PersistenceError(f"database is locked ({record.target_id})")
        return super().insert_if_absent(record)


def build_docx(path: Path, paragraphs: List[str], *, body_xml: Optional[str] = None) -> Path:
    """Minimal DOCX with one w:p per paragraph, or the given body markup."""
    body = body_xml if body_xml is not None else "".join(
        f'<w:p><w:r><w:t xml:space="preserve">{p}</w:t></w:r></w:p>' for p in paragraphs
    )
    document_xml = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{body}</w:body></w:document>"
    )
    with zipfile.ZipFile(path, "w") as z:
        z.writestr("[Content_Types].xml", '<?xml version="1.0"?><Types/>')
        z.writestr("word/document.xml", document_xml)
    return path


def make_payload(cv_path: Path, targets=None, *, request_id="req-1", requester="2348012345678") -> dict:
    if targets is None:
        targets = [
            {"id": "job-1", "title": "Accountant", "company": "Acme Ltd", "location": "Lagos",
             "recipientContact": "hr@acme.ng"},
            {"id": "job-2", "title": "Audit Associate", "company": "Bolt Partners", "location": "Abuja",
             "recipientContact": "jobs@bolt.ng"},
        ]
    return {
        "requestId": request_id,
        "requesterIdentifier": requester,
        "document": {"handleOrPath": str(cv_path), "mimeType": "text/plain", "originalName": "jane_cv.txt"},
        "targets": targets,
    }


def fast_config(**overrides) -> PipelineConfig:
    """Defaults with every wait shrunk for tests."""
    quick = BackoffPolicy(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0, jitter=False)
    values = dict(
        extraction=ExtractionSettings(ai_timeout_s=2.0),
        cover_letters=CoverLetterSettings(generation_timeout_s=2.0),
        ledger=LedgerSettings(scoring_timeout_s=2.0, write_timeout_s=2.0, write_backoff=quick),
        dispatch=DispatchSettings(inter_batch_delay_s=0.0, send_timeout_s=2.0),
        alerts=AlertSettings(admin_email="ops@smartcv.example"),
        db_path=Path(":memory:"),
    )
    values.update(overrides)
    return PipelineConfig(**values)


@pytest.fixture
def cv_file(tmp_path: Path) -> Path:
    path = tmp_path / "jane_cv.txt"
    path.write_text(JANE_CV, encoding="utf-8")
    return path


@pytest.fixture
def runner():
    r = TimeoutRunner(max_workers=8)
    yield r
    r.shutdown()


@pytest.fixture
def store():
    s = SqliteApplicationStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def mailer() -> LoggingMailer:
    return LoggingMailer()


@pytest.fixture
def channel() -> LoggingRequesterChannel:
    return LoggingRequesterChannel()


@pytest.fixture
def reaper():
    r = ResourceReaper(retention_s=600)
    yield r
    r.cancel_all()


@pytest.fixture
def io_runner():
    r = TimeoutRunner(max_workers=8, thread_name_prefix="io")
    yield r
    r.shutdown()
