"""
Shared test fixtures.

FakeSupabase is an in-memory stand-in for the Supabase/PostgREST query
builder covering the calls the engine makes: select (with count="exact"),
insert, update, the eq/neq/in_/gte/lte/lt/is_ filters, order, limit and
execute.
"""
import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from outreach_engine.core.config import Settings
from outreach_engine.infrastructure.channels import (
    ChannelAdaptor,
    ChannelDispatcher,
    DispatchRequest,
    DispatchResult,
)
from outreach_engine.infrastructure.channels.base import ensure_opt_out
from outreach_engine.infrastructure.channels.email import EMAIL_OPT_OUT_MARKER, EMAIL_OPT_OUT_TEXT
from outreach_engine.infrastructure.channels.sms import SMS_OPT_OUT_MARKER, SMS_OPT_OUT_TEXT
from outreach_engine.domain.services.task_scheduler import TaskScheduler


NOW = datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)  # 12:00 in New York


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]], count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.columns = "*"
        self.count_mode: Optional[str] = None
        self.payload: Any = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.order_by: Optional[tuple] = None
        self.limit_n: Optional[int] = None

    # Operations
    def select(self, columns: str = "*", count: Optional[str] = None) -> "FakeQuery":
        self.operation = "select"
        self.columns = columns
        self.count_mode = count
        return self

    def insert(self, data: Any) -> "FakeQuery":
        self.operation = "insert"
        self.payload = data
        return self

    def update(self, data: Dict[str, Any]) -> "FakeQuery":
        self.operation = "update"
        self.payload = data
        return self

    # Filters
    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column: str, values: List[Any]) -> "FakeQuery":
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        if value == "null":
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is not None)
        return self

    def _compare(self, column: str, value: Any, op: Callable[[Any, Any], bool]) -> "FakeQuery":
        target = _comparable(value)

        def check(row: Dict[str, Any]) -> bool:
            current = row.get(column)
            if current is None:
                return False
            return op(_comparable(current), target)

        self.filters.append(check)
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        return self._compare(column, value, lambda a, b: a >= b)

    def lte(self, column: str, value: Any) -> "FakeQuery":
        return self._compare(column, value, lambda a, b: a <= b)

    def lt(self, column: str, value: Any) -> "FakeQuery":
        return self._compare(column, value, lambda a, b: a < b)

    # Modifiers
    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.limit_n = n
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        rows = [row for row in self.db.tables.setdefault(self.table_name, []) if all(f(row) for f in self.filters)]
        if self.order_by:
            column, desc = self.order_by
            rows.sort(key=lambda r: (r.get(column) is None, _comparable(r.get(column))), reverse=desc)
        if self.limit_n is not None:
            rows = rows[: self.limit_n]
        return rows

    def _project(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [c.strip() for c in self.columns.split(",") if c.strip()]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def execute(self) -> FakeResponse:
        if (self.table_name, self.operation) in self.db.failures:
            raise RuntimeError(f"simulated {self.operation} failure on {self.table_name}")

        if self.operation == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.db.add(self.table_name, row) for row in rows]
            return FakeResponse(copy.deepcopy(inserted))

        matching = self._matching()

        if self.operation == "update":
            values = {k: _iso(v) for k, v in self.payload.items()}
            for row in matching:
                row.update(values)
            return FakeResponse(copy.deepcopy(matching))

        data = [self._project(row) for row in matching]
        count = len(data) if self.count_mode == "exact" else None
        return FakeResponse(data, count)


class FakeSupabase:
    """In-memory Supabase client."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def add(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = {k: _iso(v) for k, v in row.items()}
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables.setdefault(table, []).append(stored)
        return stored

    def rows(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        return [
            row for row in self.tables.get(table, [])
            if all(row.get(k) == v for k, v in filters.items())
        ]

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        matches = self.rows(table, id=row_id)
        return matches[0] if matches else None

    def fail(self, table: str, operation: str) -> None:
        """Make every subsequent <operation> on <table> raise."""
        self.failures.add((table, operation))


class FakeAdaptor(ChannelAdaptor):
    """Records requests and returns a canned acknowledgement (or raises)."""

    OPT_OUT = {
        "sms": (SMS_OPT_OUT_MARKER, SMS_OPT_OUT_TEXT),
        "email": (EMAIL_OPT_OUT_MARKER, EMAIL_OPT_OUT_TEXT),
    }

    def __init__(self, channel: str, error: Optional[Exception] = None, cost: Optional[float] = None):
        self.channel = channel
        self.error = error
        self.cost = cost
        self.sent: List[DispatchRequest] = []

    @property
    def provider_name(self) -> str:
        return f"fake_{self.channel}"

    def is_configured(self) -> bool:
        return True

    def prepare_body(self, body: str) -> str:
        if self.channel in self.OPT_OUT:
            return ensure_opt_out(body, *self.OPT_OUT[self.channel])
        return body

    async def send(self, request: DispatchRequest) -> DispatchResult:
        if self.error:
            raise self.error
        self.sent.append(request)
        return DispatchResult(
            provider=self.provider_name,
            provider_message_id=f"{self.channel}-{len(self.sent)}",
            sent_at=NOW,
            body=self.prepare_body(request.body),
            cost=self.cost,
        )


class Seeder:
    """Builds realistic rows in a FakeSupabase."""

    def __init__(self, db: FakeSupabase):
        self.db = db

    def organization(self, **overrides) -> Dict[str, Any]:
        row = {
            "id": "org-1",
            "name": "Maple Property Group",
            "phone": "555-0100",
            "contact_rules": None,
        }
        row.update(overrides)
        return self.db.add("organizations", row)

    def agent(self, **overrides) -> Dict[str, Any]:
        row = {
            "organization_id": "org-1",
            "agent_key": "campaign_orchestrator",
            "is_enabled": True,
            "status": "active",
        }
        row.update(overrides)
        return self.db.add("agents_registry", row)

    def lead(self, **overrides) -> Dict[str, Any]:
        row = {
            "organization_id": "org-1",
            "first_name": "Jordan",
            "last_name": "Lee",
            "phone": "+15555550123",
            "email": "jordan@example.com",
            "timezone": "America/New_York",
            "sms_consent": True,
            "sms_consent_at": NOW - timedelta(days=30),
            "call_consent": True,
            "call_consent_at": NOW - timedelta(days=30),
            "do_not_contact": False,
            "is_human_controlled": False,
        }
        row.update(overrides)
        return self.db.add("leads", row)

    def campaign(self, **overrides) -> Dict[str, Any]:
        row = {
            "organization_id": "org-1",
            "name": "Spring move-in",
            "campaign_type": "sms",
            "status": "active",
            "max_per_hour": None,
            "sent_count": 0,
            "sms_template": "Hi {name}, {property} is ready!",
        }
        row.update(overrides)
        return self.db.add("campaigns", row)

    def recipient(self, campaign_id: str, lead_id: str, **overrides) -> Dict[str, Any]:
        row = {"campaign_id": campaign_id, "lead_id": lead_id, "status": "pending"}
        row.update(overrides)
        return self.db.add("campaign_recipients", row)

    def task(self, lead_id: str, action_type: str = "sms", context: Optional[Dict] = None, **overrides) -> Dict[str, Any]:
        row = {
            "organization_id": "org-1",
            "lead_id": lead_id,
            "agent_type": "campaign_orchestrator",
            "action_type": action_type,
            "scheduled_for": NOW - timedelta(minutes=1),
            "status": "pending",
            "context": context or {},
            "created_at": NOW - timedelta(minutes=10),
        }
        row.update(overrides)
        return self.db.add("agent_tasks", row)

    def campaign_task(self, campaign: Dict[str, Any], lead: Dict[str, Any], **overrides) -> Dict[str, Any]:
        """A campaign recipient plus the task that will reach it."""
        recipient = self.recipient(campaign["id"], lead["id"])
        return self.task(
            lead["id"],
            action_type=campaign["campaign_type"],
            context={"campaign_id": campaign["id"], "campaign_recipient_id": recipient["id"]},
            **overrides,
        )

    def consent(self, lead_id: str, consent_type: str, granted: bool = True, **overrides) -> Dict[str, Any]:
        row = {
            "organization_id": "org-1",
            "lead_id": lead_id,
            "consent_type": consent_type,
            "granted": granted,
            "method": "web_form",
            "created_at": NOW - timedelta(days=10),
        }
        row.update(overrides)
        return self.db.add("consent_log", row)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def seed(supabase) -> Seeder:
    seeder = Seeder(supabase)
    seeder.organization()
    seeder.agent()
    return seeder


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, default_org_name="our leasing team", default_org_phone="555-0000")


@pytest.fixture
def adaptors() -> Dict[str, FakeAdaptor]:
    return {channel: FakeAdaptor(channel) for channel in ("sms", "email", "call")}


@pytest.fixture
def scheduler(supabase, settings, adaptors) -> TaskScheduler:
    dispatcher = ChannelDispatcher(supabase, settings, adaptors=adaptors)
    return TaskScheduler(supabase, settings, dispatcher=dispatcher)
