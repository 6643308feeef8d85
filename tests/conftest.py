from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest
import requests

from brain import Brain
from db_io import (
    ApplicationStore,
    ProfileData,
    SessionStore,
    SuggestionStore,
    UserProfile,
    UserProfileStore,
)
from email_service import EmailResult
from intent_analyzer import Intent


# ---------------------------------------------------------------------------
# In-memory supabase query builder
# ---------------------------------------------------------------------------

@dataclass
class FakeResponse:
    data: List[Dict[str, Any]]


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str, op: str, payload: Optional[Dict[str, Any]] = None):
        self.db = db
        self.table = table
        self.op = op
        self.payload = payload
        self.filters = []
        self.order_by = None
        self.limit_to = None

    def select(self, *columns):
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        assert value == "null"
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.limit_to = count
        return self

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.op))
        if (self.table, self.op) in self.db.failing or self.op in self.db.failing:
            raise RuntimeError(f"{self.op} on {self.table} failed")
        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "insert":
            row = copy.deepcopy(self.payload)
            row.setdefault("id", next(self.db.ids))
            rows.append(row)
            return FakeResponse([copy.deepcopy(row)])
        matched = [row for row in rows if all(f(row) for f in self.filters)]
        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse([copy.deepcopy(row) for row in matched])
        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda row: row.get(column) or "", reverse=desc)
        if self.limit_to is not None:
            matched = matched[: self.limit_to]
        return FakeResponse([copy.deepcopy(row) for row in matched])


class FakeTable:
    def __init__(self, db: "FakeSupabase", name: str):
        self.db = db
        self.name = name

    def select(self, *columns):
        return FakeQuery(self.db, self.name, "select")

    def insert(self, row):
        return FakeQuery(self.db, self.name, "insert", row)

    def update(self, row):
        return FakeQuery(self.db, self.name, "update", row)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failing = set()
        self.calls = []
        self.ids = itertools.count(1)

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.get(name, [])


# ---------------------------------------------------------------------------
# Stubs for the outbound clients
# ---------------------------------------------------------------------------

class StubResponder:
    def __init__(self, replies=None, enabled=True):
        self.replies = list(replies or [])
        self._enabled = enabled
        self.calls = []

    @property
    def enabled(self):
        return self._enabled

    def complete(self, messages, temperature=0.0, max_tokens=300, response_format=None):
        self.calls.append({"messages": messages, "response_format": response_format})
        if not self._enabled or not self.replies:
            return None
        return self.replies.pop(0)


class StubAnalyzer:
    def __init__(self, intent=Intent.UNKNOWN):
        self.intent = intent
        self.calls = []

    @property
    def enabled(self):
        return True

    def classify(self, message, history=None):
        self.calls.append(message)
        return self.intent


class StubEmailClient:
    def __init__(self, success=True):
        self.success = success
        self.sent = []

    @property
    def enabled(self):
        return True

    def send_application(self, application):
        self.sent.append(application)
        if self.success:
            return EmailResult(success=True, email_id="email-1")
        return EmailResult(success=False, error="HTTP 500")


class StubMessenger:
    def __init__(self, enabled=True, failing_numbers=()):
        self._enabled = enabled
        self.failing_numbers = set(failing_numbers)
        self.templates = []

    @property
    def enabled(self):
        return self._enabled

    def send_template(self, to, template_name, language="en", body_params=None):
        if to in self.failing_numbers:
            raise requests.HTTPError(f"send to {to} failed")
        self.templates.append((to, template_name, language, body_params))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def supabase():
    return FakeSupabase()

@pytest.fixture
def sessions(supabase):
    return SessionStore(supabase, "chat_sessions")

@pytest.fixture
def profiles(supabase):
    return UserProfileStore(supabase, "user_profiles")

@pytest.fixture
def applications(supabase):
    return ApplicationStore(supabase, "bursary_applications")

@pytest.fixture
def suggestions(supabase):
    return SuggestionStore(supabase, "suggestions")

@pytest.fixture
def responder():
    return StubResponder()

@pytest.fixture
def analyzer():
    return StubAnalyzer()

@pytest.fixture
def email_client():
    return StubEmailClient()

@pytest.fixture
def brain(sessions, profiles, applications, suggestions, analyzer, responder, email_client):
    return Brain(
        sessions=sessions,
        profiles=profiles,
        applications=applications,
        suggestions=suggestions,
        analyzer=analyzer,
        responder=responder,
        email_client=email_client,
        history_limit=20,
    )

@pytest.fixture
def make_profile(profiles):
    def _make(wa_id="27820000001", name="Thandi", connection_intent="Prayer Partner", **data):
        profile = UserProfile(
            wa_id=wa_id,
            status="waitlist_completed",
            profile_data=ProfileData(
                current_stage="COMPLETE",
                name=name,
                age=21,
                gender="Female",
                connection_intent=connection_intent,
                **data,
            ),
        )
        return profiles.create(profile)
    return _make
