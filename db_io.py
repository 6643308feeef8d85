# db_io.py
"""
Supabase table wrappers and the records they persist.

Provides:
- Session / SessionState          (table: chat_sessions by default)
- UserProfile / ProfileData       (table: user_profiles by default)
- BursaryApplication / BursaryMatch (table: bursary_applications by default)
- Suggestion                      (table: suggestions by default)
- SessionStore, UserProfileStore, ApplicationStore, SuggestionStore

Every mutable row carries a `version` column. Saves are conditional on the
version that was read, so a concurrent writer for the same waId surfaces as
ConcurrentUpdateError instead of a silent lost update.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger("db_io")

APPLICATION_OPEN_STATUSES = ("draft", "submitted")


class StoreError(Exception):
    """Raised when a datastore call fails."""


class ConcurrentUpdateError(StoreError):
    """Raised when a row changed between read and write."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def iso_timestamp(value: Optional[datetime] = None) -> str:
    return (value or utcnow()).isoformat()

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class SessionState:
    intent: Optional[str] = None
    last_agent: Optional[str] = None
    active_agent: Optional[str] = None
    menu_stage: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionState":
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Session:
    wa_id: str
    history: List[Dict[str, str]] = field(default_factory=list)
    state: SessionState = field(default_factory=SessionState)
    version: int = 0
    created_at: str = field(default_factory=iso_timestamp)
    updated_at: str = field(default_factory=iso_timestamp)

    def add_message(self, role: str, content: str, limit: int) -> None:
        self.history.append({"role": role, "content": content})
        if limit > 0 and len(self.history) > limit:
            del self.history[:-limit]

    def to_row(self) -> Dict[str, Any]:
        return {
            "wa_id": self.wa_id,
            "history": self.history,
            "state": asdict(self.state),
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Session":
        return cls(
            wa_id=row["wa_id"],
            history=list(row.get("history") or []),
            state=SessionState.from_dict(row.get("state")),
            version=row.get("version") or 0,
            created_at=row.get("created_at") or iso_timestamp(),
            updated_at=row.get("updated_at") or iso_timestamp(),
        )


@dataclass
class ProfileData:
    current_stage: Optional[str] = None
    progressive_stage: Optional[str] = None
    name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    connection_intent: Optional[str] = None
    denomination: Optional[str] = None
    rhythm: Optional[str] = None
    prayer_style: Optional[str] = None
    fellowship_interest: Optional[str] = None
    match_gender_pref: Optional[str] = None
    match_age_pref: Optional[str] = None
    # keys written by older flows; kept so a save never drops them
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is not None:
                data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProfileData":
        data = dict(data or {})
        known = {f.name for f in fields(cls)} - {"extra"}
        typed = {k: data.pop(k) for k in list(data) if k in known}
        return cls(**typed, extra=data)


@dataclass
class UserProfile:
    wa_id: str
    status: str = "onboarding_started"
    profile_data: ProfileData = field(default_factory=ProfileData)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    completed_at: Optional[str] = None
    deleted_at: Optional[str] = None
    last_notified_at: Optional[str] = None
    version: int = 0
    created_at: str = field(default_factory=iso_timestamp)
    updated_at: str = field(default_factory=iso_timestamp)

    @property
    def is_onboarded(self) -> bool:
        return self.status == "waitlist_completed"

    @property
    def display_name(self) -> str:
        return self.profile_data.name or self.first_name or "Friend"

    def to_row(self) -> Dict[str, Any]:
        return {
            "wa_id": self.wa_id,
            "status": self.status,
            "profile_data": self.profile_data.to_dict(),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "completed_at": self.completed_at,
            "deleted_at": self.deleted_at,
            "last_notified_at": self.last_notified_at,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserProfile":
        return cls(
            wa_id=row["wa_id"],
            status=row.get("status") or "onboarding_started",
            profile_data=ProfileData.from_dict(row.get("profile_data")),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            completed_at=row.get("completed_at"),
            deleted_at=row.get("deleted_at"),
            last_notified_at=row.get("last_notified_at"),
            version=row.get("version") or 0,
            created_at=row.get("created_at") or iso_timestamp(),
            updated_at=row.get("updated_at") or iso_timestamp(),
        )


@dataclass
class BursaryMatch:
    name: str
    funder: str
    match_score: float
    reason: str
    amount: str
    deadline: str
    contact_email: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BursaryMatch":
        return cls(
            name=data.get("name", ""),
            funder=data.get("funder", ""),
            match_score=float(data.get("match_score") or 0.0),
            reason=data.get("reason", ""),
            amount=data.get("amount", ""),
            deadline=data.get("deadline", ""),
            contact_email=data.get("contact_email", ""),
        )


@dataclass
class BursaryApplication:
    wa_id: str
    id: Optional[Any] = None
    status: str = "draft"
    current_step: str = "START"
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    province: Optional[str] = None
    is_sa_citizen: Optional[bool] = None
    academic_level: Optional[str] = None
    field_of_study: Optional[str] = None
    academic_average: Optional[float] = None
    household_income: Optional[int] = None
    motivation_text: Optional[str] = None
    eligibility_score: Optional[int] = None
    application_ref: Optional[str] = None
    matched_bursaries: List[BursaryMatch] = field(default_factory=list)
    submitted_at: Optional[str] = None
    email_status: Optional[str] = None
    version: int = 0
    created_at: str = field(default_factory=iso_timestamp)
    updated_at: str = field(default_factory=iso_timestamp)

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        if row["id"] is None:
            row.pop("id")
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BursaryApplication":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in row.items() if k in known}
        data["matched_bursaries"] = [BursaryMatch.from_dict(m) for m in (row.get("matched_bursaries") or [])]
        data["version"] = data.get("version") or 0
        return cls(**data)


@dataclass
class Suggestion:
    user_wa_id: str
    suggestion_text: str
    created_at: str = field(default_factory=iso_timestamp)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class _SupabaseTable:
    def __init__(self, client: Any, table_name: str):
        self.client = client
        self.table_name = table_name

    def _table(self):
        return self.client.table(self.table_name)

    def _execute(self, query: Any, action: str):
        try:
            return query.execute()
        except Exception as exc:
            logger.exception("Supabase %s failed on %s", action, self.table_name)
            raise StoreError(f"{action} failed on {self.table_name}") from exc

    def _first(self, query: Any, action: str) -> Optional[Dict[str, Any]]:
        response = self._execute(query, action)
        return response.data[0] if response.data else None

    def _insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = self._first(self._table().insert(row), "insert")
        if stored is None:
            raise StoreError(f"insert on {self.table_name} returned no row")
        return stored

    def _update_versioned(self, key_column: str, key: Any, row: Dict[str, Any], version: int) -> Dict[str, Any]:
        row = dict(row, version=version + 1, updated_at=iso_timestamp())
        query = self._table().update(row).eq(key_column, key).eq("version", version)
        stored = self._first(query, "update")
        if stored is None:
            raise ConcurrentUpdateError(f"{self.table_name} row {key} changed since version {version}")
        return stored


class SessionStore(_SupabaseTable):
    """Conversation sessions keyed by wa_id."""

    def get(self, wa_id: str) -> Optional[Session]:
        row = self._first(self._table().select("*").eq("wa_id", wa_id).limit(1), "select")
        return Session.from_row(row) if row else None

    def create(self, wa_id: str) -> Session:
        return Session.from_row(self._insert(Session(wa_id=wa_id).to_row()))

    def save(self, session: Session) -> None:
        stored = self._update_versioned("wa_id", session.wa_id, session.to_row(), session.version)
        session.version = stored["version"]
        session.updated_at = stored["updated_at"]


class UserProfileStore(_SupabaseTable):
    """User profiles keyed by wa_id."""

    def get(self, wa_id: str) -> Optional[UserProfile]:
        row = self._first(self._table().select("*").eq("wa_id", wa_id).limit(1), "select")
        return UserProfile.from_row(row) if row else None

    def create(self, profile: UserProfile) -> UserProfile:
        return UserProfile.from_row(self._insert(profile.to_row()))

    def save(self, profile: UserProfile) -> None:
        stored = self._update_versioned("wa_id", profile.wa_id, profile.to_row(), profile.version)
        profile.version = stored["version"]
        profile.updated_at = stored["updated_at"]

    def list_due_for_notification(self, cutoff: datetime) -> List[UserProfile]:
        never = self._execute(
            self._table().select("*").eq("status", "waitlist_completed").is_("last_notified_at", "null"),
            "select",
        )
        stale = self._execute(
            self._table().select("*").eq("status", "waitlist_completed").lte("last_notified_at", iso_timestamp(cutoff)),
            "select",
        )
        return [UserProfile.from_row(row) for row in (never.data or []) + (stale.data or [])]

    def mark_notified(self, wa_id: str, when: datetime) -> None:
        # last_notified_at is owned by the notifier; leave version alone so an
        # in-flight user turn does not conflict with it
        self._execute(self._table().update({"last_notified_at": iso_timestamp(when)}).eq("wa_id", wa_id), "update")


class ApplicationStore(_SupabaseTable):
    """Bursary applications; at most one draft or submitted row per wa_id is current."""

    def get_current(self, wa_id: str) -> Optional[BursaryApplication]:
        query = (
            self._table()
            .select("*")
            .eq("wa_id", wa_id)
            .in_("status", list(APPLICATION_OPEN_STATUSES))
            .order("created_at", desc=True)
            .limit(1)
        )
        row = self._first(query, "select")
        return BursaryApplication.from_row(row) if row else None

    def create(self, application: BursaryApplication) -> BursaryApplication:
        return BursaryApplication.from_row(self._insert(application.to_row()))

    def save(self, application: BursaryApplication) -> None:
        if application.id is None:
            raise StoreError("Cannot save an application that was never inserted")
        row = application.to_row()
        row.pop("id", None)
        stored = self._update_versioned("id", application.id, row, application.version)
        application.version = stored["version"]
        application.updated_at = stored["updated_at"]


class SuggestionStore(_SupabaseTable):
    """Append-only suggestion box."""

    def add(self, suggestion: Suggestion) -> None:
        self._insert(asdict(suggestion))
