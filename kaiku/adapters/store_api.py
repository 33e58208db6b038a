import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol

import requests

from ..core.constants import STORE_TIMEOUT_S, FETCH_LIMIT
from ..core.errors import PersistenceFailure
from ..core.models import Message, Location, Viewport
from ..domain.reconcile import Event
from ..utils.log import log_line
from ..utils.time import iso_to_ms, ms_to_iso

class MessageStore(Protocol):
    """Persistence collaborator. Transport errors raise PersistenceFailure."""

    def submit(self, message: Message) -> Message: ...

    def fetch(self, viewport: Optional[Viewport] = None, only_top_level: bool = True) -> List[Message]: ...

    def fetch_replies(self, parent_id: str) -> List[Message]: ...

    def vote(self, message_id: str, delta: int) -> int: ...

    def delete(self, message_id: str) -> None: ...

# =========================
# ROW MAPPING (kaiku_posts)
# =========================

def row_to_message(d: Dict[str, Any]) -> Message:
    created = d.get("created_at")
    if isinstance(created, (int, float)):
        created_ms = int(created)
    else:
        created_ms = iso_to_ms(created)
    replies = d.get("replies")
    reply_count = 0
    if isinstance(replies, list) and replies and isinstance(replies[0], dict):
        reply_count = int(replies[0].get("count") or 0)
    return Message(
        id=str(d["id"]),
        text=str(d.get("text") or ""),
        author_id=str(d.get("session_id") or ""),
        location=Location(float(d["latitude"]), float(d["longitude"])),
        created_at=created_ms,
        score=int(d.get("score") or 0),
        parent_id=d.get("parent_post_id") or None,
        reply_count=reply_count,
        is_remote=bool(d.get("is_remote") or False),
        origin_region=d.get("origin_country") or None,
        city=d.get("city_name") or None,
    )

def message_to_row(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "text": m.text,
        "latitude": m.location.lat,
        "longitude": m.location.lng,
        "city_name": m.city,
        "session_id": m.author_id,
        "parent_post_id": m.parent_id,
        "origin_country": m.origin_region,
        "is_remote": m.is_remote,
        "created_at": ms_to_iso(m.created_at),
    }

def event_from_payload(payload: Dict[str, Any], at: int) -> Optional[Event]:
    """
    Realtime `postgres_changes` payload -> reconciler event.
    Returns None for payloads this engine does not consume.
    """
    kind = str(payload.get("eventType") or payload.get("type") or "").upper()
    try:
        if kind == "INSERT":
            return Event.insert(row_to_message(payload.get("new") or {}), at)
        if kind == "UPDATE":
            return Event.update(row_to_message(payload.get("new") or {}), at)
        if kind == "DELETE":
            old = payload.get("old") or {}
            if old.get("id"):
                return Event.delete(str(old["id"]), at)
    except (KeyError, TypeError, ValueError) as e:
        log_line(f"REALTIME PAYLOAD SKIPPED | type={kind} err={e!r}", "WARN")
    return None

# =========================
# HTTP (PostgREST)
# =========================

class RestMessageStore:
    """Supabase / PostgREST table client."""

    def __init__(self, base_url: str, api_key: str, table: str = "kaiku_posts",
                 vote_rpc: str = "kaiku_vote", user_agent: str = "Kaiku/1.0",
                 timeout_s: float = STORE_TIMEOUT_S):
        self.base = str(base_url or "").rstrip("/")
        self.api_key = str(api_key or "")
        self.table = table
        self.vote_rpc = vote_rpc
        self.user_agent = user_agent
        self.timeout_s = timeout_s

    @classmethod
    def from_config(cls, cfg) -> "RestMessageStore":
        return cls(cfg.store_url, cfg.store_key, cfg.store_table, cfg.store_vote_rpc, cfg.user_agent)

    def _headers(self, returning: bool = False) -> Dict[str, str]:
        h = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "User-Agent": self.user_agent,
            "Content-Type": "application/json",
        }
        if returning:
            h["Prefer"] = "return=representation"
        return h

    def _table_url(self) -> str:
        return f"{self.base}/rest/v1/{self.table}"

    def _call(self, op: str, method: str, url: str, **kw) -> Any:
        if not self.base:
            raise PersistenceFailure(op, "store_url not configured")
        try:
            r = requests.request(method, url, timeout=self.timeout_s, **kw)
            r.raise_for_status()
            if not r.content:
                return None
            return r.json()
        except requests.RequestException as e:
            log_line(f"STORE {op.upper()} FAILED | err={e!r}", "WARN")
            raise PersistenceFailure(op, str(e)) from e
        except ValueError as e:
            log_line(f"STORE {op.upper()} BAD JSON | err={e!r}", "WARN")
            raise PersistenceFailure(op, "invalid JSON response") from e

    def submit(self, message: Message) -> Message:
        data = self._call("submit", "POST", self._table_url(),
                          headers=self._headers(returning=True),
                          json=[message_to_row(message)])
        if isinstance(data, list) and data:
            return row_to_message(data[0])
        # accepted without a representation: the local copy is the truth
        return message

    def fetch(self, viewport: Optional[Viewport] = None, only_top_level: bool = True) -> List[Message]:
        params = [
            ("select", f"*,replies:{self.table}!parent_post_id(count)"),
            ("order", "created_at.desc"),
            ("limit", str(FETCH_LIMIT)),
        ]
        if only_top_level:
            params.append(("parent_post_id", "is.null"))
        if viewport is not None:
            params.append(("latitude", f"gte.{viewport.south}"))
            params.append(("latitude", f"lte.{viewport.north}"))
            # antimeridian boxes are filtered locally
            if not viewport.crosses_antimeridian:
                params.append(("longitude", f"gte.{viewport.west}"))
                params.append(("longitude", f"lte.{viewport.east}"))
        data = self._call("fetch", "GET", self._table_url(), headers=self._headers(), params=params)
        return self._rows(data)

    def fetch_replies(self, parent_id: str) -> List[Message]:
        params = [
            ("select", "*"),
            ("parent_post_id", f"eq.{parent_id}"),
            ("order", "created_at.asc"),
        ]
        data = self._call("fetch_replies", "GET", self._table_url(), headers=self._headers(), params=params)
        return self._rows(data)

    def _rows(self, data: Any) -> List[Message]:
        out = []
        for d in data or []:
            try:
                out.append(row_to_message(d))
            except (KeyError, TypeError, ValueError) as e:
                log_line(f"STORE ROW SKIPPED | id={d.get('id') if isinstance(d, dict) else None} err={e!r}", "WARN")
        return out

    def vote(self, message_id: str, delta: int) -> int:
        data = self._call("vote", "POST", f"{self.base}/rest/v1/rpc/{self.vote_rpc}",
                          headers=self._headers(), json={"post_id": message_id, "delta": int(delta)})
        try:
            return int(data)
        except (TypeError, ValueError):
            return int(delta)

    def delete(self, message_id: str) -> None:
        self._call("delete", "DELETE", self._table_url(),
                   headers=self._headers(), params=[("id", f"eq.{message_id}")])

# =========================
# LOCAL MODE
# =========================

class InMemoryMessageStore:
    """
    Offline store: same contract, kept in process. Used in local mode and
    by the tools.
    """

    def __init__(self, messages: List[Message] = None):
        self._rows: Dict[str, Message] = {m.id: replace(m) for m in (messages or [])}
        self._lock = threading.Lock()

    def submit(self, message: Message) -> Message:
        with self._lock:
            stored = replace(message, confirmed=True, reply_count=0)
            self._rows[stored.id] = stored
            return replace(stored)

    def _with_counts(self, m: Message) -> Message:
        n = sum(1 for r in self._rows.values() if r.parent_id == m.id)
        return replace(m, reply_count=n)

    def fetch(self, viewport: Optional[Viewport] = None, only_top_level: bool = True) -> List[Message]:
        with self._lock:
            rows = [m for m in self._rows.values()
                    if not (only_top_level and m.is_reply)
                    and (viewport is None or viewport.contains(m.location))]
            rows.sort(key=lambda m: (-m.created_at, m.id))
            return [self._with_counts(m) for m in rows[:FETCH_LIMIT]]

    def fetch_replies(self, parent_id: str) -> List[Message]:
        with self._lock:
            rows = [replace(m) for m in self._rows.values() if m.parent_id == parent_id]
        return sorted(rows, key=lambda m: (m.created_at, m.id))

    def vote(self, message_id: str, delta: int) -> int:
        with self._lock:
            m = self._rows.get(message_id)
            if m is None:
                raise PersistenceFailure("vote", f"unknown message {message_id}")
            self._rows[message_id] = replace(m, score=m.score + int(delta))
            return self._rows[message_id].score

    def delete(self, message_id: str) -> None:
        with self._lock:
            self._rows.pop(message_id, None)

    def all(self) -> List[Message]:
        with self._lock:
            return [replace(m) for m in self._rows.values()]
