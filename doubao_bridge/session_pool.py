import json
import random
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictBool, StrictStr
from pydantic import ValidationError as SchemaError

from .constants import debug_print
from .errors import NotFoundError, SessionConfigError

REQUIRED_FIELDS = ("cookie", "device_id", "tea_uuid", "web_id", "room_id", "x_flow_trace")


@dataclass(frozen=True)
class Credential:
    """One browser identity borrowed from the upstream (logged in or guest)."""

    cookie: str = field(repr=False)
    device_id: str
    tea_uuid: str
    web_id: str
    room_id: str
    x_flow_trace: str = field(repr=False)
    guest: bool = False
    credential_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class SessionRecord(BaseModel):
    """On-disk shape of one session entry. Unknown keys are a hard error; nulls read as empty."""

    model_config = ConfigDict(extra="forbid")

    cookie: Optional[StrictStr] = None
    device_id: Optional[StrictStr] = None
    tea_uuid: Optional[StrictStr] = None
    web_id: Optional[StrictStr] = None
    room_id: Optional[StrictStr] = None
    x_flow_trace: Optional[StrictStr] = None
    guest: Optional[StrictBool] = None

    def missing_field(self) -> Optional[str]:
        for name in REQUIRED_FIELDS:
            if not getattr(self, name):
                return name
        return None


def parse_session_records(entries: object) -> List[Credential]:
    """
    Validate decoded session entries and build credentials.

    Raises SessionConfigError for malformed input (not a list, unknown keys, wrong types).
    Entries missing a required value are skipped with a diagnostic.
    """
    if not isinstance(entries, list):
        raise SessionConfigError("decode session config: expected a JSON array")

    credentials: List[Credential] = []
    for idx, entry in enumerate(entries):
        try:
            record = SessionRecord.model_validate(entry if entry is not None else {})
        except SchemaError as e:
            raise SessionConfigError(f"decode session config: entry {idx}: {e}") from e

        missing = record.missing_field()
        if missing:
            debug_print(f"⚠️  Skipping invalid session #{idx}: {missing} is required")
            continue
        credentials.append(
            Credential(
                cookie=record.cookie,
                device_id=record.device_id,
                tea_uuid=record.tea_uuid,
                web_id=record.web_id,
                room_id=record.room_id,
                x_flow_trace=record.x_flow_trace,
                guest=bool(record.guest),
            )
        )
    return credentials


def load_session_file(path: Union[str, Path]) -> List[Credential]:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        debug_print(f"⚠️  Session config file not found: {path}")
        return []
    except OSError as e:
        raise SessionConfigError(f"open session config: {e}") from e

    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SessionConfigError(f"decode session config: {e}") from e
    return parse_session_records(entries)


class SessionPool:
    """
    Partitioned credential pool with conversation affinity.

    A conversation created with one identity must keep using it, so a bound
    conversation id wins over the requested guest/authenticated class.
    """

    def __init__(
        self,
        credentials: Iterable[Credential] = (),
        *,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._rng = rng if rng is not None else random.Random(seed)
        self._auth_sessions: List[Credential] = []
        self._guest_sessions: List[Credential] = []
        self._conversations: Dict[str, Credential] = {}
        self.add(credentials)

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> "SessionPool":
        pool = cls(load_session_file(path), **kwargs)
        counts = pool.counts()
        if not counts["auth"] and not counts["guest"]:
            debug_print(f"⚠️  Session pool is empty ({path})")
        else:
            debug_print(f"🔑 Loaded {counts['auth']} authenticated and {counts['guest']} guest sessions")
        return pool

    def add(self, credentials: Iterable[Credential]) -> None:
        with self._lock:
            for credential in credentials:
                if credential.guest:
                    self._guest_sessions.append(credential)
                else:
                    self._auth_sessions.append(credential)

    def acquire(self, conversation_id: Optional[str] = None, guest: bool = False) -> Credential:
        with self._lock:
            if conversation_id:
                bound = self._conversations.get(conversation_id)
                if bound is not None:
                    return bound

            sessions = self._guest_sessions if guest else self._auth_sessions
            if not sessions:
                if guest:
                    raise NotFoundError("no guest sessions configured")
                raise NotFoundError("no authenticated sessions configured")
            return sessions[self._rng.randrange(len(sessions))]

    def bind(self, conversation_id: Optional[str], credential: Optional[Credential]) -> None:
        if not conversation_id or credential is None:
            return
        with self._lock:
            self._conversations[conversation_id] = credential

    def release(self, conversation_id: Optional[str]) -> None:
        if not conversation_id:
            return
        with self._lock:
            self._conversations.pop(conversation_id, None)

    def evict(self, credential: Optional[Credential]) -> None:
        """Drop a burnt credential from its own partition. Existing bindings are left alone."""
        if credential is None:
            return
        with self._lock:
            if credential.guest:
                self._guest_sessions = [s for s in self._guest_sessions if s.credential_id != credential.credential_id]
            else:
                self._auth_sessions = [s for s in self._auth_sessions if s.credential_id != credential.credential_id]

    def bound_credential(self, conversation_id: str) -> Optional[Credential]:
        with self._lock:
            return self._conversations.get(conversation_id)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "auth": len(self._auth_sessions),
                "guest": len(self._guest_sessions),
                "conversations": len(self._conversations),
            }
