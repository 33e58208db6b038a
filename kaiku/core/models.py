import uuid
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any, NamedTuple

class Location(NamedTuple):
    lat: float
    lng: float

@dataclass
class Message:
    id: str
    text: str
    author_id: str
    location: Location        # always the obfuscated coordinate
    created_at: int           # ms
    score: int = 0
    parent_id: Optional[str] = None
    reply_count: int = 0
    is_remote: bool = False
    origin_region: Optional[str] = None
    city: Optional[str] = None
    # local only: False until the store acknowledged the write
    confirmed: bool = True

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "author_id": self.author_id,
            "lat": self.location.lat,
            "lng": self.location.lng,
            "created_at": self.created_at,
            "score": self.score,
            "parent_id": self.parent_id,
            "reply_count": self.reply_count,
            "is_remote": self.is_remote,
            "origin_region": self.origin_region,
            "city": self.city,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Message":
        return cls(
            id=str(d["id"]),
            text=str(d.get("text") or ""),
            author_id=str(d.get("author_id") or ""),
            location=Location(float(d["lat"]), float(d["lng"])),
            created_at=int(d["created_at"]),
            score=int(d.get("score") or 0),
            parent_id=d.get("parent_id") or None,
            reply_count=int(d.get("reply_count") or 0),
            is_remote=bool(d.get("is_remote", False)),
            origin_region=d.get("origin_region") or None,
            city=d.get("city") or None,
        )

# Fields a later Insert/Update for a known id may overwrite.
# id, author, created_at, location and parent are identity and never change.
MUTABLE_FIELDS = ("text", "score", "city", "is_remote", "origin_region")

def merge_mutable(current: Message, incoming: Message) -> Message:
    return replace(current, **{k: getattr(incoming, k) for k in MUTABLE_FIELDS})

def new_message_id() -> str:
    return str(uuid.uuid4())

@dataclass(frozen=True)
class ActorContext:
    """
    Explicit pseudonymous identity, passed into every call that needs one.
    """
    actor_id: str
    origin_region: Optional[str] = None

    @classmethod
    def new(cls, origin_region: Optional[str] = None) -> "ActorContext":
        return cls(actor_id=str(uuid.uuid4()), origin_region=origin_region)

    def rotate(self) -> "ActorContext":
        return ActorContext.new(self.origin_region)

@dataclass(frozen=True)
class Viewport:
    north: float
    south: float
    east: float
    west: float
    zoom: float = 0.0

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    def contains(self, loc: Location) -> bool:
        if not (self.south <= loc.lat <= self.north):
            return False
        if self.crosses_antimeridian:
            return loc.lng >= self.west or loc.lng <= self.east
        return self.west <= loc.lng <= self.east

    def center(self) -> Location:
        lat = (self.north + self.south) / 2.0
        if self.crosses_antimeridian:
            lng = (self.west + self.east + 360.0) / 2.0
            if lng >= 180.0:
                lng -= 360.0
        else:
            lng = (self.west + self.east) / 2.0
        return Location(lat, lng)

@dataclass
class CycleResult:
    live_count: int = 0
    pruned_count: int = 0
    cluster_count: int = 0
    errors: list = field(default_factory=list)
