"""Type definitions shared by the parser, broker and CLI."""

from dataclasses import asdict, dataclass, replace
import json
from typing_extensions import Self


@dataclass
class Agent:
    """A sub-agent detected in one session's output.

    Keyed by (session_id, name). detected_at is set once, on first detection.
    """

    session_id: str
    name: str
    tool_uses: int = 0
    tokens: str = ""
    status: str = ""
    active: bool = True
    detected_at: int = 0  # epoch millis

    @property
    def id(self) -> str:
        return agent_key(self.session_id, self.name)

    def copy(self) -> Self:
        return replace(self)

    def to_dict(self) -> dict:
        """Snapshot record shape: camelCase keys, id included."""
        data = asdict(self)
        return {
            "id": self.id,
            "sessionId": data["session_id"],
            "name": data["name"],
            "toolUses": data["tool_uses"],
            "tokens": data["tokens"],
            "status": data["status"],
            "active": data["active"],
            "detectedAt": data["detected_at"],
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create from a snapshot record, handling missing fields gracefully."""
        return cls(
            session_id=data.get("sessionId", ""),
            name=data.get("name", ""),
            tool_uses=int(data.get("toolUses", 0)),
            tokens=data.get("tokens", ""),
            status=data.get("status", ""),
            active=bool(data.get("active", False)),
            detected_at=int(data.get("detectedAt", 0)),
        )


def agent_key(session_id: str, name: str) -> str:
    """Composite key for an agent: "<session>:<name>"."""
    return f"{session_id}:{name}"


def snapshot_to_json(agents: list[Agent]) -> str:
    """Serialize a snapshot (ordered list of agents) to a JSON array."""
    return json.dumps([a.to_dict() for a in agents], indent=2)


def snapshot_from_json(data: str) -> list[Agent]:
    """Deserialize a snapshot written by snapshot_to_json()."""
    return [Agent.from_dict(d) for d in json.loads(data)]
