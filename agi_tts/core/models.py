"""
Core data models for the TTS agent.

A Session is one handled call (or one CLI invocation). It owns the ordered
list of Artifacts its pipeline produced; every artifact lives in the shared
temporary directory under a name derived from a random uuid.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import time
import uuid


class SessionMode(str, Enum):
    STREAM = "stream"
    COLLECT_DIGIT = "collect_digit"


class ArtifactKind(str, Enum):
    SYNTHESIZED = "synthesized"
    TRANSCODED = "transcoded"


class SessionState(str, Enum):
    RECEIVED = "received"
    SYNTHESIZING = "synthesizing"
    TRANSCODING = "transcoding"
    DELIVERING = "delivering"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class Artifact:
    """One audio file written by the pipeline."""
    path: str
    kind: ArtifactKind
    owner_session_id: Optional[str]
    created_at: float = field(default_factory=time.time)

    @property
    def deleted(self) -> bool:
        return self.owner_session_id is None


def new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Session:
    """State of one text-to-speech request."""
    input_text: Optional[str]
    language: str = "es"
    mode: SessionMode = SessionMode.STREAM
    id: str = field(default_factory=new_session_id)
    state: SessionState = SessionState.RECEIVED
    artifacts: List[Artifact] = field(default_factory=list)
    history: List[SessionState] = field(default_factory=list)
    error: Optional[BaseException] = None
    digit: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.history:
            self.history.append(self.state)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def artifact(self, kind: ArtifactKind) -> Optional[Artifact]:
        for artifact in reversed(self.artifacts):
            if artifact.kind == kind:
                return artifact
        return None
