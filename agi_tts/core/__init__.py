from .models import Artifact, ArtifactKind, Session, SessionMode, SessionState
from .temp_resources import TempResourceTracker
from .pipeline import AudioPipeline
from .session import SessionStateMachine
from .sweeper import BackgroundSweeper, sweep_once

__all__ = [
    "Artifact",
    "ArtifactKind",
    "AudioPipeline",
    "BackgroundSweeper",
    "Session",
    "SessionMode",
    "SessionState",
    "SessionStateMachine",
    "TempResourceTracker",
    "sweep_once",
]
