"""One tutoring conversation, owned by whoever started it.

Listeners subscribe to ``message``, ``mute``, ``end`` and ``error`` events
instead of reading shared state.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

import requests

import tutor_client

logger = logging.getLogger(__name__)

STUDY_MODES = {
    "explanation": "You are a patient tutor. Explain the student's notes clearly, one idea at a time, and check understanding.",
    "quiz": "You are a tutor running a quiz. Ask one question at a time about the student's notes and give feedback on each answer.",
    "flashcards": "You are a tutor drilling flashcards. Give a short prompt from the notes, wait for the answer, then reveal the card.",
    "oral_exam": "You are an examiner holding an oral exam on the student's notes. Ask probing follow-up questions.",
    "feynman": (
        "Help the student learn with the Feynman Technique. They explain the concept as if to a complete "
        "beginner, and you ask questions that expose gaps in their understanding."
    ),
}

EVENTS = ("message", "mute", "end", "error")


class SessionStateError(Exception):
    pass


@dataclass(frozen=True)
class SessionSummary:
    mode: str
    duration_minutes: int
    messages_sent: int


def _utcnow():
    return datetime.now(timezone.utc)


class TutoringSession:
    def __init__(self, mode="explanation", notes="", complete=tutor_client.complete, clock=_utcnow):
        if mode not in STUDY_MODES:
            raise ValueError(f"Unknown study mode: {mode}")
        self.mode = mode
        self.notes = notes
        self._complete = complete
        self._clock = clock
        self._listeners = defaultdict(list)
        self.messages = []
        self.muted = False
        self.started_at = None
        self.ended_at = None

    @property
    def active(self):
        return self.started_at is not None and self.ended_at is None

    def subscribe(self, event, callback):
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event, payload=None):
        for callback in self._listeners[event]:
            callback(payload)

    def start(self):
        if self.started_at is not None:
            raise SessionStateError("Session already started")
        self.started_at = self._clock()
        system = STUDY_MODES[self.mode]
        if self.notes:
            system += "\n\nStudent notes:\n" + self.notes
        self.messages = [{"role": "system", "content": system}]
        logger.info("Tutoring session started in %s mode", self.mode)

    def send(self, text):
        if not self.active:
            raise SessionStateError("Session is not active")
        self.messages.append({"role": "user", "content": text})
        try:
            reply = self._complete(list(self.messages))
        except requests.exceptions.RequestException as e:
            # keep history consistent so the user can resend
            self.messages.pop()
            self._emit("error", e)
            raise
        self.messages.append({"role": "assistant", "content": reply})
        self._emit("message", reply)
        return reply

    def toggle_mute(self):
        if not self.active:
            raise SessionStateError("Session is not active")
        self.muted = not self.muted
        self._emit("mute", self.muted)
        return self.muted

    def end(self):
        if not self.active:
            raise SessionStateError("Session is not active")
        self.ended_at = self._clock()
        elapsed = (self.ended_at - self.started_at).total_seconds()
        summary = SessionSummary(
            mode=self.mode,
            duration_minutes=max(int(elapsed // 60), 0),
            messages_sent=sum(1 for m in self.messages if m["role"] == "user"),
        )
        logger.info("Tutoring session ended after %d minutes", summary.duration_minutes)
        self._emit("end", summary)
        return summary
