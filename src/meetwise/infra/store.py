from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..errors import RecordNotFoundError
from ..scheduling.links import validate_scheduling_link
from ..scheduling.models import (
    CalendarHold,
    HoldStatus,
    MeetingRequest,
    RequestStatus,
    SchedulingPreferences,
    SchedulingResponse,
    SchedulingWorkflow,
    Tone,
)


class SchedulingStore(ABC):
    """
    Persistence for requests, holds, workflows and per-user settings.

    `create_hold` is the only way to insert a hold and must check for overlap
    and write in one atomic step.
    """

    # meeting requests
    @abstractmethod
    def put_meeting_request(self, request: MeetingRequest) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_meeting_request(self, request_id: str) -> Optional[MeetingRequest]:
        raise NotImplementedError

    @abstractmethod
    def update_request_status(self, request_id: str, status: RequestStatus) -> None:
        raise NotImplementedError

    # workflows
    @abstractmethod
    def put_workflow(self, workflow: SchedulingWorkflow) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_workflow_for_request(self, request_id: str) -> Optional[SchedulingWorkflow]:
        raise NotImplementedError

    # holds
    @abstractmethod
    def create_hold(self, hold: CalendarHold) -> bool:
        """
        Insert `hold` unless an active/confirmed hold of the same user overlaps it. False on conflict.

        Holds of the same meeting request never conflict with each other: they
        are alternatives for one meeting and only one of them gets confirmed.
        """
        raise NotImplementedError

    @abstractmethod
    def get_hold(self, request_id: str, hold_id: str) -> Optional[CalendarHold]:
        raise NotImplementedError

    @abstractmethod
    def list_holds(self, request_id: str) -> List[CalendarHold]:
        raise NotImplementedError

    @abstractmethod
    def update_hold_status(self, hold: CalendarHold, status: HoldStatus) -> bool:
        """Move `hold` to `status` if it is still in `hold.status`. False if it changed underneath."""
        raise NotImplementedError

    @abstractmethod
    def has_conflict(
        self, user_id: str, start: datetime, end: datetime, exclude_request_id: Optional[str] = None
    ) -> bool:
        """True if an active or confirmed hold of `user_id` overlaps [start, end)."""
        raise NotImplementedError

    @abstractmethod
    def expire_holds(self, now: datetime) -> List[CalendarHold]:
        """Mark active holds with expires_at <= now as expired; returns the holds changed by this call."""
        raise NotImplementedError

    # settings
    @abstractmethod
    def get_preferences(self, user_id: str, sender: Optional[str] = None) -> SchedulingPreferences:
        raise NotImplementedError

    @abstractmethod
    def put_preferences(self, user_id: str, prefs: SchedulingPreferences, sender: Optional[str] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_tone(self, user_id: str) -> Tone:
        raise NotImplementedError

    @abstractmethod
    def put_tone(self, user_id: str, tone: Tone) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_scheduling_link(self, user_id: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def put_scheduling_link(self, user_id: str, link: Optional[str]) -> None:
        """Store the owner's booking page (Calendly and the like); None clears it."""
        raise NotImplementedError

    # sender history / processing
    @abstractmethod
    def record_sender_interaction(self, user_id: str, sender: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def sender_interaction_count(self, user_id: str, sender: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def mark_email_processed(self, user_id: str, email_id: str) -> bool:
        """True the first time an email id is seen for a user, False afterwards."""
        raise NotImplementedError

    @abstractmethod
    def put_response(self, response: SchedulingResponse) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_response(self, request_id: str) -> Optional[SchedulingResponse]:
        raise NotImplementedError


class InMemorySchedulingStore(SchedulingStore):
    """Process-local store. A single lock serializes every read-check-write."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._requests: Dict[str, MeetingRequest] = {}
        self._workflows: Dict[str, SchedulingWorkflow] = {}
        self._holds: Dict[str, CalendarHold] = {}
        self._prefs: Dict[Tuple[str, Optional[str]], SchedulingPreferences] = {}
        self._tones: Dict[str, Tone] = {}
        self._links: Dict[str, str] = {}
        self._senders: Dict[Tuple[str, str], int] = {}
        self._processed: set = set()
        self._responses: Dict[str, SchedulingResponse] = {}

    def put_meeting_request(self, request: MeetingRequest) -> None:
        with self._lock:
            self._requests[request.id] = copy.deepcopy(request)

    def get_meeting_request(self, request_id: str) -> Optional[MeetingRequest]:
        with self._lock:
            found = self._requests.get(request_id)
            return copy.deepcopy(found) if found else None

    def update_request_status(self, request_id: str, status: RequestStatus) -> None:
        with self._lock:
            found = self._requests.get(request_id)
            if found is None:
                raise RecordNotFoundError(f"meeting request {request_id} not found")
            found.status = RequestStatus(status)

    def put_workflow(self, workflow: SchedulingWorkflow) -> None:
        with self._lock:
            self._workflows[workflow.meeting_request_id] = copy.deepcopy(workflow)

    def get_workflow_for_request(self, request_id: str) -> Optional[SchedulingWorkflow]:
        with self._lock:
            found = self._workflows.get(request_id)
            return copy.deepcopy(found) if found else None

    def create_hold(self, hold: CalendarHold) -> bool:
        with self._lock:
            if self._overlapping(hold.user_id, hold.start, hold.end, hold.meeting_request_id):
                return False
            self._holds[hold.id] = copy.deepcopy(hold)
            return True

    def get_hold(self, request_id: str, hold_id: str) -> Optional[CalendarHold]:
        with self._lock:
            found = self._holds.get(hold_id)
            if found is None or found.meeting_request_id != request_id:
                return None
            return copy.deepcopy(found)

    def list_holds(self, request_id: str) -> List[CalendarHold]:
        with self._lock:
            holds = [copy.deepcopy(h) for h in self._holds.values() if h.meeting_request_id == request_id]
        return sorted(holds, key=lambda h: (h.start, h.id))

    def update_hold_status(self, hold: CalendarHold, status: HoldStatus) -> bool:
        with self._lock:
            stored = self._holds.get(hold.id)
            if stored is None or stored.status != hold.status:
                return False
            stored.status = HoldStatus(status)
            hold.status = stored.status
            return True

    def has_conflict(
        self, user_id: str, start: datetime, end: datetime, exclude_request_id: Optional[str] = None
    ) -> bool:
        with self._lock:
            return bool(self._overlapping(user_id, start, end, exclude_request_id))

    def _overlapping(
        self, user_id: str, start: datetime, end: datetime, exclude_request_id: Optional[str]
    ) -> List[CalendarHold]:
        return [
            h for h in self._holds.values()
            if h.user_id == user_id
            and h.blocks()
            and h.meeting_request_id != exclude_request_id
            and h.overlaps(start, end)
        ]

    def expire_holds(self, now: datetime) -> List[CalendarHold]:
        expired = []
        with self._lock:
            for h in self._holds.values():
                if h.status == HoldStatus.ACTIVE and h.expires_at <= now:
                    h.status = HoldStatus.EXPIRED
                    expired.append(copy.deepcopy(h))
        return expired

    def get_preferences(self, user_id: str, sender: Optional[str] = None) -> SchedulingPreferences:
        with self._lock:
            if sender and (user_id, sender.lower()) in self._prefs:
                return self._prefs[(user_id, sender.lower())]
            return self._prefs.get((user_id, None), SchedulingPreferences())

    def put_preferences(self, user_id: str, prefs: SchedulingPreferences, sender: Optional[str] = None) -> None:
        with self._lock:
            self._prefs[(user_id, sender.lower() if sender else None)] = prefs

    def get_tone(self, user_id: str) -> Tone:
        with self._lock:
            return self._tones.get(user_id, Tone.PROFESSIONAL)

    def put_tone(self, user_id: str, tone: Tone) -> None:
        with self._lock:
            self._tones[user_id] = Tone(tone)

    def get_scheduling_link(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._links.get(user_id)

    def put_scheduling_link(self, user_id: str, link: Optional[str]) -> None:
        with self._lock:
            if link is None:
                self._links.pop(user_id, None)
            else:
                self._links[user_id] = validate_scheduling_link(link)

    def record_sender_interaction(self, user_id: str, sender: str) -> int:
        key = (user_id, sender.lower())
        with self._lock:
            self._senders[key] = self._senders.get(key, 0) + 1
            return self._senders[key]

    def sender_interaction_count(self, user_id: str, sender: str) -> int:
        with self._lock:
            return self._senders.get((user_id, sender.lower()), 0)

    def mark_email_processed(self, user_id: str, email_id: str) -> bool:
        with self._lock:
            if (user_id, email_id) in self._processed:
                return False
            self._processed.add((user_id, email_id))
            return True

    def put_response(self, response: SchedulingResponse) -> None:
        with self._lock:
            self._responses[response.meeting_request_id] = response

    def get_response(self, request_id: str) -> Optional[SchedulingResponse]:
        with self._lock:
            return self._responses.get(request_id)
