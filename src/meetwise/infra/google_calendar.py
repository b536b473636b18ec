from __future__ import annotations

import json
import logging
import urllib.parse
from datetime import datetime, time, timezone
from typing import Any, Dict, List, Optional

import urllib3
from dateutil.parser import isoparse

from ..config import DEFAULT_TIMEZONE, GOOGLE_OAUTH_SECRET_NAME
from ..errors import CalendarProviderError, ConfigError
from ..scheduling.zones import load_zone
from .aws_clients import secrets
from .calendar_provider import (
    AvailabilityResult,
    CalendarEvent,
    CalendarProvider,
    EventDraft,
    overlapping,
)

logger = logging.getLogger(__name__)

http = urllib3.PoolManager(timeout=urllib3.Timeout(connect=3.0, read=10.0))

TOKEN_URL = "https://oauth2.googleapis.com/token"
API_BASE = "https://www.googleapis.com/calendar/v3"


def _rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        raise ValueError("calendar queries need timezone-aware datetimes")
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _event_time(part: Dict[str, Any]) -> datetime:
    if part.get("dateTime"):
        return isoparse(part["dateTime"])
    # all-day events carry a bare date; anchor it at midnight in the event's zone
    day = isoparse(part["date"]).date()
    return datetime.combine(day, time(0, 0), tzinfo=load_zone(part.get("timeZone") or DEFAULT_TIMEZONE))


class GoogleCalendarProvider(CalendarProvider):
    """
    Google Calendar REST v3 over urllib3.

    OAuth client credentials and the refresh token come from a Secrets Manager
    secret: {"client_id", "client_secret", "refresh_token"}; an optional
    "refresh_tokens" map keyed by account overrides the default token.
    Access tokens are kept on the instance, which lives for one request.
    """

    def __init__(self, secret_name: Optional[str] = None, secrets_client=None) -> None:
        self.secret_name = secret_name or GOOGLE_OAUTH_SECRET_NAME
        self._secrets_client = secrets_client
        self._secret: Optional[Dict[str, Any]] = None
        self._tokens: Dict[str, str] = {}

    # -------------------------
    # auth
    # -------------------------

    def _oauth_secret(self) -> Dict[str, Any]:
        if self._secret is None:
            if not self.secret_name:
                raise ConfigError("GOOGLE_OAUTH_SECRET_NAME is not set")
            client = self._secrets_client or secrets()
            resp = client.get_secret_value(SecretId=self.secret_name)
            self._secret = json.loads(resp["SecretString"])
        return self._secret

    def _refresh_access_token(self, account: str) -> str:
        s = self._oauth_secret()
        refresh_token = (s.get("refresh_tokens") or {}).get(account) or s.get("refresh_token")
        if not refresh_token:
            raise CalendarProviderError(f"no refresh token for account {account}", retryable=False)

        body = urllib.parse.urlencode(
            {
                "client_id": s["client_id"],
                "client_secret": s["client_secret"],
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")

        resp = http.request(
            "POST",
            TOKEN_URL,
            body=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        data = self._decode(resp)
        if resp.status >= 400:
            raise CalendarProviderError(
                f"Token refresh failed ({resp.status}): {data.get('error')}",
                status=resp.status,
                retryable=resp.status >= 500,
            )
        self._tokens[account] = data["access_token"]
        return self._tokens[account]

    def _token(self, account: str) -> str:
        return self._tokens.get(account) or self._refresh_access_token(account)

    # -------------------------
    # http
    # -------------------------

    @staticmethod
    def _decode(resp) -> Dict[str, Any]:
        if not resp.data:
            return {}
        try:
            return json.loads(resp.data.decode("utf-8"))
        except ValueError:
            return {"raw": resp.data[:200].decode("utf-8", "replace")}

    def _request(
        self,
        method: str,
        account: str,
        path: str,
        *,
        fields: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        ok_statuses: tuple = (),
    ) -> Dict[str, Any]:
        url = f"{API_BASE}{path}"
        if fields:
            url = f"{url}?{urllib.parse.urlencode(fields)}"
        body = json.dumps(payload).encode("utf-8") if payload is not None else None

        for attempt in range(2):
            resp = http.request(
                method,
                url,
                body=body,
                headers={
                    "Authorization": f"Bearer {self._token(account)}",
                    "Content-Type": "application/json",
                },
            )
            if resp.status == 401 and attempt == 0:
                # stale access token; refresh once
                self._tokens.pop(account, None)
                continue
            break

        data = self._decode(resp)
        if resp.status >= 400 and resp.status not in ok_statuses:
            raise CalendarProviderError(
                f"{method} {path} failed ({resp.status}): {data.get('error', data)}",
                status=resp.status,
                retryable=resp.status >= 500 or resp.status == 429,
            )
        data["_status"] = resp.status
        return data

    @staticmethod
    def _calendar_path(account: str) -> str:
        return "/calendars/" + urllib.parse.quote(account or "primary", safe="")

    # -------------------------
    # CalendarProvider
    # -------------------------

    def check_availability(self, account: str, start: datetime, end: datetime) -> AvailabilityResult:
        cal_id = account or "primary"
        data = self._request(
            "POST",
            account,
            "/freeBusy",
            payload={"timeMin": _rfc3339(start), "timeMax": _rfc3339(end), "items": [{"id": cal_id}]},
        )
        cal = (data.get("calendars") or {}).get(cal_id) or {}
        if cal.get("errors"):
            raise CalendarProviderError(f"freeBusy error for {cal_id}: {cal['errors']}", retryable=False)

        busy = [
            CalendarEvent(id=f"busy-{i}", summary="busy", start=isoparse(b["start"]), end=isoparse(b["end"]))
            for i, b in enumerate(cal.get("busy") or [])
        ]
        conflicts = overlapping(busy, start, end)
        return AvailabilityResult(available=not conflicts, conflicts=tuple(conflicts))

    def list_events(self, account: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        events: List[CalendarEvent] = []
        fields: Dict[str, Any] = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        while True:
            data = self._request("GET", account, self._calendar_path(account) + "/events", fields=fields)
            for ev in data.get("items") or []:
                if not ev.get("start") or not ev.get("end"):
                    continue
                events.append(
                    CalendarEvent(
                        id=ev.get("id", ""),
                        summary=ev.get("summary", ""),
                        start=_event_time(ev["start"]),
                        end=_event_time(ev["end"]),
                        status=ev.get("status", "confirmed"),
                    )
                )
            page = data.get("nextPageToken")
            if not page:
                return events
            fields["pageToken"] = page

    def create_event(self, account: str, draft: EventDraft) -> str:
        payload: Dict[str, Any] = {
            "id": draft.event_key,
            "summary": draft.summary,
            "description": draft.description,
            "start": draft.start.as_payload(),
            "end": draft.end.as_payload(),
            "attendees": [{"email": a} for a in draft.attendees],
            "status": draft.status,
        }
        if draft.location:
            payload["location"] = draft.location

        data = self._request(
            "POST",
            account,
            self._calendar_path(account) + "/events",
            fields={"sendUpdates": "none"},
            payload=payload,
            ok_statuses=(409,),
        )
        if data["_status"] == 409:
            # an earlier attempt with the same key already created it
            logger.info("[calendar] event already exists event_key=%s", draft.event_key)
            return draft.event_key
        return data.get("id") or draft.event_key

    def update_event_status(self, account: str, event_key: str, status: str) -> str:
        data = self._request(
            "PATCH",
            account,
            self._calendar_path(account) + "/events/" + urllib.parse.quote(event_key, safe=""),
            fields={"sendUpdates": "none"},
            payload={"status": status},
        )
        return data.get("id") or event_key

    def get_timezone(self, account: str) -> str:
        data = self._request("GET", account, "/users/me/settings/timezone")
        zone = data.get("value")
        if not zone:
            raise CalendarProviderError("calendar settings returned no timezone", retryable=False)
        return zone
