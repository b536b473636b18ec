"""
DynamoDB-backed SchedulingStore.

Single-table layout (partition key / sort key):

    REQUEST#<id>   STATE           meeting request
    REQUEST#<id>   WORKFLOW        scheduling workflow
    REQUEST#<id>   HOLD#<hold id>  calendar hold
    REQUEST#<id>   RESPONSE        drafted reply
    LOCK#<user>    SLOT#<bucket>   one per 15-minute UTC bucket covered by a blocking hold
    USER#<user>    PREFS#GLOBAL | PREFS#SENDER#<addr> | TONE | SCHEDULING_LINK | SENDER#<addr> | EMAIL#<id>

Records keep queryable fields (record_type, status, expires_at) as top-level
attributes and the full record as a JSON blob in `data_json`. For requests and
holds the top-level `status` is authoritative.

Hold creation writes the hold and adds its id to every lock item it covers in
one transaction. A lock item admits holds of a single meeting request at a
time, so overlapping holds of two different requests can never both commit,
while the alternatives offered for one request may overlap each other.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from ..config import DDB_PK_NAME, DDB_SK_NAME, DDB_SK_VALUE
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
    utcnow,
)
from .serialization import (
    ddb_clean,
    hold_from_dict,
    hold_to_dict,
    preferences_from_dict,
    preferences_to_dict,
    request_from_dict,
    request_to_dict,
    response_from_dict,
    response_to_dict,
    to_ddb_safe,
    to_json_safe,
    workflow_from_dict,
    workflow_to_dict,
)
from .store import SchedulingStore

logger = logging.getLogger(__name__)

LOCK_BUCKET_MINUTES = 15

REC_REQUEST = "MEETING_REQUEST"
REC_WORKFLOW = "SCHEDULING_WORKFLOW"
REC_HOLD = "CALENDAR_HOLD"
REC_LOCK = "HOLD_LOCK"
REC_RESPONSE = "SCHEDULING_RESPONSE"
REC_PREFS = "SCHEDULING_PREFERENCES"
REC_TONE = "USER_TONE"
REC_LINK = "SCHEDULING_LINK"
REC_SENDER = "SENDER_HISTORY"
REC_EMAIL = "PROCESSED_EMAIL"


def utc_iso(dt: datetime) -> str:
    """Fixed-width UTC timestamp; sorts lexicographically in time order."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def lock_buckets(start: datetime, end: datetime) -> List[str]:
    """15-minute UTC buckets touched by [start, end)."""
    s = start.astimezone(timezone.utc)
    cur = s.replace(minute=s.minute - s.minute % LOCK_BUCKET_MINUTES, second=0, microsecond=0)
    out = []
    while cur < end:
        out.append(cur.strftime("%Y-%m-%dT%H:%MZ"))
        cur += timedelta(minutes=LOCK_BUCKET_MINUTES)
    return out


def _is_conditional_failure(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _is_cancelled_by_conflict(e: ClientError) -> bool:
    if e.response.get("Error", {}).get("Code") != "TransactionCanceledException":
        return False
    reasons = e.response.get("CancellationReasons") or []
    codes = {r.get("Code") for r in reasons if isinstance(r, dict)}
    if not codes:
        return True
    return bool(codes & {"ConditionalCheckFailed", "TransactionConflict"})


class DynamoSchedulingStore(SchedulingStore):
    def __init__(self, table, pk_name: str = DDB_PK_NAME, sk_name: str = DDB_SK_NAME, sk_value: str = DDB_SK_VALUE):
        self._table = table
        self._client = table.meta.client
        self._pk = pk_name
        self._sk = sk_name
        self._state_sk = sk_value
        self._serializer = TypeSerializer()

    # -------------------------
    # low-level helpers
    # -------------------------

    def _key(self, pk: str, sk: str) -> Dict[str, Any]:
        return {self._pk: pk, self._sk: sk}

    def _item(self, pk: str, sk: str, record_type: str, data: Optional[Dict[str, Any]] = None, **attrs: Any) -> Dict[str, Any]:
        item = self._key(pk, sk)
        item["record_type"] = record_type
        item["updated_at"] = utc_iso(utcnow())
        if data is not None:
            item["data_json"] = json.dumps(to_json_safe(data))
        item.update(attrs)
        return ddb_clean(to_ddb_safe(item))

    def _typed(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in item.items()}

    def _get(self, pk: str, sk: str, record_type: str) -> Optional[Dict[str, Any]]:
        resp = self._table.get_item(Key=self._key(pk, sk), ConsistentRead=True)
        item = resp.get("Item")
        if not item or item.get("record_type") != record_type:
            return None
        return item

    def _query(self, key_condition, **kwargs: Any) -> Iterator[Dict[str, Any]]:
        params = dict(KeyConditionExpression=key_condition, ConsistentRead=True, **kwargs)
        while True:
            resp = self._table.query(**params)
            yield from resp.get("Items", [])
            last = resp.get("LastEvaluatedKey")
            if not last:
                return
            params["ExclusiveStartKey"] = last

    @staticmethod
    def _data(item: Dict[str, Any]) -> Dict[str, Any]:
        return json.loads(item.get("data_json") or "{}")

    # -------------------------
    # meeting requests
    # -------------------------

    def put_meeting_request(self, request: MeetingRequest) -> None:
        item = self._item(
            f"REQUEST#{request.id}", self._state_sk, REC_REQUEST, request_to_dict(request),
            status=request.status.value, user_id=request.user_id,
        )
        self._table.put_item(Item=item)

    def get_meeting_request(self, request_id: str) -> Optional[MeetingRequest]:
        item = self._get(f"REQUEST#{request_id}", self._state_sk, REC_REQUEST)
        if item is None:
            return None
        data = self._data(item)
        data["status"] = item.get("status", data.get("status"))
        return request_from_dict(data)

    def update_request_status(self, request_id: str, status: RequestStatus) -> None:
        try:
            self._table.update_item(
                Key=self._key(f"REQUEST#{request_id}", self._state_sk),
                UpdateExpression="SET #st = :st, updated_at = :ua",
                ConditionExpression=Attr(self._pk).exists(),
                ExpressionAttributeNames={"#st": "status"},
                ExpressionAttributeValues={":st": RequestStatus(status).value, ":ua": utc_iso(utcnow())},
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise RecordNotFoundError(f"meeting request {request_id} not found") from e
            raise

    # -------------------------
    # workflows
    # -------------------------

    def put_workflow(self, workflow: SchedulingWorkflow) -> None:
        item = self._item(
            f"REQUEST#{workflow.meeting_request_id}", "WORKFLOW", REC_WORKFLOW, workflow_to_dict(workflow),
            status=workflow.status.value, current_step=workflow.current_step,
        )
        self._table.put_item(Item=item)

    def get_workflow_for_request(self, request_id: str) -> Optional[SchedulingWorkflow]:
        item = self._get(f"REQUEST#{request_id}", "WORKFLOW", REC_WORKFLOW)
        return workflow_from_dict(self._data(item)) if item else None

    # -------------------------
    # holds
    # -------------------------

    def _hold_item(self, hold: CalendarHold) -> Dict[str, Any]:
        return self._item(
            f"REQUEST#{hold.meeting_request_id}", f"HOLD#{hold.id}", REC_HOLD, hold_to_dict(hold),
            status=hold.status.value, user_id=hold.user_id, expires_at=utc_iso(hold.expires_at),
            start_at=utc_iso(hold.start), end_at=utc_iso(hold.end),
        )

    def _lock_keys(self, hold: CalendarHold) -> List[Dict[str, Any]]:
        return [self._key(f"LOCK#{hold.user_id}", f"SLOT#{b}") for b in lock_buckets(hold.start, hold.end)]

    def create_hold(self, hold: CalendarHold) -> bool:
        actions = [{
            "Put": {
                "TableName": self._table.name,
                "Item": self._typed(self._hold_item(hold)),
                "ConditionExpression": "attribute_not_exists(#pk)",
                "ExpressionAttributeNames": {"#pk": self._pk},
            }
        }]
        # a bucket is free when no lock exists, its hold set is empty, or it belongs to this request
        lock_values = self._typed({
            ":rt": REC_LOCK,
            ":rid": hold.meeting_request_id,
            ":hid": {hold.id},
        })
        for key in self._lock_keys(hold):
            actions.append({
                "Update": {
                    "TableName": self._table.name,
                    "Key": self._typed(key),
                    "UpdateExpression": "SET record_type = :rt, meeting_request_id = :rid ADD hold_ids :hid",
                    "ConditionExpression": (
                        "attribute_not_exists(#pk) OR attribute_not_exists(hold_ids) OR meeting_request_id = :rid"
                    ),
                    "ExpressionAttributeNames": {"#pk": self._pk},
                    "ExpressionAttributeValues": lock_values,
                }
            })

        try:
            self._client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if _is_cancelled_by_conflict(e):
                logger.info("[ddb] hold conflict user_id=%s start=%s end=%s", hold.user_id, hold.start, hold.end)
                return False
            raise
        return True

    def _hold_from_item(self, item: Dict[str, Any]) -> CalendarHold:
        data = self._data(item)
        data["status"] = item.get("status", data.get("status"))
        return hold_from_dict(data)

    def get_hold(self, request_id: str, hold_id: str) -> Optional[CalendarHold]:
        item = self._get(f"REQUEST#{request_id}", f"HOLD#{hold_id}", REC_HOLD)
        return self._hold_from_item(item) if item else None

    def list_holds(self, request_id: str) -> List[CalendarHold]:
        holds = [
            self._hold_from_item(item)
            for item in self._query(Key(self._pk).eq(f"REQUEST#{request_id}") & Key(self._sk).begins_with("HOLD#"))
            if item.get("record_type") == REC_HOLD
        ]
        return sorted(holds, key=lambda h: (h.start, h.id))

    def _release_transaction(self, hold: CalendarHold, status: HoldStatus) -> List[Dict[str, Any]]:
        """Status change plus removal of the hold from its lock items, as TransactItems."""
        actions = [{
            "Update": {
                "TableName": self._table.name,
                "Key": self._typed(self._key(f"REQUEST#{hold.meeting_request_id}", f"HOLD#{hold.id}")),
                "UpdateExpression": "SET #st = :new, updated_at = :ua",
                "ConditionExpression": "#st = :old",
                "ExpressionAttributeNames": {"#st": "status"},
                "ExpressionAttributeValues": self._typed({
                    ":new": status.value, ":old": hold.status.value, ":ua": utc_iso(utcnow()),
                }),
            }
        }]
        for key in self._lock_keys(hold):
            actions.append({
                "Update": {
                    "TableName": self._table.name,
                    "Key": self._typed(key),
                    "UpdateExpression": "DELETE hold_ids :hid",
                    "ExpressionAttributeValues": self._typed({":hid": {hold.id}}),
                }
            })
        return actions

    def update_hold_status(self, hold: CalendarHold, status: HoldStatus) -> bool:
        status = HoldStatus(status)
        try:
            if status in (HoldStatus.EXPIRED, HoldStatus.CANCELLED) and hold.blocks():
                self._client.transact_write_items(TransactItems=self._release_transaction(hold, status))
            else:
                self._table.update_item(
                    Key=self._key(f"REQUEST#{hold.meeting_request_id}", f"HOLD#{hold.id}"),
                    UpdateExpression="SET #st = :new, updated_at = :ua",
                    ConditionExpression=Attr("status").eq(hold.status.value),
                    ExpressionAttributeNames={"#st": "status"},
                    ExpressionAttributeValues={":new": status.value, ":ua": utc_iso(utcnow())},
                )
        except ClientError as e:
            if _is_conditional_failure(e) or _is_cancelled_by_conflict(e):
                return False
            raise
        hold.status = status
        return True

    def has_conflict(
        self, user_id: str, start: datetime, end: datetime, exclude_request_id: Optional[str] = None
    ) -> bool:
        buckets = lock_buckets(start, end)
        if not buckets:
            return False
        cond = Key(self._pk).eq(f"LOCK#{user_id}") & Key(self._sk).between(f"SLOT#{buckets[0]}", f"SLOT#{buckets[-1]}")
        for item in self._query(cond):
            if not item.get("hold_ids"):
                continue
            if exclude_request_id and item.get("meeting_request_id") == exclude_request_id:
                continue
            return True
        return False

    def expire_holds(self, now: datetime) -> List[CalendarHold]:
        expired: List[CalendarHold] = []
        params: Dict[str, Any] = {
            "FilterExpression": Attr("record_type").eq(REC_HOLD)
            & Attr("status").eq(HoldStatus.ACTIVE.value)
            & Attr("expires_at").lte(utc_iso(now)),
        }
        while True:
            resp = self._table.scan(**params)
            for item in resp.get("Items", []):
                hold = self._hold_from_item(item)
                if self.update_hold_status(hold, HoldStatus.EXPIRED):
                    expired.append(hold)
            last = resp.get("LastEvaluatedKey")
            if not last:
                break
            params["ExclusiveStartKey"] = last
        return expired

    # -------------------------
    # settings
    # -------------------------

    def get_preferences(self, user_id: str, sender: Optional[str] = None) -> SchedulingPreferences:
        sort_keys = ([f"PREFS#SENDER#{sender.lower()}"] if sender else []) + ["PREFS#GLOBAL"]
        for sk in sort_keys:
            item = self._get(f"USER#{user_id}", sk, REC_PREFS)
            if item:
                return preferences_from_dict(self._data(item))
        return SchedulingPreferences()

    def put_preferences(self, user_id: str, prefs: SchedulingPreferences, sender: Optional[str] = None) -> None:
        sk = f"PREFS#SENDER#{sender.lower()}" if sender else "PREFS#GLOBAL"
        self._table.put_item(Item=self._item(f"USER#{user_id}", sk, REC_PREFS, preferences_to_dict(prefs)))

    def get_tone(self, user_id: str) -> Tone:
        item = self._get(f"USER#{user_id}", "TONE", REC_TONE)
        if not item:
            return Tone.PROFESSIONAL
        try:
            return Tone(item.get("tone"))
        except ValueError:
            logger.warning("[ddb] unknown tone user_id=%s tone=%r", user_id, item.get("tone"))
            return Tone.PROFESSIONAL

    def put_tone(self, user_id: str, tone: Tone) -> None:
        self._table.put_item(Item=self._item(f"USER#{user_id}", "TONE", REC_TONE, tone=Tone(tone).value))

    def get_scheduling_link(self, user_id: str) -> Optional[str]:
        item = self._get(f"USER#{user_id}", "SCHEDULING_LINK", REC_LINK)
        return item.get("link") if item else None

    def put_scheduling_link(self, user_id: str, link: Optional[str]) -> None:
        if link is None:
            self._table.delete_item(Key=self._key(f"USER#{user_id}", "SCHEDULING_LINK"))
            return
        item = self._item(f"USER#{user_id}", "SCHEDULING_LINK", REC_LINK, link=validate_scheduling_link(link))
        self._table.put_item(Item=item)

    # -------------------------
    # sender history / processing
    # -------------------------

    def record_sender_interaction(self, user_id: str, sender: str) -> int:
        resp = self._table.update_item(
            Key=self._key(f"USER#{user_id}", f"SENDER#{sender.lower()}"),
            UpdateExpression="SET record_type = :rt, updated_at = :ua ADD interaction_count :one",
            ExpressionAttributeValues={":rt": REC_SENDER, ":ua": utc_iso(utcnow()), ":one": 1},
            ReturnValues="UPDATED_NEW",
        )
        return int(resp.get("Attributes", {}).get("interaction_count", 1))

    def sender_interaction_count(self, user_id: str, sender: str) -> int:
        item = self._get(f"USER#{user_id}", f"SENDER#{sender.lower()}", REC_SENDER)
        return int(item.get("interaction_count", 0)) if item else 0

    def mark_email_processed(self, user_id: str, email_id: str) -> bool:
        try:
            self._table.put_item(
                Item=self._item(f"USER#{user_id}", f"EMAIL#{email_id}", REC_EMAIL),
                ConditionExpression=Attr(self._pk).not_exists(),
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise
        return True

    def put_response(self, response: SchedulingResponse) -> None:
        item = self._item(
            f"REQUEST#{response.meeting_request_id}", "RESPONSE", REC_RESPONSE, response_to_dict(response),
            action=response.action.value,
        )
        self._table.put_item(Item=item)

    def get_response(self, request_id: str) -> Optional[SchedulingResponse]:
        item = self._get(f"REQUEST#{request_id}", "RESPONSE", REC_RESPONSE)
        return response_from_dict(self._data(item)) if item else None
