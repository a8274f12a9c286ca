"""
Inbound request shapes from the agent/UI layer.

Keys arrive camelCase:

    payment: {senderCapability, recipientAddress, token, amount,
              originCorridor, destinationCorridor, metadata}
    escrow:  {senderCapability, recipientAddress, token, totalAmount,
              milestones: [{description, amount, releaseCondition}]}

metadata is carried as an opaque string. Dict/list metadata is serialized
to JSON text once, on the way in, and never parsed afterwards.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping

from afriflow.core.exceptions import InvalidAmount, InvalidMilestoneSet, ValidationError
from afriflow.escrow.state_machine import MilestoneSpec


def _required(data: Mapping[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise ValidationError(f"Missing field '{key}'", {"field": key})
    return data[key]


def _amount(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise InvalidAmount(f"{key} must be an integer", {key: value})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidAmount(f"{key} must be an integer", {key: value})


def _metadata(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def parse_release_condition(value: Any) -> int:
    """
    UNIX seconds for an int, a digit string, or an ISO-8601 timestamp.
    Anything else means manual release (0).
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return 0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return max(int(parsed.timestamp()), 0)
    return 0


@dataclass(frozen=True)
class PaymentRequest:
    sender:      str
    recipient:   str
    token:       str
    amount:      int
    origin:      str
    destination: str
    metadata:    str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentRequest":
        return cls(
            sender=      _required(data, "senderCapability"),
            recipient=   _required(data, "recipientAddress"),
            token=       _required(data, "token"),
            amount=      _amount(_required(data, "amount"), "amount"),
            origin=      _required(data, "originCorridor"),
            destination= _required(data, "destinationCorridor"),
            metadata=    _metadata(data.get("metadata")),
        )


@dataclass(frozen=True)
class EscrowRequest:
    sender:       str
    recipient:    str
    token:        str
    total_amount: int
    milestones:   List[MilestoneSpec]
    metadata:     str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EscrowRequest":
        raw = _required(data, "milestones")
        if not isinstance(raw, list):
            raise InvalidMilestoneSet("milestones must be a list")

        milestones = []
        for i, item in enumerate(raw):
            if not isinstance(item, Mapping):
                raise InvalidMilestoneSet("milestone must be an object", {"index": i})
            milestones.append(MilestoneSpec(
                description=  str(item.get("description", "")),
                amount=       _amount(_required(item, "amount"), "amount"),
                release_time= parse_release_condition(item.get("releaseCondition")),
            ))

        return cls(
            sender=       _required(data, "senderCapability"),
            recipient=    _required(data, "recipientAddress"),
            token=        _required(data, "token"),
            total_amount= _amount(_required(data, "totalAmount"), "totalAmount"),
            milestones=   milestones,
            metadata=     _metadata(data.get("metadata")),
        )
