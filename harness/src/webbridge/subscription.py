from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .envelope import Message, MessageType
from .transport import Binding, RawEvent, Transport

PRODUCT_TYPES = ("subscription", "consumable")


@dataclass
class SubscriptionForm:
    product_id: str = "sub_3m"
    product_type: str = "subscription"
    display_name: str = "3 month plan"
    price: Any = 19900
    currency: str = "KRW"
    # Optional JSON object, entered as text.
    metadata: str = ""

    def errors(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if not (self.product_id or "").strip():
            errors["product_id"] = "product_id is required"
        if self.product_type not in PRODUCT_TYPES:
            errors["product_type"] = "product_type must be subscription or consumable"
        if not (self.display_name or "").strip():
            errors["display_name"] = "display_name is required"
        try:
            price = float(self.price)
        except (TypeError, ValueError):
            price = 0.0
        if price <= 0:
            errors["price"] = "price must be a positive number"
        if not (self.currency or "").strip():
            errors["currency"] = "currency is required, e.g. KRW"
        if self.metadata:
            try:
                parsed = json.loads(self.metadata)
            except ValueError:
                errors["metadata"] = "metadata must be valid JSON"
            else:
                if not isinstance(parsed, dict):
                    errors["metadata"] = "metadata must be a JSON object"
        return errors

    def build_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "product_id": self.product_id.strip(),
            "product_type": self.product_type,
            "display_name": self.display_name.strip(),
            "price": float(self.price),
            "currency": self.currency.strip(),
        }
        if self.metadata:
            try:
                payload["metadata"] = json.loads(self.metadata)
            except ValueError:
                pass
        return payload


class SubscriptionSession:
    """In-app purchase test: START_SUBSCRIPTION / CANCEL_SUBSCRIPTION and their results."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self.form = SubscriptionForm()
        self.is_open = False
        self.result: Optional[Dict[str, Any]] = None
        self.restore: Optional[Dict[str, Any]] = None
        self._binding: Optional[Binding] = None

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def close_binding(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def open(self) -> None:
        self.is_open = True
        self.result = None

    def close(self) -> None:
        self.is_open = False

    def dismiss(self) -> None:
        self.close()

    def set_field(self, key: str, value: Any) -> None:
        if not hasattr(self.form, key):
            raise AttributeError(f"unknown form field: {key}")
        setattr(self.form, key, value)

    @property
    def errors(self) -> Dict[str, str]:
        return self.form.errors()

    def start(self) -> bool:
        if self.errors:
            return False
        self.transport.send(Message.of(MessageType.START_SUBSCRIPTION, self.form.build_payload()))
        return True

    def cancel(
        self,
        product_id: str,
        transaction_id: str | None = None,
        reason: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> bool:
        if not product_id:
            return False
        payload: Dict[str, Any] = {"product_id": product_id}
        if transaction_id:
            payload["transaction_id"] = transaction_id
        if reason:
            payload["reason"] = reason
        if metadata:
            payload["metadata"] = metadata
        self.transport.send(Message.of(MessageType.CANCEL_SUBSCRIPTION, payload))
        return True

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type == MessageType.SUBSCRIPTION_RESULT.value:
            self.result = message.payload_or_empty()
        elif message.type == MessageType.RESTORE_RESULT.value:
            self.restore = message.payload_or_empty()
