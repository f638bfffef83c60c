from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from supply_portal.errors import ValidationError
from supply_portal.models import OrderStatus
from supply_portal.services.order_service import ItemInput
from supply_portal.services.receiving_math_service import DeliveryInput


class LoginRequest(BaseModel):
    username: str
    password: str


class OrderItemIn(BaseModel):
    material_id: int | None = None
    description: str | None = Field(default=None, description='Free-text name for materials missing from the catalog')
    unit: str | None = None
    quantity: Decimal

    def to_input(self) -> ItemInput:
        return ItemInput(quantity=self.quantity, material_id=self.material_id, description=self.description, unit=self.unit)


class OrderCreate(BaseModel):
    site_id: int | None = None
    items: list[OrderItemIn] = Field(default_factory=list)
    observations: str | None = None


class OrderUpdate(OrderCreate):
    expected_version: int | None = None


class StatusChange(BaseModel):
    status: OrderStatus
    expected_version: int | None = None


class DeliveryIn(BaseModel):
    item_id: int
    received_quantity: Decimal = Decimal('0')
    unit_value: Decimal | None = None
    supplier_id: int | None = None

    def to_input(self) -> DeliveryInput:
        return DeliveryInput(
            received_quantity=self.received_quantity,
            unit_value=self.unit_value,
            supplier_id=self.supplier_id,
        )


class ReceiveRequest(BaseModel):
    deliveries: list[DeliveryIn] = Field(default_factory=list)
    expected_version: int | None = None

    def to_inputs(self) -> dict[int, DeliveryInput]:
        inputs: dict[int, DeliveryInput] = {}
        for delivery in self.deliveries:
            if delivery.item_id in inputs:
                raise ValidationError(f'Item {delivery.item_id} appears more than once in the delivery')
            inputs[delivery.item_id] = delivery.to_input()
        return inputs
