"""Action dispatch for the conversational assistant.

The language model sees a JSON snapshot of the shop (:func:`build_snapshot`)
and answers with ``{"text": ..., "action": {"name": ..., "payload": {...}}}``.
:func:`parse_assistant_reply` validates that envelope and
:func:`execute_action` routes the action through ``ACTIONS``, a fixed table
of payload models and handlers. Payloads are validated completely before any
handler runs, so a malformed request never writes anything.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from . import core_logic, log
from .alerts import format_lira
from .constants import Collection, ExpenseCategory, PaymentMethod, StockAdjustmentCategory


class ActionPayload(BaseModel):
    """Base for action payloads: camelCase on the wire, no unknown keys."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)


class CustomerReference(ActionPayload):
    customer_id: Optional[str] = Field(default=None, min_length=1)
    customer_name: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def exactly_one_customer_key(self):
        if (self.customer_id is None) == (self.customer_name is None):
            raise ValueError("Provide exactly one of customerId or customerName")
        return self


class ProductReference(ActionPayload):
    product_id: Optional[str] = Field(default=None, min_length=1)
    product_name: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def exactly_one_product_key(self):
        if (self.product_id is None) == (self.product_name is None):
            raise ValueError("Provide exactly one of productId or productName")
        return self


class AddSalePayload(CustomerReference):
    description: str = Field(..., min_length=1)
    total: Decimal = Field(..., gt=0)


class AddPaymentPayload(CustomerReference):
    total: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    description: Optional[str] = None

    @field_validator("payment_method", mode="before")
    @classmethod
    def accept_visa_as_card(cls, value):
        # Card payments are still called "visa" by the shop.
        if isinstance(value, str) and value.strip().lower() == "visa":
            return PaymentMethod.CARD.value
        return value


class AddExpensePayload(ActionPayload):
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    category: ExpenseCategory


class AddStockAdjustmentPayload(ProductReference):
    quantity: Decimal
    description: str = Field(..., min_length=1)
    category: StockAdjustmentCategory

    @field_validator("quantity")
    @classmethod
    def quantity_not_zero(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("quantity must not be zero")
        return value


class DeleteCustomerPayload(CustomerReference):
    pass


class DeleteProductPayload(ProductReference):
    pass


class DeleteSalePayload(ActionPayload):
    sale_id: str = Field(..., min_length=1)


class DeleteExpensePayload(ActionPayload):
    expense_id: str = Field(..., min_length=1)


class DeleteStockAdjustmentPayload(ActionPayload):
    adjustment_id: str = Field(..., min_length=1)


class AssistantAction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)


class AssistantReply(BaseModel):
    """Envelope every assistant answer must fit."""

    model_config = ConfigDict(extra="forbid")

    text: str
    action: Optional[AssistantAction] = None


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one dispatched action; ``message`` is shown to the user."""

    name: str
    message: str
    record: Any = None


@dataclass(frozen=True)
class ActionSpec:
    name: str
    payload_model: Type[ActionPayload]
    handler: Callable[[core_logic.RuntimeContext, Any], ActionResult]
    summary: str


def _resolve_customer(context: core_logic.RuntimeContext, payload: CustomerReference):
    if payload.customer_id is not None:
        return core_logic.get_customer(context, payload.customer_id)
    return core_logic.find_customer_by_name(context, payload.customer_name)


def _resolve_product(context: core_logic.RuntimeContext, payload: ProductReference):
    if payload.product_id is not None:
        return core_logic.get_product(context, payload.product_id)
    return core_logic.find_product_by_name(context, payload.product_name)


def _method_label(method: PaymentMethod) -> str:
    return "Nakit" if method is PaymentMethod.CASH else "Kart"


def _add_sale(context: core_logic.RuntimeContext, payload: AddSalePayload) -> ActionResult:
    customer = _resolve_customer(context, payload)
    order = core_logic.add_sale(
        context,
        core_logic.SaleCommand(customer_id=customer.customer_id, description=payload.description, total=payload.total),
    )
    message = f"{customer.name} adlı müşteriye {format_lira(payload.total)} tutarında satış başarıyla eklendi."
    return ActionResult("addSale", message, order)


def _add_payment(context: core_logic.RuntimeContext, payload: AddPaymentPayload) -> ActionResult:
    customer = _resolve_customer(context, payload)
    order = core_logic.add_payment(
        context,
        core_logic.PaymentCommand(
            customer_id=customer.customer_id,
            total=payload.total,
            payment_method=payload.payment_method,
            description=payload.description,
        ),
    )
    message = (
        f"{customer.name} adlı müşteriden {format_lira(payload.total)} ödeme "
        f"({_method_label(payload.payment_method)}) başarıyla alındı."
    )
    return ActionResult("addPayment", message, order)


def _add_expense(context: core_logic.RuntimeContext, payload: AddExpensePayload) -> ActionResult:
    expense = core_logic.add_expense(
        context,
        core_logic.ExpenseCommand(description=payload.description, amount=payload.amount, category=payload.category),
    )
    message = f"{format_lira(payload.amount)} tutarındaki '{payload.description}' gideri başarıyla eklendi."
    return ActionResult("addExpense", message, expense)


def _add_stock_adjustment(context: core_logic.RuntimeContext, payload: AddStockAdjustmentPayload) -> ActionResult:
    product = _resolve_product(context, payload)
    adjustment = core_logic.add_stock_adjustment(
        context,
        core_logic.StockAdjustmentCommand(
            product_id=product.product_id,
            quantity=payload.quantity,
            description=payload.description,
            category=payload.category,
        ),
    )
    message = f"{product.name} için {payload.quantity} birimlik stok hareketi ({payload.category.value}) eklendi."
    return ActionResult("addStockAdjustment", message, adjustment)


def _delete_customer(context: core_logic.RuntimeContext, payload: DeleteCustomerPayload) -> ActionResult:
    customer = _resolve_customer(context, payload)
    core_logic.delete_customer(context, customer.customer_id)
    return ActionResult("deleteCustomer", f"{customer.name} adlı müşteri ve tüm işlemleri silindi.", customer)


def _delete_product(context: core_logic.RuntimeContext, payload: DeleteProductPayload) -> ActionResult:
    product = _resolve_product(context, payload)
    core_logic.delete_product(context, product.product_id)
    return ActionResult("deleteProduct", f"{product.name} adlı ürün ve stok hareketleri silindi.", product)


def _delete_sale(context: core_logic.RuntimeContext, payload: DeleteSalePayload) -> ActionResult:
    order = core_logic.delete_sale(context, payload.sale_id)
    if order is None:
        return ActionResult("deleteSale", f"#{payload.sale_id} numaralı işlem bulunamadı; değişiklik yapılmadı.")
    return ActionResult("deleteSale", f"#{payload.sale_id} numaralı işlem silindi.", order)


def _delete_expense(context: core_logic.RuntimeContext, payload: DeleteExpensePayload) -> ActionResult:
    expense = core_logic.delete_expense(context, payload.expense_id)
    if expense is None:
        return ActionResult("deleteExpense", f"#{payload.expense_id} numaralı gider bulunamadı; değişiklik yapılmadı.")
    return ActionResult("deleteExpense", f"'{expense.description}' gideri silindi.", expense)


def _delete_stock_adjustment(
    context: core_logic.RuntimeContext, payload: DeleteStockAdjustmentPayload
) -> ActionResult:
    adjustment = core_logic.delete_stock_adjustment(context, payload.adjustment_id)
    if adjustment is None:
        return ActionResult(
            "deleteStockAdjustment",
            f"#{payload.adjustment_id} numaralı stok hareketi bulunamadı; değişiklik yapılmadı.",
        )
    return ActionResult(
        "deleteStockAdjustment",
        f"{adjustment.product_name} için stok hareketi silindi.",
        adjustment,
    )


ACTIONS: Mapping[str, ActionSpec] = {
    spec.name: spec
    for spec in (
        ActionSpec("addSale", AddSalePayload, _add_sale, "Müşteriye veresiye satış ekler."),
        ActionSpec("addPayment", AddPaymentPayload, _add_payment, "Müşteriden ödeme alır."),
        ActionSpec("addExpense", AddExpensePayload, _add_expense, "Gider kaydı ekler."),
        ActionSpec(
            "addStockAdjustment",
            AddStockAdjustmentPayload,
            _add_stock_adjustment,
            "Ürün stoğuna giriş veya çıkış kaydeder.",
        ),
        ActionSpec("deleteCustomer", DeleteCustomerPayload, _delete_customer, "Müşteriyi ve işlemlerini siler."),
        ActionSpec("deleteProduct", DeleteProductPayload, _delete_product, "Ürünü ve stok hareketlerini siler."),
        ActionSpec("deleteSale", DeleteSalePayload, _delete_sale, "Satış veya ödeme kaydını siler."),
        ActionSpec("deleteExpense", DeleteExpensePayload, _delete_expense, "Gider kaydını siler."),
        ActionSpec(
            "deleteStockAdjustment",
            DeleteStockAdjustmentPayload,
            _delete_stock_adjustment,
            "Stok hareketini siler.",
        ),
    )
}


def describe_actions() -> Dict[str, Any]:
    """Return each action's summary and JSON schema for the model prompt."""

    return {
        name: {"summary": spec.summary, "payload": spec.payload_model.model_json_schema(by_alias=True)}
        for name, spec in ACTIONS.items()
    }


def execute_action(
    context: core_logic.RuntimeContext, name: str, payload: Optional[Mapping[str, Any]] = None
) -> ActionResult:
    """Validate ``payload`` for action ``name`` and run its handler.

    Args:
        context (core_logic.RuntimeContext): Runtime context the action writes
            into.
        name (str): Action name, one of ``ACTIONS``.
        payload (Mapping[str, Any] | None): camelCase payload as produced by
            the model.

    Returns:
        ActionResult: Handler outcome with a user-facing Turkish message.

    Raises:
        ValidationError: If the name is unknown or the payload does not fit
            the action's schema. Nothing is written in that case.
        NotFoundError: If a referenced customer or product does not exist.
        PersistenceFailure: If the resulting batch could not be committed.
    """
    spec = ACTIONS.get(name)
    if spec is None:
        log.error("Unknown assistant action requested: %r", name)
        raise core_logic.ValidationError(f"Unknown assistant action: {name!r}")

    try:
        parsed = spec.payload_model.model_validate(dict(payload or {}))
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}" for error in exc.errors()
        )
        log.error("Rejected payload for assistant action '%s': %s", name, problems)
        raise core_logic.ValidationError(f"Invalid payload for {name}: {problems}") from exc

    result = spec.handler(context, parsed)
    log.info("Assistant action '%s' executed: %s", name, result.message)
    return result


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_assistant_reply(raw: Union[str, Mapping[str, Any]]) -> AssistantReply:
    """Validate a model reply against the ``{"text", "action"}`` envelope.

    A reply wrapped in a Markdown code fence is unwrapped first.

    Raises:
        ValidationError: If the reply is not valid JSON or does not fit the
            envelope.
    """
    try:
        if isinstance(raw, str):
            return AssistantReply.model_validate_json(_strip_code_fence(raw))
        return AssistantReply.model_validate(dict(raw))
    except PydanticValidationError as exc:
        log.error("Assistant reply rejected: %s", exc)
        raise core_logic.ValidationError(f"Malformed assistant reply: {exc}") from exc


def run_reply(context: core_logic.RuntimeContext, raw: Union[str, Mapping[str, Any]]) -> Optional[ActionResult]:
    """Parse a reply and execute its action, if it carries one."""

    reply = parse_assistant_reply(raw)
    if reply.action is None:
        return None
    return execute_action(context, reply.action.name, reply.action.payload)


def build_snapshot(context: core_logic.RuntimeContext, now: Optional[datetime] = None) -> str:
    """Serialize every collection of the owner into a JSON document.

    Decimal amounts are written as strings so no precision is lost.
    """

    document: Dict[str, Any] = {
        "shopName": context.settings.shop_name,
        "generatedAt": (now or datetime.now(UTC)).isoformat(),
    }
    for collection in Collection:
        document[collection.value] = [
            asdict(record) for record in core_logic.list_collection(context, collection)
        ]
    return json.dumps(document, default=str, ensure_ascii=False, indent=2)
