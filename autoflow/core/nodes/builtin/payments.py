"""
Payment Nodes - Stripe and PayPal

Stripe takes form-encoded bodies with a secret key; PayPal uses a token
derived from the user's client id/secret (client_credentials grant).
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from autoflow.config import get_settings
from autoflow.core.nodes.builtin._helpers import DATA_INPUT, auth_headers, parse_json_field
from autoflow.core.nodes.registry import register_node
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType

logger = logging.getLogger(__name__)

STRIPE_API = "https://api.stripe.com/v1"
PAYPAL_API = "https://api-m.paypal.com"
PAYPAL_SANDBOX_API = "https://api-m.sandbox.paypal.com"


def stripe_metadata(value: Any) -> Dict[str, str]:
    """Flatten a metadata object into Stripe's metadata[key] form fields."""
    metadata = parse_json_field(value, "metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError("Metadata must be a JSON object")
    return {f"metadata[{key}]": str(item) for key, item in metadata.items()}


def to_minor_units(amount: Any) -> int:
    """'19.99' -> 1999"""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")
    if value <= 0:
        raise ValueError("Amount must be greater than zero")
    return int((value * 100).quantize(Decimal("1")))


def paypal_base_url() -> str:
    return PAYPAL_SANDBOX_API if get_settings().PAYPAL_SANDBOX else PAYPAL_API


@register_node(
    node_type="create-stripe-customer",
    name="Create Stripe Customer",
    kind=NodeKind.ACTION,
    category=NodeCategory.PAYMENTS,
    description="Creates a customer in Stripe.",
    icon="CreditCard",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "customerId", "type": PortType.TEXT},
        {"name": "email", "type": PortType.TEXT},
    ],
    config_schema={
        "email": {"type": "email", "label": "Email", "required": True},
        "name": {"type": "string", "label": "Name"},
        "description": {"type": "string", "label": "Description"},
        "metadata": {"type": "json", "label": "Metadata", "description": "Key/value pairs (JSON object)"},
    },
    services=("stripe",),
)
async def create_stripe_customer(input_data, config, context):
    form = {"email": config["email"]}
    for key in ("name", "description"):
        if config.get(key):
            form[key] = config[key]
    form.update(stripe_metadata(config.get("metadata")))

    credential = await context.credentials.get("stripe")
    result = await context.http.post(f"{STRIPE_API}/customers", data=form, headers=auth_headers(credential),
                                     provider="stripe")
    return {
        "success": True,
        "customerId": result.get("id"),
        "email": result.get("email"),
        "name": result.get("name"),
        "created": result.get("created"),
    }


@register_node(
    node_type="create-stripe-payment-intent",
    name="Create Stripe Payment",
    kind=NodeKind.ACTION,
    category=NodeCategory.PAYMENTS,
    description="Creates a Stripe PaymentIntent for an amount in major units.",
    icon="CreditCard",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "paymentIntentId", "type": PortType.TEXT},
        {"name": "clientSecret", "type": PortType.TEXT},
        {"name": "status", "type": PortType.TEXT},
    ],
    config_schema={
        "amount": {"type": "number", "label": "Amount", "description": "e.g. 19.99", "required": True},
        "currency": {"type": "string", "label": "Currency", "default": "usd", "required": True},
        "customer": {"type": "string", "label": "Customer ID"},
        "description": {"type": "string", "label": "Description"},
        "metadata": {"type": "json", "label": "Metadata"},
    },
    services=("stripe",),
)
async def create_stripe_payment_intent(input_data, config, context):
    form = {"amount": str(to_minor_units(config["amount"])), "currency": config["currency"].lower()}
    for key in ("customer", "description"):
        if config.get(key):
            form[key] = config[key]
    form.update(stripe_metadata(config.get("metadata")))

    credential = await context.credentials.get("stripe")
    result = await context.http.post(f"{STRIPE_API}/payment_intents", data=form, headers=auth_headers(credential),
                                     provider="stripe")
    return {
        "success": True,
        "paymentIntentId": result.get("id"),
        "clientSecret": result.get("client_secret"),
        "status": result.get("status"),
        "amount": result.get("amount"),
        "currency": result.get("currency"),
    }


@register_node(
    node_type="get-stripe-customer",
    name="Get Stripe Customer",
    kind=NodeKind.ACTION,
    category=NodeCategory.PAYMENTS,
    description="Retrieves a Stripe customer by ID.",
    icon="CreditCard",
    inputs=DATA_INPUT,
    outputs=[{"name": "customer", "type": PortType.OBJECT}],
    config_schema={"customerId": {"type": "string", "label": "Customer ID", "required": True}},
    services=("stripe",),
)
async def get_stripe_customer(input_data, config, context):
    credential = await context.credentials.get("stripe")
    result = await context.http.get(f"{STRIPE_API}/customers/{config['customerId']}",
                                    headers=auth_headers(credential), provider="stripe")
    return {"customer": result, "id": result.get("id"), "email": result.get("email"), "deleted": bool(result.get("deleted"))}


@register_node(
    node_type="create-paypal-payment",
    name="Create PayPal Payment",
    kind=NodeKind.ACTION,
    category=NodeCategory.PAYMENTS,
    description="Creates a PayPal order and returns the approval link.",
    icon="DollarSign",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "orderId", "type": PortType.TEXT},
        {"name": "approvalUrl", "type": PortType.TEXT},
        {"name": "status", "type": PortType.TEXT},
    ],
    config_schema={
        "amount": {"type": "number", "label": "Amount", "description": "e.g. 25.00", "required": True},
        "currency": {"type": "string", "label": "Currency", "default": "USD", "required": True},
        "description": {"type": "string", "label": "Description"},
        "returnUrl": {"type": "url", "label": "Return URL", "required": True},
        "cancelUrl": {"type": "url", "label": "Cancel URL", "required": True},
    },
    services=("paypal",),
)
async def create_paypal_payment(input_data, config, context):
    amount = Decimal(to_minor_units(config["amount"])) / 100
    unit: Dict[str, Any] = {"amount": {"currency_code": config["currency"].upper(), "value": f"{amount:.2f}"}}
    if config.get("description"):
        unit["description"] = config["description"]

    credential = await context.credentials.get("paypal")
    result = await context.http.post(
        f"{paypal_base_url()}/v2/checkout/orders",
        {
            "intent": "CAPTURE",
            "purchase_units": [unit],
            "application_context": {"return_url": config["returnUrl"], "cancel_url": config["cancelUrl"]},
        },
        headers=auth_headers(credential),
        provider="paypal",
    )
    links = result.get("links") or []
    approval = next((link.get("href") for link in links if link.get("rel") in ("approve", "payer-action")), None)
    return {
        "success": True,
        "orderId": result.get("id"),
        "status": result.get("status"),
        "approvalUrl": approval,
        "links": links,
    }


@register_node(
    node_type="get-paypal-payment",
    name="Get PayPal Payment",
    kind=NodeKind.ACTION,
    category=NodeCategory.PAYMENTS,
    description="Looks up a PayPal order's status.",
    icon="DollarSign",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "status", "type": PortType.TEXT},
        {"name": "order", "type": PortType.OBJECT},
    ],
    config_schema={"orderId": {"type": "string", "label": "Order ID", "required": True}},
    services=("paypal",),
)
async def get_paypal_payment(input_data, config, context):
    credential = await context.credentials.get("paypal")
    result = await context.http.get(f"{paypal_base_url()}/v2/checkout/orders/{config['orderId']}",
                                    headers=auth_headers(credential), provider="paypal")
    return {"orderId": result.get("id"), "status": result.get("status"), "order": result}
