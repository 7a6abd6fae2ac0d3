"""
WhatsApp checkout handoff.

Builds the bilingual order summary sent to the store operator and the prefilled
`wa.me` deep link. Every line total goes through `pricing.line_total`, so the
numbers here always match the cart and the persisted order.
"""

from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import quote

from src.storefront.models import CartLine, Order
from src.storefront.pricing import PricingResult, PricingRules, format_amount, line_total, price_lines

SEPARATOR = "--------------------------"

_TEXT = {
    "en": {
        "draft_title": "🥬 *New Order from Khodarji Store*",
        "confirmed_title": "🥬 *Confirmed New Order from Khodarji Store*",
        "phone": "📞 Phone: {phone}",
        "city": "📍 City: {city}",
        "items": "*📦 Requested Items:*",
        "subtotal": "🧾 Subtotal: {amount} {currency}",
        "total": "💰 *Total:* {amount} {currency}",
        "free_delivery": "🚚 Delivery: *FREE* ✅",
        "delivery_fee": "🚚 Delivery Fee: {amount} {currency}",
        "draft_footer": "🙏 Thank you for shopping with us!",
        "confirmed_footer": "🙏 Please confirm receipt and start processing.",
        "enroll": "Hi Khodarji! I would like to join your promotion list.",
    },
    "ar": {
        "draft_title": "🥬 *طلب جديد من متجر خضرجي*",
        "confirmed_title": "🥬 *طلب جديد مؤكد من متجر خضرجي*",
        "phone": "📞 رقم الهاتف: {phone}",
        "city": "📍 المدينة: {city}",
        "items": "*📦 المنتجات المطلوبة:*",
        "subtotal": "🧾 المجموع: {amount} {currency}",
        "total": "💰 *الإجمالي:* {amount} {currency}",
        "free_delivery": "🚚 التوصيل: *مجاني* ✅",
        "delivery_fee": "🚚 رسوم التوصيل: {amount} {currency}",
        "draft_footer": "🙏 شكراً لتسوقكم معنا!",
        "confirmed_footer": "🙏 يرجى تأكيد استلام الطلب وبدء التجهيز.",
        "enroll": "مرحباً خضرجي! أرغب في الانضمام إلى قائمة العروض.",
    },
}


def _t(language: str) -> dict[str, str]:
    return _TEXT["ar" if language == "ar" else "en"]


def _format_quantity(line: CartLine) -> str:
    quantity = line.quantity.normalize()
    return f"{quantity:f}"


def _item_lines(lines: Iterable[CartLine], language: str, currency: str) -> list[str]:
    return [
        f"• {line.product.name.get(language)} ({_format_quantity(line)} {line.product.unit}) "
        f"-> {format_amount(line_total(line))} {currency}"
        for line in lines
    ]


def _totals(pricing: PricingResult, language: str, currency: str) -> list[str]:
    text = _t(language)
    out = [
        text["subtotal"].format(amount=format_amount(pricing.subtotal), currency=currency),
        text["total"].format(amount=format_amount(pricing.total), currency=currency),
    ]
    if pricing.free_delivery:
        out.append(text["free_delivery"])
    else:
        out.append(text["delivery_fee"].format(amount=format_amount(pricing.delivery_fee), currency=currency))
    return out


def format_cart_message(
    lines: Iterable[CartLine],
    phone: Optional[str],
    city: str,
    language: str = "ar",
    *,
    currency: str = "JD",
    rules: Optional[PricingRules] = None,
) -> str:
    """Summary for a cart that has not been persisted as an order yet."""
    lines = list(lines)
    text = _t(language)
    parts = [text["draft_title"], SEPARATOR]
    if phone:
        parts.append(text["phone"].format(phone=phone))
    parts.append(text["city"].format(city=city))
    parts.append("")
    parts.append(text["items"])
    parts.extend(_item_lines(lines, language, currency))
    parts.append("")
    parts.append(SEPARATOR)
    parts.extend(_totals(price_lines(lines, rules), language, currency))
    parts.append(SEPARATOR)
    parts.append(text["draft_footer"])
    return "\n".join(parts)


def format_order_message(order: Order, language: str = "ar", *, currency: str = "JD") -> str:
    """Summary for a confirmed order, using the totals frozen on the order."""
    text = _t(language)
    pricing = PricingResult(subtotal=order.subtotal, delivery_fee=order.delivery_fee, total=order.total)
    parts = [
        text["confirmed_title"],
        SEPARATOR,
        f"🆔 *Order ID: #{order.id}*",
        text["phone"].format(phone=order.customer_phone),
        text["city"].format(city=order.customer_city),
        "",
        text["items"],
    ]
    parts.extend(_item_lines(order.items, language, currency))
    parts.append("")
    parts.append(SEPARATOR)
    parts.extend(_totals(pricing, language, currency))
    parts.append(SEPARATOR)
    parts.append(text["confirmed_footer"])
    return "\n".join(parts)


def enrollment_message(language: str = "ar") -> str:
    return _t(language)["enroll"]


def whatsapp_link(message: str, number: str) -> str:
    digits = "".join(ch for ch in number if ch.isdigit())
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"
