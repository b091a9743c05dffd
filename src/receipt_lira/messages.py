"""Localized bill reminder notification text."""

from __future__ import annotations

from receipt_lira.models import BillType

BILL_TYPE_NAMES: dict[BillType, dict[str, str]] = {
    BillType.ELECTRICITY: {"tr": "Elektrik", "en": "Electricity"},
    BillType.WATER: {"tr": "Su", "en": "Water"},
    BillType.NATURAL_GAS: {"tr": "Doğalgaz", "en": "Natural Gas"},
    BillType.INTERNET: {"tr": "İnternet", "en": "Internet"},
    BillType.OTHER: {"tr": "Diğer Fatura", "en": "Other Bill"},
}

_TEMPLATES = {
    "tr": {
        "today": (
            "⚠️ {name} Faturası Bugün Son Gün!",
            "{amount} tutarındaki faturanızın son ödeme tarihi bugün!",
        ),
        "tomorrow": (
            "🔔 {name} Faturası Yarın Son Gün",
            "{amount} tutarındaki faturanızın son ödeme tarihi yarın.",
        ),
        "later": (
            "📋 {name} Faturası Hatırlatması",
            "{amount} tutarındaki faturanızın son ödeme tarihine {days} gün kaldı.",
        ),
    },
    "en": {
        "today": (
            "⚠️ {name} Bill Due Today!",
            "Your {amount} bill is due today!",
        ),
        "tomorrow": (
            "🔔 {name} Bill Due Tomorrow",
            "Your {amount} bill is due tomorrow.",
        ),
        "later": (
            "📋 {name} Bill Reminder",
            "Your {amount} bill is due in {days} days.",
        ),
    },
}


def format_try(amount: float) -> str:
    """Format an amount as Turkish lira the tr-TR way, e.g. ₺1.234,56."""
    grouped = f"{amount:,.2f}"
    return "₺" + grouped.replace(",", "_").replace(".", ",").replace("_", ".")


def reminder_text(
    bill_type: BillType,
    amount: float,
    days_until_due: int,
    merchant: str | None = None,
    language: str = "tr",
) -> tuple[str, str]:
    """Return (title, body) for a reminder N days before the due date."""
    templates = _TEMPLATES.get(language, _TEMPLATES["tr"])
    names = BILL_TYPE_NAMES.get(bill_type, BILL_TYPE_NAMES[BillType.OTHER])
    name = names.get(language, names["tr"])

    if days_until_due == 0:
        title, body = templates["today"]
    elif days_until_due == 1:
        title, body = templates["tomorrow"]
    else:
        title, body = templates["later"]

    values = {"name": name, "amount": format_try(amount), "days": days_until_due}
    title = title.format(**values)
    body = body.format(**values)
    if merchant:
        body = f"{merchant} - {body}"
    return title, body
