"""Deterministic assembly of the customer-service system prompt.

Block order matters to model behavior and is fixed:

  identity → HOW TO COMMUNICATE → WHAT TO AVOID → WHEN TO ROUTE TO A HUMAN
  → CUSTOM INSTRUCTIONS → PERSONALITY → COMPANY INFORMATION → CUSTOMER INFO
  → APPOINTMENT BOOKING → KNOWLEDGE BASE (or NOTE) → Available Products
  → PRODUCT RECOMMENDATIONS → PRODUCT IMAGES → EXAMPLE RESPONSES
  → QUICK RULES → PROHIBITED TOPICS → MEDIA CONTEXT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from replyflow.models import Company, Customer
from replyflow.models.customer import ANONYMOUS_CUSTOMER_NAME
from replyflow.services.ai.config import ResolvedAiConfig
from replyflow.services.ai.media_context import MediaContext, media_instructions
from replyflow.services.ai.prompts import PromptPolicy
from replyflow.services.products.retrieval import ProductMatch
from replyflow.services.rag.retrieval import KnowledgeSnippet

MAX_KNOWLEDGE_CHUNKS = 3
MAX_CHUNK_CHARS = 800


@dataclass
class PromptInputs:
    company: Company
    config: ResolvedAiConfig
    customer: Customer | None = None
    knowledge: Sequence[KnowledgeSnippet] = ()
    products: Sequence[ProductMatch] = ()
    appointment_block: str | None = None
    media: MediaContext | None = None
    policy: PromptPolicy = field(default_factory=PromptPolicy)


def format_business_hours(hours: list[dict[str, Any]] | None) -> str:
    """``Mon 09:00-18:00, Tue ...`` for open days only."""
    open_days = [
        f"{str(day.get('day', ''))[:3].capitalize()} {day.get('open')}-{day.get('close')}"
        for day in hours or []
        if day.get("is_open")
    ]
    return ", ".join(open_days)


def format_products_for_context(products: Sequence[ProductMatch]) -> str:
    if not products:
        return ""
    out = "# Available Products\n\n"
    for index, product in enumerate(products, start=1):
        out += f"## {index}. {product.name}\n"
        out += f"- Price: {product.formatted_price}"
        if product.is_on_sale:
            out += (
                f" (was {product.currency} {product.price:.2f}, "
                f"{product.discount_percentage}% off)"
            )
        out += "\n"
        if product.brand:
            out += f"- Brand: {product.brand}\n"
        if product.category:
            out += f"- Category: {product.category}\n"
        out += f"- Availability: {product.stock_status.capitalize().replace('_', ' ')}\n"
        if product.description:
            out += f"- Description: {product.description}\n"
        if product.specifications:
            specs = ", ".join(f"{k}: {v}" for k, v in product.specifications.items())
            out += f"- Specs: {specs}\n"
        if product.image:
            out += f"- Image: {product.image}\n"
        out += "\n"
    return out


def build_appointment_block(
    policy: PromptPolicy, booking: dict[str, Any], availability: str | None
) -> str:
    block = policy.appointment_intro
    block += "**Booking Details:**\n"
    block += f"- Appointment duration: {booking['slot_duration']} minutes\n"
    block += f"- Minimum notice required: {booking['min_notice_hours']} hours in advance\n"
    block += f"- Can book up to {booking['advance_booking_days']} days in advance\n"
    block += f"- Timezone: {booking['timezone']}\n\n"
    if booking.get("booking_instructions"):
        block += f"**Special Instructions:**\n{booking['booking_instructions']}\n\n"
    if availability:
        block += f"**Current Availability:**\n{availability}\n\n"
    block += policy.appointment_how_to
    return block


def _custom_instructions(config: ResolvedAiConfig) -> str:
    parts: list[str] = []
    if config.system_prompt and config.system_prompt.strip():
        parts.append(config.system_prompt.strip())
    parts.extend(f"- {line}" for line in config.custom_instructions)
    parts.extend(extra.strip() for extra in config.extra_context if extra.strip())
    if not parts:
        return ""
    return "# CUSTOM INSTRUCTIONS\n" + "\n".join(parts) + "\n\n"


def _company_information(company: Company) -> str:
    block = "# COMPANY INFORMATION\n"
    block += f"Company Name: {company.name}\n"
    if company.email:
        block += f"Contact Email: {company.email}\n"
    if company.phone:
        block += f"Contact Phone: {company.phone}\n"
    hours = format_business_hours(company.business_hours)
    if hours:
        block += f"Business Hours: {hours}\n"
    return block


def _customer_info(customer: Customer | None) -> str:
    if customer is None or not customer.name or customer.name == ANONYMOUS_CUSTOMER_NAME:
        return ""
    block = f"\n# CUSTOMER INFO\nName: {customer.name}"
    if customer.email:
        block += f" | Email: {customer.email}"
    return block + "\n"


def _knowledge(snippets: Sequence[KnowledgeSnippet], company_name: str, policy: PromptPolicy) -> str:
    chunks = []
    for snippet in snippets:
        if len(chunks) >= MAX_KNOWLEDGE_CHUNKS:
            break
        text = (snippet.text or "").strip()
        if text:
            chunks.append(f"**{snippet.title or 'Information'}:**\n{text[:MAX_CHUNK_CHARS]}\n\n")
    if not chunks:
        return policy.no_knowledge_note.format(company_name=company_name)
    return "\n# KNOWLEDGE BASE (USE AS PRIMARY REFERENCE)\n\n" + "".join(chunks)


def build_system_prompt(inputs: PromptInputs) -> str:
    policy = inputs.policy
    config = inputs.config
    company = inputs.company

    prompt = policy.identity.format(company_name=company.name)
    prompt += policy.how_to_communicate
    prompt += policy.what_to_avoid
    prompt += policy.human_handoff
    prompt += _custom_instructions(config)

    if config.tone:
        prompt += f"# PERSONALITY\nTone: {config.tone}\n{policy.personality_style}\n"

    prompt += _company_information(company)
    prompt += _customer_info(inputs.customer)

    if inputs.appointment_block:
        prompt += inputs.appointment_block

    prompt += _knowledge(inputs.knowledge, company.name, policy)

    if inputs.products:
        prompt += format_products_for_context(inputs.products)
        prompt += policy.product_recommendations
        if any(p.image for p in inputs.products):
            prompt += policy.product_images

    prompt += policy.example_responses
    prompt += policy.quick_rules

    if config.prohibited_topics:
        prompt += "# PROHIBITED TOPICS\nAvoid discussing: " + ", ".join(config.prohibited_topics) + "\n"

    if inputs.media:
        prompt += media_instructions(inputs.media, policy)

    return prompt
