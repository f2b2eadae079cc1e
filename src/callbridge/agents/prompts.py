"""
System prompt for AI agents answering diverted calls.

One pure builder shared by every AI agent adapter; only language and tone
vary. Tone picks the closing rules and the wording of the callback option.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from callbridge.agents.models import AgentContext, AgentReason


class PromptTone(str, Enum):
    BUSINESS = "business"
    EMPATHETIC = "empathetic"


_TEMPLATES: dict[str, dict[str, Any]] = {
    "ru": {
        "role": "Ты — голосовой ассистент компании {company}.",
        "default_company": "нашей компании",
        "default_manager": "Менеджер",
        "default_manager_object": "менеджера",
        "reasons": {
            AgentReason.AFTER_HOURS: "Сейчас нерабочее время компании.",
            AgentReason.NO_ANSWER: "{manager} сейчас не может ответить на звонок.",
            AgentReason.BUSY: "{manager} сейчас на другой линии.",
            AgentReason.OVERFLOW: "В данный момент все операторы заняты.",
        },
        "caller_header": "Информация о звонящем:",
        "caller_name": "- Имя: {value}",
        "caller_company": "- Компания: {value}",
        "caller_history": "- История взаимодействий: {value}",
        "tasks": [
            "Твои задачи:",
            "1. Вежливо поприветствовать звонящего",
            "2. Узнать цель звонка и как вы можете помочь",
            "3. Предложить варианты:",
            "   - Оставить голосовое сообщение для {manager_object}",
            "   - {callback}",
            "   - Соединить с дежурным менеджером (используй функцию transfer, если это срочно)",
            "4. Если звонящий новый — попросить контактные данные",
            "5. Быть вежливым и профессиональным",
        ],
        "callback": {
            PromptTone.BUSINESS: "Перезвонить в рабочее время (если нерабочее время)",
            PromptTone.EMPATHETIC: "Перезвонить в рабочее время",
        },
        "summary": "При завершении звонка создай краткую сводку разговора для CRM.",
        "rules_header": "Важно:",
        "rules": {
            PromptTone.BUSINESS: [
                "- Говори на русском языке",
                "- Не обещай того, что не можешь выполнить",
                "- Если вопрос сложный — предложи связаться с менеджером",
            ],
            PromptTone.EMPATHETIC: [
                "- Говори на русском языке",
                "- Используй естественные интонации",
                "- Будь эмпатичен и внимателен к собеседнику",
            ],
        },
    },
    "en": {
        "role": "You are the voice assistant of {company}.",
        "default_company": "our company",
        "default_manager": "The manager",
        "default_manager_object": "the manager",
        "reasons": {
            AgentReason.AFTER_HOURS: "The company is currently closed.",
            AgentReason.NO_ANSWER: "{manager} cannot take the call right now.",
            AgentReason.BUSY: "{manager} is on another line.",
            AgentReason.OVERFLOW: "All operators are busy at the moment.",
        },
        "caller_header": "About the caller:",
        "caller_name": "- Name: {value}",
        "caller_company": "- Company: {value}",
        "caller_history": "- Interaction history: {value}",
        "tasks": [
            "Your tasks:",
            "1. Greet the caller politely",
            "2. Find out the purpose of the call and how we can help",
            "3. Offer the options:",
            "   - Leave a voice message for {manager_object}",
            "   - {callback}",
            "   - Connect to the on-duty manager (use the transfer function if it is urgent)",
            "4. If the caller is new, ask for their contact details",
            "5. Stay polite and professional",
        ],
        "callback": {
            PromptTone.BUSINESS: "Call back during business hours (if outside business hours)",
            PromptTone.EMPATHETIC: "Call back during business hours",
        },
        "summary": "When the call ends, write a short summary of the conversation for the CRM.",
        "rules_header": "Important:",
        "rules": {
            PromptTone.BUSINESS: [
                "- Speak English",
                "- Do not promise anything you cannot deliver",
                "- If the question is complex, offer to connect the manager",
            ],
            PromptTone.EMPATHETIC: [
                "- Speak English",
                "- Use a natural intonation",
                "- Be empathetic and attentive to the caller",
            ],
        },
    },
}

SUPPORTED_LANGUAGES = tuple(_TEMPLATES)


def build_system_prompt(
    context: AgentContext,
    *,
    language: str = "ru",
    tone: PromptTone = PromptTone.BUSINESS,
) -> str:
    """Render the assistant's system prompt for one diverted call.

    Unknown languages fall back to Russian. The caller block only appears
    when the contact's name is known.
    """
    t = _TEMPLATES.get(language, _TEMPLATES["ru"])
    manager = context.manager_name or t["default_manager"]
    manager_object = context.manager_name or t["default_manager_object"]

    head = [t["role"].format(company=context.company_name or t["default_company"])]
    if context.reason is not None:
        head.append(t["reasons"][context.reason].format(manager=manager))

    sections = ["\n".join(head)]

    if context.contact_name:
        caller = [t["caller_header"], t["caller_name"].format(value=context.contact_name)]
        if context.contact_company:
            caller.append(t["caller_company"].format(value=context.contact_company))
        if context.call_history:
            caller.append(t["caller_history"].format(value=context.call_history))
        sections.append("\n".join(caller))

    tasks = (
        line.format(manager_object=manager_object, callback=t["callback"][tone]) for line in t["tasks"]
    )
    sections.append("\n".join(tasks))
    sections.append(t["summary"])
    sections.append("\n".join([t["rules_header"], *t["rules"][tone]]))

    return "\n\n".join(sections)


_FIRST_MESSAGES = {
    "ru": "Здравствуйте! Чем я могу вам помочь?",
    "en": "Hello! How can I help you?",
}


def first_message(language: str = "ru") -> str:
    """Opening line the assistant speaks when it picks up."""
    return _FIRST_MESSAGES.get(language, _FIRST_MESSAGES["ru"])
