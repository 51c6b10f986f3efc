# creditwise/prompts/advisor_prompts.py
"""
Fixed advisor messages for the scripted part of the conversation.

Every message exists in Russian (the default) and English; the suffix of the
constant name is the language code, so ``CONSENT_REQUEST_RU`` is registered as
``advisor.consent.request.ru``.
"""

# ============================================================================
# INTRO / CONSENT
# ============================================================================

GREETING_RU = """Здравствуйте! Я CreditWise, ваш независимый кредитный консультант. Помогу разобраться с кредитами, долгами и кредитной историей. Напишите что-нибудь, чтобы начать."""

GREETING_EN = """Hello! I'm CreditWise, your independent credit advisor. I can help you make sense of loans, debts and your credit history. Send any message to get started."""

CONSENT_REQUEST_RU = """Прежде чем начать, мне нужно ваше согласие на обработку ответов, которые вы дадите в ходе диагностики. Данные используются только для подготовки рекомендаций. Вы согласны?"""

CONSENT_REQUEST_EN = """Before we start I need your consent to process the answers you give during the diagnostic. They are used only to prepare your recommendations. Do you agree?"""

CONSENT_REPROMPT_RU = """Без согласия я не смогу провести диагностику. Когда будете готовы, напишите мне, и мы начнём заново."""

CONSENT_REPROMPT_EN = """I can't run the diagnostic without your consent. Whenever you're ready, send me a message and we'll start again."""

CONSENT_OPTION_AGREE_RU = """Согласен"""

CONSENT_OPTION_AGREE_EN = """I agree"""

CONSENT_OPTION_DECLINE_RU = """Не согласен"""

CONSENT_OPTION_DECLINE_EN = """I don't agree"""

# ============================================================================
# JURISDICTION / DIAGNOSTIC
# ============================================================================

JURISDICTION_QUESTION_RU = """Спасибо! В какой стране вы находитесь? Законодательство о кредитах и банкротстве отличается, поэтому это важно для рекомендаций."""

JURISDICTION_QUESTION_EN = """Thank you! Which country are you in? Credit and insolvency law differs between countries, so this matters for the recommendations."""

DIAGNOSTIC_START_RU = """Отлично, юрисдикция: {jurisdiction}. Теперь семь коротких вопросов о вашей ситуации."""

DIAGNOSTIC_START_EN = """Great, jurisdiction: {jurisdiction}. Now seven short questions about your situation."""

DIAGNOSTIC_QUESTION_RU = """Вопрос {step} из {total}. {question}"""

DIAGNOSTIC_QUESTION_EN = """Question {step} of {total}. {question}"""

# ============================================================================
# SUMMARY
# ============================================================================

SUMMARY_RISKS_TITLE_RU = """Основные риски:"""

SUMMARY_RISKS_TITLE_EN = """Key risks:"""

SUMMARY_RECOMMENDATIONS_TITLE_RU = """Рекомендации:"""

SUMMARY_RECOMMENDATIONS_TITLE_EN = """Recommendations:"""

SUMMARY_NEXT_STEPS_RU = """Можете задать мне любой вопрос или выбрать сценарий для подробного разбора."""

SUMMARY_NEXT_STEPS_EN = """Ask me anything, or pick a scenario for a detailed walkthrough."""

FALLBACK_SUMMARY_RU = """Спасибо за ответы! Диагностика завершена. Сейчас я не могу подготовить подробный разбор, но ваши ответы сохранены, и мы можем обсудить ситуацию в чате."""

FALLBACK_SUMMARY_EN = """Thank you for your answers! The diagnostic is complete. I can't prepare the detailed review right now, but your answers are saved and we can discuss your situation in the chat."""

OPTION_SHOW_SCENARIOS_RU = """Посмотреть сценарии"""

OPTION_SHOW_SCENARIOS_EN = """Show scenarios"""

OPTION_ASK_QUESTION_RU = """Задать вопрос"""

OPTION_ASK_QUESTION_EN = """Ask a question"""

# ============================================================================
# SCENARIOS
# ============================================================================

SCENARIO_LIST_INTRO_RU = """Выберите сценарий, и я проведу вас по нему шаг за шагом:"""

SCENARIO_LIST_INTRO_EN = """Choose a scenario and I'll walk you through it step by step:"""

SCENARIO_STEP_QUESTION_RU = """{title}, шаг {step} из {total}. {question}"""

SCENARIO_STEP_QUESTION_EN = """{title}, step {step} of {total}. {question}"""

SCENARIO_RESULT_HEADER_RU = """Анализ сценария «{title}»"""

SCENARIO_RESULT_HEADER_EN = """Scenario analysis: {title}"""

# ============================================================================
# DOCUMENTS
# ============================================================================

DOCUMENT_ANALYZED_RU = """Я проанализировал ваш документ: **{name}**. {summary}"""

DOCUMENT_ANALYZED_EN = """I've successfully analyzed your document: **{name}**. {summary}"""

# ============================================================================
# POLICY / ERRORS
# ============================================================================

POLICY_REFUSAL_RU = """Я не могу помочь с этим запросом: он связан с действиями, которые нарушают закон или вводят в заблуждение кредиторов. Давайте поищем законный способ решить вашу задачу."""

POLICY_REFUSAL_EN = """I can't help with that request because it involves actions that are unlawful or would mislead lenders. Let's look for a legitimate way to reach your goal."""

PII_WARNING_RU = """Пожалуйста, не отправляйте персональные данные (email, телефон, номера документов). Сообщение не отправлено."""

PII_WARNING_EN = """Please don't share personal data (email, phone, document numbers). Your message was not sent."""

INSUFFICIENT_CREDITS_RU = """Недостаточно кредитов. Пожалуйста, обновите тариф."""

INSUFFICIENT_CREDITS_EN = """Insufficient credits. Please upgrade your plan."""

CONNECTION_ISSUE_RU = """Проблема с соединением. Пожалуйста, попробуйте ещё раз."""

CONNECTION_ISSUE_EN = """Connection issue. Please try again."""

TRANSITION_IN_PROGRESS_RU = """Подождите, я ещё отвечаю на предыдущее сообщение."""

TRANSITION_IN_PROGRESS_EN = """Please wait, I'm still answering your previous message."""
