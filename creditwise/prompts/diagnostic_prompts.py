# creditwise/prompts/diagnostic_prompts.py
"""
Question bank for the seven diagnostic steps.

Each question carries its fixed option set, rendered as suggestion chips.
Free-text answers are accepted as well and stored verbatim.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

TOTAL_STEPS = 7


@dataclass(frozen=True)
class DiagnosticQuestion:
    step: int
    key: str
    text: Dict[str, str]
    options: Dict[str, Tuple[str, ...]]

    @property
    def answer_key(self) -> str:
        return f"step_{self.step}"

    def text_for(self, language: str) -> str:
        return self.text.get(language) or self.text["ru"]

    def options_for(self, language: str) -> List[str]:
        return list(self.options.get(language) or self.options["ru"])


QUESTIONS: Tuple[DiagnosticQuestion, ...] = (
    DiagnosticQuestion(
        step=1,
        key="goal",
        text={
            "ru": "Какая у вас основная финансовая цель?",
            "en": "What is your main financial goal?",
        },
        options={
            "ru": ("Получить кредит", "Рефинансировать долги", "Выйти из долгов",
                   "Улучшить кредитную историю", "Другое"),
            "en": ("Get a loan", "Refinance debts", "Get out of debt",
                   "Improve credit history", "Other"),
        },
    ),
    DiagnosticQuestion(
        step=2,
        key="active_loans",
        text={
            "ru": "Есть ли у вас сейчас действующие кредиты или займы?",
            "en": "Do you currently have any active loans?",
        },
        options={
            "ru": ("Да, есть", "Нет", "Уже погасил(а)"),
            "en": ("Yes", "No", "Already repaid"),
        },
    ),
    DiagnosticQuestion(
        step=3,
        key="overdue",
        text={
            "ru": "Есть ли просрочки по платежам?",
            "en": "Are any payments overdue?",
        },
        options={
            "ru": ("Нет", "До 30 дней", "30–90 дней", "Более 90 дней"),
            "en": ("No", "Up to 30 days", "30–90 days", "More than 90 days"),
        },
    ),
    DiagnosticQuestion(
        step=4,
        key="income",
        text={
            "ru": "Какой у вас ежемесячный доход?",
            "en": "What is your monthly income?",
        },
        options={
            "ru": ("До 50k", "50–100k", "100–200k", "Более 200k"),
            "en": ("Under 50k", "50–100k", "100–200k", "Over 200k"),
        },
    ),
    DiagnosticQuestion(
        step=5,
        key="monthly_payments",
        text={
            "ru": "Сколько вы платите по кредитам в месяц?",
            "en": "How much do you pay towards loans each month?",
        },
        options={
            "ru": ("До 10k", "10–30k", "30–50k", "Более 50k"),
            "en": ("Under 10k", "10–30k", "30–50k", "Over 50k"),
        },
    ),
    DiagnosticQuestion(
        step=6,
        key="credit_history",
        text={
            "ru": "Как вы оцениваете свою кредитную историю?",
            "en": "How would you rate your credit history?",
        },
        options={
            "ru": ("Хорошая", "Средняя", "Плохая", "Не знаю"),
            "en": ("Good", "Average", "Poor", "Don't know"),
        },
    ),
    DiagnosticQuestion(
        step=7,
        key="urgency",
        text={
            "ru": "Как срочно вам нужно решение?",
            "en": "How urgently do you need a solution?",
        },
        options={
            "ru": ("Сегодня", "В течение недели", "В течение месяца", "Не срочно"),
            "en": ("Today", "Within a week", "Within a month", "Not urgent"),
        },
    ),
)


def get_question(step: int) -> DiagnosticQuestion:
    """Question for diagnostic step 1..7"""
    if step < 1 or step > TOTAL_STEPS:
        raise IndexError(f"Diagnostic step out of range: {step}")
    return QUESTIONS[step - 1]
