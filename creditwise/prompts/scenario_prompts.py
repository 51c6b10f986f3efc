# creditwise/prompts/scenario_prompts.py
"""
Scenario catalog for the guided wizards offered after the diagnostic.

Titles are bilingual; wizard steps exist in Russian only. A step without
options accepts free text.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ScenarioStep:
    id: str
    title: str
    question: str
    options: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Scenario:
    id: str
    title: Dict[str, str]
    steps: Tuple[ScenarioStep, ...] = field(default_factory=tuple)

    def title_for(self, language: str) -> str:
        return self.title.get(language) or self.title["ru"]


SCENARIOS: Tuple[Scenario, ...] = (
    Scenario(
        id="credit",
        title={"ru": "Получение кредита", "en": "Getting a loan"},
        steps=(
            ScenarioStep("goal", "Цель кредита", "Для чего нужен кредит?",
                         ("Покупка авто", "Ремонт", "Медицина", "Образование", "Бизнес", "Другое")),
            ScenarioStep("amount", "Сумма", "Какая сумма вам нужна?",
                         ("до 100к", "100-300к", "300-500к", "500к-1М", "1М+")),
            ScenarioStep("income", "Доход", "Ваш ежемесячный доход?",
                         ("до 50к", "50-100к", "100-200к", "200к+")),
            ScenarioStep("employment", "Занятость", "Ваш тип занятости?",
                         ("Официальная работа", "ИП/Самозанятый", "Неофициально", "Безработный")),
            ScenarioStep("details", "Детали", "Что ещё важно знать о вашей ситуации?"),
        ),
    ),
    Scenario(
        id="refinance",
        title={"ru": "Рефинансирование", "en": "Refinancing"},
        steps=(
            ScenarioStep("currentLoans", "Текущие кредиты", "Сколько у вас действующих кредитов?",
                         ("1", "2-3", "4-5", "6+")),
            ScenarioStep("totalDebt", "Общий долг", "Общая сумма задолженности?",
                         ("до 100к", "100-300к", "300-500к", "500к-1М", "1М+")),
            ScenarioStep("monthlyPayment", "Платёж", "Текущий ежемесячный платёж?",
                         ("до 10к", "10-30к", "30-50к", "50-100к", "100к+")),
            ScenarioStep("details", "Детали", "Расскажите подробнее о целях рефинансирования"),
        ),
    ),
    Scenario(
        id="debtPlan",
        title={"ru": "План выхода из долгов", "en": "Debt exit plan"},
        steps=(
            ScenarioStep("debtType", "Тип долгов", "Какие у вас долги?",
                         ("Кредиты", "Микрозаймы", "Кредитные карты", "Долги физлицам", "Смешанные")),
            ScenarioStep("overdue", "Просрочки", "Есть просроченные платежи?",
                         ("Нет", "До 30 дней", "30-90 дней", "90+ дней")),
            ScenarioStep("collectors", "Коллекторы", "Звонят коллекторы?",
                         ("Нет", "Иногда", "Часто", "Постоянно")),
            ScenarioStep("income", "Доход", "Сколько можете выделять на погашение?",
                         ("до 10к", "10-20к", "20-40к", "40к+")),
            ScenarioStep("priority", "Приоритет", "Что важнее: скорость или комфорт?",
                         ("Погасить быстрее", "Платить меньше", "Баланс")),
            ScenarioStep("details", "Детали", "Что ещё важно учесть?"),
        ),
    ),
    Scenario(
        id="improveHistory",
        title={"ru": "Улучшение кредитной истории", "en": "Improving credit history"},
        steps=(
            ScenarioStep("currentScore", "Текущий рейтинг", "Как вы оцениваете свою КИ?",
                         ("Хорошая", "Средняя", "Плохая", "Очень плохая", "Не знаю")),
            ScenarioStep("negativeFactors", "Негатив", "Какие негативные факторы есть?",
                         ("Просрочки", "Много запросов", "Судебные решения", "Банкротство", "Не знаю")),
            ScenarioStep("goal", "Цель", "Зачем улучшать КИ?",
                         ("Получить кредит", "Снизить ставку", "Ипотека", "Просто улучшить")),
            ScenarioStep("timeline", "Срок", "За какой срок хотите улучшить?",
                         ("1-3 месяца", "3-6 месяцев", "6-12 месяцев", "Год+")),
            ScenarioStep("details", "Детали", "Расскажите подробнее о ситуации"),
        ),
    ),
    Scenario(
        id="insuranceReturn",
        title={"ru": "Возврат страхования", "en": "Insurance refund"},
        steps=(
            ScenarioStep("insuranceType", "Тип страховки", "Какую страховку хотите вернуть?",
                         ("Страхование жизни", "От потери работы", "Имущества", "Другое")),
            ScenarioStep("when", "Когда оформили", "Когда была оформлена?",
                         ("До 14 дней", "14 дней - 1 мес", "1-6 месяцев", "6+ месяцев")),
            ScenarioStep("amount", "Сумма", "Сумма страховки?",
                         ("до 10к", "10-30к", "30-50к", "50-100к", "100к+")),
            ScenarioStep("details", "Детали", "Как была навязана страховка?"),
        ),
    ),
    Scenario(
        id="bankruptcy",
        title={"ru": "Банкротство", "en": "Bankruptcy"},
        steps=(
            ScenarioStep("totalDebt", "Общий долг", "Общая сумма долгов?",
                         ("до 500к", "500к-1М", "1-3М", "3М+")),
            ScenarioStep("property", "Имущество", "Есть ли имущество?",
                         ("Нет", "Авто", "Недвижимость", "И то и другое")),
            ScenarioStep("income", "Доход", "Официальный доход?",
                         ("Нет", "до 50к", "50-100к", "100к+")),
            ScenarioStep("previousAttempts", "Попытки", "Пробовали договориться с кредиторами?",
                         ("Нет", "Да, отказали", "Да, частично")),
            ScenarioStep("details", "Детали", "Опишите вашу ситуацию"),
        ),
    ),
)

SCENARIOS_BY_ID: Dict[str, Scenario] = {s.id: s for s in SCENARIOS}

# Used when the generated analysis cannot be parsed
FALLBACK_RISKS: Dict[str, List[str]] = {
    "ru": [
        "Требуется детальный анализ",
        "Возможны дополнительные расходы",
        "Сроки могут варьироваться",
    ],
    "en": [
        "A detailed review is required",
        "Additional costs are possible",
        "Timelines may vary",
    ],
}

FALLBACK_RECOMMENDATIONS: Dict[str, List[str]] = {
    "ru": [
        "Проконсультируйтесь со специалистом",
        "Соберите необходимые документы",
        "Оцените все варианты",
    ],
    "en": [
        "Consult a specialist",
        "Gather the necessary documents",
        "Weigh all the options",
    ],
}


def get_scenario(scenario_id: str) -> Optional[Scenario]:
    return SCENARIOS_BY_ID.get(scenario_id)
