# tests/test_prompts.py
"""
Test that all prompts load correctly from the prompt modules.
"""

import pytest

from creditwise.core.exceptions import PromptError
from creditwise.core.prompt_manager import (
    Prompt,
    PromptCategory,
    PromptManager,
    PromptType,
    get_prompt_manager,
)
from creditwise.prompts import diagnostic_prompts, scenario_prompts

LANGUAGES = ("ru", "en")


@pytest.fixture
def pm():
    manager = PromptManager()
    manager.load_prompts()
    return manager


@pytest.mark.unit
class TestPromptLoading:

    def test_every_advisor_prompt_has_both_languages(self, pm):
        for prompt_type in PromptType:
            if not prompt_type.value.startswith("advisor."):
                continue
            for language in LANGUAGES:
                assert f"{prompt_type.value}.{language}" in pm.prompts, (prompt_type, language)

    def test_generation_templates_registered(self, pm):
        generation = set(pm.list_prompts(PromptCategory.GENERATION))

        assert {PromptType.SUMMARY.value, PromptType.SCENARIO_ANALYSIS.value,
                PromptType.DOCUMENT_ANALYSIS.value, PromptType.ADVISOR_SYSTEM.value} <= generation

    def test_categories_partition_prompts(self, pm):
        total = sum(len(pm.list_prompts(category)) for category in PromptCategory)
        assert total == len(pm.list_prompts())

    def test_json_braces_are_not_variables(self, pm):
        info = pm.get_prompt_info(PromptType.SUMMARY.value)

        assert info["variables"] == ["answers", "jurisdiction", "language_name"]
        assert info["category"] == "generation"

    def test_global_manager_is_shared(self):
        assert get_prompt_manager() is get_prompt_manager()


@pytest.mark.unit
class TestPromptFormatting:

    def test_localized(self, pm):
        assert pm.get_localized(PromptType.GREETING, "en").startswith("Hello")
        assert pm.get_localized(PromptType.GREETING, "ru").startswith("Здравствуйте")

    def test_unknown_language_falls_back_to_russian(self, pm):
        assert pm.get_localized(PromptType.GREETING, "de") == pm.get_localized(PromptType.GREETING, "ru")

    def test_default_language(self, pm):
        assert pm.get_localized(PromptType.POLICY_REFUSAL).startswith("Я не могу помочь с этим запросом")

    def test_variables(self, pm):
        text = pm.get_localized(PromptType.DIAGNOSTIC_QUESTION, "ru", step=2, total=7, question="Сколько?")
        assert text == "Вопрос 2 из 7. Сколько?"

    def test_summary_template_keeps_json_literal(self, pm):
        text = pm.get_prompt(PromptType.SUMMARY, jurisdiction="Russia", answers="- a", language_name="Russian")

        assert '{"summary": "...", "risks"' in text

    def test_missing_variable(self, pm):
        with pytest.raises(PromptError) as exc_info:
            pm.get_localized(PromptType.DIAGNOSTIC_START, "ru")
        assert exc_info.value.details["missing_variables"] == ["jurisdiction"]

    def test_unknown_key(self, pm):
        with pytest.raises(PromptError):
            pm.get("advisor.nothing.here")

    def test_add_prompt_overrides(self, pm):
        pm.add_prompt(Prompt(key="advisor.greeting.ru", template="Привет!", category=PromptCategory.ADVISOR))

        assert pm.get_localized(PromptType.GREETING, "ru") == "Привет!"


@pytest.mark.unit
class TestQuestionBanks:

    def test_seven_diagnostic_questions(self):
        assert len(diagnostic_prompts.QUESTIONS) == diagnostic_prompts.TOTAL_STEPS == 7
        assert [q.step for q in diagnostic_prompts.QUESTIONS] == list(range(1, 8))

    def test_questions_are_bilingual(self):
        for question in diagnostic_prompts.QUESTIONS:
            for language in LANGUAGES:
                assert question.text_for(language)
                assert question.options_for(language)

    def test_question_lookup(self):
        assert diagnostic_prompts.get_question(3).answer_key == "step_3"
        with pytest.raises(IndexError):
            diagnostic_prompts.get_question(8)

    def test_scenarios(self):
        assert scenario_prompts.get_scenario("credit").title_for("en") == "Getting a loan"
        assert scenario_prompts.get_scenario("missing") is None
        for scenario in scenario_prompts.SCENARIOS:
            assert scenario.steps
            assert scenario.title_for("de") == scenario.title["ru"]

    def test_fallbacks_have_three_items(self):
        for language in LANGUAGES:
            assert len(scenario_prompts.FALLBACK_RISKS[language]) == 3
            assert len(scenario_prompts.FALLBACK_RECOMMENDATIONS[language]) == 3
