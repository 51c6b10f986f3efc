# creditwise/core/prompt_manager.py
"""
Centralized prompt management for CreditWise.

Fixed advisor messages and generation templates live in ``creditwise.prompts``
as module constants; the manager registers them under dotted keys, formats
them and resolves the language variant.
"""
from typing import Dict, Any, Optional, List
from enum import Enum
import logging
import re
from dataclasses import dataclass
from creditwise.core.exceptions import PromptError

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "ru"


class PromptCategory(str, Enum):
    """Categories for organizing prompts"""
    ADVISOR = "advisor"
    GENERATION = "generation"


class PromptType(str, Enum):
    """Prompt keys. Advisor keys are language-neutral, see get_localized()."""

    # Scripted flow
    GREETING = "advisor.greeting"
    CONSENT_REQUEST = "advisor.consent.request"
    CONSENT_REPROMPT = "advisor.consent.reprompt"
    CONSENT_OPTION_AGREE = "advisor.consent.option.agree"
    CONSENT_OPTION_DECLINE = "advisor.consent.option.decline"
    JURISDICTION_QUESTION = "advisor.jurisdiction.question"
    DIAGNOSTIC_START = "advisor.diagnostic.start"
    DIAGNOSTIC_QUESTION = "advisor.diagnostic.question"

    # Summary
    SUMMARY_RISKS_TITLE = "advisor.summary.risks.title"
    SUMMARY_RECOMMENDATIONS_TITLE = "advisor.summary.recommendations.title"
    SUMMARY_NEXT_STEPS = "advisor.summary.next.steps"
    FALLBACK_SUMMARY = "advisor.fallback.summary"
    OPTION_SHOW_SCENARIOS = "advisor.option.show.scenarios"
    OPTION_ASK_QUESTION = "advisor.option.ask.question"

    # Scenarios and documents
    SCENARIO_LIST_INTRO = "advisor.scenario.list.intro"
    SCENARIO_STEP_QUESTION = "advisor.scenario.step.question"
    SCENARIO_RESULT_HEADER = "advisor.scenario.result.header"
    DOCUMENT_ANALYZED = "advisor.document.analyzed"

    # Policy and errors
    POLICY_REFUSAL = "advisor.policy.refusal"
    PII_WARNING = "advisor.pii.warning"
    INSUFFICIENT_CREDITS = "advisor.insufficient.credits"
    CONNECTION_ISSUE = "advisor.connection.issue"
    TRANSITION_IN_PROGRESS = "advisor.transition.in.progress"

    # Generation templates
    ADVISOR_SYSTEM = "generation.advisor_system"
    SUMMARY_SYSTEM = "generation.summary_system"
    SUMMARY = "generation.summary"
    SCENARIO_ANALYSIS = "generation.scenario"
    DOCUMENT_SYSTEM = "generation.document_system"
    DOCUMENT_ANALYSIS = "generation.document"


@dataclass
class Prompt:
    """Represents a single prompt template"""
    key: str
    template: str
    category: PromptCategory
    description: str = ""
    variables: List[str] = None

    def __post_init__(self):
        if self.variables is None:
            self.variables = self._extract_variables()

    def _extract_variables(self) -> List[str]:
        # Single-brace placeholders only; doubled braces are JSON literals
        pattern = r'(?<!\{)\{(\w+)\}(?!\})'
        return sorted(set(re.findall(pattern, self.template)))

    def format(self, **kwargs) -> str:
        """
        Format the prompt with provided variables.

        Raises:
            PromptError: If required variables are missing
        """
        missing = set(self.variables) - set(kwargs.keys())
        if missing:
            raise PromptError(
                f"Missing required variables: {missing}",
                prompt_type=self.key,
                details={"missing_variables": sorted(missing)}
            )

        try:
            return self.template.format(**kwargs)
        except (KeyError, IndexError, ValueError) as e:
            raise PromptError(
                f"Error formatting prompt: {e}",
                prompt_type=self.key,
                details={"error": str(e)}
            )


class PromptManager:
    """
    Centralized prompt registry.

    Loads prompts lazily on first access and formats them by key.
    """

    def __init__(self):
        self.prompts: Dict[str, Prompt] = {}
        self._loaded = False

    def load_prompts(self):
        if self._loaded:
            return

        self._define_prompts()
        self._loaded = True
        logger.info(f"Loaded {len(self.prompts)} prompts")

    def _define_prompts(self):
        """Load all prompts from the prompt modules"""
        from creditwise.prompts import advisor_prompts, generation_prompts

        def register_from_module(module, category: PromptCategory, key_prefix: str):
            """Register all uppercase string constants, CONSTANT_NAME -> prefix.constant.name"""
            for name in dir(module):
                value = getattr(module, name)
                if isinstance(value, str) and name.isupper() and not name.startswith('_'):
                    key_parts = name.lower().split('_')
                    key = f"{key_prefix}.{'.'.join(key_parts)}"

                    self.add_prompt(Prompt(
                        key=key,
                        template=value,
                        category=category,
                        description=f"Auto-imported from {module.__name__}.{name}"
                    ))

        register_from_module(advisor_prompts, PromptCategory.ADVISOR, "advisor")

        # Generation templates keep explicit keys
        generation_keys = {
            PromptType.ADVISOR_SYSTEM: generation_prompts.ADVISOR_SYSTEM_TEMPLATE,
            PromptType.SUMMARY_SYSTEM: generation_prompts.SUMMARY_SYSTEM,
            PromptType.SUMMARY: generation_prompts.SUMMARY_TEMPLATE,
            PromptType.SCENARIO_ANALYSIS: generation_prompts.SCENARIO_TEMPLATE,
            PromptType.DOCUMENT_SYSTEM: generation_prompts.DOCUMENT_SYSTEM,
            PromptType.DOCUMENT_ANALYSIS: generation_prompts.DOCUMENT_TEMPLATE,
        }
        for prompt_type, template in generation_keys.items():
            self.add_prompt(Prompt(
                key=prompt_type.value,
                template=template,
                category=PromptCategory.GENERATION
            ))

    def add_prompt(self, prompt: Prompt):
        if prompt.key in self.prompts:
            logger.warning(f"Overwriting existing prompt: {prompt.key}")
        self.prompts[prompt.key] = prompt

    def get(self, key: str, **kwargs) -> str:
        """
        Get a formatted prompt by key.

        Raises:
            PromptError: If prompt not found or formatting fails
        """
        if not self._loaded:
            self.load_prompts()

        if key not in self.prompts:
            raise PromptError(
                f"Prompt not found: {key}",
                prompt_type=key
            )

        prompt = self.prompts[key]
        if not prompt.variables:
            return prompt.template

        return prompt.format(**kwargs)

    def get_prompt(self, prompt_type, **kwargs) -> str:
        """Accept a PromptType or a plain key"""
        key = prompt_type.value if hasattr(prompt_type, 'value') else str(prompt_type)
        return self.get(key, **kwargs)

    def get_localized(self, prompt_type, language: Optional[str] = None, **kwargs) -> str:
        """
        Resolve the language variant of an advisor prompt.

        Falls back to the default language when the requested one is missing.
        """
        if not self._loaded:
            self.load_prompts()

        base_key = prompt_type.value if hasattr(prompt_type, 'value') else str(prompt_type)
        language = (language or DEFAULT_LANGUAGE).lower()

        for candidate in (f"{base_key}.{language}", f"{base_key}.{DEFAULT_LANGUAGE}"):
            if candidate in self.prompts:
                return self.get(candidate, **kwargs)

        return self.get(base_key, **kwargs)

    def list_prompts(self, category: Optional[PromptCategory] = None) -> List[str]:
        if not self._loaded:
            self.load_prompts()

        if category:
            return [key for key, prompt in self.prompts.items() if prompt.category == category]
        return list(self.prompts.keys())

    def get_prompt_info(self, key: str) -> Dict[str, Any]:
        if not self._loaded:
            self.load_prompts()

        if key not in self.prompts:
            raise PromptError(f"Prompt not found: {key}", prompt_type=key)

        prompt = self.prompts[key]
        return {
            "key": prompt.key,
            "category": prompt.category.value,
            "description": prompt.description,
            "variables": prompt.variables,
            "template_preview": prompt.template[:100] + "..." if len(prompt.template) > 100 else prompt.template
        }


_prompt_manager = None


def get_prompt_manager() -> PromptManager:
    """Get the global PromptManager instance"""
    global _prompt_manager
    if _prompt_manager is None:
        _prompt_manager = PromptManager()
        _prompt_manager.load_prompts()
    return _prompt_manager
