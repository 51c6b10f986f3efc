# creditwise/agents/advisor_agent.py
"""
Advisor Agent - formats everything the assistant says.

Scripted messages (greeting, consent, questions, refusals) come from fixed
prompts. The generative steps (diagnostic summary, free chat, scenario
analysis, document analysis) go through the GPT service; this agent owns the
prompt assembly and the parsing of what comes back, nothing else.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

from creditwise.agents.base_agent import AgentContext, AgentMessage, BaseAgent, MessageType
from creditwise.core.exceptions import GPTServiceError, ValidationError
from creditwise.core.prompt_manager import PromptType
from creditwise.models.conversation import Message, Profile, UIComponent, UIComponentType
from creditwise.prompts import diagnostic_prompts, scenario_prompts

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

TokenCallback = Callable[[str], None]


class AdvisorAgent(BaseAgent):
    """
    Agent speaking as the CreditWise advisor.

    Responsibilities:
    - Scripted flow messages with option chips and progress
    - Summary and scenario analysis (summary + 3 risks + 3 recommendations)
    - Streaming free-chat replies seeded with the user's profile
    - Document extraction
    """

    def __init__(self, **kwargs):
        super().__init__(name="CreditWise Advisor", role="advisor", **kwargs)
        self._summary_temperature = 0.3

    async def respond(self, context: AgentContext) -> AgentMessage:
        self.validate_context(context)
        lang = context.language
        meta = context.metadata

        if context.message_type == MessageType.GREETING:
            return self.create_message(self.text(PromptType.GREETING, lang), MessageType.GREETING)

        if context.message_type == MessageType.CONSENT_REQUEST:
            return self.create_message(
                self.text(PromptType.CONSENT_REQUEST, lang),
                MessageType.CONSENT_REQUEST,
                ui=[self.options([
                    self.text(PromptType.CONSENT_OPTION_AGREE, lang),
                    self.text(PromptType.CONSENT_OPTION_DECLINE, lang),
                ])]
            )

        if context.message_type == MessageType.CONSENT_REPROMPT:
            return self.create_message(self.text(PromptType.CONSENT_REPROMPT, lang), MessageType.CONSENT_REPROMPT)

        if context.message_type == MessageType.JURISDICTION_QUESTION:
            return self.create_message(
                self.text(PromptType.JURISDICTION_QUESTION, lang),
                MessageType.JURISDICTION_QUESTION,
                ui=[UIComponent(type=UIComponentType.INPUT)]
            )

        if context.message_type == MessageType.DIAGNOSTIC_QUESTION:
            return self._format_diagnostic_question(meta["step"], lang, meta.get("preface"))

        if context.message_type == MessageType.SCENARIO_LIST:
            return self._format_scenario_list(lang)

        if context.message_type == MessageType.SCENARIO_QUESTION:
            return self._format_scenario_question(meta["scenario_id"], meta["step_index"], lang)

        if context.message_type == MessageType.POLICY_REFUSAL:
            return self.create_message(self.text(PromptType.POLICY_REFUSAL, lang), MessageType.POLICY_REFUSAL)

        raise ValidationError(f"Unsupported message type: {context.message_type}", field="message_type")

    # ------------------------------------------------------------------
    # Scripted formatting
    # ------------------------------------------------------------------

    def _format_diagnostic_question(self, step: int, lang: str, preface: Optional[str] = None) -> AgentMessage:
        question = diagnostic_prompts.get_question(step)
        text = self.text(
            PromptType.DIAGNOSTIC_QUESTION, lang,
            step=step, total=diagnostic_prompts.TOTAL_STEPS, question=question.text_for(lang)
        )
        if preface:
            text = f"{preface}\n\n{text}"
        return self.create_message(
            text,
            MessageType.DIAGNOSTIC_QUESTION,
            ui=[
                self.options(question.options_for(lang)),
                self.progress(step - 1, diagnostic_prompts.TOTAL_STEPS),
            ],
            metadata={"step": step}
        )

    def _format_scenario_list(self, lang: str) -> AgentMessage:
        cards = [
            UIComponent(
                type=UIComponentType.SCENARIO_CARD,
                text=scenario.title_for(lang),
                data={"scenarioId": scenario.id, "steps": len(scenario.steps)}
            )
            for scenario in scenario_prompts.SCENARIOS
        ]
        return self.create_message(self.text(PromptType.SCENARIO_LIST_INTRO, lang), MessageType.SCENARIO_LIST, ui=cards)

    def _format_scenario_question(self, scenario_id: str, step_index: int, lang: str) -> AgentMessage:
        scenario = scenario_prompts.get_scenario(scenario_id)
        if scenario is None:
            raise ValidationError(f"Unknown scenario: {scenario_id}", field="scenarioId", value=scenario_id)

        step = scenario.steps[step_index]
        text = self.text(
            PromptType.SCENARIO_STEP_QUESTION, lang,
            title=scenario.title_for(lang), step=step_index + 1,
            total=len(scenario.steps), question=step.question
        )
        ui = [self.options(step.options)] if step.options else [UIComponent(type=UIComponentType.INPUT)]
        ui.append(self.progress(step_index, len(scenario.steps)))
        return self.create_message(text, MessageType.SCENARIO_QUESTION, ui=ui,
                                   metadata={"scenario_id": scenario_id, "step_id": step.id})

    def format_analysis(
        self,
        lang: str,
        summary: str,
        risks: Sequence[str],
        recommendations: Sequence[str],
        header: Optional[str] = None
    ) -> str:
        lines = []
        if header:
            lines.extend([header, ""])
        lines.extend([summary.strip(), "", self.text(PromptType.SUMMARY_RISKS_TITLE, lang)])
        lines.extend(f"{i}. {risk}" for i, risk in enumerate(risks, 1))
        lines.extend(["", self.text(PromptType.SUMMARY_RECOMMENDATIONS_TITLE, lang)])
        lines.extend(f"{i}. {rec}" for i, rec in enumerate(recommendations, 1))
        return "\n".join(lines)

    def summary_options(self, lang: str) -> UIComponent:
        return self.options([
            self.text(PromptType.OPTION_SHOW_SCENARIOS, lang),
            self.text(PromptType.OPTION_ASK_QUESTION, lang),
        ])

    # ------------------------------------------------------------------
    # Generative steps
    # ------------------------------------------------------------------

    def _require_gpt(self):
        if not self.gpt_service:
            raise GPTServiceError("GPT service not available", operation=self.name)
        return self.gpt_service

    @staticmethod
    def _exactly_three(items: Any, fallback: Sequence[str]) -> List[str]:
        cleaned = [str(i).strip() for i in items if str(i).strip()] if isinstance(items, list) else []
        cleaned = cleaned[:3]
        for filler in fallback:
            if len(cleaned) >= 3:
                break
            if filler not in cleaned:
                cleaned.append(filler)
        return cleaned

    def parse_analysis(self, raw: str, lang: str) -> Dict[str, Any]:
        """
        Parse a {summary, risks, recommendations} completion.

        Unparseable output becomes the summary itself with fixed risks and
        recommendations; lists are normalized to exactly three items.
        """
        fallback_risks = scenario_prompts.FALLBACK_RISKS.get(lang, scenario_prompts.FALLBACK_RISKS["ru"])
        fallback_recs = scenario_prompts.FALLBACK_RECOMMENDATIONS.get(
            lang, scenario_prompts.FALLBACK_RECOMMENDATIONS["ru"]
        )

        parsed: Dict[str, Any] = {}
        match = JSON_OBJECT_PATTERN.search(raw or "")
        if match:
            try:
                candidate = json.loads(match.group(0))
                if isinstance(candidate, dict):
                    parsed = candidate
            except json.JSONDecodeError:
                logger.warning("Analysis completion is not valid JSON, using fallback lists")

        summary = parsed.get("summary") if isinstance(parsed.get("summary"), str) else None
        return {
            "summary": (summary or raw or "").strip(),
            "risks": self._exactly_three(parsed.get("risks"), fallback_risks),
            "recommendations": self._exactly_three(parsed.get("recommendations"), fallback_recs),
        }

    def describe_answers(self, diagnostic_data: Dict[str, str], lang: str) -> str:
        lines = []
        for question in diagnostic_prompts.QUESTIONS:
            answer = diagnostic_data.get(question.answer_key)
            if answer:
                lines.append(f"- {question.text_for(lang)} {answer}")
        return "\n".join(lines)

    async def summarize_diagnostic(self, diagnostic_data: Dict[str, str], profile: Profile, lang: str) -> Dict[str, Any]:
        """
        One generative call for the diagnostic summary.

        Raises:
            GPTServiceError: If generation fails (caller substitutes the fixed summary)
        """
        gpt = self._require_gpt()
        prompt = self.prompt_manager.get_prompt(
            PromptType.SUMMARY,
            jurisdiction=profile.jurisdiction or "-",
            answers=self.describe_answers(diagnostic_data, lang),
            language_name=self.language_name(lang)
        )
        raw = await gpt.complete(
            prompt,
            system_prompt=self.prompt_manager.get_prompt(PromptType.SUMMARY_SYSTEM),
            temperature=self._summary_temperature
        )
        return self.parse_analysis(raw, lang)

    async def analyze_scenario(
        self,
        scenario_id: str,
        answers: Dict[str, str],
        profile: Profile,
        lang: str,
        fallback_jurisdiction: str = "Russia"
    ) -> Dict[str, Any]:
        gpt = self._require_gpt()
        scenario = scenario_prompts.get_scenario(scenario_id)
        if scenario is None:
            raise ValidationError(f"Unknown scenario: {scenario_id}", field="scenarioId", value=scenario_id)

        steps = {step.id: step for step in scenario.steps}
        answer_lines = "\n".join(
            f"- {steps[key].question if key in steps else key}: {value}" for key, value in answers.items()
        )
        prompt = self.prompt_manager.get_prompt(
            PromptType.SCENARIO_ANALYSIS,
            title=scenario.title_for(lang),
            jurisdiction=profile.jurisdiction or fallback_jurisdiction,
            scenario_id=scenario.id,
            answers=answer_lines,
            language_name=self.language_name(lang)
        )
        raw = await gpt.complete(
            prompt,
            system_prompt=self.prompt_manager.get_prompt(PromptType.SUMMARY_SYSTEM),
            temperature=self._summary_temperature
        )
        return self.parse_analysis(raw, lang)

    def build_system_prompt(self, profile: Profile, diagnostic_data: Dict[str, str], lang: str) -> str:
        financial = profile.financial_data or diagnostic_data
        return self.prompt_manager.get_prompt(
            PromptType.ADVISOR_SYSTEM,
            jurisdiction=profile.jurisdiction or "Unknown",
            consent="Granted" if profile.has_consent else "Not Granted",
            financial_profile=self.describe_answers(financial, lang) or "Not provided",
            language_name=self.language_name(lang)
        )

    async def stream_reply(
        self,
        history: Sequence[Message],
        user_input: str,
        profile: Profile,
        diagnostic_data: Dict[str, str],
        lang: str,
        on_token: Optional[TokenCallback] = None
    ) -> str:
        """
        Free-chat reply over the whole transcript, streamed token by token.

        Raises:
            GPTServiceError: If generation fails or produces nothing
        """
        gpt = self._require_gpt()
        messages = [{"role": "system", "content": self.build_system_prompt(profile, diagnostic_data, lang)}]
        messages.extend(m.to_llm() for m in history)
        messages.append({"role": "user", "content": user_input})

        chunks: List[str] = []
        async for token in gpt.stream_chat(messages):
            chunks.append(token)
            if on_token is not None:
                on_token(token)

        reply = "".join(chunks).strip()
        if not reply:
            raise GPTServiceError("Empty reply from model", operation="stream_reply")
        return reply

    async def analyze_document(self, name: str, url: str, lang: str) -> Dict[str, Any]:
        """
        Extract type, entities and a short summary from a document image.

        Raises:
            GPTServiceError: If generation fails or returns no JSON object
        """
        gpt = self._require_gpt()
        prompt = self.prompt_manager.get_prompt(
            PromptType.DOCUMENT_ANALYSIS, name=name, language_name=self.language_name(lang)
        )
        raw = await gpt.chat(
            [
                {"role": "system", "content": self.prompt_manager.get_prompt(PromptType.DOCUMENT_SYSTEM)},
                {"role": "user", "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": url}},
                ]},
            ],
            temperature=0.2
        )

        match = JSON_OBJECT_PATTERN.search(raw)
        try:
            data = json.loads(match.group(0)) if match else None
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            raise GPTServiceError("Document analysis returned no JSON object", operation="analyze_document",
                                  details={"response": raw[:200]})

        entities = data.get("extracted_entities")
        return {
            "document_type": str(data.get("document_type") or "unknown"),
            "extracted_entities": entities if isinstance(entities, dict) else {},
            "summary": str(data.get("summary") or "").strip(),
        }
