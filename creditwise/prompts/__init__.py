# creditwise/prompts/__init__.py
"""Prompts package - centralized prompt and question-bank data"""

# Import all prompt modules for PromptManager
from . import advisor_prompts
from . import diagnostic_prompts
from . import generation_prompts
from . import scenario_prompts

__all__ = [
    'advisor_prompts',
    'diagnostic_prompts',
    'generation_prompts',
    'scenario_prompts'
]
