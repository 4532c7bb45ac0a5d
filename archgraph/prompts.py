"""Load prompt templates from configuration."""

from .config import get_prompts

_PROMPTS = get_prompts()

FILE_ANALYST_SYSTEM = _PROMPTS["file_analyst_system"]
FILE_ANALYST_RETRY = _PROMPTS["file_analyst_retry"]
ARCHITECT_SYSTEM = _PROMPTS["architect_system"]
ARCHITECT_RETRY = _PROMPTS["architect_retry"]
FLOW_SYSTEM = _PROMPTS["flow_system"]
FLOW_RETRY = _PROMPTS["flow_retry"]
DOMAIN_SYSTEM = _PROMPTS["domain_system"]
DOMAIN_RETRY = _PROMPTS["domain_retry"]
