"""
Completion Provider
Requests a property report from OpenAI or Claude and returns the raw text
"""

import logging
from typing import Optional

import anthropic
from openai import OpenAI, OpenAIError

from settings import ApiConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Instructions for Comprehensive Property Appraisal, Planning Analysis, Development Assessment, "
    "and Feasibility Study: You are a seasoned, experienced property developer in the UK, with a "
    "qualification from MRICS as a Chartered Surveyor, as well as being a master builder. Your target "
    "is to create a min of 25% profit on cost per project. You will be provided with an address, and "
    "from this you are to prepare a detailed report."
)

# Headings and labels the report parser looks for
REPORT_LAYOUT = """Structure the report with these four numbered sections and labelled lines:

1. Executive Summary
Current Use Class:
Development Potential:
Planning Opportunities: (comma separated)
Planning Constraints: (comma separated)
Recommended Action:
Current Valuation:
Refurbishment Costs:
Gross Development Value:
Profit Margin:
ROI:
Investment Strategy:
Rationale:

2. Property Appraisal
Use Class: / Source: / Verification:
Market Value:
Value Uplift Potential:
Refurbishment Rates - Light Refurbishment: / Conversion: / New Build: / HMO Conversion:
Comparable Analysis - Recently Sold and Currently Listed, one property per line with
address, price, date, type, size in sq ft and a High/Medium/Low rating

3. Feasibility Study
Scenario 1: Light Refurbishment & Sell
Scenario 2: Extend & Convert
For each scenario: Acquisition Cost, Refurbishment Cost, Financing, Selling Costs,
Total Cost, Gross Development Value, Profit, Maximum Acquisition Price, Timeline
Risk Assessment: Market Risk, Planning Risk, Construction Risk, Finance Risk
Expected ROI, Risk-Adjusted ROI, Holding Period

4. Planning Opportunities
Permitted Development: Available / Restricted / Notes
Local Authority: Restrictions / Policies / Upcoming Changes
Extensions, Conversions, Change of Use: one per line as "Type: High/Medium/Low feasibility. Notes"

Use £ for all amounts."""


class CompletionError(Exception):
    """The provider request failed or returned no text"""


def build_user_prompt(address: str) -> str:
    return f"Create a comprehensive property analysis for this address: {address}\n\n{REPORT_LAYOUT}"


def complete(system_prompt: str, user_prompt: str, model: Optional[str] = None,
             max_tokens: Optional[int] = None, config: Optional[ApiConfig] = None) -> str:
    """
    Run one completion against the configured provider

    Args:
        system_prompt: Instructions for the model
        user_prompt: The request
        model: Model name; the config's active model when omitted
        max_tokens: Completion budget; the config's when omitted
        config: Provider settings; read from the environment when omitted

    Returns:
        Completion text

    Raises:
        CompletionError: when no key is configured or the provider call fails
    """
    config = config or ApiConfig.from_env()
    if not config.has_credential():
        raise CompletionError(f"No API key configured for {config.provider}")

    model = model or config.get_active_model()
    max_tokens = max_tokens or config.max_tokens

    if config.provider == "anthropic":
        text = complete_with_claude(system_prompt, user_prompt, model, max_tokens, config)
    else:
        text = complete_with_openai(system_prompt, user_prompt, model, max_tokens, config)

    if not text or not text.strip():
        raise CompletionError(f"{config.provider} returned an empty completion")

    logger.info(f"Received {len(text)} characters from {config.provider} ({model})")
    return text


def complete_with_claude(system_prompt: str, user_prompt: str, model: str,
                         max_tokens: int, config: ApiConfig) -> str:
    """Completion via the Anthropic messages API"""
    try:
        client = anthropic.Anthropic(api_key=config.api_key)

        response = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=config.temperature,
            system=system_prompt,
            messages=[
                {
                    "role": "user",
                    "content": user_prompt
                }
            ]
        )

        return "".join(block.text for block in response.content if getattr(block, "text", None))

    except anthropic.AnthropicError as e:
        logger.error(f"Claude API error: {e}")
        raise CompletionError(f"Claude API error: {str(e)}") from e


def complete_with_openai(system_prompt: str, user_prompt: str, model: str,
                         max_tokens: int, config: ApiConfig) -> str:
    """Completion via the OpenAI chat completions API"""
    try:
        client = OpenAI(api_key=config.api_key)

        response = client.chat.completions.create(
            model=model,
            messages=[
                {
                    "role": "system",
                    "content": system_prompt
                },
                {
                    "role": "user",
                    "content": user_prompt
                }
            ],
            max_tokens=max_tokens,
            temperature=config.temperature
        )

        return response.choices[0].message.content or ""

    except OpenAIError as e:
        logger.error(f"OpenAI API error: {e}")
        raise CompletionError(f"OpenAI API error: {str(e)}") from e
