"""
OpenAI-backed schedule repair planner.

Sends the repair prompt to a chat model in JSON mode and hands the answer to
``validate_repair_response``. The planner's output is never applied here; callers
only act on a response whose validation result is ok.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI
from pydantic import ValidationError

from therapy_scheduling import config
from therapy_scheduling.exceptions import RepairPlannerError
from therapy_scheduling.models.repair import RepairRequest, RepairResponse, ValidateRepairResult
from therapy_scheduling.services.scheduling.schedule_repair import (
    build_repair_prompt,
    validate_repair_response,
)

logger = logging.getLogger(__name__)


class RepairPlanner:
    """Asks an LLM for a repair patch"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = None,
        max_tokens: int = None,
        temperature: float = None,
    ):
        self.client = client or AsyncOpenAI(api_key=config.OPENAI_API_KEY)
        self.model = model or config.REPAIR_PLANNER_MODEL
        self.max_tokens = max_tokens or config.REPAIR_MAX_TOKENS
        self.temperature = config.REPAIR_TEMPERATURE if temperature is None else temperature

    async def _complete(self, request: RepairRequest) -> str:
        prompt = build_repair_prompt(request)

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": prompt.system_prompt},
                {"role": "user", "content": prompt.user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        content = response.choices[0].message.content
        if not content:
            raise RepairPlannerError("Repair planner returned an empty response")
        return content

    async def propose_raw(self, request: RepairRequest) -> Dict[str, Any]:
        """
        Get the planner's answer as raw JSON.

        Raises:
            RepairPlannerError: If the answer is not a JSON object
        """
        content = await self._complete(request)
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Repair planner returned invalid JSON for {request.meta.request_id}: {e}")
            raise RepairPlannerError(f"Repair planner returned invalid JSON: {e.msg}", raw_content=content)

        if not isinstance(data, dict):
            raise RepairPlannerError("Repair planner response must be a JSON object", raw_content=content)

        logger.info(
            f"Repair planner answered request {request.meta.request_id} "
            f"(iteration {request.meta.iteration}) with {len(data.get('patch') or [])} ops"
        )
        return data

    async def propose(self, request: RepairRequest) -> RepairResponse:
        """
        Get the planner's answer parsed as a RepairResponse.

        Raises:
            RepairPlannerError: If the answer does not match the response shape
        """
        data = await self.propose_raw(request)
        try:
            return RepairResponse.model_validate(data)
        except ValidationError as e:
            raise RepairPlannerError(f"Repair planner response has an invalid shape: {e.error_count()} errors")


async def repair_schedule(
    planner: RepairPlanner,
    request: RepairRequest,
) -> Tuple[Dict[str, Any], ValidateRepairResult]:
    """
    Ask the planner for a patch and validate it against the request.

    Returns:
        (raw planner JSON, validation result). Only apply the patch when
        ``result.ok`` is True.
    """
    raw = await planner.propose_raw(request)
    return raw, validate_repair_response(request, raw)
