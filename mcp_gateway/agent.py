"""Prompt-driven orchestration across providers.

``GatewayAgent`` turns a free-form prompt into a sequence of provider tool
calls. The choice of providers and tools is delegated to a ``Planner``
supplied by the embedding application (typically backed by a language
model); this module only gates on authentication, aggregates tool
catalogs, and executes the planned steps in order.

Tools are presented to the planner namespaced as ``provider.tool``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.capabilities import CapabilityGate, ProviderStatus
from mcp_gateway.gateway.client import ProtocolSessionGateway
from mcp_gateway.gateway.codec import to_descriptors
from mcp_gateway.utils.errors import (
    AuthorizationRequiredError,
    PlanningError,
    ProviderNotFoundError,
)

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = "."


class AggregatedTool(BaseModel):
    """A provider tool presented to the planner under a namespaced name."""

    model_config = ConfigDict(populate_by_name=True)

    provider_id: str = Field(..., alias="providerId")
    name: str = Field(..., description="Namespaced name, provider.tool")
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class PlannedStep(BaseModel):
    """One tool invocation chosen by the planner."""

    name: str = Field(..., description="Namespaced tool name, provider.tool")
    arguments: dict[str, Any] = Field(default_factory=dict)


class StepResult(BaseModel):
    """Result of one executed step."""

    model_config = ConfigDict(populate_by_name=True)

    provider_id: str = Field(..., alias="providerId")
    tool: str
    result: dict[str, Any]


class Planner(Protocol):
    """Chooses providers and tools for a prompt."""

    def select_providers(
        self, prompt: str, statuses: Sequence[ProviderStatus]
    ) -> list[str] | None:
        """Pick the provider IDs relevant to the prompt."""
        ...

    def plan(self, prompt: str, tools: Sequence[AggregatedTool]) -> list[PlannedStep]:
        """Pick the ordered tool invocations that fulfil the prompt."""
        ...


def split_tool_name(name: str) -> tuple[str, str] | None:
    """Split ``provider.tool`` into its parts, or None if either is empty."""
    provider_id, _, tool_name = name.partition(NAMESPACE_SEPARATOR)
    if not provider_id or not tool_name:
        return None
    return provider_id, tool_name


class GatewayAgent:
    """Executes prompts by planning and running provider tool calls.

    Example:
        >>> agent = GatewayAgent(providers, gate, sessions, planner)
        >>> results = agent.execute("list my open issues", "alice")
        >>> results[0].tool
        'list_issues'
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        gate: CapabilityGate,
        sessions: ProtocolSessionGateway,
        planner: Planner,
    ) -> None:
        self._providers = providers
        self._gate = gate
        self._sessions = sessions
        self._planner = planner

    def aggregate_tools(
        self, provider_ids: Sequence[str], user_id: str, timeout: float | None = None
    ) -> list[AggregatedTool]:
        """Collect the tool catalogs of several providers under namespaced names."""
        aggregated: list[AggregatedTool] = []
        for provider_id in provider_ids:
            provider = self._providers.get(provider_id)
            if provider is None:
                continue
            raw_tools = self._sessions.get_provider_tools(provider, user_id, timeout=timeout)
            for tool in to_descriptors(raw_tools):
                aggregated.append(
                    AggregatedTool(
                        provider_id=provider_id,
                        name=f"{provider_id}{NAMESPACE_SEPARATOR}{tool.name}",
                        description=tool.description,
                        input_schema=tool.input_schema,
                    )
                )
        return aggregated

    def execute(
        self,
        prompt: str,
        user_id: str,
        timeout: float | None = None,
        provider_id: str | None = None,
    ) -> list[StepResult]:
        """Plan and run the tool calls for a prompt.

        Args:
            prompt: Free-form user request.
            user_id: User on whose behalf tools are invoked.
            timeout: Request timeout override for each outbound call.
            provider_id: Pin the run to one provider. Provider selection is
                skipped and planned steps for other providers are dropped.

        Returns:
            One result per executed step, in plan order.

        Raises:
            ProviderNotFoundError: If ``provider_id`` is not configured.
            PlanningError: If the planner selects no providers or no tools.
            AuthorizationRequiredError: If a selected provider needs the user
                to authorize first; carries the authorization URLs.
            ToolCallError: If a provider rejects a planned call.
        """
        if provider_id is not None:
            if provider_id not in self._providers:
                raise ProviderNotFoundError(
                    f"Provider {provider_id} not found",
                    details={"provider_id": provider_id},
                )
            selected: list[str] | None = [provider_id]
        else:
            statuses = self._gate.provider_status(user_id, timeout=timeout)
            selected = self._planner.select_providers(prompt, statuses)
        if not selected:
            raise PlanningError("Could not determine which providers to use")

        signal = self._gate.check(user_id, selected, timeout=timeout)
        if signal is not None:
            raise AuthorizationRequiredError(
                "Authorization required for: " + ", ".join(sorted(signal.providers)),
                providers=signal.providers,
            )

        tools = self.aggregate_tools(selected, user_id, timeout=timeout)
        steps = self._planner.plan(prompt, tools)
        if not steps:
            raise PlanningError("Could not determine which tool(s) to use")

        results: list[StepResult] = []
        for step in steps:
            parts = split_tool_name(step.name)
            if parts is None:
                logger.warning("Skipping planned step with malformed name: %s", step.name)
                continue
            step_provider, tool_name = parts
            if step_provider not in selected:
                logger.warning("Skipping planned step outside selected providers: %s", step.name)
                continue
            result = self._sessions.execute_provider_tool(
                step_provider,
                tool_name,
                step.arguments,
                user_id,
                self._providers,
                timeout=timeout,
            )
            results.append(StepResult(provider_id=step_provider, tool=tool_name, result=result))

        logger.info("Executed %d planned step(s) for %s", len(results), user_id)
        return results


__all__ = [
    "AggregatedTool",
    "GatewayAgent",
    "NAMESPACE_SEPARATOR",
    "PlannedStep",
    "Planner",
    "StepResult",
    "split_tool_name",
]
