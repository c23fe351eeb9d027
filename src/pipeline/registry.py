# src/pipeline/registry.py — v3
"""Agent registry — loading and lookup of pipeline steps.

Populated once (idempotent initialize) from the AGENT_REGISTRY config or an
explicit agent list, then read-only: concurrent pipeline runs read it
without synchronization.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Iterable

from callagents.config.agents import AGENT_REGISTRY
from callagents.core.errors import RegistryError
from callagents.pipeline.plugin_kit.base_agent import BaseAgent

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Registry of all available pipeline steps, keyed by step name."""

    def __init__(self) -> None:
        self._agents: dict[str, BaseAgent] = {}
        self._initialized = False

    @property
    def agents(self) -> dict[str, BaseAgent]:
        """Return mapping of step name -> agent instance."""
        return dict(self._agents)

    @property
    def agent_names(self) -> list[str]:
        """Return sorted list of registered step names."""
        return sorted(self._agents.keys())

    @property
    def initialized(self) -> bool:
        return self._initialized

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def initialize(self, agents: Iterable[BaseAgent] | None = None) -> None:
        """Populate the registry once; later calls are no-ops.

        Args:
            agents: Agent instances to register. Defaults to the built-in
                steps listed in AGENT_REGISTRY.

        Raises:
            RegistryError: If a built-in class path cannot be loaded.
        """
        if self._initialized:
            logger.debug("Registry already initialized, skipping")
            return

        if agents is None:
            agents = [_import_agent(path) for path in AGENT_REGISTRY]
        for agent in agents:
            self.register(agent)
        self._initialized = True

        logger.info("Registry initialized with %d agents", len(self._agents))
        for error in self.validate_dependencies():
            logger.warning("Registry dependency issue: %s", error)

    def register(self, agent: BaseAgent) -> None:
        """Register an agent instance; a duplicate name replaces the prior entry.

        Raises:
            RegistryError: If the registry is already initialized.
        """
        if self._initialized:
            raise RegistryError(
                f"Cannot register '{agent.name}': registry is read-only after initialization"
            )
        if agent.name in self._agents:
            logger.warning("Overwriting existing agent: %s", agent.name)
        self._agents[agent.name] = agent
        logger.debug("Registered agent: %s v%s", agent.name, agent.version)

    def get(self, name: str) -> BaseAgent | None:
        """Get agent by name, or None if not registered."""
        return self._agents.get(name)

    def get_or_raise(self, name: str) -> BaseAgent:
        """Get agent by name, raise if not found."""
        agent = self._agents.get(name)
        if agent is None:
            raise RegistryError(f"Agent '{name}' not found in registry")
        return agent

    def validate_dependencies(self) -> list[str]:
        """Validate that all agent dependencies are satisfiable.

        Returns:
            List of error messages (empty if valid).
        """
        errors: list[str] = []
        for name, agent in self._agents.items():
            for dep in agent.dependencies:
                if dep not in self._agents:
                    errors.append(
                        f"Agent '{name}' depends on '{dep}' which is not registered"
                    )
        return errors

    def get_dependency_map(self) -> dict[str, list[str]]:
        """Return step name -> list of dependency names."""
        return {
            name: list(agent.dependencies)
            for name, agent in self._agents.items()
        }


def build_default_registry() -> AgentRegistry:
    """Registry initialized with the built-in steps."""
    registry = AgentRegistry()
    registry.initialize()
    return registry


def _import_agent(class_path: str) -> BaseAgent:
    """Import and instantiate an agent from a dotted class path.

    Args:
        class_path: e.g. 'callagents.pipeline.agents.foundation.ClassificationAgent'

    Returns:
        Instantiated BaseAgent subclass.
    """
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise RegistryError(f"Invalid class path: {class_path}")
    module_path, class_name = parts

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")

    if not isinstance(cls, type) or not issubclass(cls, BaseAgent):
        raise RegistryError(f"{class_path} is not a BaseAgent subclass")

    return cls()
