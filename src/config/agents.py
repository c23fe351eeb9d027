# src/config/agents.py — v2
"""Declarative agent registry configuration.

Lists the built-in extraction steps loaded by pipeline/registry.py.
Each entry is a fully qualified class path.
"""

from __future__ import annotations

AGENT_REGISTRY: list[str] = [
    # Classification + foundation
    "callagents.pipeline.agents.foundation.ClassificationAgent",
    "callagents.pipeline.agents.foundation.SpeakerIdentificationAgent",
    "callagents.pipeline.agents.foundation.TemporalResolutionAgent",
    "callagents.pipeline.agents.foundation.ReferenceResolutionAgent",
    # Call-type specific extraction
    "callagents.pipeline.agents.extraction.CarrierInformationAgent",
    "callagents.pipeline.agents.extraction.ShipperInformationAgent",
    "callagents.pipeline.agents.extraction.LoadExtractionAgent",
    "callagents.pipeline.agents.extraction.SimpleRateExtractionAgent",
    "callagents.pipeline.agents.extraction.RateNegotiationAgent",
    "callagents.pipeline.agents.extraction.ConditionalAgreementAgent",
    "callagents.pipeline.agents.extraction.AccessorialParserAgent",
    "callagents.pipeline.agents.extraction.ActionItemsAgent",
    # Post-processing
    "callagents.pipeline.agents.post_processing.ValidationAgent",
    "callagents.pipeline.agents.post_processing.SummaryAgent",
]

# Steps whose invocations are coalesced by the batching layer.
BATCHABLE_STEPS: frozenset[str] = frozenset({
    "classification",
    "speaker_identification",
    "load_extraction",
    "simple_rate_extraction",
})
