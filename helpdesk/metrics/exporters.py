"""Prometheus text exposition of the metrics registry."""
from __future__ import annotations

import logging
from typing import Mapping

from .registry import MetricsRegistry

logger = logging.getLogger(__name__)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_labels(labels: Mapping[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{name}="{_escape(value)}"' for name, value in labels.items()) + "}"


class PrometheusExporter:
    """Render every registered series in the text format scraped by Prometheus."""

    def __init__(self, registry: MetricsRegistry) -> None:
        self.registry = registry

    def build_payload(self) -> str:
        lines: list[str] = []
        for series in self.registry.series():
            description = series.definition.description.replace("\\", "\\\\").replace("\n", "\\n")
            lines.append(f"# HELP {series.name} {description}")
            lines.append(f"# TYPE {series.name} {series.kind.value}")
            for sample_name, labels, value in series.samples():
                lines.append(f"{sample_name}{_format_labels(labels)} {value!r}")
        return "\n".join(lines) + "\n"

    def export(self) -> str:
        payload = self.build_payload()
        logger.debug("Rendered %d metric series", len(self.registry.series()))
        return payload
