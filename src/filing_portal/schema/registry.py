"""Schema registry.

Loads one schema per (year, kind) from ``definitions/<year>/<kind>.json``,
checks it for cyclic conditional references and caches it. Unknown years
fall back to the default year.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from filing_portal.domain.aggregates import FilingKind
from filing_portal.domain.exceptions import SchemaCycleError, SchemaError

from .models import Schema

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"

_WHITE, _GREY, _BLACK = 0, 1, 2


def find_condition_cycle(schema: Schema) -> Optional[List[str]]:
    """
    Look for a loop in the "is shown depending on" graph of a schema.

    Each question points at the answer keys its conditional and
    conditional-required clauses read, and at the keys its section's gate
    reads. Repeater sub-fields point at keys of their own item and are
    checked per repeater.

    Returns:
        The keys forming the loop (first key repeated at the end), or None.
    """
    graph: Dict[str, List[str]] = {}
    for question in schema.iter_questions():
        graph.setdefault(question.name, []).extend(_dependencies(question))
        if question.is_repeater:
            sub_graph: Dict[str, List[str]] = {}
            for sub in question.fields:
                sub_graph.setdefault(sub.name, []).extend(_dependencies(sub))
            cycle = _find_cycle(sub_graph)
            if cycle:
                return [f"{question.name}.{key}" for key in cycle]

    for section in schema.sections:
        if section.conditional is None:
            continue
        gate = section.conditional.references()
        for question in section.questions:
            graph.setdefault(question.name, []).extend(gate)
    return _find_cycle(graph)


def _dependencies(question) -> List[str]:
    deps: List[str] = []
    if question.conditional:
        deps.extend(question.conditional.references())
    if question.validation.conditional_required:
        deps.extend(question.validation.conditional_required.references())
    return deps


def _find_cycle(graph: Dict[str, List[str]]) -> Optional[List[str]]:
    color = {node: _WHITE for node in graph}
    stack: List[str] = []

    def visit(node: str) -> Optional[List[str]]:
        color[node] = _GREY
        stack.append(node)
        for dep in graph.get(node, []):
            state = color.get(dep, _WHITE)
            if state == _GREY:
                return stack[stack.index(dep):] + [dep]
            if state == _WHITE and dep in graph:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[node] = _BLACK
        return None

    for node in list(graph):
        if color[node] == _WHITE:
            found = visit(node)
            if found:
                return found
    return None


class SchemaRegistry:
    """
    Pure lookup of immutable schemas.

    Usage:
        registry = SchemaRegistry()
        schema = registry.get_schema(2025, FilingKind.INDIVIDUAL)
    """

    def __init__(self, definitions_dir: Optional[Path] = None, default_year: int = 2025):
        self.definitions_dir = Path(definitions_dir or DEFINITIONS_DIR)
        self.default_year = default_year
        self._cache: Dict[Tuple[int, str], Schema] = {}

    def get_schema(self, year: Optional[int], kind: FilingKind) -> Schema:
        """
        Get the schema for a tax year and filing kind.

        Args:
            year: Tax year; None or an unknown year uses the default year
            kind: Filing kind

        Returns:
            The loaded schema

        Raises:
            SchemaError: If no definition exists even for the default year,
                or the definition is malformed or cyclic
        """
        kind_name = FilingKind(kind).value.lower()
        resolved_year = year if year is not None else self.default_year
        path = self._path(resolved_year, kind_name)
        if not path.exists():
            if resolved_year != self.default_year:
                logger.warning(
                    f"Configuration for {resolved_year} {kind_name} not found. "
                    f"Falling back to {self.default_year}."
                )
            resolved_year = self.default_year
            path = self._path(resolved_year, kind_name)

        cache_key = (resolved_year, kind_name)
        if cache_key not in self._cache:
            self._cache[cache_key] = self.load(path, resolved_year, kind_name)
        return self._cache[cache_key]

    def register(self, schema: Schema) -> None:
        """Register an in-memory schema, e.g. one built in a test."""
        self.validate(schema)
        self._cache[(schema.year, schema.kind.lower())] = schema

    def load(self, path: Path, year: int, kind: str) -> Schema:
        """Read, build and check one definition file."""
        if not path.exists():
            raise SchemaError(f"No schema definition for {year} {kind}")
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SchemaError(f"Schema {path.name} is not valid JSON: {e}") from e

        schema = Schema.from_dict(data, year=year, kind=kind)
        self.validate(schema)
        logger.info(f"Loaded schema {year}/{kind} with {len(schema.sections)} sections")
        return schema

    @staticmethod
    def validate(schema: Schema) -> None:
        """
        Reject schemas whose conditional references loop.

        Raises:
            SchemaCycleError: If a cycle is found
        """
        cycle = find_condition_cycle(schema)
        if cycle:
            logger.error(f"Schema {schema.year}/{schema.kind} rejected: cycle {cycle}")
            raise SchemaCycleError(cycle)

    def _path(self, year: int, kind_name: str) -> Path:
        return self.definitions_dir / str(year) / f"{kind_name}.json"


_registry: Optional[SchemaRegistry] = None


def get_schema_registry() -> SchemaRegistry:
    """Get the process wide schema registry."""
    global _registry
    if _registry is None:
        from filing_portal.config import get_settings
        _registry = SchemaRegistry(default_year=get_settings().wizard.default_tax_year)
    return _registry
