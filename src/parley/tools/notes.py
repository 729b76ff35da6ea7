"""
Research notes and research strategies used by the planner.

Notes are kept as JSON lines ``{"topic": ..., "facts": [...]}`` in a single file.  Strategies are a
small library of reusable research plans, JSON lines ``{"title": ..., "description": ...,
"steps": [...]}``, keyed by title.  The planner's checkpoints each get a small registry built from
these tools: searching is always available, saving notes and suggesting strategies is reserved for
the finishing checkpoint.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
)

from parley.core.schema import PlannerPhase
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)


def _read_lines(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    entries = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping malformed entry in %s", path)
    return entries


def _rank(
    query: str,
    entries: Iterable[Dict[str, Any]],
    text: Callable[[Dict[str, Any]], str],
    limit: int,
) -> List[Dict[str, Any]]:
    """Entries sharing at least one word with *query*, most overlapping first."""
    words = {w for w in query.lower().split() if w}
    scored = []
    for entry in entries:
        haystack = text(entry).lower()
        score = sum(1 for w in words if w in haystack)
        if score:
            scored.append((score, entry))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [entry for _, entry in scored[:limit]]


class NotesStore:
    """Append-only JSON-lines file of research notes."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def all(self) -> List[Dict[str, Any]]:
        return _read_lines(self.path)

    def save(self, topic: str, facts: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps({"topic": topic, "facts": list(facts)}, ensure_ascii=False) + "\n")

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Return notes sharing at least one word with *query*, most overlapping first."""
        return _rank(
            query,
            self.all(),
            lambda note: " ".join([note.get("topic", "")] + list(note.get("facts", []))),
            limit,
        )

    def reset(self) -> int:
        """Delete every note; returns how many were removed."""
        count = len(self.all())
        self.path.unlink(missing_ok=True)
        logger.info("Removed %d note(s) from %s", count, self.path)
        return count


def format_notes(notes: List[Dict[str, Any]]) -> str:
    """Render notes as markdown: one heading per topic followed by its facts."""
    sections = []
    for note in notes:
        facts = "\n".join(f"- {fact}" for fact in note.get("facts", []))
        sections.append(f"# {note.get('topic', '')}\n{facts}".rstrip())
    return "\n\n".join(sections)


class StrategiesStore:
    """Library of research strategies, one per title."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def all(self) -> List[Dict[str, Any]]:
        return _read_lines(self.path)

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        return _rank(
            query,
            self.all(),
            lambda s: " ".join(
                [s.get("title", ""), s.get("description", "")] + list(s.get("steps", []))
            ),
            limit,
        )

    def suggest(self, title: str, description: str, steps: List[str]) -> bool:
        """
        Add a strategy, or replace the one with the same title.

        Returns *True* when an existing strategy was replaced.
        """
        strategy = {"title": title, "description": description, "steps": list(steps)}
        strategies = self.all()
        replaced = False
        for i, existing in enumerate(strategies):
            if existing.get("title", "").lower() == title.lower():
                strategies[i] = strategy
                replaced = True
                break
        if not replaced:
            strategies.append(strategy)
        self._write(strategies)
        return replaced

    def _write(self, strategies: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".strategies-", suffix=".jsonl")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for strategy in strategies:
                    f.write(json.dumps(strategy, ensure_ascii=False) + "\n")
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def build_notes_registry(store: NotesStore) -> ToolRegistry:
    """Registry holding ``notes_search`` and ``notes_save`` bound to *store*."""
    registry = ToolRegistry()

    def _note_search(args: Mapping[str, Any]) -> tuple[str, str]:
        return "Searching prior research", str(args.get("query", ""))

    def _note_save(args: Mapping[str, Any]) -> tuple[str, str]:
        return "Saving research notes", str(args.get("topic", ""))

    @registry.register("notes_search", describe_request=_note_search)
    def notes_search(query: str) -> List[Dict[str, Any]]:
        """Search notes saved during prior research for facts relevant to *query*."""
        return store.search(query)

    @registry.register(
        "notes_save",
        parameters={
            "type": "object",
            "properties": {
                "topic": {"type": "string", "description": "Short topic heading"},
                "facts": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Facts learned about the topic",
                },
            },
            "required": ["topic", "facts"],
        },
        describe_request=_note_save,
    )
    def notes_save(topic: str, facts: List[str]) -> str:
        """Save facts learned during this research for future queries."""
        store.save(topic, facts)
        return f"Saved {len(facts)} fact(s) under '{topic}'"

    return registry


def build_strategies_registry(store: StrategiesStore) -> ToolRegistry:
    """Registry holding ``strategies_search`` and ``strategies_suggest`` bound to *store*."""
    registry = ToolRegistry()

    def _strategy_search(args: Mapping[str, Any]) -> tuple[str, str]:
        return "Searching research strategies", str(args.get("query", ""))

    def _strategy_suggest(args: Mapping[str, Any]) -> tuple[str, str]:
        return "Suggesting research strategy", str(args.get("title", ""))

    @registry.register("strategies_search", describe_request=_strategy_search)
    def strategies_search(query: str) -> List[Dict[str, Any]]:
        """Search the research strategy library for plans suited to *query*."""
        return store.search(query)

    @registry.register(
        "strategies_suggest",
        parameters={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Strategy title; reuse it to update"},
                "description": {
                    "type": "string",
                    "description": "Kinds of questions the strategy suits",
                },
                "steps": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Ordered research steps",
                },
            },
            "required": ["title", "description", "steps"],
        },
        describe_request=_strategy_suggest,
    )
    def strategies_suggest(title: str, description: str, steps: List[str]) -> str:
        """Add a new research strategy, or improve an existing one by reusing its title."""
        if store.suggest(title, description, steps):
            return f"Updated strategy '{title}'"
        return f"Added strategy '{title}'"

    return registry


def planner_registries(
    notes: NotesStore, strategies: StrategiesStore
) -> Dict[PlannerPhase, ToolRegistry]:
    """Per-checkpoint registries: search everywhere, save and suggest only when finishing."""
    tools = ToolRegistry(
        list(build_notes_registry(notes)) + list(build_strategies_registry(strategies))
    )
    return {
        PlannerPhase.INITIAL: tools.subset("notes_search", "strategies_search"),
        PlannerPhase.CHECKIN: tools.subset("notes_search", "strategies_search"),
        PlannerPhase.FINISH: tools.subset(
            "notes_search", "notes_save", "strategies_search", "strategies_suggest"
        ),
    }
