"""
Project orientation — detect coarse workspace facts once per session.

Reads manifest files (package.json, requirements.txt, pyproject.toml,
pom.xml, go.mod, Cargo.toml) to infer languages, frameworks and declared
dependencies, then probes the vector store with fixed indicator queries to
spot common architectural patterns and the dominant naming convention.

The resulting :class:`ProjectContext` is built once and never refreshed
automatically.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
import tomllib
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .local.vector_store import LocalVectorStore, VectorSearchResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Detection tables
# ---------------------------------------------------------------------------

_JS_FRAMEWORKS: list[tuple[tuple[str, ...], str]] = [
    (("react",), "React"),
    (("vue",), "Vue"),
    (("angular", "@angular/core"), "Angular"),
    (("express",), "Express"),
    (("next",), "Next.js"),
]

_PY_FRAMEWORKS: list[tuple[str, str]] = [
    ("django", "Django"),
    ("flask", "Flask"),
    ("fastapi", "FastAPI"),
]

_ARCHITECTURAL_PATTERNS: list[tuple[str, list[str]]] = [
    ("MVC", ["controllers/", "models/", "views/", "Controller.", "Model.", "View."]),
    ("Repository Pattern", ["repository/", "repositories/", "Repository.", "Repo."]),
    ("Service Layer", ["services/", "service/", "Service.", "Manager."]),
    ("Factory Pattern", ["factory/", "factories/", "Factory.", "Creator."]),
]

PATTERN_PROBE_K = 5

_REQ_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(.*)$")
_CAMEL_RE = re.compile(r"^[a-z][a-z0-9]*[A-Z]")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ArchitecturalPattern:
    name: str
    description: str
    examples: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)


@dataclass
class CodingConvention:
    rule: str
    description: str
    examples: list[str] = field(default_factory=list)


@dataclass
class Dependency:
    name: str
    version: str = "latest"
    type: str = "production"        # "production" | "development"
    usage: list[str] = field(default_factory=list)


@dataclass
class ProjectContext:
    """Coarse facts about one workspace."""

    project_path: str = ""
    language: list[str] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)
    patterns: list[ArchitecturalPattern] = field(default_factory=list)
    conventions: list[CodingConvention] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "projectPath": self.project_path,
            "language": list(self.language),
            "frameworks": list(self.frameworks),
            "patterns": [asdict(p) for p in self.patterns],
            "conventions": [asdict(c) for c in self.conventions],
            "dependencies": [asdict(d) for d in self.dependencies],
        }

    def format_for_prompt(self) -> str:
        """Short header block describing the project."""
        lines = [
            "=== PROJECT CONTEXT ===",
            f"Languages: {', '.join(self.language)}",
            f"Frameworks: {', '.join(self.frameworks)}",
        ]
        if self.patterns:
            lines.append(f"Patterns: {', '.join(p.name for p in self.patterns)}")
        if self.conventions:
            lines.append(
                f"Conventions: {', '.join(c.rule for c in self.conventions)}"
            )
        lines.append("")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# ProjectOrientation
# ---------------------------------------------------------------------------

class ProjectOrientation:
    """Build a :class:`ProjectContext` from manifests and the vector store.

    Parameters
    ----------
    project_root:
        Workspace root directory.
    vector_store:
        Initialised store used for pattern probing; may be ``None``.
    filter_indicators:
        Count a search hit only when the indicator text occurs in the chunk,
        and skip probing an empty store.  When false every hit counts and
        the indicator queries always run.
    """

    def __init__(
        self,
        project_root: str,
        vector_store: Optional["LocalVectorStore"] = None,
        filter_indicators: bool = True,
    ) -> None:
        self._root = os.path.abspath(project_root)
        self._store = vector_store
        self._filter_indicators = filter_indicators
        self._context: Optional[ProjectContext] = None

    def get_context(self) -> ProjectContext:
        """Return the project context, building it on first call."""
        if self._context is None:
            t0 = time.perf_counter()
            self._context = self._build_context()
            elapsed_ms = (time.perf_counter() - t0) * 1000
            logger.debug(
                "[ProjectOrientation] Context built in %.1fms: "
                "languages=%s frameworks=%s patterns=%s",
                elapsed_ms,
                self._context.language,
                self._context.frameworks,
                [p.name for p in self._context.patterns],
            )
        return self._context

    def _build_context(self) -> ProjectContext:
        ctx = ProjectContext(project_path=self._root)
        self._detect_node(ctx)
        self._detect_python(ctx)
        self._detect_java(ctx)
        self._detect_go(ctx)
        self._detect_rust(ctx)

        if self._store is not None and (
            len(self._store) > 0 or not self._filter_indicators
        ):
            self._detect_patterns(ctx)
            self._detect_conventions(ctx)
        return ctx

    # ------------------------------------------------------------------
    # Manifest detection
    # ------------------------------------------------------------------

    def _detect_node(self, ctx: ProjectContext) -> None:
        pkg = self._read_json("package.json")
        if pkg is None:
            return
        _add_unique(ctx.language, "javascript")
        _add_unique(ctx.language, "typescript")

        prod = pkg.get("dependencies") or {}
        dev = pkg.get("devDependencies") or {}
        deps = {**prod, **dev}

        for names, framework in _JS_FRAMEWORKS:
            if any(n in deps for n in names):
                _add_unique(ctx.frameworks, framework)

        for name, version in deps.items():
            ctx.dependencies.append(Dependency(
                name=name,
                version=str(version),
                type="production" if name in prod else "development",
            ))

    def _detect_python(self, ctx: ProjectContext) -> None:
        reqs = self._read_text("requirements.txt")
        if reqs is not None:
            _add_unique(ctx.language, "python")
            for line in reqs.splitlines():
                if not line.strip() or line.startswith("#"):
                    continue
                name, _, version = line.partition("==")
                name = name.strip()
                if not name:
                    continue
                ctx.dependencies.append(Dependency(
                    name=name, version=version.strip() or "latest",
                ))
                self._match_python_framework(ctx, name)

        pyproject = self._read_toml("pyproject.toml")
        if pyproject is not None:
            _add_unique(ctx.language, "python")
            project = pyproject.get("project") or {}
            for requirement in project.get("dependencies") or []:
                m = _REQ_NAME_RE.match(str(requirement))
                if not m:
                    continue
                name, version = m.group(1), m.group(2).split(";")[0].strip()
                ctx.dependencies.append(Dependency(
                    name=name, version=version or "latest",
                ))
                self._match_python_framework(ctx, name)

    @staticmethod
    def _match_python_framework(ctx: ProjectContext, name: str) -> None:
        lowered = name.lower()
        for needle, framework in _PY_FRAMEWORKS:
            if needle in lowered:
                _add_unique(ctx.frameworks, framework)

    def _detect_java(self, ctx: ProjectContext) -> None:
        if self._file_exists("pom.xml"):
            _add_unique(ctx.language, "java")
            _add_unique(ctx.frameworks, "Maven")

    def _detect_go(self, ctx: ProjectContext) -> None:
        text = self._read_text("go.mod")
        if text is None:
            return
        _add_unique(ctx.language, "go")
        in_block = False
        for raw in text.splitlines():
            line = raw.split("//")[0].strip()
            if line.startswith("require ("):
                in_block = True
                continue
            if in_block and line == ")":
                in_block = False
                continue
            if line.startswith("require "):
                line = line[len("require "):].strip()
            elif not in_block:
                continue
            parts = line.split()
            if len(parts) >= 2:
                ctx.dependencies.append(Dependency(name=parts[0], version=parts[1]))

    def _detect_rust(self, ctx: ProjectContext) -> None:
        cargo = self._read_toml("Cargo.toml")
        if cargo is None:
            return
        _add_unique(ctx.language, "rust")
        for section, dep_type in (
            ("dependencies", "production"),
            ("dev-dependencies", "development"),
        ):
            for name, spec in (cargo.get(section) or {}).items():
                if isinstance(spec, dict):
                    version = str(spec.get("version", "latest"))
                else:
                    version = str(spec)
                ctx.dependencies.append(
                    Dependency(name=name, version=version, type=dep_type)
                )

    # ------------------------------------------------------------------
    # Store probing
    # ------------------------------------------------------------------

    def _detect_patterns(self, ctx: ProjectContext) -> None:
        for name, indicators in _ARCHITECTURAL_PATTERNS:
            hits = self._search_indicators(indicators)
            if not hits:
                continue
            locations = [r.chunk.filepath for r in hits]
            ctx.patterns.append(ArchitecturalPattern(
                name=name,
                description=f"{name} pattern detected in the codebase",
                examples=locations[:3],
                locations=locations,
            ))

    def _search_indicators(self, indicators: list[str]) -> list["VectorSearchResult"]:
        """Search each indicator and dedupe hits by id.

        With indicator filtering on, only hits that mention the indicator
        are kept.
        """
        seen: set[str] = set()
        hits: list["VectorSearchResult"] = []
        for indicator in indicators:
            needle = indicator.lower()
            for result in self._store.search(indicator, PATTERN_PROBE_K):
                chunk = result.chunk
                if chunk.id in seen:
                    continue
                if self._filter_indicators:
                    haystack = f"{chunk.filepath}\n{chunk.name}\n{chunk.content}".lower()
                    if needle not in haystack:
                        continue
                seen.add(chunk.id)
                hits.append(result)
        return hits

    def _detect_conventions(self, ctx: ProjectContext) -> None:
        """Record the dominant function naming style, if any."""
        styles: Counter = Counter()
        examples: dict[str, list[str]] = {}
        for chunk in self._store.all_chunks():
            if chunk.type not in ("function", "method"):
                continue
            style = _naming_style(chunk.name)
            if style is None:
                continue
            styles[style] += 1
            examples.setdefault(style, []).append(chunk.name)
        if not styles:
            return
        style, count = styles.most_common(1)[0]
        ctx.conventions.append(CodingConvention(
            rule=f"{style} function names",
            description=(
                f"{count} of {sum(styles.values())} functions and methods "
                f"use {style}"
            ),
            examples=examples[style][:3],
        ))

    # ------------------------------------------------------------------
    # Filesystem helpers
    # ------------------------------------------------------------------

    def _file_exists(self, rel_path: str) -> bool:
        return os.path.isfile(os.path.join(self._root, rel_path))

    def _read_text(self, rel_path: str) -> Optional[str]:
        """Read a text file relative to project root."""
        full = os.path.join(self._root, rel_path)
        if not os.path.isfile(full):
            return None
        try:
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as exc:
            logger.warning("[ProjectOrientation] Could not read %s: %s", rel_path, exc)
            return None

    def _read_json(self, rel_path: str) -> Optional[dict]:
        text = self._read_text(rel_path)
        if text is None:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("[ProjectOrientation] Malformed %s: %s", rel_path, exc)
            return None
        return data if isinstance(data, dict) else None

    def _read_toml(self, rel_path: str) -> Optional[dict]:
        text = self._read_text(rel_path)
        if text is None:
            return None
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            logger.warning("[ProjectOrientation] Malformed %s: %s", rel_path, exc)
            return None


def _add_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def _naming_style(name: str) -> Optional[str]:
    if "_" in name.strip("_") and name == name.lower():
        return "snake_case"
    if _CAMEL_RE.match(name):
        return "camelCase"
    return None
