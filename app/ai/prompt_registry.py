"""
QA Tracking Dashboard
Prompt templates.

One YAML file per template in ``app/ai/prompts/``:

    name: qa_insights
    version: v1
    description: ...
    system: |
      ... {{platform_context}} ...
    user: |
      ... {{requirements_text}} ...

``render`` substitutes ``{{var}}`` placeholders and returns chat messages.
A placeholder without a value is left in place and logged, so a prompt
change that adds a variable shows up in the logs instead of failing the
request.
"""

import logging
import re
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"
PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class PromptTemplate:
    def __init__(self, name: str, version: str, system: str, user: str, description: str = ""):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description

    @property
    def variables(self) -> list[str]:
        """Placeholder names in first-use order."""
        seen = {}
        for text in (self.system, self.user):
            for key in PLACEHOLDER.findall(text):
                seen.setdefault(key, None)
        return list(seen)

    def render(self, **values) -> list[dict]:
        missing = [v for v in self.variables if v not in values]
        if missing:
            logger.warning("Prompt %s/%s rendered without %s", self.name, self.version, missing)

        def fill(text):
            return PLACEHOLDER.sub(lambda m: str(values.get(m.group(1), m.group(0))), text)

        messages = []
        for role, text in (("system", self.system), ("user", self.user)):
            content = fill(text)
            if content.strip():
                messages.append({"role": role, "content": content})
        return messages

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "variables": self.variables,
        }


class PromptRegistry:
    """Templates keyed by ``(name, version)``, loaded once at construction."""

    def __init__(self, prompts_dir: str | Path | None = None):
        self._templates: dict[tuple[str, str], PromptTemplate] = {}
        self.load(Path(prompts_dir) if prompts_dir else PROMPTS_DIR)

    def load(self, directory: Path) -> int:
        if not directory.is_dir():
            logger.warning("Prompt directory missing: %s", directory)
            return 0
        loaded = 0
        for path in sorted(directory.glob("*.yaml")):
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                logger.warning("Skipping prompt file without a mapping: %s", path.name)
                continue
            tpl = PromptTemplate(
                name=data.get("name", path.stem),
                version=str(data.get("version", "v1")),
                system=data.get("system", ""),
                user=data.get("user", ""),
                description=data.get("description", ""),
            )
            self._templates[(tpl.name, tpl.version)] = tpl
            loaded += 1
        logger.debug("Loaded %d prompt templates from %s", loaded, directory)
        return loaded

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get((name, version))

    def render(self, name: str, version: str = "v1", **values) -> list[dict]:
        """Raises KeyError for an unknown template."""
        tpl = self.get(name, version)
        if tpl is None:
            raise KeyError(f"Prompt template not found: {name} {version}")
        return tpl.render(**values)

    def list_templates(self) -> list[dict]:
        return [tpl.to_dict() for _, tpl in sorted(self._templates.items())]
