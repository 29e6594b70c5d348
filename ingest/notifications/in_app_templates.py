"""In-app notification copy keyed by notification type."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class InAppTemplate:
  """Title and body copy with {{name}} placeholders."""

  title: str
  body: str

  @property
  def placeholders(self) -> frozenset[str]:
    return frozenset(_PLACEHOLDER.findall(self.title) + _PLACEHOLDER.findall(self.body))

  def render(self, data: dict[str, Any]) -> tuple[str, str]:
    def _substitute(match: re.Match[str]) -> str:
      return str(data[match.group(1)])

    return _PLACEHOLDER.sub(_substitute, self.title), _PLACEHOLDER.sub(_substitute, self.body)


TEMPLATES: dict[str, InAppTemplate] = {
  "assignment/ready_for_review": InAppTemplate(
    title="Assignment ready for review",
    body="All questions for {{assignmentTitle}} have been generated and are ready for your review.",
  ),
}


def render_in_app_template(*, template_id: str, data: dict[str, Any]) -> tuple[str, str]:
  """Render the title and body for a notification type.

  Raises ValueError for unknown types or when the data lacks a placeholder value.
  """
  template = TEMPLATES.get(template_id)
  if template is None:
    raise ValueError(f"Unknown in-app template: {template_id}")
  missing = sorted(name for name in template.placeholders if data.get(name) in (None, ""))
  if missing:
    raise ValueError(f"Missing placeholders for template '{template_id}': {', '.join(missing)}")
  return template.render(data)
