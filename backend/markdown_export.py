# markdown_export.py — PRD rendering as a Markdown document
from typing import Dict, Iterable, Sequence

from models import StoryStatus

STATUS_EMOJI = {
    StoryStatus.DRAFT: "📝",
    StoryStatus.APPROVED: "✅",
    StoryStatus.IN_PROGRESS: "🔄",
    StoryStatus.PASSED: "✓",
    StoryStatus.BLOCKED: "🚫",
}


def task_item(description: str, passed: bool) -> str:
    return f"- {'[x]' if passed else '[ ]'} {description}"


def render_prd(project, stories: Iterable, criteria_by_story: Dict[str, Sequence]) -> str:
    """Project header, then one ``###`` section per story in priority order.

    Criteria render as task-list items whose box mirrors ``passed``.
    """
    lines = [
        f"# {project.name}",
        "",
        f"**Goal:** {project.goal}",
        "",
        f"**Tech Stack:** {', '.join(project.tech_stack or [])}",
        "",
        "---",
        "",
        "## Stories",
        "",
    ]
    for story in sorted(stories, key=lambda s: s.priority):
        status = StoryStatus(story.status)
        lines += [
            f"### {STATUS_EMOJI.get(status, '•')} Story {story.priority}: {story.title}",
            "",
            story.description,
            "",
            f"**Status:** {status.value}",
            "",
            "**Acceptance Criteria:**",
        ]
        lines += [task_item(c.description, c.passed) for c in criteria_by_story.get(story.id, [])]
        lines.append("")
    return "\n".join(lines) + "\n"
