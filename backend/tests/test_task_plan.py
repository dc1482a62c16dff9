from __future__ import annotations

import pytest

from skillpath.models import parse_task_id
from skillpath.task_plan import (
    FALLBACK_SKILL,
    TaskPlanGenerator,
    build_resources,
    find_task,
    normalize_level,
    normalize_skills,
    official_doc_url,
)


def _skill_of(title: str, skills: list[str]) -> str:
    return next(skill for skill in skills if title.endswith(f" {skill}"))


def test_skills_cycle_by_day() -> None:
    skills = ["HTML", "CSS", "JS"]
    plans = TaskPlanGenerator().generate("web-development", skills, "beginner", 10)

    assert [plan.day for plan in plans] == list(range(1, 11))
    for plan in plans:
        assert len(plan.tasks) == 1
        task = plan.tasks[0]
        assert _skill_of(task.title, skills) == skills[(plan.day - 1) % 3]
    assert plans[3].tasks[0].title.endswith(" HTML")


def test_empty_skills_use_general_programming() -> None:
    plans = TaskPlanGenerator().generate("web-development", [], "beginner", 10)

    assert len(plans) == 10
    assert all(plan.tasks[0].title.endswith(FALLBACK_SKILL) for plan in plans)


def test_generation_is_deterministic() -> None:
    first = TaskPlanGenerator().generate("data-science", ["Python", "Pandas"], "intermediate", 7)
    second = TaskPlanGenerator().generate("data-science", ["Python", "Pandas"], "intermediate", 7)

    assert [plan.model_dump() for plan in first] == [plan.model_dump() for plan in second]


def test_task_ids_and_types_follow_day_position() -> None:
    plans = TaskPlanGenerator().generate("web-development", ["React"], "beginner", 9)

    assert [plan.tasks[0].id for plan in plans][:3] == ["day-1-task-0", "day-2-task-0", "day-3-task-0"]
    assert parse_task_id(plans[8].tasks[0].id) == (9, 0)
    # Eight beginner task types, so day 9 wraps back to the first one.
    assert plans[0].tasks[0].title == "Read documentation about React"
    assert plans[8].tasks[0].title == plans[0].tasks[0].title
    assert plans[0].theme == "Getting Started"
    assert plans[0].title == "Day 1: Getting Started"
    assert plans[0].tasks[0].estimated_time == "2-3 hours"


@pytest.mark.parametrize(
    ("level", "expected"),
    [("beginner", 7), ("intermediate", 8), ("professional", 9)],
)
def test_resource_count_depends_on_level(level: str, expected: int) -> None:
    resources = build_resources("Python", level)  # type: ignore[arg-type]

    assert len(resources) == expected
    assert resources[0].type == "documentation"
    assert resources[0].url == "https://docs.python.org/3/"


def test_official_documentation_lookup() -> None:
    assert official_doc_url("HTML") == "https://developer.mozilla.org/en-US/docs/Web/HTML"
    assert official_doc_url("React Hooks") == "https://react.dev/learn"
    assert official_doc_url("Quantum Basket Weaving") == (
        "https://www.google.com/search?q=Quantum+Basket+Weaving+official+documentation"
    )


def test_malformed_skill_payloads_are_normalized() -> None:
    assert normalize_skills("web-development", ["", "undefined", "null", "  "]) == [FALLBACK_SKILL]
    assert normalize_skills("web-development", [{"name": "Go"}, "Rust", 42]) == ["Go", "Rust"]
    assert normalize_skills("web-development", "Elixir") == ["Elixir"]
    assert normalize_skills("web-development", {"skills": ["SQL"]}) == ["SQL"]
    assert normalize_skills("cloud-computing", None) == ["AWS", "Docker", "Kubernetes"]
    assert normalize_skills("unknown-domain", None) == ["HTML/CSS", "JavaScript", "React"]


def test_level_normalization_falls_back_to_beginner() -> None:
    assert normalize_level("Professional") == "professional"
    assert normalize_level({"id": "intermediate"}) == "intermediate"
    assert normalize_level("advanced") == "beginner"
    assert normalize_level(None) == "beginner"


def test_zero_duration_yields_no_plans_and_negative_is_rejected() -> None:
    generator = TaskPlanGenerator()

    assert generator.generate("web-development", ["HTML"], "beginner", 0) == []
    with pytest.raises(ValueError):
        generator.generate("web-development", ["HTML"], "beginner", -1)


def test_default_duration_and_find_task() -> None:
    plans = TaskPlanGenerator(default_duration=4).generate("web-development", ["CSS"])

    assert len(plans) == 4
    task = find_task(plans, "day-2-task-0")
    assert task is not None
    assert task.link_ids()[0] == "day-2-task-0-link-0"
    assert find_task(plans, "day-9-task-0") is None
