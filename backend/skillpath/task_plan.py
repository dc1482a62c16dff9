"""Deterministic daily task plans derived from a domain, skill list and level.

Plans are regenerated from the learning path every time they are needed, so the
generator must stay pure: identical inputs always produce identical plans.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote_plus

from .models import DailyPlan, LearningLevel, Resource, Task, task_id_for

logger = logging.getLogger(__name__)

DEFAULT_DURATION_DAYS = 10
FALLBACK_SKILL = "General Programming"
DEFAULT_LEVEL: LearningLevel = "beginner"
ESTIMATED_TIME = "2-3 hours"

_IGNORED_SKILL_VALUES = {"", "undefined", "null", "none"}

DOMAIN_DEFAULT_SKILLS: Dict[str, Tuple[str, ...]] = {
    "ethical-hacking": ("Network Security", "Penetration Testing", "Vulnerability Assessment"),
    "web-development": ("HTML/CSS", "JavaScript", "React"),
    "data-science": ("Python", "Machine Learning", "Data Analysis"),
    "cybersecurity": ("Security Fundamentals", "Risk Assessment", "Incident Response"),
    "cloud-computing": ("AWS", "Docker", "Kubernetes"),
    "mobile-development": ("React Native", "iOS Development", "Android Development"),
}


@dataclass(frozen=True)
class _LevelTemplate:
    task_types: Tuple[str, ...]
    descriptions: Tuple[str, ...]
    themes: Tuple[str, ...]
    resources: Tuple[Tuple[str, str, str], ...]

    def description_for(self, task_type: str, skill: str) -> str:
        try:
            template = self.descriptions[self.task_types.index(task_type)]
        except ValueError:
            return f"Work on {skill} with focus on {task_type.lower()}."
        return template.format(skill=skill)


# Resource rows are (title template, url template, type tag). Templates receive
# ``skill`` (display name), ``query`` (url-encoded) and ``slug``.
_BASE_RESOURCES: Tuple[Tuple[str, str, str], ...] = (
    ("{skill} Tutorial Videos", "https://www.youtube.com/results?search_query={query}+tutorial+{level}", "video"),
    ("{skill} Practice Exercises", "https://www.codecademy.com/search?query={query}", "practice"),
    ("{skill} on MDN Web Docs", "https://developer.mozilla.org/en-US/search?q={query}", "reference"),
)

_LEVEL_LIBRARY: Dict[str, _LevelTemplate] = {
    "beginner": _LevelTemplate(
        task_types=(
            "Read documentation about",
            "Watch tutorial video on",
            "Complete coding exercise for",
            "Practice basic concepts of",
            "Build a simple project using",
            "Review and summarize",
            "Debug a sample problem in",
            "Create flashcards for",
        ),
        descriptions=(
            "Study the official documentation and basic concepts of {skill}. Focus on understanding the fundamentals.",
            "Find and watch a comprehensive tutorial video about {skill}. Take notes on key concepts.",
            "Complete 2-3 coding exercises that practice {skill}. Start with basic examples.",
            "Practice the core concepts of {skill} with hands-on examples.",
            "Create a small project that demonstrates your understanding of {skill}.",
            "Review what you've learned about {skill} and create a summary document.",
            "Practice debugging skills with sample problems related to {skill}.",
            "Create study flashcards for key concepts and terminology in {skill}.",
        ),
        themes=(
            "Getting Started",
            "Basic Concepts",
            "First Steps",
            "Foundation Building",
            "Core Principles",
            "Hands-on Practice",
            "Understanding Basics",
            "Simple Examples",
            "Building Blocks",
            "Essential Skills",
        ),
        resources=(
            ("{skill} Beginner Guide", "https://www.freecodecamp.org/news/search/?query={query}", "guide"),
            (
                "{skill} Basic Examples",
                "https://github.com/search?q={query}+examples+beginner&type=repositories",
                "examples",
            ),
            (
                "Learn {skill} Interactive",
                "https://www.khanacademy.org/search?search_again=1&page_search_query={query}",
                "interactive",
            ),
        ),
    ),
    "intermediate": _LevelTemplate(
        task_types=(
            "Implement advanced features for",
            "Build a medium-complexity project with",
            "Optimize code performance for",
            "Write unit tests for",
            "Refactor existing code using",
            "Research best practices for",
            "Create documentation for",
            "Code review exercise on",
        ),
        descriptions=(
            "Build more complex functionality using {skill}. Focus on intermediate patterns.",
            "Create a substantial project that showcases your {skill} abilities.",
            "Learn and apply performance optimization techniques for {skill}.",
            "Practice writing comprehensive unit tests for code using {skill}.",
            "Take existing code and refactor it to use {skill} best practices.",
            "Study industry best practices and design patterns for {skill}.",
            "Write comprehensive documentation for a {skill} project.",
            "Participate in code review exercises focusing on {skill} implementations.",
        ),
        themes=(
            "Advanced Concepts",
            "Real-world Application",
            "Best Practices",
            "Problem Solving",
            "Project Building",
            "Code Quality",
            "Performance Focus",
            "Integration Skills",
            "Testing Approach",
            "Optimization",
        ),
        resources=(
            ("Advanced {skill} Tutorials", "https://medium.com/search?q={query}+advanced", "tutorial"),
            (
                "{skill} Real-world Projects",
                "https://github.com/search?q={query}+project+intermediate&type=repositories",
                "project",
            ),
            ("{skill} Best Practices", "https://stackoverflow.com/questions/tagged/{slug}", "community"),
            ("{skill} on Dev.to", "https://dev.to/search?q={query}", "articles"),
        ),
    ),
    "professional": _LevelTemplate(
        task_types=(
            "Design system architecture for",
            "Lead a complex project involving",
            "Mentor others on",
            "Create advanced tutorial for",
            "Contribute to open source project using",
            "Performance benchmark",
            "Security audit of",
            "Scale solution using",
        ),
        descriptions=(
            "Design a scalable system architecture that leverages {skill}.",
            "Plan and execute a complex project that demonstrates mastery of {skill}.",
            "Create learning materials or mentor others in {skill}.",
            "Develop an advanced tutorial or guide for {skill}.",
            "Find and contribute to an open source project that uses {skill}.",
            "Conduct performance benchmarking and optimization for {skill}.",
            "Perform a security audit of a system or code using {skill}.",
            "Design and implement scaling solutions that utilize {skill}.",
        ),
        themes=(
            "System Design",
            "Architecture Planning",
            "Leadership Skills",
            "Advanced Patterns",
            "Scalability",
            "Expert Techniques",
            "Innovation",
            "Mentoring",
            "Industry Standards",
            "Cutting-edge Solutions",
        ),
        resources=(
            ("{skill} Expert Content", "https://www.pluralsight.com/search?q={query}", "course"),
            ("{skill} Research Papers", "https://scholar.google.com/scholar?q={query}", "research"),
            (
                "{skill} Open Source Projects",
                "https://github.com/search?q={query}+stars:>1000&type=repositories",
                "opensource",
            ),
            ("{skill} Professional Community", "https://www.reddit.com/search/?q={query}", "community"),
            ("{skill} Industry Articles", "https://www.infoq.com/search.action?queryString={query}", "industry"),
        ),
    ),
}

OFFICIAL_DOC_URLS: Dict[str, str] = {
    "html": "https://developer.mozilla.org/en-US/docs/Web/HTML",
    "css": "https://developer.mozilla.org/en-US/docs/Web/CSS",
    "javascript": "https://developer.mozilla.org/en-US/docs/Web/JavaScript",
    "react": "https://react.dev/learn",
    "node.js": "https://nodejs.org/en/docs/",
    "express": "https://expressjs.com/en/guide/routing.html",
    "mongodb": "https://docs.mongodb.com/",
    "python": "https://docs.python.org/3/",
    "typescript": "https://www.typescriptlang.org/docs/",
    "vue": "https://vuejs.org/guide/",
    "angular": "https://angular.io/docs",
    "docker": "https://docs.docker.com/",
    "kubernetes": "https://kubernetes.io/docs/",
    "aws": "https://docs.aws.amazon.com/",
    "git": "https://git-scm.com/doc",
    "linux": "https://www.kernel.org/doc/",
    "security fundamentals": "https://owasp.org/www-project-top-ten/",
    "network basics": "https://tools.ietf.org/rfc/",
    "penetration testing": "https://www.offensive-security.com/metasploit-unleashed/",
    "machine learning": "https://scikit-learn.org/stable/user_guide.html",
    "tensorflow": "https://www.tensorflow.org/learn",
    "pytorch": "https://pytorch.org/docs/stable/index.html",
}


def normalize_level(level: Any) -> LearningLevel:
    """Map a level string or ``{"id"/"name": ...}`` mapping onto a known level."""
    candidate = level
    if isinstance(level, Mapping):
        candidate = level.get("id") or level.get("name")
    if isinstance(candidate, str):
        key = candidate.strip().lower()
        if key in _LEVEL_LIBRARY:
            return key  # type: ignore[return-value]
    return DEFAULT_LEVEL


def _skill_name(entry: Any) -> Optional[str]:
    if isinstance(entry, Mapping):
        entry = entry.get("name")
    if not isinstance(entry, str):
        return None
    name = entry.strip()
    if name.lower() in _IGNORED_SKILL_VALUES:
        return None
    return name


def _domain_key(domain: Any) -> str:
    if isinstance(domain, Mapping):
        domain = domain.get("id") or domain.get("name")
    if isinstance(domain, str) and domain.strip():
        return domain.strip().lower().replace(" ", "-")
    return "web-development"


def normalize_skills(domain: Any, skills: Any) -> List[str]:
    """Coerce whatever the caller selected into an ordered list of skill names.

    ``None`` falls back to the domain's default skills. Anything that yields no
    usable names becomes the single synthetic ``General Programming`` skill.
    """
    raw: Iterable[Any]
    if skills is None:
        defaults = DOMAIN_DEFAULT_SKILLS.get(_domain_key(domain), DOMAIN_DEFAULT_SKILLS["web-development"])
        raw = defaults
    elif isinstance(skills, str):
        raw = [skills]
    elif isinstance(skills, Mapping):
        nested = skills.get("skills")
        if isinstance(nested, (list, tuple)):
            raw = nested
        elif "name" in skills:
            raw = [skills]
        else:
            raw = list(skills.values())
    elif isinstance(skills, (list, tuple)):
        raw = skills
    else:
        logger.warning("Ignoring unsupported skills payload of type %s", type(skills).__name__)
        raw = []

    names = [name for name in (_skill_name(entry) for entry in raw) if name]
    return names or [FALLBACK_SKILL]


def official_doc_url(skill: str) -> str:
    lowered = skill.lower()
    if lowered in OFFICIAL_DOC_URLS:
        return OFFICIAL_DOC_URLS[lowered]
    for key, url in OFFICIAL_DOC_URLS.items():
        if key in lowered or lowered in key:
            return url
    return f"https://www.google.com/search?q={quote_plus(skill)}+official+documentation"


def build_resources(skill: str, level: LearningLevel) -> List[Resource]:
    template = _LEVEL_LIBRARY[level]
    values = {
        "skill": skill,
        "query": quote_plus(skill),
        "slug": skill.lower().replace(" ", "-"),
        "level": level,
    }
    resources = [
        Resource(title=f"Official {skill} Documentation", url=official_doc_url(skill), type="documentation")
    ]
    for title, url, kind in _BASE_RESOURCES + template.resources:
        resources.append(Resource(title=title.format(**values), url=url.format(**values), type=kind))
    return resources


def day_theme(day: int, level: LearningLevel) -> str:
    themes = _LEVEL_LIBRARY[level].themes
    return themes[(day - 1) % len(themes)]


class TaskPlanGenerator:
    """Builds one task per day by cycling skills and level task types."""

    def __init__(self, *, default_duration: int = DEFAULT_DURATION_DAYS) -> None:
        self._default_duration = max(default_duration, 1)

    def generate(
        self,
        domain: Any,
        skills: Any,
        level: Any = DEFAULT_LEVEL,
        duration: Optional[int] = None,
    ) -> List[DailyPlan]:
        days = self._default_duration if duration is None else duration
        if days < 0:
            raise ValueError("Plan duration cannot be negative.")
        level_key = normalize_level(level)
        skill_names = normalize_skills(domain, skills)
        template = _LEVEL_LIBRARY[level_key]

        plans: List[DailyPlan] = []
        for day in range(1, days + 1):
            skill = skill_names[(day - 1) % len(skill_names)]
            task_type = template.task_types[(day - 1) % len(template.task_types)]
            task = Task(
                id=task_id_for(day, 0),
                day=day,
                index=0,
                title=f"{task_type} {skill}",
                description=template.description_for(task_type, skill),
                estimated_time=ESTIMATED_TIME,
                resources=build_resources(skill, level_key),
            )
            theme = day_theme(day, level_key)
            plans.append(DailyPlan(day=day, theme=theme, title=f"Day {day}: {theme}", tasks=[task]))
        return plans


def iter_tasks(plans: Iterable[DailyPlan]) -> Iterable[Task]:
    for plan in plans:
        yield from plan.tasks


def find_task(plans: Iterable[DailyPlan], task_id: str) -> Optional[Task]:
    for task in iter_tasks(plans):
        if task.id == task_id:
            return task
    return None


__all__ = [
    "DEFAULT_DURATION_DAYS",
    "DOMAIN_DEFAULT_SKILLS",
    "FALLBACK_SKILL",
    "TaskPlanGenerator",
    "build_resources",
    "day_theme",
    "find_task",
    "iter_tasks",
    "normalize_level",
    "normalize_skills",
    "official_doc_url",
]
