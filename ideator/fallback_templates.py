# ideator/fallback_templates.py
"""
Deterministic Markdown templates used when model output is unusable.
Nothing here calls a model or can fail on well-formed inputs.
"""
import json
from typing import Any, Iterable

DEFAULT_SECURITY_CONSIDERATIONS = [
    "Data encryption at rest and in transit",
    "API authentication and authorization",
    "Role-based access control",
    "Audit logging and monitoring",
    "Compliance with relevant regulations (GDPR/SOC2 as applicable)",
]

DEFAULT_STEPS = [
    "Confirm scope, users and success criteria",
    "Design the architecture, data model and integrations",
    "Implement the core agent workflow and its API",
    "Test, harden and deploy with monitoring in place",
]

DEFAULT_BUILD_PHASES = [
    {"phase": "Scope", "description": "Project scoping and requirements gathering", "duration": "1-2 weeks"},
    {"phase": "Discovery", "description": "Technical architecture and design planning", "duration": "1-2 weeks"},
    {"phase": "UX/UI", "description": "User experience design and interface prototyping", "duration": "2-3 weeks"},
    {"phase": "Development", "description": "Core implementation of features and integrations", "duration": "4-6 weeks"},
    {"phase": "Q/C", "description": "Quality assurance and testing", "duration": "2-3 weeks"},
    {"phase": "Launch", "description": "Production deployment and go-live", "duration": "1-2 weeks"},
]

DEV_PACKAGE_FILES = [
    "README.md",
    "ARCHITECTURE.md",
    "SYSTEM_OVERVIEW.md",
    "IMPLEMENTATION_PLAN.md",
    "API_SPEC.md",
    "DATA_MODEL.md",
    "MIGRATIONS.md",
    "SECURITY.md",
    "OBSERVABILITY.md",
    "DEPLOYMENT.md",
    "RUNBOOK.md",
    "TEST_STRATEGY.md",
    "CONFIGURATION.md",
    "CURSOR_OPENING_PROMPT.md",
]


def md(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def bullets(items: Iterable[Any]) -> str:
    return "\n".join(f"- {md(x)}" for x in (items or []))


def default_summary_message(title: str) -> str:
    return (
        f'Great! I\'ve created a comprehensive specification for your "{title}". '
        "This includes all the technical details, implementation steps, and requirements we discussed. "
        "You can now view the full project scope in your projects list."
    )


# -----------------------
# Specification sections
# -----------------------

def architecture_section(title: str, summary: str, stack: dict) -> str:
    stack_block = md(stack) if stack else "No stack preferences were captured; apply the default baseline."
    return f"""# Architecture: {title}

{summary}

## System Context
- Frontend: Next.js (App Router)
- Backend: HTTP API service hosting the agent workflow
- Database: PostgreSQL
- Model access: primary LLM with an ordered fallback list

## Technical Stack
~~~json
{stack_block}
~~~

## Sequence (High-Level)
~~~mermaid
sequenceDiagram
  participant Web as Web client
  participant API as Agent API
  participant LLM as Model provider
  participant DB as Postgres
  Web->>API: Authenticated request
  API->>LLM: Prompt with retrieved context
  LLM-->>API: Completion
  API->>DB: Persist results
  API-->>Web: JSON response
~~~
"""


def api_surface_section(title: str) -> str:
    return f"""# API Surface: {title}

- Auth: Bearer token (Authorization: Bearer <token>)
- Content-Type: application/json

## Endpoints (starting point)
- GET /health: liveness probe
- POST /agent/run: submit a task to the agent
- GET /agent/runs/{{run_id}}: fetch a run and its output

For each endpoint document request parameters, response schema and error codes.
"""


def data_model_section(title: str, requirements: Iterable[Any]) -> str:
    return f"""# Data Model: {title}

## Entities
- users(id PK, role, name, email)
- agent_runs(id PK, user_id FK->users, status, input jsonb, output jsonb, created_at)
- agent_documents(id PK, run_id FK->agent_runs, filename, content, created_at)

## Requirements to reflect in the schema
{bullets(requirements) or "- None captured yet"}
"""


def security_section(items: Iterable[Any]) -> str:
    items = list(items or []) or DEFAULT_SECURITY_CONSIDERATIONS
    return f"# Security\n\n{bullets(items)}\n"


def deployment_section(title: str) -> str:
    return f"""# Deployment: {title}

- Build a container image for the API service; run it behind HTTPS.
- Provide model credentials and DATABASE_URL through the environment or a secret manager.
- Healthcheck: GET /health
- Roll back by redeploying the previous image tag.
"""


def runbook_section(title: str) -> str:
    return f"""# Runbook: {title}

## Common Incidents
- Model overload or quota errors: requests fall back to secondary models; check provider quotas.
- 401/403: verify tokens and role mapping.
- DB connection errors: check DATABASE_URL and network access.

## Operational Tasks
- Rotate secrets quarterly.
- Review model usage and cost monthly.
"""


def render_spec_documents(
    title: str,
    summary: str,
    stack: dict,
    requirements: Iterable[Any],
    security: Iterable[Any] = (),
) -> dict[str, str]:
    requirements = list(requirements or [])
    return {
        "architecture": architecture_section(title, summary, stack),
        "api_surface": api_surface_section(title),
        "data_model": data_model_section(title, requirements),
        "security": security_section(security),
        "deployment": deployment_section(title),
        "runbook": runbook_section(title),
    }


# -----------------------
# Dev package files
# -----------------------

def build_fallback_files(idea: dict | None) -> list[dict[str, str]]:
    """
    One file per DEV_PACKAGE_FILES entry, built from a stored idea.
    """
    idea = idea or {}
    title = idea.get("title") or "Project"
    summary = idea.get("summary") or ""
    steps = idea.get("steps") if isinstance(idea.get("steps"), list) else []
    stack = idea.get("agent_stack") or {}
    reqs = idea.get("client_requirements") if isinstance(idea.get("client_requirements"), list) else []
    security = idea.get("security_considerations") if isinstance(idea.get("security_considerations"), list) else []
    enhancements = idea.get("future_enhancements") if isinstance(idea.get("future_enhancements"), list) else []

    docs = render_spec_documents(title, summary, stack, reqs, security)

    readme = (
        f"# {title}: Development Package\n\n{summary}\n\n"
        "This package contains project-specific technical documentation. "
        "Start with ARCHITECTURE.md and IMPLEMENTATION_PLAN.md.\n"
    )
    plan_steps = "\n".join(f"### {i + 1}. {md(s)}" for i, s in enumerate(steps)) or "### 1. Define the first milestone"
    implementation_plan = (
        f"# Implementation Plan\n\n## Overview\n{summary}\n\n## Steps\n{plan_steps}\n\n"
        f"## Technical Stack\n{md(stack)}\n\n## Client Requirements\n{bullets(reqs)}\n\n"
        f"## Future Enhancements\n{bullets(enhancements)}\n"
    )
    migrations = (
        "# Migrations\n\n1. Create the base tables from DATA_MODEL.md\n"
        "2. Add indexes on foreign keys and status columns\n\n"
        "Each migration should be idempotent and backward compatible.\n"
    )
    observability = (
        "# Observability\n\n## Metrics\n- Request rate, error rate, latency (p50/p95)\n"
        "- Model calls: retries, fallbacks, tokens\n\n## Logs\n- Structured logs with request id\n\n"
        "## Tracing\n- Trace API handlers, model calls and DB calls\n"
    )
    test_strategy = (
        "# Test Strategy\n\n- Unit: parsers, validators, access checks\n"
        "- Integration: endpoints against a seeded database and a fake model provider\n"
        "- E2E: the critical user flows\n"
    )
    configuration = (
        "# Configuration\n\n| Name | Description | Required | Default |\n|------|-------------|----------|---------|\n"
        "| DATABASE_URL | Postgres connection string | yes | |\n"
        "| GEMINI_MODEL | Primary model name | no | gemini-2.5-pro |\n"
        "| GEMINI_FALLBACK_MODELS | Ordered fallback models (csv) | no | |\n"
    )
    cursor_prompt = (
        f"# Cursor Opening Prompt\n\nYou are working on {title}. Follow IMPLEMENTATION_PLAN.md, consult "
        "ARCHITECTURE.md, and use API_SPEC.md and DATA_MODEL.md to build endpoints and schema.\n"
    )

    contents = {
        "README.md": readme,
        "ARCHITECTURE.md": docs["architecture"],
        "SYSTEM_OVERVIEW.md": docs["architecture"],
        "IMPLEMENTATION_PLAN.md": implementation_plan,
        "API_SPEC.md": docs["api_surface"],
        "DATA_MODEL.md": docs["data_model"],
        "MIGRATIONS.md": migrations,
        "SECURITY.md": docs["security"],
        "OBSERVABILITY.md": observability,
        "DEPLOYMENT.md": docs["deployment"],
        "RUNBOOK.md": docs["runbook"],
        "TEST_STRATEGY.md": test_strategy,
        "CONFIGURATION.md": configuration,
        "CURSOR_OPENING_PROMPT.md": cursor_prompt,
    }
    return [{"path": name, "content": contents[name]} for name in DEV_PACKAGE_FILES]
