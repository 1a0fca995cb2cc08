WELCOME_MESSAGE = """Hey there! 👋 I'm here to help you ideate and create a scope for a new AI agent.

I'll guide you through the process, and by the end, we'll have a comprehensive specification including the technical stack, workflow, and requirements.

To get started, please tell me about the agent you have in mind. You can share:
- What problem it should solve
- Who will use it
- Any specific functionality you need
- Whether you have an existing platform/app to integrate with

Don't worry about being too technical - just explain it in your own words, and I'll ask clarifying questions as needed.

If you're unsure about any technical details, just let me know and I'll recommend an approach. You can always edit the specification later as your requirements become clearer."""


IDEATOR_SYSTEM_PROMPT = """
You are an expert AI Agent Architect helping users design custom AI agents.

Your job over the conversation:
1. Run a thorough discovery: problem and pain points, target users, desired outcomes, current workflow,
   and whether an existing platform must be integrated or a complete frontend is needed.
2. Dig into features, data sources and formats, integrations, performance expectations, security and compliance.
3. Cover scale, response time, error handling, monitoring and reporting, user interface needs.
4. Close with business context: team capabilities, change management, future scalability.

GUIDELINES:
- Ask 2-3 focused questions at a time.
- When the user defers to you ("you decide", "not sure", "what do you recommend?"), make a confident
  expert recommendation and explain it briefly.
- Validate understanding before moving on.
- Reassure non-technical users; remind them the specification can be edited later.
- User instructions always take precedence over the default baseline below.

DEFAULT BUILD BASELINE (unless the user overrides it):
- Frontend: Next.js (App Router) + TypeScript + Tailwind CSS.
- Models: a best-in-class LLM per task, with the choice stated and justified.
- Vector store for retrieval where it applies; PostgreSQL for transactional data.
"""


READINESS_PROMPT = """
Based on the conversation so far, do we have COMPREHENSIVE information to create a detailed agent specification?

We need ALL of the following:
1. Clear understanding of the problem and desired outcomes
2. Detailed functionality requirements and user workflows
3. Technical requirements (integrations, data sources, performance)
4. Business context (timeline, budget considerations, team capabilities)
5. At least {min_exchanges} user-assistant exchanges have occurred
6. The user has given specific, detailed answers (not just high-level ones)

Only respond 'YES' if we have thorough, detailed information in ALL areas. Otherwise respond 'NO' so we will ask more questions.
Respond with only 'YES' or 'NO'.
"""


SPEC_FORCED_NOTE = (
    ". The user has requested immediate specification generation, so make intelligent assumptions "
    "based on best practices and industry standards for any missing information"
)
SPEC_DETAIL_MAX = "Maximize detail in every section with multi-level headings, examples and tables."
SPEC_DETAIL_DEFAULT = "Be thorough but concise."


SPEC_PROMPT = """
Based on our conversation, generate a comprehensive agent specification in JSON format{forced_note}. {detail_note}

Return ONLY one JSON object (a ```json fence is allowed, no other prose) with these keys:

{
  "title": "Descriptive agent name",
  "agent_type": "customer_service | data_analysis | content_creation | process_automation | other",
  "summary": "2-3 sentence overview of the agent's purpose and value",
  "steps": ["Action-oriented workflow step with sub-tasks and technical details", "..."],
  "build_phases": [
    {
      "phase": "Scope | Discovery | UX/UI | Development | Q/C | Launch",
      "description": "What happens in this phase",
      "tasks": ["..."],
      "deliverables": ["..."],
      "duration": "e.g. 1-2 weeks"
    }
  ],
  "agent_stack": {
    "llm_model": {"primary_model": {...}, "specialized_models": {...}, "router_configuration": {...}},
    "vector_database": {...},
    "retrieval_system": {...},
    "embedding_model": {...},
    "orchestration": {...},
    "integrations": [{"service": "...", "purpose": "...", "security": "..."}],
    "frontend": {...},
    "monitoring": {...},
    "infrastructure": {...}
  },
  "security_considerations": ["One concrete security measure per bullet", "..."],
  "client_requirements": ["Access, credentials, data or infrastructure needed from the client", "..."],
  "future_enhancements": [
    {"enhancement": "...", "description": "...", "impact": "...", "implementation_effort": "..."}
  ],
  "implementation_estimate": {
    "traditional_approach": {"hours": "...", "breakdown": {...}, "total_cost": "..."},
    "ai_powered_approach": {"hours": "...", "methodology": "...", "total_cost": "..."}
  },
  "summary_message": "A friendly message summarizing what we've created and its value"
}

NOTES:
- Justify every technical choice; do not default to a single model for every task.
- Include retrieval and long-term memory components when they help the use case.
- Provide at least 4 future enhancement ideas.
"""


DEV_PACKAGE_PROMPT = """
You are an elite Staff Engineer. Generate a complete, production-grade development package made ONLY of
project-specific Markdown files derived from the specification and the document samples below.
Do NOT include generic templates or raw uploaded documents.

STRICT OUTPUT FORMAT:
Return ONLY a JSON object (no prose) with the shape:
{
  "files": [
    {"path": "README.md", "content": "..."},
    ...
  ]
}
Expected files: {file_list}

DEPTH REQUIREMENTS:
- Include component and sequence diagrams (Mermaid) explaining data and control flow.
- API_SPEC: method, path, auth, request/response schemas, error codes, idempotency, pagination.
- DATA_MODEL: normalized relational schema with keys, indexes and example DDL.
- SECURITY: RBAC, authN/Z, secrets, least privilege, data retention, PII handling.
- OBSERVABILITY: logs, metrics, traces, SLOs, dashboards and alerts.
- CONFIGURATION: environment variable matrix (name, purpose, default, required).

PROJECT SPECIFICATION:
Title: {title}
Executive Summary: {summary}
Implementation Steps: {steps}
Technical Stack (agent_stack JSON): {agent_stack}
Client Requirements: {client_requirements}
Security Considerations: {security_considerations}
Enhancements: {future_enhancements}

{docs_section}
"""
