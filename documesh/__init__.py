# =============================================================================
# DocuMesh Agent
# =============================================================================
# The AI Studio backend of the DocuMesh document-ingestion platform: a
# tool-calling chat agent that answers questions about an organization's
# processed documents (resumes, invoices) using guarded, tenant-scoped SQL.
#
# Package structure:
#   documesh/
#   ├── api/          → FastAPI route handlers (chat, conversations, auth deps)
#   ├── agents/       → Agent loop, tools, system prompt
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Query guard, LLM providers, repositories
# =============================================================================
