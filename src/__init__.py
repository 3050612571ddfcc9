"""Pitchside: a WhatsApp booking assistant for football pitch operators.

Architecture Overview
=====================

Each inbound message runs through a **LangGraph** state machine:

1. **route** asks a cheap model call for the few tools relevant to the
   message, falling back to the full set if the answer is unusable.
2. **model** calls the configured LLM backend (OpenAI, Gemini or Anthropic)
   with the conversation history and the routed tools.
3. **tools** executes every requested call; failures become text the model
   can read and react to.

Routing: route → model → (tool calls?) → tools → model (loop, capped) → reply

Key Design Decisions
--------------------
- **Provider-neutral core**: the graph only sees ``src.models`` types;
  each backend translates at its own boundary (``src/providers/``).
- **Conflict safety**: overlapping active bookings are rejected by a
  PostgreSQL exclusion constraint; the service's pre-check only exists to
  name the colliding booking.
- **Multi-tenancy**: every booking, customer and session is keyed by the
  tenant resolved from the receiving WhatsApp account.
- **Memory**: per-sender histories with idle expiry, compacted to user
  and assistant text after every turn.

Package Structure
-----------------
- ``src/agent.py`` — LangGraph StateGraph and the agent facade
- ``src/router.py`` — two-stage tool router
- ``src/providers/`` — LLM backends
- ``src/scheduling.py`` — Turkish time-slot and weekday resolution
- ``src/sessions.py`` — conversation memory
- ``src/services/`` — booking service, datastores, cache, metrics, WhatsApp client
- ``src/tools/`` — booking and analytics tools
- ``src/api/`` — FastAPI routes and Pydantic schemas
- ``src/server.py`` / ``src/main.py`` — HTTP server and CLI chat
"""
