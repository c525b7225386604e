"""
Modular monolith package.

Bounded-context modules live under `backend/nexus/modules/*`:
templates, financial, intelligence, workflow and the orchestrator that
composes them. Routers call the orchestrator rather than directly invoking
repositories or infrastructure adapters.
"""
