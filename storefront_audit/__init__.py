"""
Storefront Audit

Audits a storefront product page and produces a scored, evidence-backed
report with actionable tickets.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable facts, artifacts, evidence, tickets, score and versions
   - Collaborator interfaces (capture, synthesis, render)
   - MUST NOT: import from any other layer

2. KEYS & CACHE (keys.py, cache/)
   - Content-addressed keys per stage, single-flight Stage Cache
   - MUST NOT: interpret stage values

3. PURE ENGINES (scoring.py, evidence.py, tickets.py)
   - Deterministic score, evidence pack, rules tickets and ordering
   - MUST NOT: perform I/O or read the clock

4. ORCHESTRATION (engine.py, state_machine.py, errors.py)
   - Drives the stages, records errors, reports run and job status

5. API (api/)
   - Thin HTTP surface over the orchestrator

Collaborator implementations live in the separate `collaborators` package.
"""

__version__ = "1.0.0"
