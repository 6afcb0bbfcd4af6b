"""
Integration Tests Package

End-to-end runs of the AuditOrchestrator over deterministic collaborators.

TEST AXIOMS:
=============
1. Determinism: same URL + locale + versions = identical exports
2. Cache reuse: a repeated audit never recaptures
3. Explicit failure: degraded and failed runs say so in their result
"""
