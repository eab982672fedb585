"""Explanation-enforcement core.

- config schema (defaults + validation + immutable resolved config)
- rule engine (priority-ordered "does this item need an explanation")
- explanation validator (substring matching only)
- records (namespaced, independently expiring state keys)
- action engine + orchestrator (warn / remove / reinstate)
- appeals (out-of-band reinstatement requests)
"""
