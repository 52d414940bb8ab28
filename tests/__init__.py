"""Test suite for formstate.

This package contains tests for:
- Conditional rule evaluation and field-state resolution
- Structural validation (types, formats, bounds, predicates)
- Semantic validation with fake backends
- The form state engine (fields, submission, reset, steps)
- Schema serialization and shape checking
- Events, hooks, step state machine and configuration
"""
