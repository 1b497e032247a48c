"""
Execution subsystem.

Components:
- orchestrator.py: validate -> cache -> build request -> run -> record
- hashing.py: deterministic execution cache keys
- security.py: domain classification, content sanitizing, request constraints
"""
