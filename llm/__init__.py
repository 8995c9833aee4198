"""
llm — Reasoning oracle for the actuation guard.

Offline rule-based and local-model backends answer the security and context
questions; every call runs under a hard timeout and falls back to fixed
allow-opinions when the backend is late or broken.
"""
