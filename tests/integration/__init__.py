"""
ir-harness: integration test package

File: tests/integration/__init__.py

Purpose
- Test package marker file.

Functional requirements
- Tests in this package talk to a real loopback server; no other network access.
"""
