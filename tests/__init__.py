"""
Test Suite for the Status Engine

- Status configuration store and service
- Transition validator and transition service
- Legacy status migration
- Status cache and HTTP router
"""
