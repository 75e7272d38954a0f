"""Unit tests for the grid deployer.

Unit tests verify individual components in isolation using mocks and an
in-process fake node agent. No chain or relay is required.

Run with: pytest tests/unit/ -v
"""
