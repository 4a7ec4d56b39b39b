"""CLI command implementations for hotfix_tools."""
