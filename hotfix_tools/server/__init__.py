"""On-demand serving of the local mirror."""

from hotfix_tools.server.app import create_app

__all__ = ["create_app"]
