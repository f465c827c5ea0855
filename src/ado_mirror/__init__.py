"""ADO Mirror - local mirror of Azure DevOps work items."""

__version__ = "0.1.0"
