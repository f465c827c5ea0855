"""Credential handling and URL construction for Azure DevOps."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from urllib.parse import quote, urlencode

from ado_mirror import __version__
from ado_mirror.config import AzureDevOpsConfig

from .exceptions import ConfigurationError

DEFAULT_BASE_URL = "https://dev.azure.com"


class Authenticator:
    """Turns a PAT and organization/project into headers and URLs.

    Headers are built once at construction; configuration problems
    raise ConfigurationError here so a client never starts half-configured.

    Usage:
        auth = Authenticator(AzureDevOpsConfig(organization="contoso", project="Fabrikam", pat="..."))
        url = auth.build_url("/_apis/wit/workitems/42", {"$expand": "all"})
        headers = auth.headers
    """

    def __init__(self, config: AzureDevOpsConfig) -> None:
        self._validate(config)
        self._config = config
        base = config.base_url or f"{DEFAULT_BASE_URL}/{config.organization}"
        self._base_url = base.rstrip("/")
        self._headers = {
            "Authorization": self._authorization_value(config),
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"ado-mirror/{__version__}",
        }

    @staticmethod
    def _validate(config: AzureDevOpsConfig) -> None:
        missing = [
            name
            for name, value in (
                ("organization", config.organization),
                ("project", config.project),
                ("pat", config.pat.get_secret_value()),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise ConfigurationError(
                f"Missing Azure DevOps settings: {', '.join(missing)}. "
                "Set AZURE_DEVOPS_ORG, AZURE_DEVOPS_PROJECT and AZURE_DEVOPS_PAT."
            )
        for name, value in (("organization", config.organization), ("project", config.project)):
            if "/" in value:
                raise ConfigurationError(f"Azure DevOps {name} must not contain '/': {value!r}")
        if config.base_url and not config.base_url.startswith(("https://", "http://")):
            raise ConfigurationError(f"Base URL must be an absolute http(s) URL: {config.base_url!r}")

    @staticmethod
    def _authorization_value(config: AzureDevOpsConfig) -> str:
        if config.auth_scheme == "bearer":
            return f"Bearer {config.pat.get_secret_value()}"
        token = base64.b64encode(f":{config.pat.get_secret_value()}".encode()).decode("ascii")
        return f"Basic {token}"

    @property
    def headers(self) -> dict[str, str]:
        """Headers attached to every request (copy)."""
        return dict(self._headers)

    @property
    def organization(self) -> str:
        return self._config.organization

    @property
    def project(self) -> str:
        return self._config.project

    @property
    def api_version(self) -> str:
        return self._config.api_version

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_url(
        self,
        path: str,
        params: Mapping[str, str | int | None] | None = None,
        *,
        project_scoped: bool = True,
    ) -> str:
        """Build a fully-qualified URL with the api-version appended.

        Args:
            path: API path starting with "/" (e.g. "/_apis/wit/wiql")
            params: Extra query parameters; None values are dropped
            project_scoped: Prefix the path with the project segment

        Returns:
            Absolute URL string
        """
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        query["api-version"] = self._config.api_version
        prefix = f"/{quote(self._config.project)}" if project_scoped else ""
        return f"{self._base_url}{prefix}{path}?{urlencode(query, safe='$,')}"

    def connection_info(self) -> dict[str, str]:
        """Non-secret connection details for status output."""
        return {
            "organization": self._config.organization,
            "project": self._config.project,
            "base_url": self._base_url,
            "api_version": self._config.api_version,
        }
