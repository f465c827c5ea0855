"""Async Azure DevOps REST client built on httpx.

This module provides a typed async interface to the Work Item Tracking
API. Every call runs through the ResilienceExecutor with the policy for
its operation kind. The RateLimiter admits each attempt before its
timeout starts; failures are mapped onto the error taxonomy.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Any, Literal

import httpx

from ado_mirror.config import AzureDevOpsConfig, Settings, get_settings
from ado_mirror.logging import get_logger
from ado_mirror.schemas.azure_devops_api import (
    AzureDevOpsComment,
    AzureDevOpsWorkItem,
    WorkItemReference,
)

from .auth import Authenticator
from .classifier import ErrorClassifier
from .exceptions import ValidationError
from .pacing import BatchProcessor, BatchResult, ChunkFailure
from .rate_limit import RateLimiter
from .resilience import (
    OperationKind,
    PolicyExecutor,
    ResilienceExecutor,
    ResiliencePolicy,
    build_policies,
)

if TYPE_CHECKING:
    from .rate_limit import RateLimitState

logger = get_logger(__name__)

ErrorPolicy = Literal["fail", "omit"]

PROBE_TIMEOUT_SECONDS = 10.0
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
DEFAULT_LINK_COMMENT = "Pull Request"


def _validate_id(work_item_id: Any) -> int:
    if isinstance(work_item_id, bool) or not isinstance(work_item_id, int) or work_item_id <= 0:
        raise ValidationError(f"Work item id must be a positive integer, got {work_item_id!r}")
    return work_item_id


def _validate_url(url: str) -> str:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise ValidationError(f"Malformed URL: {url!r}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError(f"URL must be an absolute http(s) URL, got {url!r}")
    return url


def _json_body(response: httpx.Response) -> Any:
    return response.json() if response.content else None


def _work_item_body(response: httpx.Response) -> AzureDevOpsWorkItem:
    # Single-item responses keep the body text exactly as the server sent it
    return AzureDevOpsWorkItem.from_api(response.json(), raw_text=response.text)


class AzureDevOpsClient:
    """Async Azure DevOps client for work item data.

    Usage:
        async with AzureDevOpsClient() as client:
            item = await client.get_work_item(42)
            print(item.title)

    Or without context manager:
        client = AzureDevOpsClient()
        refs = await client.query_work_items("SELECT [System.Id] FROM WorkItems")
        await client.close()
    """

    def __init__(
        self,
        config: AzureDevOpsConfig | None = None,
        *,
        settings: Settings | None = None,
        rate_limiter: RateLimiter | None = None,
        executor: ResilienceExecutor | None = None,
        policies: dict[OperationKind, ResiliencePolicy] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        probe_on_start: bool = True,
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection settings. If not provided, read from Settings.
            settings: Settings for limiter, pacing and policy defaults.
            rate_limiter: Limiter owned by this client (a new one if not provided).
            executor: Resilience executor (a PolicyExecutor if not provided).
            policies: Policy per operation kind (built from settings if not provided).
            transport: Optional httpx transport (tests use httpx.MockTransport).
            probe_on_start: Schedule a credential probe when an event loop is running.

        Raises:
            ConfigurationError: If organization, project or PAT are missing or malformed.
        """
        settings = settings or get_settings()
        self._auth = Authenticator(config or settings.azure_devops)
        self._classifier = ErrorClassifier()
        self._rate_limiter = rate_limiter or RateLimiter(settings.rate_limit)
        self._executor = executor or PolicyExecutor(
            classifier=self._classifier,
            max_server_wait=settings.rate_limit.max_server_wait_seconds,
        )
        self._policies = policies or build_policies(settings.resilience)
        self._batch_processor: BatchProcessor[int, AzureDevOpsWorkItem] = BatchProcessor(
            batch_size=settings.pacing.batch_size,
            max_concurrency=settings.pacing.max_concurrency,
        )
        self._http = httpx.AsyncClient(
            headers=self._auth.headers,
            transport=transport,
            timeout=httpx.Timeout(max(p.timeout for p in self._policies.values())),
        )
        self._probe_task: asyncio.Task[bool] | None = None
        if probe_on_start:
            self._schedule_probe()

    @property
    def auth(self) -> Authenticator:
        return self._auth

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def executor(self) -> ResilienceExecutor:
        return self._executor

    @property
    def batch_processor(self) -> BatchProcessor[int, AzureDevOpsWorkItem]:
        return self._batch_processor

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel a pending probe and close the underlying HTTP client."""
        if self._probe_task is not None and not self._probe_task.done():
            self._probe_task.cancel()
        await self._http.aclose()

    async def __aenter__(self) -> AzureDevOpsClient:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    def _schedule_probe(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; credential probe deferred")
            return
        self._probe_task = loop.create_task(self.validate_connection())

    async def validate_connection(self) -> bool:
        """Probe the project endpoint to check credentials.

        Never raises: failures are logged with guidance and reported as False.
        """
        url = self._auth.build_url(
            f"/_apis/projects/{self._auth.project}", project_scoped=False
        )
        try:
            response = await self._rate_limiter.execute(
                lambda: self._http.get(url, timeout=PROBE_TIMEOUT_SECONDS)
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Could not reach Azure DevOps at {}: {}. Check network access and "
                "AZURE_DEVOPS_BASE_URL.",
                self._auth.base_url,
                e,
            )
            return False

        self._update_rate_limit_from_response(response)
        if response.is_success:
            logger.info(
                "Connected to Azure DevOps project {}/{}",
                self._auth.organization,
                self._auth.project,
            )
            return True

        error = self._classifier.from_response(response)
        logger.warning(
            "Azure DevOps credential probe failed ({}): {}. Verify AZURE_DEVOPS_ORG, "
            "AZURE_DEVOPS_PROJECT and that AZURE_DEVOPS_PAT has Work Items (Read & Write) scope.",
            response.status_code,
            error.message,
        )
        return False

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _update_rate_limit_from_response(self, response: httpx.Response) -> None:
        """Feed quota headers from any response into the limiter."""
        try:
            self._rate_limiter.update_from_headers(response.headers)
        except Exception as e:
            # Quota tracking must never break API calls
            logger.debug("Failed to update rate limit from headers: {}", e)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        content_type: str | None = None,
    ) -> httpx.Response:
        headers = {"Content-Type": content_type} if content_type else None
        content = json.dumps(body) if body is not None else None
        try:
            response = await self._http.request(method, url, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise self._classifier.classify(e) from e

        self._update_rate_limit_from_response(response)
        if response.is_error:
            raise self._classifier.from_response(response)
        return response

    async def _request(
        self,
        kind: OperationKind,
        method: str,
        path: str,
        *,
        params: dict[str, str | int | None] | None = None,
        body: Any = None,
        content_type: str | None = None,
        parse: Callable[[httpx.Response], Any] = _json_body,
    ) -> Any:
        url = self._auth.build_url(path, params)

        async def attempt() -> Any:
            response = await self._send(method, url, body=body, content_type=content_type)
            return parse(response)

        return await self._executor.execute(
            attempt, self._policies[kind], admit=self._rate_limiter.acquire
        )

    # -------------------------------------------------------------------------
    # Work Items
    # -------------------------------------------------------------------------

    async def get_work_item(
        self,
        work_item_id: int,
        expand: str | None = None,
    ) -> AzureDevOpsWorkItem:
        """Get a single work item.

        Args:
            work_item_id: Positive work item id
            expand: Optional $expand value (None, Relations, Fields, Links, All)

        Returns:
            AzureDevOpsWorkItem

        Raises:
            ValidationError: If the id is not a positive integer
            WorkItemNotFoundError: If the work item does not exist
        """
        _validate_id(work_item_id)
        return await self._request(
            OperationKind.SINGLE,
            "GET",
            f"/_apis/wit/workitems/{work_item_id}",
            params={"$expand": expand},
            parse=_work_item_body,
        )

    async def get_work_items_batch(
        self,
        ids: Iterable[int],
        *,
        expand: str | None = None,
        fields: Sequence[str] | None = None,
        as_of: str | None = None,
        error_policy: ErrorPolicy = "fail",
    ) -> list[AzureDevOpsWorkItem]:
        """Get many work items, chunked at the batch ceiling.

        Ids are de-duplicated and sorted before any call is made.

        Args:
            ids: Work item ids
            expand: Optional $expand value
            fields: Optional field reference names to return
            as_of: Optional ISO timestamp for a point-in-time read
            error_policy: "fail" raises the first chunk error; "omit" asks the
                server to skip inaccessible ids and drops failed chunks

        Returns:
            Work items that were fetched
        """
        result = await self.fetch_work_items(
            ids, expand=expand, fields=fields, as_of=as_of, error_policy=error_policy
        )
        if error_policy == "fail" and result.failed:
            raise result.failed[0].error
        return result.succeeded

    async def fetch_work_items(
        self,
        ids: Iterable[int],
        *,
        expand: str | None = None,
        fields: Sequence[str] | None = None,
        as_of: str | None = None,
        error_policy: ErrorPolicy = "omit",
    ) -> BatchResult[AzureDevOpsWorkItem]:
        """Fetch many work items, reporting failed chunks instead of raising.

        Returns:
            BatchResult with the fetched items and the failed chunks
        """
        unique_ids = sorted({_validate_id(i) for i in ids})
        if not unique_ids:
            return BatchResult()

        async def worker(chunk: list[int]) -> list[AzureDevOpsWorkItem]:
            return await self._get_batch_chunk(
                chunk, expand=expand, fields=fields, as_of=as_of, error_policy=error_policy
            )

        return await self._batch_processor.process_batches(unique_ids, worker)

    async def _get_batch_chunk(
        self,
        chunk: list[int],
        *,
        expand: str | None,
        fields: Sequence[str] | None,
        as_of: str | None,
        error_policy: ErrorPolicy,
    ) -> list[AzureDevOpsWorkItem]:
        data = await self._request(
            OperationKind.BATCH,
            "GET",
            "/_apis/wit/workitems",
            params={
                "ids": ",".join(str(i) for i in chunk),
                "$expand": expand,
                "fields": ",".join(fields) if fields else None,
                "asOf": as_of,
                "errorPolicy": "Omit" if error_policy == "omit" else None,
            },
        )
        # With errorPolicy=Omit the server returns null for inaccessible ids
        return [
            AzureDevOpsWorkItem.from_api(entry)
            for entry in (data or {}).get("value", [])
            if entry is not None
        ]

    async def query_work_items(
        self,
        wiql: str,
        *,
        top: int | None = None,
    ) -> list[WorkItemReference]:
        """Run a WIQL query.

        Args:
            wiql: WIQL query text
            top: Optional maximum number of results

        Returns:
            Ordered id references (not full work items)

        Raises:
            ValidationError: If the query text is empty
            InvalidQueryError: If the server rejects the query
        """
        if not wiql or not wiql.strip():
            raise ValidationError("WIQL query must not be empty")
        data = await self._request(
            OperationKind.QUERY,
            "POST",
            "/_apis/wit/wiql",
            params={"$top": top},
            body={"query": wiql},
        )
        refs = (data or {}).get("workItems", [])
        return [WorkItemReference.model_validate(ref) for ref in refs]

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def get_comments(self, work_item_id: int) -> list[AzureDevOpsComment]:
        """Get all comments on a work item, following continuation tokens."""
        _validate_id(work_item_id)
        comments: list[AzureDevOpsComment] = []
        token: str | None = None
        while True:
            data = await self._request(
                OperationKind.COMMENT,
                "GET",
                f"/_apis/wit/workItems/{work_item_id}/comments",
                params={"continuationToken": token},
            )
            data = data or {}
            comments.extend(
                AzureDevOpsComment.model_validate(c) for c in data.get("comments", [])
            )
            token = data.get("continuationToken")
            if not token:
                return comments

    async def add_comment(self, work_item_id: int, text: str) -> AzureDevOpsComment:
        """Add a comment to a work item.

        Comment creation is not idempotent: a retried create can produce
        duplicates, so the comment policy allows fewer attempts than reads.

        Raises:
            ValidationError: If the id is invalid or the text is empty after trimming
        """
        _validate_id(work_item_id)
        trimmed = (text or "").strip()
        if not trimmed:
            raise ValidationError("Comment text must not be empty")
        data = await self._request(
            OperationKind.COMMENT,
            "POST",
            f"/_apis/wit/workItems/{work_item_id}/comments",
            body={"text": trimmed},
        )
        return AzureDevOpsComment.model_validate(data)

    async def get_comments_for_many(
        self,
        work_item_ids: Iterable[int],
        *,
        concurrency: int = 5,
    ) -> tuple[dict[int, list[AzureDevOpsComment]], list[ChunkFailure[int]]]:
        """Fetch comments for several work items with bounded concurrency.

        Returns:
            Tuple of (comments by work item id, failures per work item)
        """
        processor: BatchProcessor[int, tuple[int, list[AzureDevOpsComment]]] = BatchProcessor(
            batch_size=1, max_concurrency=concurrency
        )

        async def worker(chunk: list[int]) -> list[tuple[int, list[AzureDevOpsComment]]]:
            return [(chunk[0], await self.get_comments(chunk[0]))]

        result = await processor.process_batches(work_item_ids, worker)
        return dict(result.succeeded), result.failed

    # -------------------------------------------------------------------------
    # Relations
    # -------------------------------------------------------------------------

    async def link_to_external_resource(
        self,
        work_item_id: int,
        url: str,
        *,
        comment: str = DEFAULT_LINK_COMMENT,
    ) -> AzureDevOpsWorkItem:
        """Append a hyperlink relation to a work item.

        Uses a JSON Patch "add" on /relations/-, so existing relations are kept.

        Raises:
            ValidationError: If the id is invalid or the URL is not absolute
        """
        _validate_id(work_item_id)
        _validate_url(url)
        patch = [
            {
                "op": "add",
                "path": "/relations/-",
                "value": {"rel": "Hyperlink", "url": url, "attributes": {"comment": comment}},
            }
        ]
        return await self._request(
            OperationKind.UPDATE,
            "PATCH",
            f"/_apis/wit/workitems/{work_item_id}",
            body=patch,
            content_type=JSON_PATCH_CONTENT_TYPE,
            parse=_work_item_body,
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_batch_stats(self, total_items: int) -> dict[str, int]:
        return self._batch_processor.get_batch_stats(total_items)

    def get_rate_limit_status(self) -> dict[str, Any]:
        return self._rate_limiter.get_status()

    def get_rate_limit_state(self) -> RateLimitState | None:
        return self._rate_limiter.get_state()

    def get_circuit_states(self) -> dict[str, str]:
        """Current breaker state per key (empty for executors without breakers)."""
        breakers = getattr(self._executor, "breakers", None)
        return breakers.states() if breakers is not None else {}

    def connection_info(self) -> dict[str, str]:
        return self._auth.connection_info()

