"""Remote job source interface and its HTTP implementation."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Type

import httpx

from taskdeck.errors import InvalidJobIdError, JobClientError
from taskdeck.jobs.models import JobStatusPayload
from taskdeck.uploads.models import BundleStatusPayload

logger = logging.getLogger(__name__)

# fn(job_id) -> status payload (a JobStatusPayload or a mapping that validates into one)
StatusFetcher = Callable[[str], Awaitable[Any]]

_ID_KEYS = ("job_id", "task_id", "bundle_id", "id")


def require_job_id(response: Any, what: str = "job") -> str:
    """Extract and validate the job id returned by a work-submission call."""
    job_id = response
    if isinstance(response, Mapping):
        job_id = next((response[k] for k in _ID_KEYS if response.get(k)), None)
    if not isinstance(job_id, str) or not job_id.strip():
        raise InvalidJobIdError(job_id, what)
    return job_id.strip()


class RemoteJobSource(ABC):
    """Abstract remote system that accepts work and reports job status."""

    @abstractmethod
    async def submit(self, payload: Any) -> str:
        """Submit work. Returns the remote job id."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> JobStatusPayload:
        """Fetch the current status of a remote job."""
        ...


class HttpJobEndpoint(RemoteJobSource):
    """One submit/status endpoint pair on the remote job server."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        submit_path: str,
        status_path: str,
        *,
        payload_model: Type[JobStatusPayload] = JobStatusPayload,
        multipart: bool = False,
        what: str = "job",
    ):
        self._http = http
        self._submit_path = submit_path
        self._status_path = status_path
        self._payload_model = payload_model
        self._multipart = multipart
        self._what = what

    async def submit(self, payload: Any) -> str:
        if self._multipart:
            files = [("files", (name, content)) for name, content in payload]
            data = await self._request("POST", self._submit_path, files=files)
        else:
            data = await self._request("POST", self._submit_path, json=payload)
        job_id = require_job_id(data, self._what)
        logger.info("Submitted %s %s", self._what, job_id)
        return job_id

    async def get_status(self, job_id: str) -> JobStatusPayload:
        data = await self._request("GET", self._status_path.format(job_id=job_id))
        return self._payload_model.model_validate(_unwrap_status(data))

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise JobClientError(
                f"{method} {path} returned HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise JobClientError(f"{method} {path} failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise JobClientError(f"{method} {path} returned a non-JSON body") from exc


def _unwrap_status(data: Dict[str, Any]) -> Dict[str, Any]:
    # Query status comes back as {"status_code": ..., "task": {..., "result": {"payload": ...}}}
    task = data.get("task")
    if isinstance(task, dict) and "status" in task:
        data = dict(task)
        result = data.get("result")
        if isinstance(result, dict) and "payload" in result:
            data["result"] = result["payload"]
    return data


class HttpJobClient:
    """HTTP client for the remote job server (reports, queries, file bundles)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        report_paths: Tuple[str, str] = ("/report/generate", "/report/task/{job_id}"),
        query_paths: Tuple[str, str] = (
            "/mssql/query",
            "/mssql/query/background/{job_id}/status",
        ),
        bundle_paths: Tuple[str, str] = (
            "/files/smart_file_system",
            "/files/bundle_task_status/{job_id}",
        ),
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
        )

        self.reports = HttpJobEndpoint(self._http, *report_paths, what="report task")
        self.queries = HttpJobEndpoint(self._http, *query_paths, what="query task")
        self.bundles = HttpJobEndpoint(
            self._http,
            *bundle_paths,
            payload_model=BundleStatusPayload,
            multipart=True,
            what="bundle",
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "HttpJobClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
