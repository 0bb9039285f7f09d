"""Camera Remote API transport over HTTP.

Each call POSTs a JSON envelope to ``<endpoint>/sony/<service>``:

    {"method": "getEvent", "params": [false], "id": 1, "version": "1.2"}

and decodes either ``{"result": [...], "id": 1}`` or
``{"error": [code, message], "id": 1}``. Error payloads come back as
``RpcError`` values, not exceptions, because 40403 ("still capturing") is
an expected answer during long exposures. Anything that prevents a
decodable answer is raised: ``ConnectionFailedError`` when the request
does not complete with a 2xx status, ``ProtocolError`` when the body is
not the expected JSON.

With ``download_postview`` the postview images named by a capture result
are streamed into a local directory under the camera's file names, and the
result lists local paths instead of URLs.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import requests

from alpha_remote.drivers.errors import ConnectionFailedError, ProtocolError
from alpha_remote.drivers.operations import Operation, Service
from alpha_remote.drivers.transports.base import RawResult, RpcError, collapse_single
from alpha_remote.observability import RpcStats, get_logger

logger = get_logger(__name__)

#: Address the camera uses on its own Wi-Fi access point.
DEFAULT_ENDPOINT = "http://192.168.122.1:8080"

#: Per-request timeout. Long exposures are not bounded by this: the camera
#: answers actTakePicture with 40403 and awaitTakePicture is re-issued.
DEFAULT_TIMEOUT_S = 10.0

#: Exposure compensation is exchanged in thirds of a stop.
EXPOSURE_COMPENSATION_STEP = 1.0 / 3.0

#: Operations whose result lists postview image URLs.
POSTVIEW_OPERATIONS = frozenset(
    {Operation.ACT_TAKE_PICTURE, Operation.AWAIT_TAKE_PICTURE}
)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def build_envelope(
    operation: Operation, params: list[Any] | None = None
) -> dict[str, Any]:
    """Build the request body for ``operation``.

    Example:
        >>> build_envelope(Operation.GET_EVENT, [False])
        {'method': 'getEvent', 'params': [False], 'id': 1, 'version': '1.2'}
    """
    return {
        "method": operation.value,
        "params": list(params) if params else [],
        "id": 1,
        "version": operation.version,
    }


def decode_response(body: Any) -> RawResult:
    """Turn a decoded response object into a RawResult.

    Args:
        body: Parsed JSON body.

    Returns:
        The collapsed ``result`` value, or an RpcError for ``error``.

    Raises:
        ProtocolError: Body is neither a result nor an error object.
    """
    if not isinstance(body, dict):
        raise ProtocolError(f"Unexpected response type: {type(body).__name__}")
    if "error" in body:
        error = body["error"]
        if isinstance(error, list | tuple) and error:
            code = error[0]
            message = str(error[1]) if len(error) > 1 else ""
        else:
            code, message = error, ""
        try:
            return RpcError(int(code), message)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed error payload: {error!r}") from e
    if "result" in body:
        return collapse_single(body["result"])
    raise ProtocolError("Response has neither 'result' nor 'error'")


class HttpBackgroundJob:
    """Background request running on the transport's worker thread.

    The worker writes the raw response body to a sibling temporary file and
    renames it onto ``result_path``, so the file appears complete or not
    at all.
    """

    def __init__(
        self,
        future: Future[None],
        result_path: Path,
        finish: Callable[[RawResult], RawResult] | None = None,
    ) -> None:
        self.result_path = result_path
        self._future = future
        self._finish = finish
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> threading.Event:
        return self._cancelled

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> RawResult:
        # Re-raises ConnectionFailedError from the worker.
        self._future.result()
        try:
            body = json.loads(self.result_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ProtocolError(f"Unreadable background result: {e}") from e
        result = decode_response(body)
        if self._finish is not None:
            result = self._finish(result)
        return result

    def cancel(self) -> None:
        self._cancelled.set()
        self._future.cancel()


class HttpRpcTransport:
    """Transport for cameras running the Camera Remote API server.

    Args:
        endpoint: Base URL, without the ``/sony/<service>`` suffix.
        timeout: Per-request timeout in seconds.
        session: requests Session to reuse, mainly for tests.
        stats: Optional statistics sink.
        download_postview: Replace postview URLs in capture results with
            downloaded local files.
        download_dir: Where postviews are saved. A fresh temporary
            directory is created on first download when None.
    """

    kind = "http"
    ev_step: float | None = EXPOSURE_COMPENSATION_STEP

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT_S,
        session: requests.Session | None = None,
        stats: RpcStats | None = None,
        download_postview: bool = False,
        download_dir: Path | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.download_postview = download_postview
        self._download_dir = download_dir
        self._session = session if session is not None else requests.Session()
        self._stats = stats
        self._executor: ThreadPoolExecutor | None = None

    @property
    def download_dir(self) -> Path:
        if self._download_dir is None:
            self._download_dir = Path(tempfile.mkdtemp(prefix="alpha-remote-"))
        return self._download_dir

    def url_for(self, service: Service = Service.CAMERA) -> str:
        return f"{self.endpoint}/sony/{service.value}"

    def _post(
        self, operation: Operation, params: list[Any] | None, service: Service
    ) -> requests.Response:
        url = self.url_for(service)
        try:
            response = self._session.post(
                url, json=build_envelope(operation, params), timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise ConnectionFailedError(
                f"Timed out after {self.timeout}s: {url}", url=url
            ) from e
        except requests.exceptions.RequestException as e:
            raise ConnectionFailedError(f"Connection failed: {url}", url=url) from e
        if not response.ok:
            raise ConnectionFailedError(
                f"HTTP {response.status_code} from {url}",
                url=url,
                status_code=response.status_code,
                body=response.text[:500],
            )
        return response

    def execute(
        self,
        operation: Operation,
        params: list[Any] | None = None,
        service: Service = Service.CAMERA,
    ) -> RawResult:
        start = time.perf_counter()
        try:
            response = self._post(operation, params, service)
            try:
                body = response.json()
            except ValueError as e:
                raise ProtocolError(
                    f"Invalid JSON from {operation.value}: {response.text[:200]!r}"
                ) from e
            result = decode_response(body)
        except ConnectionFailedError:
            self._record(operation, start, "connection_failed")
            raise
        except ProtocolError:
            self._record(operation, start, "protocol")
            raise

        if isinstance(result, RpcError):
            self._record(operation, start, f"rpc_{result.code}")
            logger.debug(
                "RPC error",
                operation=operation.value,
                code=result.code,
                error=result.message,
            )
        else:
            self._record(operation, start, None)
            logger.debug(
                "RPC call",
                operation=operation.value,
                service=service.value,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
            )
        return self._fetch_postviews(operation, result)

    def _fetch_postviews(self, operation: Operation, result: RawResult) -> RawResult:
        if not self.download_postview or operation not in POSTVIEW_OPERATIONS:
            return result
        if result is None or isinstance(result, RpcError):
            return result
        if isinstance(result, str):
            return self._download_if_url(result)
        if isinstance(result, list | tuple):
            return [
                self._fetch_postviews(operation, item)
                if isinstance(item, list | tuple)
                else self._download_if_url(item)
                for item in result
            ]
        return result

    def _download_if_url(self, item: Any) -> Any:
        if isinstance(item, str) and item.startswith(("http://", "https://")):
            return str(self.download(item))
        return item

    def download(self, url: str) -> Path:
        """Stream ``url`` into ``download_dir`` under the camera's file name.

        The body is written to a ``.part`` file first and renamed when
        complete.

        Returns:
            Path of the local file.

        Raises:
            ConnectionFailedError: The request failed or answered non-2xx.
        """
        name = Path(urlsplit(url).path).name or "postview.jpg"
        target = self.download_dir / name
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".part")
        start = time.perf_counter()
        try:
            response = self._session.get(url, stream=True, timeout=self.timeout)
            try:
                if not response.ok:
                    raise ConnectionFailedError(
                        f"HTTP {response.status_code} from {url}",
                        url=url,
                        status_code=response.status_code,
                    )
                size = 0
                with open(tmp, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
                            size += len(chunk)
            finally:
                response.close()
        except requests.exceptions.RequestException as e:
            tmp.unlink(missing_ok=True)
            raise ConnectionFailedError(f"Download failed: {url}", url=url) from e
        os.replace(tmp, target)
        logger.info(
            "Postview downloaded",
            url=url,
            path=str(target),
            bytes=size,
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return target

    def _record(
        self, operation: Operation, start: float, error_type: str | None
    ) -> None:
        if self._stats is None:
            return
        self._stats.record(
            operation.value,
            duration_ms=(time.perf_counter() - start) * 1000,
            success=error_type is None,
            error_type=error_type,
        )

    def start_background(
        self, operation: Operation, result_path: Path
    ) -> HttpBackgroundJob:
        """Post ``operation`` from the worker thread and store the raw body.

        Only one worker exists, so background requests run strictly one
        after another.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="alpha-remote-http"
            )
        holder: dict[str, HttpBackgroundJob] = {}

        def work() -> None:
            start = time.perf_counter()
            try:
                response = self._post(operation, [], Service.CAMERA)
            except ConnectionFailedError:
                self._record(operation, start, "connection_failed")
                raise
            self._record(operation, start, None)
            job = holder.get("job")
            if job is not None and job.cancelled.is_set():
                return
            tmp = result_path.with_name(result_path.name + ".part")
            tmp.write_bytes(response.content)
            os.replace(tmp, result_path)

        future = self._executor.submit(work)
        job = HttpBackgroundJob(
            future, result_path, lambda raw: self._fetch_postviews(operation, raw)
        )
        holder["job"] = job
        logger.debug("Background request started", operation=operation.value)
        return job

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._session.close()
