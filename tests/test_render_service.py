import asyncio
import json

import httpx
import pytest

from modelsnap.core.exceptions import ExternalServiceError
from modelsnap.services.render import FashnRenderService, resolve_image_url


def make_service(handler, **overrides):
    options = dict(
        api_key="test-key",
        base_url="https://api.fashn.ai",
        poll_interval=0,
        max_wait=5,
        submit_retries=3,
        backoff_base=0,
        transport=httpx.MockTransport(handler),
    )
    options.update(overrides)
    return FashnRenderService(**options)


class FashnStub:
    """Scripted FASHN API. ``run`` and ``status`` are lists of (status_code, body)."""

    def __init__(self, run, status):
        self.run = list(run)
        self.status = list(status)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/v1/run":
            code, body = self.run.pop(0)
        elif request.url.path.startswith("/v1/status/"):
            code, body = self.status.pop(0) if len(self.status) > 1 else self.status[0]
        else:
            return httpx.Response(200, content=b"image-bytes")
        return httpx.Response(code, json=body)

    def count(self, path_prefix):
        return sum(1 for r in self.requests if r.url.path.startswith(path_prefix))


OK_RUN = (200, {"id": "pred_123", "error": None})
PROCESSING = (200, {"id": "pred_123", "status": "processing", "output": None, "error": None})
SUCCEEDED = (200, {"id": "pred_123", "status": "completed", "output": ["https://cdn.fashn.ai/pred_123/output_0.png"], "error": None})


def test_render_submits_and_polls_until_done():
    stub = FashnStub(run=[OK_RUN], status=[PROCESSING, PROCESSING, SUCCEEDED])
    service = make_service(stub)

    result = asyncio.run(service.render("/uploads/garment.jpg", "https://cdn.example.com/avatar.jpg"))

    assert result.external_id == "pred_123"
    assert result.output_url == "https://cdn.fashn.ai/pred_123/output_0.png"
    submit = stub.requests[0]
    assert submit.headers["Authorization"] == "Bearer test-key"
    body = json.loads(submit.content)
    assert body["model_name"] == "tryon-v1.6"
    assert body["inputs"]["mode"] == "balanced"
    assert body["inputs"]["garment_image"].startswith("http")
    assert body["inputs"]["garment_image"].endswith("/uploads/garment.jpg")
    assert stub.count("/v1/status/") == 3


def test_submit_retries_server_errors():
    stub = FashnStub(run=[(503, {"error": "busy"}), (429, {"error": "slow down"}), OK_RUN], status=[SUCCEEDED])
    service = make_service(stub)

    result = asyncio.run(service.render("https://x/g.jpg", "https://x/m.jpg"))

    assert result.external_id == "pred_123"
    assert stub.count("/v1/run") == 3


def test_submit_gives_up_after_retries():
    stub = FashnStub(run=[(500, {"error": "down"})] * 3, status=[SUCCEEDED])
    service = make_service(stub)

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(service.render("https://x/g.jpg", "https://x/m.jpg"))

    assert exc.value.code == "RENDER_SUBMIT_FAILED"
    assert exc.value.retryable
    assert stub.count("/v1/run") == 3


def test_submit_retries_client_errors():
    stub = FashnStub(run=[(400, {"error": "bad image"}), (401, {"error": "bad key"}), OK_RUN], status=[SUCCEEDED])
    service = make_service(stub)

    result = asyncio.run(service.render("https://x/g.jpg", "https://x/m.jpg"))

    assert result.external_id == "pred_123"
    assert stub.count("/v1/run") == 3


def test_persistent_auth_failure_exhausts_submit_attempts():
    stub = FashnStub(run=[(401, {"error": "bad key"})] * 3, status=[SUCCEEDED])

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(make_service(stub).render("https://x/g.jpg", "https://x/m.jpg"))

    assert exc.value.code == "RENDER_SUBMIT_FAILED"
    assert "401" in exc.value.message
    assert stub.count("/v1/run") == 3
    assert stub.count("/v1/status/") == 0


def test_run_response_with_error_is_rejected():
    stub = FashnStub(run=[(200, {"id": None, "error": {"name": "ImageLoadError", "message": "cannot load"}})], status=[SUCCEEDED])

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(make_service(stub).render("https://x/g.jpg", "https://x/m.jpg"))
    assert "cannot load" in exc.value.message


def test_poll_404_means_not_ready():
    stub = FashnStub(run=[OK_RUN], status=[(404, {"error": "not found"}), SUCCEEDED])

    result = asyncio.run(make_service(stub).render("https://x/g.jpg", "https://x/m.jpg"))

    assert result.output_url.endswith("output_0.png")


def test_failed_render_raises_service_message():
    failed = (200, {"id": "pred_123", "status": "failed", "output": None, "error": {"name": "PoseError", "message": "No person detected"}})
    stub = FashnStub(run=[OK_RUN], status=[failed])

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(make_service(stub).render("https://x/g.jpg", "https://x/m.jpg"))

    assert exc.value.message == "No person detected"
    assert exc.value.code == "RENDER_FAILED"


def test_success_without_output_is_an_error():
    empty = (200, {"id": "pred_123", "status": "succeeded", "output": [], "error": None})
    stub = FashnStub(run=[OK_RUN], status=[empty])

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(make_service(stub).render("https://x/g.jpg", "https://x/m.jpg"))
    assert exc.value.code == "RENDER_NO_OUTPUT"


def test_poll_times_out():
    stub = FashnStub(run=[OK_RUN], status=[PROCESSING])
    service = make_service(stub, poll_interval=0.01, max_wait=0.05)

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(service.render("https://x/g.jpg", "https://x/m.jpg"))

    assert exc.value.code == "RENDER_TIMEOUT"
    assert exc.value.retryable


def test_download_output():
    stub = FashnStub(run=[], status=[SUCCEEDED])

    data = asyncio.run(make_service(stub).download_output("https://cdn.fashn.ai/pred_123/output_0.png"))

    assert data == b"image-bytes"


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("https://cdn.example.com/a.jpg", "https://cdn.example.com/a.jpg"),
        ("/avatars/a.jpg", "https://app.example.com/avatars/a.jpg"),
        ("avatars/a.jpg", "https://app.example.com/avatars/a.jpg"),
    ],
)
def test_resolve_image_url(ref, expected):
    assert resolve_image_url(ref, "https://app.example.com/") == expected
