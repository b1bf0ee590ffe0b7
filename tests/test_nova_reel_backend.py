from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from lumina.models.schemas import AspectRatio, ModelTier, ReferenceImage, Resolution
from lumina.services.backends.base import JobHandle
from lumina.services.backends.nova_reel import NovaReelBackend
from lumina.services.credentials import Credential
from lumina.services.errors import TransportError, ValidationError

CREDENTIAL = Credential(secret="aws-secret", key_id="AKIA123", session_token="token")


@pytest.fixture
def aws_clients():
    bedrock = MagicMock(name="bedrock-runtime")
    s3 = MagicMock(name="s3")
    return {"bedrock-runtime": bedrock, "s3": s3}


@pytest.fixture
def backend(aws_clients):
    created = []

    def factory(service_name, credential):
        created.append((service_name, credential))
        return aws_clients[service_name]

    backend = NovaReelBackend(
        model_id="amazon.nova-reel-v1:0",
        s3_bucket="videos-bucket",
        s3_prefix="bedrock-temp",
        presigned_url_seconds=600,
        client_factory=factory,
    )
    backend.created_clients = created
    return backend


def submit_kwargs(**overrides):
    kwargs = {
        "model_id": "amazon.nova-reel-v1:0",
        "prompt": "drone shot over a glacier",
        "image": None,
        "number_of_videos": 1,
        "resolution": Resolution.HD,
        "aspect_ratio": AspectRatio.LANDSCAPE,
    }
    kwargs.update(overrides)
    return kwargs


def handle_for(arn="arn:aws:bedrock:us-east-1:1:async-invoke/abc"):
    return JobHandle(
        name=arn,
        backend="nova_reel",
        credential=CREDENTIAL,
        state={"s3_bucket": "videos-bucket", "s3_prefix": "bedrock-temp/abc"},
    )


def test_every_tier_uses_the_configured_model(backend):
    assert backend.model_id(ModelTier.FAST) == "amazon.nova-reel-v1:0"
    assert backend.model_id(ModelTier.QUALITY) == "amazon.nova-reel-v1:0"


@pytest.mark.asyncio
async def test_submit_starts_async_invoke(backend, aws_clients):
    aws_clients["bedrock-runtime"].start_async_invoke.return_value = {"invocationArn": "arn:job"}
    image = ReferenceImage(data=b"png-bytes", mime_type="image/png")

    handle = await backend.submit_job(CREDENTIAL, **submit_kwargs(image=image))

    assert handle.name == "arn:job"
    assert handle.state["s3_prefix"].startswith("bedrock-temp/")
    assert backend.created_clients == [("bedrock-runtime", CREDENTIAL)]

    request = aws_clients["bedrock-runtime"].start_async_invoke.call_args.kwargs
    assert request["modelId"] == "amazon.nova-reel-v1:0"
    model_input = request["modelInput"]
    assert model_input["taskType"] == "TEXT_VIDEO"
    assert model_input["textToVideoParams"]["text"] == "drone shot over a glacier"
    assert model_input["textToVideoParams"]["images"][0]["format"] == "png"
    assert model_input["videoGenerationConfig"]["dimension"] == "1280x720"
    s3_uri = request["outputDataConfig"]["s3OutputDataConfig"]["s3Uri"]
    assert s3_uri == f"s3://videos-bucket/{handle.state['s3_prefix']}"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"aspect_ratio": AspectRatio.PORTRAIT},
        {"resolution": Resolution.FULL_HD},
        {"prompt": None, "image": ReferenceImage(data=b"x", mime_type="image/png")},
        {"image": ReferenceImage(data=b"x", mime_type="image/webp")},
    ],
)
async def test_unsupported_requests_fail_before_calling_bedrock(backend, aws_clients, overrides):
    with pytest.raises(ValidationError):
        await backend.submit_job(CREDENTIAL, **submit_kwargs(**overrides))
    aws_clients["bedrock-runtime"].start_async_invoke.assert_not_called()


@pytest.mark.asyncio
async def test_submit_client_error_is_a_transport_error(backend, aws_clients):
    aws_clients["bedrock-runtime"].start_async_invoke.side_effect = ClientError(
        {"Error": {"Code": "ThrottlingException", "Message": "Too many requests"}}, "StartAsyncInvoke"
    )

    with pytest.raises(TransportError, match="Too many requests"):
        await backend.submit_job(CREDENTIAL, **submit_kwargs())


@pytest.mark.asyncio
async def test_in_progress_job_is_pending(backend, aws_clients):
    aws_clients["bedrock-runtime"].get_async_invoke.return_value = {"status": "InProgress"}

    refreshed = await backend.poll_job(handle_for())

    assert refreshed.operation.done is False
    aws_clients["bedrock-runtime"].get_async_invoke.assert_called_once_with(invocationArn=handle_for().name)


@pytest.mark.asyncio
async def test_failed_job_reports_failure_message(backend, aws_clients):
    aws_clients["bedrock-runtime"].get_async_invoke.return_value = {
        "status": "Failed",
        "failureMessage": "Content blocked",
    }

    refreshed = await backend.poll_job(handle_for())

    assert refreshed.operation.done is True
    assert refreshed.operation.error.message == "Content blocked"


@pytest.mark.asyncio
async def test_completed_job_returns_presigned_video_url(backend, aws_clients):
    aws_clients["bedrock-runtime"].get_async_invoke.return_value = {
        "status": "Completed",
        "outputDataConfig": {"s3OutputDataConfig": {"s3Uri": "s3://videos-bucket/bedrock-temp/abc"}},
    }
    aws_clients["s3"].list_objects_v2.return_value = {
        "Contents": [{"Key": "bedrock-temp/abc/manifest.json"}, {"Key": "bedrock-temp/abc/output.mp4"}]
    }
    aws_clients["s3"].generate_presigned_url.return_value = "https://s3.example/output.mp4?X-Amz-Signature=x"

    refreshed = await backend.poll_job(handle_for())

    result = refreshed.operation.response.results[0]
    assert result.uri == "https://s3.example/output.mp4?X-Amz-Signature=x"
    assert result.expiry is not None
    aws_clients["s3"].list_objects_v2.assert_called_once_with(Bucket="videos-bucket", Prefix="bedrock-temp/abc")
    aws_clients["s3"].generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "videos-bucket", "Key": "bedrock-temp/abc/output.mp4"},
        ExpiresIn=600,
    )


@pytest.mark.asyncio
async def test_completed_job_without_video_has_no_results(backend, aws_clients):
    aws_clients["bedrock-runtime"].get_async_invoke.return_value = {"status": "Completed"}
    aws_clients["s3"].list_objects_v2.return_value = {"Contents": []}

    refreshed = await backend.poll_job(handle_for())

    assert refreshed.operation.done is True
    assert refreshed.operation.response.results == []
    aws_clients["s3"].list_objects_v2.assert_called_once_with(Bucket="videos-bucket", Prefix="bedrock-temp/abc")


@pytest.mark.asyncio
async def test_poll_client_error_is_a_transport_error(backend, aws_clients):
    aws_clients["bedrock-runtime"].get_async_invoke.side_effect = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "Requested entity was not found"}},
        "GetAsyncInvoke",
    )

    with pytest.raises(TransportError, match="Requested entity was not found"):
        await backend.poll_job(handle_for())
