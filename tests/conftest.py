from dataclasses import replace
from typing import List, Optional, Sequence, Union

import pytest

from lumina.models.schemas import GeneratedResult, ModelTier, OperationError, OperationResponse, OperationState
from lumina.services.backends.base import JobBackend, JobHandle
from lumina.services.credentials import Credential, StaticCredentialProvider
from lumina.services.errors import ErrorClassifier
from lumina.services.job_client import LongRunningJobClient

Step = Union[OperationState, Exception]


def pending() -> OperationState:
    return OperationState(done=False)


def done_with(*uris: Optional[str]) -> OperationState:
    return OperationState(
        done=True,
        response=OperationResponse(results=[GeneratedResult(uri=uri) for uri in uris]),
    )


def failed_with(message: str) -> OperationState:
    return OperationState(done=True, error=OperationError(message=message))


class FakeBackend(JobBackend):
    """Backend driven by a script of poll outcomes; the last step repeats."""

    name = "fake"

    def __init__(self, poll_steps: Sequence[Step] = (), submit_step: Optional[Step] = None):
        self.poll_steps: List[Step] = list(poll_steps) or [pending()]
        self.submit_step = submit_step or pending()
        self.submit_calls: List[dict] = []
        self.poll_calls: List[JobHandle] = []

    def model_id(self, tier: ModelTier) -> str:
        return f"model-{tier.value}"

    async def submit_job(self, credential, **kwargs) -> JobHandle:
        self.submit_calls.append(dict(kwargs, credential=credential))
        if isinstance(self.submit_step, Exception):
            raise self.submit_step
        return JobHandle(
            name="operations/fake-1",
            backend=self.name,
            credential=credential,
            operation=self.submit_step,
            state={"version": 0},
        )

    async def poll_job(self, handle: JobHandle) -> JobHandle:
        self.poll_calls.append(handle)
        step = self.poll_steps.pop(0) if len(self.poll_steps) > 1 else self.poll_steps[0]
        if isinstance(step, Exception):
            raise step
        return replace(handle, operation=step, state={"version": handle.state["version"] + 1})


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def credential():
    return Credential(secret="test-key")


@pytest.fixture
def credential_provider(credential):
    return StaticCredentialProvider(credential)


@pytest.fixture
def classifier():
    return ErrorClassifier(["Requested entity was not found"])


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def make_client(credential_provider, classifier, sleep):
    def _make(backend: JobBackend, **kwargs) -> LongRunningJobClient:
        kwargs.setdefault("sleep", sleep)
        return LongRunningJobClient(backend, kwargs.pop("provider", credential_provider), classifier, **kwargs)

    return _make
