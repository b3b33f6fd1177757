import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.crm import ClientRecord, ClientStatus
from app.services import background_tasks as background_tasks_module
from app.services import client_repository as client_repository_module
from app.services import conversation_repository as conversation_repository_module
from app.services import llm_gateway as llm_gateway_module
from app.services.llm_gateway import LLMStreamRequest


NOW = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


# Configure anyio to use only asyncio backend
@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_client(client_id: int, first_name: str, last_name: str, **overrides) -> ClientRecord:
    data = {
        "id": client_id,
        "first_name": first_name,
        "last_name": last_name,
        "email": f"{first_name}.{last_name}@example.com".lower(),
        "status": ClientStatus.ACTIVE,
    }
    data.update(overrides)
    return ClientRecord(**data)


def sample_clients():
    return [
        make_client(
            1,
            "Jane",
            "Smith",
            phone="555-0101",
            next_follow_up=NOW + timedelta(days=2),
            budget_min=400000,
            budget_max=550000,
            property_type="Condo",
            assigned_agent="Alex Kim",
            notes="Wants a two bedroom near the park",
        ),
        make_client(2, "John", "Doe", status=ClientStatus.LEAD, next_follow_up=NOW + timedelta(days=10)),
        make_client(3, "Janet", "Jackson", status=ClientStatus.LEAD),
        make_client(4, "Bob", "Stone", status=ClientStatus.CLOSED, email=None),
    ]


class StubGenerator:
    """Streams fixed pieces; optionally fails after them."""

    def __init__(self, pieces=("Hello", " from the CRM"), exc=None) -> None:
        self.pieces = list(pieces)
        self.exc = exc
        self.requests = []

    async def stream(self, req: LLMStreamRequest):
        self.requests.append(req)
        for piece in self.pieces:
            yield piece
        if self.exc is not None:
            raise self.exc


@pytest.fixture
def client_repository():
    return client_repository_module.InMemoryClientRepository(sample_clients())


@pytest.fixture
def stub_generator():
    return StubGenerator()


@pytest.fixture(autouse=True)
def override_client_repository(client_repository):
    app.dependency_overrides[client_repository_module.get_client_repository] = lambda: client_repository
    yield client_repository
    app.dependency_overrides.pop(client_repository_module.get_client_repository, None)


@pytest.fixture(autouse=True)
def override_conversation_repository():
    repo = conversation_repository_module.InMemoryConversationRepository()
    app.dependency_overrides[conversation_repository_module.get_conversation_repository] = lambda: repo
    yield repo
    app.dependency_overrides.pop(conversation_repository_module.get_conversation_repository, None)


@pytest.fixture(autouse=True)
def override_llm_gateway(stub_generator):
    app.dependency_overrides[llm_gateway_module.get_llm_gateway] = lambda: stub_generator
    yield stub_generator
    app.dependency_overrides.pop(llm_gateway_module.get_llm_gateway, None)


@pytest.fixture(autouse=True)
def override_background_tasks():
    runner = background_tasks_module.DetachedTaskRunner()
    app.dependency_overrides[background_tasks_module.get_background_task_runner] = lambda: runner
    yield runner
    app.dependency_overrides.pop(background_tasks_module.get_background_task_runner, None)


@pytest.fixture()
def test_client() -> TestClient:
    with TestClient(app) as client:
        yield client


class FakeResponse:
    def __init__(self, data) -> None:
        self.data = data


class FakeQuery:
    """Records the builder chain; `execute` pops the next queued response."""

    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self._client = client
        self.calls = [f"table:{table}"]
        self.payload = None

    def _record(self, call: str) -> "FakeQuery":
        self.calls.append(call)
        return self

    def select(self, cols: str):
        return self._record(f"select:{cols}")

    def eq(self, key: str, value):
        return self._record(f"eq:{key}={value}")

    def ilike(self, key: str, pattern: str):
        return self._record(f"ilike:{key}={pattern}")

    def or_(self, filters: str):
        return self._record(f"or:{filters}")

    def gte(self, key: str, value):
        return self._record(f"gte:{key}")

    def lte(self, key: str, value):
        return self._record(f"lte:{key}")

    def order(self, key: str, desc: bool = False):
        return self._record(f"order:{key}:desc={desc}")

    def limit(self, n: int):
        return self._record(f"limit:{n}")

    def insert(self, payload):
        self.payload = payload
        return self._record("insert")

    def update(self, payload):
        self.payload = payload
        return self._record("update")

    def delete(self):
        return self._record("delete")

    def execute(self):
        return self._client.run(self)


class FakeSupabase:
    def __init__(self, responses=None, *, error=None, delay_s: float = 0.0, default=None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.delay_s = delay_s
        self.default = default if default is not None else []
        self.executed = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def run(self, query: FakeQuery) -> FakeResponse:
        if self.delay_s:
            time.sleep(self.delay_s)
        self.executed.append(query)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.responses.pop(0) if self.responses else self.default)
