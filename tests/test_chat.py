import json

from fastapi.testclient import TestClient

from app.services.llm_gateway import TextGenerationError


def parse_sse(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        lines = block.split("\n")
        event = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        events.append((event, data))
    return events


def test_chat_streams_tokens_and_result(test_client: TestClient, stub_generator):
    response = test_client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "Show me the client with id 1"}]},
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["token", "token", "result"]
    assert events[-1][1]["text"] == "Hello from the CRM"
    assert events[-1][1]["crm"]["kind"] == "single_client"
    assert "Jane" in stub_generator.requests[0].system_prompt


def test_chat_without_crm_match_still_answers(test_client: TestClient, stub_generator):
    response = test_client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "What are mortgage rates like?"}]},
    )
    events = parse_sse(response.text)
    assert events[-1][0] == "result"
    assert events[-1][1]["crm"] is None
    assert "No CRM records were retrieved" in stub_generator.requests[0].system_prompt


def test_chat_reports_generation_errors(test_client: TestClient, stub_generator):
    stub_generator.pieces = []
    stub_generator.exc = TextGenerationError("model unavailable")

    response = test_client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hello"}]},
    )
    assert response.status_code == 200
    assert parse_sse(response.text) == [("error", {"message": "Error: model unavailable"})]


def test_chat_requires_messages(test_client: TestClient):
    response = test_client.post("/api/chat", json={"messages": []})
    assert response.status_code == 422


def test_chat_echoes_request_id(test_client: TestClient):
    response = test_client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hello"}]},
        headers={"X-Request-Id": "req-123"},
    )
    assert response.headers["x-request-id"] == "req-123"
