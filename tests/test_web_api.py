from __future__ import annotations

from fastapi.testclient import TestClient

from autodeck.config import AutodeckConfig
from autodeck.store import Store
from autodeck.web.api import create_app
from deck_fakes import ScriptedGenerator, echo_producer, plan_response

BRIEFING = {"audience": "Board", "type": "Pitch", "objective": "Approve budget"}


def _app(tmp_path, responses):
    store = Store(db_path=tmp_path / "autodeck.db")
    collection = store.create_collection("Budget")
    store.add_document(collection.id, "forecast.md", content="Revenue grows. " * 300)
    generator = ScriptedGenerator(responses)
    app = create_app(config=AutodeckConfig(root=tmp_path), store=store, generator=generator)
    return app, store, collection, generator


def test_session_lifecycle_over_http(tmp_path):
    app, store, collection, generator = _app(tmp_path, [plan_response(3, questions=True), plan_response(2), echo_producer])

    with TestClient(app) as client:
        created = client.post(
            "/api/sessions",
            json={"collection_id": collection.id, "briefing": BRIEFING, "lod": "executive", "wait": True},
        )
        assert created.status_code == 200
        session = created.json()["session"]
        assert session["status"] == "reviewing"
        assert session["lod"] == "executive"
        session_id = session["id"]

        toggled = client.post(f"/api/sessions/{session_id}/cards/3/toggle").json()
        assert toggled["session"]["review_state"]["card_states"]["3"] == {"included": False}

        answered = client.post(
            f"/api/sessions/{session_id}/answers",
            json={"question_id": "q1", "option_key": "a"},
        ).json()
        assert answered["session"]["review_state"]["question_answers"] == {"q1": "a"}

        client.post(f"/api/sessions/{session_id}/comment", json={"text": "Keep it tight"})

        approved = client.post(f"/api/sessions/{session_id}/approve", params={"wait": True}).json()
        assert approved["session"]["status"] == "complete"
        assert approved["busy"] is False
        assert "2 cards generated successfully." in approved["notices"]

        cards = client.get(f"/api/collections/{collection.id}/cards").json()["items"]
        assert [card["title"] for card in cards] == ["Card title 1", "Card title 2"]

        usage = client.get(f"/api/sessions/{session_id}/usage").json()
        assert usage["input_tokens"] == 3000
        assert usage["cost_usd"] > 0

        assert client.delete(f"/api/sessions/{session_id}").json() == {"deleted": True}
        assert client.get(f"/api/sessions/{session_id}").status_code == 404

    assert generator.calls == 3


def test_invalid_briefing_returns_400(tmp_path):
    app, _, collection, generator = _app(tmp_path, [plan_response(3)])

    with TestClient(app) as client:
        response = client.post(
            "/api/sessions",
            json={
                "collection_id": collection.id,
                "briefing": {**BRIEFING, "audience": ""},
                "wait": True,
            },
        )

    assert response.status_code == 400
    assert response.json()["detail"] == "Briefing field 'audience' is required."
    assert generator.calls == 0


def test_unknown_lod_rejected_by_validation(tmp_path):
    app, _, collection, _ = _app(tmp_path, [])

    with TestClient(app) as client:
        response = client.post(
            "/api/sessions",
            json={"collection_id": collection.id, "briefing": BRIEFING, "lod": "verbose"},
        )

    assert response.status_code == 422


def test_revise_and_abort_endpoints(tmp_path):
    app, _, collection, generator = _app(tmp_path, [plan_response(3), plan_response(4)])

    with TestClient(app) as client:
        session_id = client.post(
            "/api/sessions",
            json={"collection_id": collection.id, "briefing": BRIEFING, "wait": True},
        ).json()["session"]["id"]

        revised = client.post(f"/api/sessions/{session_id}/revise", params={"wait": True}).json()
        assert revised["session"]["revision_count"] == 1
        assert len(revised["session"]["plan"]["cards"]) == 4

        aborted = client.post(f"/api/sessions/{session_id}/abort").json()
        assert aborted["session"]["status"] == "reviewing"

    assert generator.calls == 2


def test_estimate_and_collections(tmp_path):
    app, _, collection, _ = _app(tmp_path, [])

    with TestClient(app) as client:
        estimate = client.get(f"/api/collections/{collection.id}/estimate", params={"lod": "standard"}).json()
        collections = client.get("/api/collections").json()["items"]
        missing = client.get("/api/collections/nope/estimate")

    assert estimate == {
        "total_word_count": 600,
        "lod": "standard",
        "estimate": 3,
        "min": 3,
        "max": 4,
        "exceeds_warning": False,
    }
    assert [item["name"] for item in collections] == ["Budget"]
    assert missing.status_code == 404


def test_unknown_session_is_404(tmp_path):
    app, _, _, _ = _app(tmp_path, [])

    with TestClient(app) as client:
        assert client.post("/api/sessions/nope/approve").status_code == 404
        assert client.get("/api/sessions/nope/events").status_code == 404
