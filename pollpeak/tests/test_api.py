from datetime import timedelta
from pollpeak.tests.conftest import STANDARD_PAYOUTS


async def create_profile(client, user_id, balance=0):
    response = await client.post("/api/v1/profiles", json={"user_id": user_id, "opening_balance": balance})
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_profile_endpoints(client):
    profile = await create_profile(client, "alice", balance=120)
    assert profile["points"] == 120

    duplicate = await client.post("/api/v1/profiles", json={"user_id": "alice"})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "profile_already_exists"

    balance = await client.get("/api/v1/profiles/alice/balance")
    assert balance.json() == {"user_id": "alice", "points": 120}
    transactions = await client.get("/api/v1/profiles/alice/transactions")
    assert [t["kind"] for t in transactions.json()] == ["grant"]
    audit = await client.get("/api/v1/profiles/alice/audit")
    assert audit.json()["consistent"] is True

    missing = await client.get("/api/v1/profiles/nobody/balance")
    assert missing.status_code == 404
    assert missing.json()["error"] == "profile_not_found"


async def test_poll_voting_flow(client, notifier):
    await create_profile(client, "u1")
    await create_profile(client, "u2")
    created = await client.post("/api/v1/polls", json={"question": "Tabs or spaces?", "options": ["Tabs", "Spaces"]})
    assert created.status_code == 201
    poll = created.json()
    assert [o["index"] for o in poll["options"]] == [0, 1]

    vote = await client.post(f"/api/v1/polls/{poll['id']}/vote", json={"user_id": "u1", "option_index": 1})
    assert vote.status_code == 200
    assert vote.json()["points_awarded"] == 50
    await client.post(f"/api/v1/polls/{poll['id']}/vote", json={"user_id": "u2", "option_index": 1})

    again = await client.post(f"/api/v1/polls/{poll['id']}/vote", json={"user_id": "u1", "option_index": 0})
    assert again.status_code == 409
    assert again.json()["error"] == "already_voted"
    bad_option = await client.post(f"/api/v1/polls/{poll['id']}/vote", json={"user_id": "u1", "option_index": 5})
    assert bad_option.status_code == 422

    results = (await client.get(f"/api/v1/polls/{poll['id']}/results")).json()
    assert results["total_votes"] == 2
    assert [o["percentage"] for o in results["options"]] == [0.0, 100.0]
    check = (await client.get(f"/api/v1/polls/{poll['id']}/check-vote/u1")).json()
    assert check["has_voted"] is True
    assert len(notifier.of_type("vote_cast")) == 2

    assert (await client.get("/api/v1/polls/999/results")).status_code == 404


async def test_poll_validation(client):
    response = await client.post("/api/v1/polls", json={"question": "Only one?", "options": ["A"]})
    assert response.status_code == 422


async def test_contest_flow(client, clock):
    for user_id in ("p1", "p2", "p3"):
        await create_profile(client, user_id, balance=100)
    start = clock() + timedelta(hours=1)
    created = await client.post("/api/v1/contests", json={
        "title": "API Cup",
        "entry_fee": 100,
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "prize_pool_amount": 1000,
        "num_winners": 3,
        "payout_structure": STANDARD_PAYOUTS,
    })
    assert created.status_code == 201, created.text
    contest = created.json()
    assert contest["status"] == "enrolling"
    contest_id = contest["id"]

    for user_id in ("p1", "p2", "p3"):
        enrolled = await client.post(f"/api/v1/contests/{contest_id}/enroll", json={"user_id": user_id})
        assert enrolled.status_code == 201
    duplicate = await client.post(f"/api/v1/contests/{contest_id}/enroll", json={"user_id": "p1"})
    assert duplicate.json()["error"] == "already_enrolled"

    early = await client.post(f"/api/v1/contests/{contest_id}/disburse")
    assert early.status_code == 409
    assert early.json()["error"] == "invalid_contest_state"

    phase = await client.post(f"/api/v1/contests/{contest_id}/phase", json={"target": "active"})
    assert phase.json()["status"] == "active"
    status = (await client.get(f"/api/v1/contests/{contest_id}/play-status/p1")).json()
    assert status == {"can_play": True, "message": "Ready to play"}
    for user_id, score in (("p1", 10), ("p2", 30), ("p3", 20)):
        scored = await client.post(f"/api/v1/contests/{contest_id}/scores", json={"user_id": user_id, "score": score})
        assert scored.status_code == 200
    await client.post(f"/api/v1/contests/{contest_id}/phase", json={"target": "ended"})

    board = (await client.get(f"/api/v1/contests/{contest_id}/leaderboard")).json()
    assert [row["user_id"] for row in board] == ["p2", "p3", "p1"]

    disbursed = await client.post(f"/api/v1/contests/{contest_id}/disburse")
    assert disbursed.status_code == 200
    assert [p["amount"] for p in disbursed.json()["payouts"]] == [500, 300, 200]
    again = await client.post(f"/api/v1/contests/{contest_id}/disburse")
    assert again.status_code == 409
    assert again.json()["error"] == "already_disbursed"
    assert (await client.get("/api/v1/profiles/p2/balance")).json()["points"] == 500


async def test_contest_validation(client, clock):
    start = clock() + timedelta(hours=1)
    over_allocated = await client.post("/api/v1/contests", json={
        "title": "Too generous",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "payout_structure": [{"rank": 1, "percentage": 80}, {"rank": 2, "percentage": 30}],
    })
    assert over_allocated.status_code == 422
    assert over_allocated.json()["error"] == "invalid_payout_structure"

    backwards = await client.post("/api/v1/contests", json={
        "title": "Backwards",
        "start_time": start.isoformat(),
        "end_time": (start - timedelta(hours=1)).isoformat(),
        "payout_structure": [{"rank": 1, "percentage": 100}],
    })
    assert backwards.status_code == 422

    bad_phase = await client.post("/api/v1/contests/1/phase", json={"target": "disbursed"})
    assert bad_phase.status_code == 422


async def test_cancel_endpoint(client):
    await create_profile(client, "p1", balance=100)
    created = await client.post("/api/v1/contests", json={
        "title": "Rained out",
        "entry_fee": 60,
        "start_time": "2025-07-12T13:00:00+00:00",
        "end_time": "2025-07-12T14:00:00+00:00",
        "payout_structure": [{"rank": 1, "percentage": 100}],
    })
    contest_id = created.json()["id"]
    await client.post(f"/api/v1/contests/{contest_id}/enroll", json={"user_id": "p1"})
    assert (await client.get("/api/v1/profiles/p1/balance")).json()["points"] == 40

    cancelled = await client.post(f"/api/v1/contests/{contest_id}/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["total_refunded"] == 60
    assert (await client.get("/api/v1/profiles/p1/balance")).json()["points"] == 100
    assert (await client.get("/api/v1/contests/404/leaderboard")).status_code == 404


async def test_non_finite_score_is_rejected(client, clock):
    await create_profile(client, "p1", balance=100)
    start = clock() + timedelta(hours=1)
    created = await client.post("/api/v1/contests", json={
        "title": "Night Quiz",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "payout_structure": [{"rank": 1, "percentage": 100}],
    })
    contest_id = created.json()["id"]
    await client.post(f"/api/v1/contests/{contest_id}/enroll", json={"user_id": "p1"})
    await client.post(f"/api/v1/contests/{contest_id}/phase", json={"target": "active"})

    for raw in ("NaN", "Infinity"):
        response = await client.post(f"/api/v1/contests/{contest_id}/scores",
                                     content=f'{{"user_id": "p1", "score": {raw}}}',
                                     headers={"Content-Type": "application/json"})
        assert response.status_code == 422, raw

    scored = await client.post(f"/api/v1/contests/{contest_id}/scores", json={"user_id": "p1", "score": 4})
    assert scored.status_code == 200


async def test_contest_list_shows_current_phase(client, clock):
    start = clock() + timedelta(hours=1)
    created = await client.post("/api/v1/contests", json={
        "title": "Morning Quiz",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "payout_structure": [{"rank": 1, "percentage": 100}],
    })
    contest_id = created.json()["id"]
    clock.advance(hours=3)

    listed = {c["id"]: c["status"] for c in (await client.get("/api/v1/contests")).json()}
    detail = (await client.get(f"/api/v1/contests/{contest_id}")).json()

    assert listed[contest_id] == "ended"
    assert detail["status"] == "ended"
