TEAM_PASSWORD = "password123"

CHALLENGE_BODY = {
    "name": "Find the Beacon",
    "shortName": "Beacon",
    "points": 100,
    "location": {
        "topLeft": {"lat": 48.8584, "lng": 2.2945},
        "bottomRight": {"lat": 48.8554, "lng": 2.2975},
    },
    "keyHash": "a1b2c3d4e5f6g7h8i9j0",
}


async def create_team(client, name="Tech Wizards", max_members=8):
    resp = await client.post(
        "/api/admin/teams",
        json={"name": name, "password": TEAM_PASSWORD, "maxMembers": max_members},
    )
    assert resp.status == 201
    return await resp.json()


async def create_challenge(client, **overrides):
    resp = await client.post("/api/admin/challenges", json=dict(CHALLENGE_BODY, **overrides))
    assert resp.status == 201
    return await resp.json()


async def login(client, team="Tech Wizards", device_name=None):
    body = {"username": team, "password": TEAM_PASSWORD}
    if device_name:
        body["device_name"] = device_name
    resp = await client.post("/api/team/login", json=body)
    assert resp.status == 200
    return await resp.json()


async def test_team_login_returns_token_and_challenges(admin_client):
    await create_team(admin_client)
    challenge = await create_challenge(admin_client)

    data = await login(admin_client, device_name="Pixel")

    assert len(data["deviceToken"]) == 64
    assert data["username"] == "Pixel"
    assert data["challenges"] == [challenge]
    assert data["challenges"][0]["keyHash"] == CHALLENGE_BODY["keyHash"]
    assert isinstance(data["serverTime"], int)


async def test_team_login_generates_unique_device_names(admin_client):
    await create_team(admin_client)

    first = await login(admin_client, device_name="Pixel")
    second = await login(admin_client, device_name="Pixel")
    unnamed = await login(admin_client)

    assert second["username"].startswith("Pixel_")
    assert first["username"] != second["username"]
    assert unnamed["username"].startswith("Device_")


async def test_team_login_wrong_credentials(admin_client):
    await create_team(admin_client)

    resp = await admin_client.post(
        "/api/team/login", json={"username": "Tech Wizards", "password": "nope"}
    )
    assert resp.status == 401
    assert (await resp.json())["error"] == "WRONG_CREDS"

    resp = await admin_client.post(
        "/api/team/login", json={"username": "Nobody", "password": TEAM_PASSWORD}
    )
    assert resp.status == 401
    assert (await resp.json())["error"] == "WRONG_CREDS"


async def test_team_login_account_limit(admin_client):
    await create_team(admin_client, max_members=2)
    await login(admin_client)
    await login(admin_client)

    resp = await admin_client.post(
        "/api/team/login", json={"username": "Tech Wizards", "password": TEAM_PASSWORD}
    )
    assert resp.status == 403
    assert (await resp.json())["error"] == "ACCOUNT_LIMIT_REACHED"


async def test_update_leaderboard_scenario(admin_client):
    await create_team(admin_client)
    challenge = await create_challenge(admin_client)
    d1 = await login(admin_client, device_name="D1")
    d2 = await login(admin_client, device_name="D2")

    resp = await admin_client.post(
        "/api/update-leaderboard",
        json={
            "deviceToken": d1["deviceToken"],
            "solves": [{"challengeId": challenge["id"], "solvedAt": 1000}],
        },
    )
    assert resp.status == 200
    assert (await resp.json())["success"] is True

    resp = await admin_client.post(
        "/api/update-leaderboard",
        json={"solves": [{"challengeId": challenge["id"], "solvedAt": 500}]},
        headers={"Authorization": f"Bearer {d2['deviceToken']}"},
    )
    assert resp.status == 200

    resp = await admin_client.get(
        "/api/team/solves", headers={"Authorization": f"Bearer {d1['deviceToken']}"}
    )
    solves = (await resp.json())["solves"]
    assert solves == [{"challengeId": challenge["id"], "solvedAt": 500, "solvedBy": "D2"}]

    resp = await admin_client.get("/api/leaderboard")
    board = await resp.json()
    assert board["teamSolves"][0]["totalPoints"] == 100
    assert board["teamSolves"][0]["solves"][0]["timestamp"] == 500
    assert board["competitionEnded"] is False


async def test_update_leaderboard_rejections(admin_client):
    await create_team(admin_client)
    challenge = await create_challenge(admin_client)
    device = await login(admin_client)
    token = device["deviceToken"]

    resp = await admin_client.post(
        "/api/update-leaderboard", json={"deviceToken": "bogus", "solves": []}
    )
    assert resp.status == 401
    assert (await resp.json())["error"] == "UNAUTHORIZED"

    resp = await admin_client.post(
        "/api/update-leaderboard",
        json={"deviceToken": token, "solves": [{"challengeId": "one", "solvedAt": 1}]},
    )
    assert resp.status == 400
    assert (await resp.json())["error"] == "VALIDATION_ERROR"

    resp = await admin_client.post(
        "/api/update-leaderboard",
        json={"deviceToken": token, "solves": [], "isFinalSubmission": True},
    )
    assert resp.status == 200

    resp = await admin_client.post(
        "/api/update-leaderboard",
        json={
            "deviceToken": token,
            "solves": [{"challengeId": challenge["id"], "solvedAt": 1}],
        },
    )
    assert resp.status == 403
    assert (await resp.json())["error"] == "ALREADY_FINALIZED"

    resp = await admin_client.get("/api/leaderboard")
    board = await resp.json()
    assert board["teamSolves"][0]["totalPoints"] == 0
    assert board["competitionEnded"] is True


async def test_messages_are_pulled_once(admin_client):
    team = await create_team(admin_client)
    device = await login(admin_client)

    resp = await admin_client.post(
        "/api/admin/send-message", json={"teamId": team["id"], "content": "Go north"}
    )
    assert resp.status == 200
    message_id = (await resp.json())["messageId"]

    resp = await admin_client.get(f"/api/messages?deviceToken={device['deviceToken']}")
    first = await resp.json()
    resp = await admin_client.get(
        "/api/messages", headers={"Authorization": f"Bearer {device['deviceToken']}"}
    )
    second = await resp.json()

    assert [m["id"] for m in first["messages"]] == [message_id]
    assert second["messages"] == []

    resp = await admin_client.get("/api/messages")
    assert resp.status == 401


async def test_team_members_and_logout(admin_client):
    await create_team(admin_client)
    challenge = await create_challenge(admin_client)
    d1 = await login(admin_client, device_name="D1")
    await login(admin_client, device_name="D2")
    auth = {"Authorization": f"Bearer {d1['deviceToken']}"}

    await admin_client.post(
        "/api/update-leaderboard",
        json={"solves": [{"challengeId": challenge["id"], "solvedAt": 42}]},
        headers=auth,
    )

    resp = await admin_client.get("/api/team/members", headers=auth)
    members = (await resp.json())["members"]
    assert [m["username"] for m in members] == ["D1", "D2"]
    assert members[0]["isCurrentUser"] is True
    assert members[0]["solvedChallenges"] == [
        {"challengeId": challenge["id"], "challengeName": "Find the Beacon", "solvedAt": 42}
    ]
    assert members[1]["solvedChallenges"] == []

    resp = await admin_client.post("/api/team/logout", headers=auth)
    assert resp.status == 200
    resp = await admin_client.get("/api/team/members", headers=auth)
    assert resp.status == 401


async def test_admin_routes_require_session(client):
    for method, path in [
        ("GET", "/api/admin/teams"),
        ("POST", "/api/admin/teams"),
        ("GET", "/api/admin/challenges"),
        ("POST", "/api/admin/send-message"),
        ("POST", "/api/admin/users/1/force-submit"),
        ("DELETE", "/api/admin/teams/1"),
    ]:
        resp = await client.request(method, path, json={})
        assert resp.status == 401, path

    resp = await client.post("/api/admin/login", json={"username": "admin", "password": "bad"})
    assert resp.status == 401


async def test_admin_logout_ends_session(admin_client):
    resp = await admin_client.post("/api/admin/logout")
    assert resp.status == 200

    resp = await admin_client.get("/api/admin/teams")
    assert resp.status == 401


async def test_admin_team_crud(admin_client):
    team = await create_team(admin_client)
    challenge = await create_challenge(admin_client)
    device = await login(admin_client, device_name="D1")

    resp = await admin_client.post(
        "/api/admin/teams", json={"name": "Tech Wizards", "password": "x", "maxMembers": 2}
    )
    assert resp.status == 400
    assert (await resp.json())["error"] == "ALREADY_EXISTS"

    resp = await admin_client.post("/api/admin/teams", json={"name": "No Password"})
    assert resp.status == 400

    await admin_client.post(
        "/api/update-leaderboard",
        json={
            "deviceToken": device["deviceToken"],
            "solves": [{"challengeId": challenge["id"], "solvedAt": 7}],
        },
    )

    resp = await admin_client.get(f"/api/admin/teams/{team['id']}")
    detail = await resp.json()
    assert detail["team"]["name"] == "Tech Wizards"
    assert [m["username"] for m in detail["members"]] == ["D1"]
    assert detail["solves"] == [
        {
            "id": challenge["id"],
            "name": "Find the Beacon",
            "shortName": "Beacon",
            "solvedAt": 7,
            "solvedBy": "D1",
        }
    ]

    resp = await admin_client.put(f"/api/admin/teams/{team['id']}", json={"maxMembers": 3})
    assert resp.status == 200
    assert (await resp.json())["maxMembers"] == 3

    resp = await admin_client.put(f"/api/admin/teams/{team['id']}", json={})
    assert resp.status == 400

    resp = await admin_client.put(
        f"/api/admin/teams/{team['id']}", json={"password": "new-password"}
    )
    assert resp.status == 200
    resp = await admin_client.post(
        "/api/team/login", json={"username": "Tech Wizards", "password": "new-password"}
    )
    assert resp.status == 200

    resp = await admin_client.get("/api/admin/teams")
    teams = (await resp.json())["teams"]
    assert teams[0]["memberCount"] == 2

    resp = await admin_client.delete(f"/api/admin/teams/{team['id']}")
    assert resp.status == 204
    resp = await admin_client.get(f"/api/admin/teams/{team['id']}")
    assert resp.status == 404
    resp = await admin_client.get(
        "/api/team/solves", headers={"Authorization": f"Bearer {device['deviceToken']}"}
    )
    assert resp.status == 401

    resp = await admin_client.get("/api/leaderboard")
    assert (await resp.json())["teamSolves"] == []


async def test_admin_challenge_crud(admin_client):
    resp = await admin_client.post("/api/admin/challenges", json={"name": "Incomplete"})
    assert resp.status == 400

    resp = await admin_client.post(
        "/api/admin/challenges", json=dict(CHALLENGE_BODY, points=0)
    )
    assert resp.status == 400

    challenge = await create_challenge(admin_client)

    resp = await admin_client.put(
        f"/api/admin/challenges/{challenge['id']}",
        json={"points": 250, "location": {"topLeft": {"lat": 1.5}}},
    )
    assert resp.status == 200
    updated = await resp.json()
    assert updated["points"] == 250
    assert updated["location"]["topLeft"] == {"lat": 1.5, "lng": 2.2945}
    assert updated["location"]["bottomRight"] == CHALLENGE_BODY["location"]["bottomRight"]
    assert updated["name"] == CHALLENGE_BODY["name"]
    assert updated["keyHash"] == CHALLENGE_BODY["keyHash"]

    resp = await admin_client.put(f"/api/admin/challenges/{challenge['id']}", json={})
    assert resp.status == 400

    resp = await admin_client.put("/api/admin/challenges/999", json={"points": 5})
    assert resp.status == 404

    resp = await admin_client.get(f"/api/admin/challenges/{challenge['id']}")
    assert (await resp.json())["points"] == 250

    resp = await admin_client.get("/api/admin/challenges")
    assert len((await resp.json())["challenges"]) == 1

    resp = await admin_client.delete(f"/api/admin/challenges/{challenge['id']}")
    assert resp.status == 204
    resp = await admin_client.delete(f"/api/admin/challenges/{challenge['id']}")
    assert resp.status == 404


async def test_force_submit_and_send_message_validation(admin_client):
    await create_team(admin_client)
    await login(admin_client)

    resp = await admin_client.post("/api/admin/users/1/force-submit")
    assert resp.status == 200
    assert (await resp.json())["success"] is True

    resp = await admin_client.post("/api/admin/users/99/force-submit")
    assert resp.status == 404

    resp = await admin_client.post("/api/admin/send-message", json={"content": "no target"})
    assert resp.status == 400

    resp = await admin_client.post(
        "/api/admin/send-message", json={"teamId": 99, "content": "hello"}
    )
    assert resp.status == 404

    resp = await admin_client.get("/api/leaderboard")
    assert (await resp.json())["competitionEnded"] is True


async def test_malformed_json_body(client):
    resp = await client.post(
        "/api/team/login",
        data="{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status == 400
    assert (await resp.json())["error"] == "VALIDATION_ERROR"


async def test_index_page_renders_leaderboard(admin_client):
    await create_team(admin_client, name="Circuit <Breakers>")
    await create_challenge(admin_client)

    resp = await admin_client.get("/")
    assert resp.status == 200
    html = await resp.text()
    assert "Test Hunt" in html
    assert "Circuit &lt;Breakers&gt;" in html
    assert "Beacon" in html


async def test_oversized_integers_are_validation_errors(admin_client):
    await create_team(admin_client)
    challenge = await create_challenge(admin_client)
    token = (await login(admin_client))["deviceToken"]

    for solve in (
        {"challengeId": challenge["id"], "solvedAt": 2**63},
        {"challengeId": 2**64, "solvedAt": 1},
    ):
        resp = await admin_client.post(
            "/api/update-leaderboard", json={"deviceToken": token, "solves": [solve]}
        )
        assert resp.status == 400
        assert (await resp.json())["error"] == "VALIDATION_ERROR"

    resp = await admin_client.post(
        "/api/admin/challenges", json=dict(CHALLENGE_BODY, points=2**63)
    )
    assert resp.status == 400
    resp = await admin_client.get(f"/api/admin/teams/{2**70}")
    assert resp.status == 400


async def test_finalized_device_is_refused_before_payload_checks(admin_client):
    await create_team(admin_client)
    token = (await login(admin_client))["deviceToken"]
    headers = {"Authorization": f"Bearer {token}"}

    resp = await admin_client.post("/api/team/emergency-lock", headers=headers)
    assert resp.status == 200

    for body in (
        {"solves": "not a list"},
        {"solves": [], "isFinalSubmission": "yes"},
    ):
        resp = await admin_client.post(
            "/api/update-leaderboard", json=body, headers=headers
        )
        assert resp.status == 403
        assert (await resp.json())["error"] == "ALREADY_FINALIZED"

    resp = await admin_client.post(
        "/api/team/solve", json={"challengeId": "bad"}, headers=headers
    )
    assert resp.status == 403


async def test_single_solve_checks_key(admin_client):
    await create_team(admin_client)
    challenge = await create_challenge(admin_client)
    headers = {"Authorization": f"Bearer {(await login(admin_client))['deviceToken']}"}

    resp = await admin_client.post(
        "/api/team/solve",
        json={"challengeId": challenge["id"], "keyHash": "wrong"},
        headers=headers,
    )
    assert resp.status == 400
    assert (await resp.json())["error"] == "VALIDATION_ERROR"

    resp = await admin_client.post(
        "/api/team/solve",
        json={"challengeId": 999, "keyHash": CHALLENGE_BODY["keyHash"]},
        headers=headers,
    )
    assert resp.status == 404

    resp = await admin_client.post(
        "/api/team/solve",
        json={"challengeId": challenge["id"], "keyHash": CHALLENGE_BODY["keyHash"]},
        headers=headers,
    )
    assert resp.status == 200
    assert (await resp.json())["success"] is True

    resp = await admin_client.get("/api/leaderboard")
    assert (await resp.json())["teamSolves"][0]["totalPoints"] == 100


async def test_emergency_lock_finalizes_device(admin_client):
    await create_team(admin_client)
    device = await login(admin_client)
    headers = {"Authorization": f"Bearer {device['deviceToken']}"}

    for _ in range(2):
        resp = await admin_client.post("/api/team/emergency-lock", headers=headers)
        assert resp.status == 200

    resp = await admin_client.get("/api/team/members", headers=headers)
    members = (await resp.json())["members"]
    assert members[0]["hasSubmitted"] is True

    resp = await admin_client.get("/api/leaderboard")
    assert (await resp.json())["competitionEnded"] is True

    resp = await admin_client.post("/api/team/emergency-lock")
    assert resp.status == 401


async def test_team_chat_reaches_teammates(admin_client):
    await create_team(admin_client)
    sender = await login(admin_client, device_name="Sender")
    teammate = await login(admin_client, device_name="Teammate")
    sender_headers = {"Authorization": f"Bearer {sender['deviceToken']}"}
    teammate_headers = {"Authorization": f"Bearer {teammate['deviceToken']}"}

    resp = await admin_client.post(
        "/api/messages", json={"content": "Meet at the fountain"}, headers=sender_headers
    )
    assert resp.status == 200
    message_id = (await resp.json())["messageId"]

    resp = await admin_client.get("/api/messages", headers=teammate_headers)
    assert [m["id"] for m in (await resp.json())["messages"]] == [message_id]
    resp = await admin_client.get("/api/messages", headers=sender_headers)
    assert (await resp.json())["messages"] == []

    resp = await admin_client.post(
        "/api/messages", json={"content": ""}, headers=sender_headers
    )
    assert resp.status == 400
