import json

import pytest

from huntboard.server import HuntServer

ADMIN_PASSWORD = "adminpass"
TEAM_PASSWORD = "password123"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "hunt_config.json"
    path.write_text(
        json.dumps(
            {
                "event_name": "Test Hunt",
                "security": {
                    "bcrypt_rounds": 4,
                    "admin_username": "admin",
                    "admin_password": ADMIN_PASSWORD,
                },
            }
        )
    )
    return str(path)


@pytest.fixture
async def server(tmp_path, config_file):
    hunt = HuntServer(db_path=str(tmp_path / "hunt.db"), config_path=config_file)
    await hunt.init_db()
    return hunt


@pytest.fixture
def make_team(server):
    async def _make_team(name, max_members=8):
        team = await server.teams.create_team(
            {"name": name, "password": TEAM_PASSWORD, "maxMembers": max_members}
        )
        return team["id"]

    return _make_team


@pytest.fixture
def make_challenge(server):
    async def _make_challenge(short_name, points):
        challenge = await server.challenges.create_challenge(
            {
                "name": f"Find {short_name}",
                "shortName": short_name,
                "points": points,
                "location": {
                    "topLeft": {"lat": 48.8584, "lng": 2.2945},
                    "bottomRight": {"lat": 48.8554, "lng": 2.2975},
                },
                "keyHash": f"key-{short_name}",
            }
        )
        return challenge["id"]

    return _make_challenge


@pytest.fixture
def make_device(server):
    """Log a device into a team and return the authenticated Device."""

    async def _make_device(team_name, device_name=None):
        login = await server.teams.login_device(team_name, TEAM_PASSWORD, device_name)
        return await server.auth.authenticate_device(login["deviceToken"])

    return _make_device


@pytest.fixture
async def client(aiohttp_client, server):
    return await aiohttp_client(server.build_app())


@pytest.fixture
async def admin_client(client):
    resp = await client.post(
        "/api/admin/login", json={"username": "admin", "password": ADMIN_PASSWORD}
    )
    assert resp.status == 200
    return client
