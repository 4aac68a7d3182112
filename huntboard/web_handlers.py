"""
Web route handlers for the hunt leaderboard server.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .database import ms_to_iso, now_ms
from .errors import AlreadyFinalized, HuntError, StorageError, ValidationError
from .models import Device, parse_claims, require_int
from .challenges import ChallengeUpdate
from .teams import TeamUpdate

logger = logging.getLogger(__name__)

ADMIN_COOKIE = "adminSession"
TEMPLATES_PATH = Path(__file__).parent / "templates"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Handler,
) -> web.StreamResponse:
    """
    Turn service errors into structured JSON responses.

    HuntError subclasses carry their own status and reason; datastore
    failures and anything unexpected become a generic 500.
    """
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except HuntError as e:
        if e.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        return web.json_response(e.to_dict(), status=e.status)
    except sqlite3.Error:
        logger.exception("Database error on %s %s", request.method, request.path)
        error = StorageError()
        return web.json_response(error.to_dict(), status=error.status)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        error = StorageError()
        return web.json_response(error.to_dict(), status=error.status)


async def read_json(
    request: web.Request,
    required: bool = True,
) -> Dict[str, Any]:
    """
    Parse a JSON object body.

    @param request: HTTP request
    @param required: Reject an empty body when True
    @return: Decoded body, {} for an allowed empty body
    """
    if not request.can_read_body:
        if required:
            raise ValidationError("Request body required")
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def device_token_from_request(
    request: web.Request,
    body: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Find the device token in the Authorization header, body or query string.

    @param request: HTTP request
    @param body: Decoded JSON body, if the handler already read it
    @return: Token string or None
    """
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    if body and isinstance(body.get("deviceToken"), str):
        return body["deviceToken"]
    return request.query.get("deviceToken")


def path_id(
    request: web.Request,
    name: str = "id",
) -> int:
    try:
        value = int(request.match_info[name])
    except ValueError:
        raise ValidationError(f"Invalid {name}")
    return require_int(value, name)


class WebHandlers:
    """Handles web routes and responses."""

    def __init__(
        self,
        services: Any,
        config: Any,
        templates_path: Path = TEMPLATES_PATH,
    ) -> None:
        self.services = services
        self.config = config

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(templates_path)),
            autoescape=select_autoescape(["html"]),
            auto_reload=False,
            cache_size=50,
        )
        self.jinja_env.filters["iso_time"] = ms_to_iso

    async def _device(
        self,
        request: web.Request,
        body: Optional[Dict[str, Any]] = None,
    ) -> Device:
        token = device_token_from_request(request, body)
        return await self.services.auth.authenticate_device(token)

    async def _admin(
        self,
        request: web.Request,
    ) -> int:
        return await self.services.auth.authenticate_admin(request.cookies.get(ADMIN_COOKIE))

    # Public pages

    async def web_index(
        self,
        _: web.Request,
    ) -> web.Response:
        """
        Web interface leaderboard page.

        @param _: Unused request parameter
        @return: HTTP response with rendered leaderboard page
        """
        leaderboard = await self.services.leaderboard.get_leaderboard()

        template = self.jinja_env.get_template("leaderboard.html")
        html = template.render(
            title="Leaderboard",
            event_name=self.config.get("event_name"),
            leaderboard=leaderboard,
        )
        return web.Response(text=html, content_type="text/html")

    async def web_api_leaderboard(
        self,
        _: web.Request,
    ) -> web.Response:
        """
        Public leaderboard API.

        @param _: Unused request parameter
        @return: JSON response with challenges, teamSolves and competitionEnded
        """
        leaderboard = await self.services.leaderboard.get_leaderboard()
        return web.json_response(leaderboard)

    # Device API

    async def team_login(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Log a device into its team.

        @param request: HTTP request with username (team name), password and optional device_name
        @return: JSON response with deviceToken, challenges and serverTime
        """
        body = await read_json(request)
        login = await self.services.teams.login_device(
            body.get("username"),
            body.get("password"),
            body.get("device_name"),
        )
        challenges = await self.services.challenges.list_challenges()

        return web.json_response(
            {
                "deviceToken": login["deviceToken"],
                "username": login["username"],
                "challenges": challenges,
                "serverTime": now_ms(),
            }
        )

    async def team_logout(
        self,
        request: web.Request,
    ) -> web.Response:
        body = await read_json(request, required=False)
        device = await self._device(request, body)
        await self.services.auth.logout_device(device)
        return web.json_response({"success": True})

    async def team_solves(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        The caller's team solves, one per challenge.

        @param request: HTTP request with device token
        @return: JSON response with solves and serverTime
        """
        device = await self._device(request)
        solves = await self.services.solves.get_team_solves(device.team_id)
        return web.json_response({"solves": solves, "serverTime": now_ms()})

    async def team_members(
        self,
        request: web.Request,
    ) -> web.Response:
        device = await self._device(request)
        members = await self.services.teams.get_team_members(device)
        return web.json_response({"members": members, "serverTime": now_ms()})

    async def update_leaderboard(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Submit a batch of solves, optionally as the device's final submission.

        @param request: HTTP request with deviceToken, solves and isFinalSubmission
        @return: JSON response with success and serverTime
        """
        body = await read_json(request)
        device = await self._device(request, body)
        # a locked device is refused whatever its payload holds
        if device.made_final_submission:
            raise AlreadyFinalized("Already made final submission")

        claims = parse_claims(body.get("solves"))
        is_final = body.get("isFinalSubmission", False)
        if not isinstance(is_final, bool):
            raise ValidationError("isFinalSubmission must be a boolean")

        result = await self.services.solves.reconcile_solves(device, claims, is_final)
        return web.json_response(
            {"success": result["success"], "serverTime": result["serverTime"]}
        )

    async def team_solve(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Record one scan made while online.

        @param request: HTTP request with challengeId and keyHash
        @return: JSON response with success and serverTime
        """
        body = await read_json(request)
        device = await self._device(request, body)
        if device.made_final_submission:
            raise AlreadyFinalized("Already made final submission")

        result = await self.services.solves.submit_solve(
            device,
            require_int(body.get("challengeId"), "challengeId"),
            body.get("keyHash"),
        )
        return web.json_response(
            {"success": result["success"], "serverTime": result["serverTime"]}
        )

    async def team_emergency_lock(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Finalize the calling device without submitting solves.

        @param request: HTTP request with device token
        @return: JSON response with success and serverTime
        """
        body = await read_json(request, required=False)
        device = await self._device(request, body)
        await self.services.submissions.finalize(device.id)
        return web.json_response({"success": True, "serverTime": now_ms()})

    async def get_messages(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Pull the device's undelivered messages.

        @param request: HTTP request with device token
        @return: JSON response with messages and serverTime
        """
        device = await self._device(request)
        result = await self.services.messages.fetch_and_mark_delivered(device)
        return web.json_response(result)

    async def send_team_message(
        self,
        request: web.Request,
    ) -> web.Response:
        body = await read_json(request)
        device = await self._device(request, body)
        message_id = await self.services.messages.send_team_message(
            device, body.get("content")
        )
        return web.json_response({"success": True, "messageId": message_id})

    # Admin API

    async def admin_login(
        self,
        request: web.Request,
    ) -> web.Response:
        body = await read_json(request)
        token, lifetime = await self.services.auth.admin_login(
            body.get("username"), body.get("password")
        )

        response = web.json_response({"success": True})
        response.set_cookie(
            ADMIN_COOKIE,
            token,
            max_age=lifetime,
            httponly=True,
            samesite="Lax",
        )
        return response

    async def admin_logout(
        self,
        request: web.Request,
    ) -> web.Response:
        admin_id = await self._admin(request)
        await self.services.auth.admin_logout(admin_id)

        response = web.json_response({"success": True})
        response.del_cookie(ADMIN_COOKIE)
        return response

    async def admin_send_message(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Send a message to one team or to everyone.

        @param request: HTTP request with teamId ("all" or id) and content
        @return: JSON response with success and messageId
        """
        await self._admin(request)
        body = await read_json(request)
        if "teamId" not in body:
            raise ValidationError("teamId is required")

        message_id = await self.services.messages.send_message(
            body["teamId"], body.get("content")
        )
        return web.json_response({"success": True, "messageId": message_id})

    async def admin_force_submit(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        await self.services.submissions.force_finalize(path_id(request))
        return web.json_response({"success": True})

    async def admin_list_teams(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        teams = await self.services.teams.list_teams()
        return web.json_response({"teams": teams})

    async def admin_create_team(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        body = await read_json(request)
        team = await self.services.teams.create_team(body)
        return web.json_response(team, status=201)

    async def admin_get_team(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        detail = await self.services.teams.get_team_detail(path_id(request))
        return web.json_response(detail)

    async def admin_update_team(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        body = await read_json(request)
        team = await self.services.teams.update_team(
            path_id(request), TeamUpdate.from_payload(body)
        )
        return web.json_response(team)

    async def admin_delete_team(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        await self.services.teams.delete_team(path_id(request))
        return web.Response(status=204)

    async def admin_list_challenges(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        challenges = await self.services.challenges.list_challenges()
        return web.json_response({"challenges": challenges})

    async def admin_get_challenge(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        challenge = await self.services.challenges.get_challenge(path_id(request))
        return web.json_response(challenge)

    async def admin_create_challenge(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        body = await read_json(request)
        challenge = await self.services.challenges.create_challenge(body)
        return web.json_response(challenge, status=201)

    async def admin_update_challenge(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Partially update a challenge; only fields present in the body change.

        @param request: HTTP request with challenge id and partial fields
        @return: JSON response with the updated challenge
        """
        await self._admin(request)
        body = await read_json(request)
        challenge = await self.services.challenges.update_challenge(
            path_id(request), ChallengeUpdate.from_payload(body)
        )
        return web.json_response(challenge)

    async def admin_delete_challenge(
        self,
        request: web.Request,
    ) -> web.Response:
        await self._admin(request)
        await self.services.challenges.delete_challenge(path_id(request))
        return web.Response(status=204)
