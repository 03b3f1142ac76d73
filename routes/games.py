"""Game, code, author and media API routes."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from flask import Blueprint, Response, jsonify, request, send_from_directory

from codes.sources import SocialLinkScraper, SourceAggregator
from codes.store import CodeStore
from db import utils as db_utils
from games import export as games_export
from games import service as games_service
from media import covers as media_covers
from routes.api_utils import BadRequestError, NotFoundError, handle_api_errors

games_blueprint = Blueprint("games", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the game admin endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"games routes missing context value: {key}")
    return _context[key]


def _get_db() -> db_utils.DatabaseHandle:
    getter: Callable[[], db_utils.DatabaseHandle] = _ctx("get_db")
    return getter()


def _get_store() -> CodeStore:
    return CodeStore(_get_db())


def _get_aggregator() -> SourceAggregator:
    getter: Callable[[], SourceAggregator] = _ctx("get_aggregator")
    return getter()


def _get_social_scraper() -> SocialLinkScraper:
    getter: Callable[[], SocialLinkScraper] = _ctx("get_social_scraper")
    return getter()


def _get_media_storage() -> media_covers.MediaStorage:
    getter: Callable[[], media_covers.MediaStorage] = _ctx("get_media_storage")
    return getter()


def _get_max_upload_bytes() -> int:
    getter: Callable[[], int] = _ctx("get_max_upload_bytes")
    return getter()


def _request_payload() -> dict[str, Any]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, Mapping):
            raise BadRequestError("JSON body must be an object.")
        return dict(payload)
    return request.form.to_dict()


@games_blueprint.route("/api/games", methods=["GET"])
@handle_api_errors
def list_games():
    return jsonify({"games": games_service.fetch_admin_games(_get_db())})


@games_blueprint.route("/api/games/export.csv", methods=["GET"])
@handle_api_errors
def export_games_csv():
    summaries = games_service.fetch_admin_games(_get_db())
    text = games_export.build_games_csv(games_export.games_export_rows(summaries))
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=games.csv"},
    )


@games_blueprint.route("/api/games/<identifier>", methods=["GET"])
@handle_api_errors
def get_game(identifier: str):
    summary = games_service.fetch_admin_game_by_identifier(_get_db(), identifier)
    if summary is None:
        raise NotFoundError("Game not found")
    return jsonify(summary)


@games_blueprint.route("/api/games", methods=["POST"])
@handle_api_errors
def save_game():
    payload = _request_payload()
    result = games_service.save_game(
        _get_db(), _get_store(), payload, aggregator=_get_aggregator()
    )
    status = 200 if payload.get("id") else 201
    return jsonify(result), status


@games_blueprint.route("/api/games/<game_id>", methods=["DELETE"])
@handle_api_errors
def delete_game(game_id: str):
    result = games_service.delete_game(_get_db(), game_id, media=_get_media_storage())
    return jsonify(result)


@games_blueprint.route("/api/games/<slug>/refresh-codes", methods=["POST"])
@handle_api_errors
def refresh_codes(slug: str):
    result = games_service.refresh_game_codes_by_slug(
        _get_db(), _get_store(), slug, aggregator=_get_aggregator()
    )
    if not result.success:
        return jsonify(result.to_dict()), 502
    return jsonify(result.to_dict())


@games_blueprint.route("/api/games/<slug>/social-links", methods=["POST"])
@handle_api_errors
def backfill_social_links(slug: str):
    result = games_service.backfill_game_social_links(
        _get_db(), slug, scraper=_get_social_scraper()
    )
    if not result.get("success"):
        raise BadRequestError(result.get("error"))
    return jsonify(result)


@games_blueprint.route("/api/games/upload-image", methods=["POST"])
@handle_api_errors
def upload_image():
    upload = request.files.get("file")
    if upload is None:
        raise BadRequestError("No file provided")
    result = media_covers.process_upload(
        _get_media_storage(),
        upload.read(),
        slug=request.form.get("slug", ""),
        upload_type=request.form.get("type", "generic"),
        filename=upload.filename,
        game_name=request.form.get("game_name"),
        max_bytes=_get_max_upload_bytes(),
    )
    return jsonify(result), 201


@games_blueprint.route("/api/authors", methods=["GET"])
@handle_api_errors
def list_authors():
    return jsonify({"authors": games_service.fetch_admin_authors(_get_db())})


@games_blueprint.route("/api/codes", methods=["POST"])
@handle_api_errors
def upsert_code():
    return jsonify(games_service.upsert_game_code(_get_store(), _request_payload()))


@games_blueprint.route("/api/codes/<code_id>/status", methods=["PATCH", "POST"])
@handle_api_errors
def update_code_status(code_id: str):
    status = _request_payload().get("status")
    if not isinstance(status, str) or not status:
        raise BadRequestError("status is required.")
    return jsonify(games_service.update_code_status(_get_store(), code_id, status))


@games_blueprint.route("/api/codes/<code_id>", methods=["DELETE"])
@handle_api_errors
def delete_code(code_id: str):
    return jsonify(games_service.delete_code(_get_store(), code_id))


@games_blueprint.route("/media/<path:filename>", methods=["GET"])
def media_file(filename: str):
    storage = _get_media_storage()
    return send_from_directory(storage.root, filename)
