"""HTTP entrypoint exposing the prospecting search (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from threading import Lock
from typing import Any, Dict, Optional, Tuple

import requests
from flask import Flask, jsonify, request

from ownerscout.core.auth import UnauthenticatedError, extract_bearer_token
from ownerscout.core.config import get_settings
from ownerscout.core.container import Services, build_services
from ownerscout.models import GeoLocation, ResultShape, SearchArea, SearchFilters
from ownerscout.search.orchestrator import LocationNotFoundError
from ownerscout.vendors.google_places import GooglePlacesError

logger = logging.getLogger(__name__)


def parse_search_request(payload: Dict[str, Any]) -> Tuple[SearchArea, SearchFilters, ResultShape]:
    """Validate a ``POST /search`` body; raises ``ValueError`` with a client-facing message."""
    zip_code = str(payload.get("zip_code") or "").strip()
    if not zip_code:
        raise ValueError("zip_code is required")

    try:
        radius_km = float(payload.get("radius_km", 2))
    except (TypeError, ValueError) as exc:
        raise ValueError("radius_km must be numeric") from exc
    if radius_km <= 0:
        raise ValueError("radius_km must be positive")

    center = None
    center_raw = payload.get("center")
    if center_raw is not None:
        try:
            center = GeoLocation(float(center_raw["lat"]), float(center_raw["lng"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError("center must contain numeric lat and lng") from exc

    filters_raw = payload.get("filters") or {}
    if not isinstance(filters_raw, dict):
        raise ValueError("filters must be an object")
    try:
        filters = SearchFilters.from_dict(filters_raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid filters: {exc}") from exc
    if filters.min_rating > filters.max_rating:
        raise ValueError("min_rating must not exceed max_rating")

    try:
        shape = ResultShape(payload.get("result_shape") or ResultShape.PLACES.value)
    except ValueError as exc:
        raise ValueError("result_shape must be INSIGHT_COUNT or INSIGHT_PLACES") from exc

    return SearchArea(zip_code, radius_km, center), filters, shape


def create_app(services: Optional[Services] = None) -> Flask:
    """Build the Flask app; services are constructed on first use unless injected."""
    app = Flask(__name__)
    state: Dict[str, Optional[Services]] = {"services": services}
    state_lock = Lock()

    def get_services() -> Services:
        with state_lock:
            if state["services"] is None:
                state["services"] = build_services()
            return state["services"]

    def authenticate() -> str:
        token = extract_bearer_token(request.headers.get("Authorization"))
        return get_services().verifier(token)

    @app.errorhandler(UnauthenticatedError)
    def handle_unauthenticated(exc: UnauthenticatedError) -> Any:
        return jsonify({"error": str(exc)}), 401

    @app.get("/")
    def root() -> Any:
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        settings = get_settings()
        return (
            jsonify(
                {
                    "status": "ok",
                    "worker_port_config": settings.worker_port,
                    "durable_cache": bool(settings.database_url),
                    "revision": os.getenv("K_REVISION", "unknown"),
                }
            ),
            200,
        )

    @app.post("/search")
    def search() -> Any:
        """
        Run a prospecting search.
        Required JSON fields: zip_code
        Optional: radius_km, center {lat, lng}, filters {...}, result_shape
        """
        user_id = authenticate()
        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        try:
            area, filters, shape = parse_search_request(payload)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        logger.info("Search requested by user=%s zip=%s shape=%s", user_id, area.zip_code, shape.value)
        try:
            result = get_services().orchestrator.search(area, filters, shape)
        except LocationNotFoundError as exc:
            return jsonify({"error": str(exc)}), 400
        except GooglePlacesError as exc:
            logger.error("Upstream search failed: %s", exc)
            return jsonify({"error": str(exc), "upstream_status": exc.status}), 502
        except requests.Timeout as exc:
            logger.error("Upstream search timed out: %s", exc)
            return jsonify({"error": "upstream timeout"}), 504
        except requests.RequestException as exc:
            logger.error("Upstream search failed: %s", exc)
            return jsonify({"error": "upstream unavailable"}), 502

        return jsonify({"data": result.to_dict()}), 200

    @app.get("/cache/stats")
    def cache_stats() -> Any:
        authenticate()
        return jsonify({"data": get_services().cache.get_stats().to_dict()}), 200

    @app.delete("/cache")
    def clear_cache() -> Any:
        user_id = authenticate()
        try:
            get_services().cache.clear()
        except Exception as exc:  # noqa: BLE001
            logger.error("Cache clear failed: %s", exc)
            return jsonify({"error": "cache store unavailable"}), 503
        logger.info("Cache cleared by user=%s", user_id)
        return jsonify({"data": {"status": "cleared"}}), 200

    @app.delete("/cache/<path:key>")
    def delete_cache_entry(key: str) -> Any:
        authenticate()
        try:
            removed = get_services().cache.delete(key)
        except Exception as exc:  # noqa: BLE001
            logger.error("Cache delete failed for %s: %s", key, exc)
            return jsonify({"error": "cache store unavailable"}), 503
        if not removed:
            return jsonify({"error": "not found"}), 404
        return jsonify({"data": {"status": "deleted", "key": key}}), 200

    return app


app = create_app()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    env_port = os.getenv("PORT")
    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
