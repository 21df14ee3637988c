"""
HTTP server for Listing Alerts.

A small Flask app in front of one LocationTriggerEngine:
1. Receives location samples and price-drop events from the device
2. Receives UI events (listing views, app state, interactions)
3. Serves the notification inbox and engine stats

Run this server with the scheduler started in the same process.
"""

import logging
from flask import Flask, abort, jsonify, request

from .config import get_app_config
from .engine import LocationTriggerEngine, create_engine_from_config
from .models import ListingCandidate, LocationSample
from .scheduler import add_maintenance_jobs, create_scheduler

logger = logging.getLogger(__name__)

PAYLOAD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def _bad_request(message: str):
    return jsonify({"error": message}), 400


def _schedule_payload(result) -> dict:
    if result is None:
        return {"scheduled": False}
    return {
        "scheduled": True,
        "delivery_id": result.notification_id,
        "strategy": result.strategy.value,
        "delay_seconds": result.delay_seconds,
        "scheduled_for": result.scheduled_for.isoformat(),
    }


def create_app(engine: LocationTriggerEngine) -> Flask:
    """Create the Flask app bound to an engine."""
    app = Flask(__name__)

    # =========================================================================
    # DEVICE EVENTS
    # =========================================================================

    @app.route("/location", methods=["POST"])
    def post_location():
        """Feed one location sample to the movement detector."""
        try:
            sample = LocationSample.from_dict(request.get_json(force=True, silent=True))
        except PAYLOAD_ERRORS as e:
            logger.warning(f"Rejected location payload: {e}")
            return _bad_request("invalid location sample")

        state = engine.on_location_sample(sample)
        return {"state": state.value}

    @app.route("/price-drop", methods=["POST"])
    def post_price_drop():
        """Price drops on listings the user viewed."""
        data = request.get_json(force=True, silent=True)
        try:
            listings = [ListingCandidate.from_dict(raw) for raw in data["listings"]]
            location = LocationSample.from_dict(data["location"]) if data.get("location") else None
        except PAYLOAD_ERRORS as e:
            logger.warning(f"Rejected price drop payload: {e}")
            return _bad_request("invalid price drop payload")

        result = engine.on_price_drop(listings, location)
        return _schedule_payload(result)

    @app.route("/listing-view", methods=["POST"])
    def post_listing_view():
        engine.record_listing_view()
        return {"status": "ok"}

    @app.route("/app-state", methods=["POST"])
    def post_app_state():
        data = request.get_json(force=True, silent=True)
        if not isinstance(data, dict) or not isinstance(data.get("active"), bool):
            return _bad_request("'active' must be a boolean")

        engine.set_app_active(data["active"])
        return {"active": engine.is_app_active}

    @app.route("/engagement", methods=["POST"])
    def post_engagement():
        data = request.get_json(force=True, silent=True)
        if not isinstance(data, dict) or not data.get("trigger_type") or not data.get("action"):
            return _bad_request("'trigger_type' and 'action' are required")

        engine.record_user_engagement(str(data["trigger_type"]), str(data["action"]))
        return {"status": "ok"}

    # =========================================================================
    # NOTIFICATION INBOX
    # =========================================================================

    @app.route("/notifications", methods=["GET"])
    def list_notifications():
        return jsonify([r.to_dict() for r in engine.get_notifications()])

    @app.route("/notifications/unread-count", methods=["GET"])
    def unread_count():
        return {"count": engine.get_unread_count()}

    @app.route("/notifications/stats", methods=["GET"])
    def notification_stats():
        return engine.inbox.get_stats()

    @app.route("/notifications/<int:notification_id>/read", methods=["POST"])
    def mark_read(notification_id: int):
        if not engine.mark_as_read(notification_id):
            abort(404)
        return {"status": "ok"}

    @app.route("/notifications/read-all", methods=["POST"])
    def mark_all_read():
        return {"updated": engine.mark_all_as_read()}

    @app.route("/notifications/<int:notification_id>/interaction", methods=["POST"])
    def post_interaction(notification_id: int):
        data = request.get_json(force=True, silent=True)
        try:
            found = engine.record_interaction(notification_id, data["action"])
        except PAYLOAD_ERRORS as e:
            logger.warning(f"Rejected interaction payload: {e}")
            return _bad_request("'action' must be tapped, dismissed or ignored")

        if not found:
            abort(404)
        return {"status": "ok"}

    @app.route("/notifications/<int:notification_id>", methods=["DELETE"])
    def delete_notification(notification_id: int):
        if not engine.delete_notification(notification_id):
            abort(404)
        return {"status": "ok"}

    @app.route("/notifications", methods=["DELETE"])
    def clear_notifications():
        engine.clear_all_notifications()
        return {"status": "ok"}

    # =========================================================================
    # STATUS
    # =========================================================================

    @app.route("/stats")
    def stats():
        return engine.get_stats()

    @app.route("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    return app


def run_server(host: str, port: int, tier: str = None, debug: bool = False):
    """Build the engine, start the scheduler and run the Flask server."""
    scheduler = create_scheduler()
    engine = create_engine_from_config(scheduler, tier=tier)
    add_maintenance_jobs(scheduler, engine)
    scheduler.start()

    try:
        create_app(engine).run(host=host, port=port, debug=debug, use_reloader=False)
    finally:
        engine.stop()
        scheduler.shutdown(wait=False)
        logger.info("Server stopped")


def main():
    """CLI entry point for the server."""
    import argparse

    config = get_app_config()

    parser = argparse.ArgumentParser(description="Listing Alerts Server")
    parser.add_argument("--host", default=config.server_host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.server_port, help="Port to bind to")
    parser.add_argument("--tier", default=None, help="Subscription tier (prospector, investor, developer)")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    logger.info(f"Starting Listing Alerts server on {args.host}:{args.port}")
    run_server(args.host, args.port, args.tier, args.debug)


if __name__ == "__main__":
    main()
