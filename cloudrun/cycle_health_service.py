import os
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify, request, Response

from analytics.cycle_health import CycleHealthMonitor
from utils.firestore_handle import FirestoreHandleProvider
from utils.settings import get_setting
from utils.time_format import time_ago

MAX_LIMIT = 100


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(provider=None, monitor=None, clock=None) -> Flask:
    """Build the service; the Firestore provider created here is shared by every request."""
    provider = provider or FirestoreHandleProvider()
    clock = clock or _utcnow
    monitor = monitor or CycleHealthMonitor(provider, clock=clock)

    app = Flask(__name__)
    app.config["FIRESTORE_PROVIDER"] = provider

    @app.after_request
    def add_no_store(resp: Response):
        resp.headers["Cache-Control"] = "no-store"
        return resp

    @app.route("/healthz")
    def healthz():
        return "OK", 200

    @app.route("/api/cycle-health", methods=["POST"])
    def analyze_cycle():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "expected a JSON object of cycle metrics"}), 400
        try:
            result = monitor.analyze(payload)
            logging.info(
                f"cycle {result.cycle_id}: status={result.status} anomalies={len(result.anomalies)}"
            )
            return jsonify(_jsonable(result.to_dict()))
        except (TypeError, ValueError) as e:
            return jsonify({"error": f"invalid metrics: {e}"}), 400
        except Exception as e:
            logging.error(f"cycle-health analyze error: {e}")
            return jsonify({"error": str(e)}), 500

    @app.route("/api/cycle-health", methods=["GET"])
    def list_cycles():
        try:
            limit = max(1, min(int(request.args.get("limit", 20)), MAX_LIMIT))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        try:
            now = clock()
            items = []
            for doc in monitor.recent(limit):
                ts = doc.get("timestamp")
                if isinstance(ts, datetime):
                    doc["age"] = time_ago(ts, now)
                items.append(_jsonable(doc))
            return jsonify({"items": items})
        except Exception as e:
            logging.error(f"cycle-health list error: {e}")
            return jsonify({"error": str(e)}), 500

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=get_setting("log_level", "INFO").upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
