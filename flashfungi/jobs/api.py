"""HTTP job control for pipeline runs (operator only, except /health)."""

import argparse
import logging
import os
from functools import wraps

from flask import Flask, g, jsonify, request
from pydantic import ValidationError

from flashfungi.core.config import SETTINGS_ENV, RunConfig, Settings, load_settings
from flashfungi.core.database import SpecimenDatabase
from flashfungi.jobs.manager import JobConflictError, JobManager, JobNotFoundError

logger = logging.getLogger(__name__)

PREFIX = "/api/pipeline"


def create_app(manager: JobManager, settings: Settings) -> Flask:
    app = Flask(__name__)
    operators = settings.api.operator_tokens

    def require_operator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization", "")
            token = header[len("Bearer "):].strip() if header.startswith("Bearer ") else ""
            if not token:
                return jsonify({"error": "No authorization token"}), 401
            if token not in operators:
                return jsonify({"error": "Operator access required"}), 403
            g.operator = operators[token]
            return view(*args, **kwargs)

        return wrapper

    # ── Routes ───────────────────────────────────────────────

    @app.route(f"{PREFIX}/run", methods=["POST"])
    @require_operator
    def run_pipeline():
        body = {}
        if request.get_data():
            body = request.get_json(silent=True)
            if body is None:
                return jsonify({"success": False, "error": "Request body is not valid JSON"}), 400
        if not isinstance(body, dict):
            return jsonify({"success": False, "error": "Request body must be a JSON object"}), 400
        try:
            config = RunConfig.model_validate(body)
        except ValidationError as exc:
            return jsonify({"success": False, "error": str(exc)}), 400

        try:
            job_id = manager.start(config, started_by=g.operator)
        except JobConflictError as exc:
            return jsonify({"success": False, "error": str(exc)}), 409

        return jsonify(
            {
                "success": True,
                "jobId": job_id,
                "message": "Pipeline started successfully",
            }
        )

    @app.route(f"{PREFIX}/status/<job_id>")
    @require_operator
    def job_status(job_id):
        try:
            return jsonify(manager.status(job_id))
        except JobNotFoundError:
            return jsonify({"error": "Job not found"}), 404

    @app.route(f"{PREFIX}/logs/<job_id>")
    @require_operator
    def job_logs(job_id):
        limit = request.args.get("limit", 100, type=int)
        offset = request.args.get("offset", 0, type=int)
        try:
            return jsonify(manager.logs(job_id, limit, offset))
        except JobNotFoundError:
            return jsonify({"error": "Job not found"}), 404

    @app.route(f"{PREFIX}/stop/<job_id>", methods=["POST"])
    @require_operator
    def stop_job(job_id):
        try:
            finalized = manager.stop(job_id, stopped_by=g.operator)
        except JobNotFoundError:
            return jsonify({"success": False, "error": "Job not found or already completed"}), 404
        if not finalized:
            return (
                jsonify({"success": True, "message": "Pipeline killed, still recording its final state"}),
                202,
            )
        return jsonify({"success": True, "message": "Pipeline stopped"})

    @app.route(f"{PREFIX}/history")
    @require_operator
    def job_history():
        limit = request.args.get("limit", 20, type=int)
        offset = request.args.get("offset", 0, type=int)
        return jsonify(manager.history(limit, offset))

    @app.route(f"{PREFIX}/health")
    def health():
        return jsonify(manager.health())

    return app


# ── CLI ──────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Serve the flashfungi job control API")
    parser.add_argument("--settings", default=None, help="Path to settings YAML file")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    args = parser.parse_args(argv)

    level_name = os.getenv("FLASHFUNGI_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = load_settings(args.settings)
    if not settings.api.operator_tokens:
        logger.warning("No operator tokens configured; every protected route will return 403")

    db = SpecimenDatabase(settings.database.path, check_same_thread=False)
    manager = JobManager(
        db,
        grace_period=settings.jobs.grace_period,
        settings_path=args.settings or os.environ.get(SETTINGS_ENV),
        recent_log_limit=settings.jobs.recent_log_limit,
    )
    app = create_app(manager, settings)
    logger.info("Serving job control on http://%s:%d%s", args.host, args.port, PREFIX)
    # threaded: a synchronous stop must not block status polling
    app.run(host=args.host, port=args.port, threaded=True)


if __name__ == "__main__":
    main()
