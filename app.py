"""BAC and badge Flask app.

Run from project root:
    python app.py
"""

import logging
import os
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from flask import Flask, jsonify, request

from bac_badges.calculations import BACModel, average, estimate_bac, peak, sample_series, time_to_sober, trend
from bac_badges.drinks import check_amounts
from bac_badges.errors import BadgeEngineError, InvalidProfile, PersistenceFailure
from bac_badges.levels import describe_bac, drive_advice, is_over_driving_limit
from bac_badges.models import DrinkEntry, Profile, utcnow
from bac_badges.orchestrator import DRINK_ADDED, SESSION_ENDED, TRIGGER_CATEGORIES, AwardOrchestrator
from bac_badges.seed import seed_badges
from bac_badges.sqlite_store import SQLiteStore, init_db

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("APP_SECRET_KEY", "dev-only-change-me")

MIN_STEP_MINUTES = 1.0
MAX_STEP_MINUTES = 120.0
MAX_SERIES_POINTS = 2000

DEFAULT_DB_PATH = str(Path("instance") / "app.db")


def _db_path() -> str:
    return os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH)


def _admin_token() -> str:
    return os.environ.get("ADMIN_TOKEN", "")


def _is_admin() -> bool:
    token = request.args.get("token", "")
    return bool(_admin_token()) and token == _admin_token()


def _check_workers() -> int:
    try:
        return max(1, int(os.environ.get("BADGE_CHECK_WORKERS", "1")))
    except ValueError:
        return 1


def _ensure_db() -> SQLiteStore:
    db_path = Path(_db_path())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    init_db(str(db_path))
    store = SQLiteStore(str(db_path))
    seed_badges(store)
    return store


def _model() -> BACModel:
    return BACModel.from_env()


def _orchestrator(store: SQLiteStore) -> AwardOrchestrator:
    return AwardOrchestrator(store, model=_model(), max_workers=_check_workers())


def _clamp_float(value: Any, default: float, min_value: float, max_value: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        parsed = default
    return max(min_value, min(max_value, parsed))


def _parse_instant(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError("timestamp must be an ISO 8601 string")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_profile(raw: Any) -> Profile:
    if not isinstance(raw, dict):
        raise InvalidProfile("profile is required")
    try:
        weight_kg = float(raw.get("weight_kg"))
    except (TypeError, ValueError):
        raise InvalidProfile("profile.weight_kg must be a number") from None
    return Profile(id=raw.get("id"), weight_kg=weight_kg, gender=str(raw.get("gender", "")).strip().lower())


def _parse_drinks(raw: Any) -> list[DrinkEntry]:
    if not isinstance(raw, list):
        raise ValueError("drinks must be a list")
    drinks = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"drinks[{i}] must be an object")
        volume = float(item.get("volume_ml", 0))
        percentage = float(item.get("alcohol_percentage", -1))
        try:
            check_amounts(volume, percentage)
        except ValueError as exc:
            raise ValueError(f"drinks[{i}]: {exc}") from None
        drinks.append(
            DrinkEntry(
                id=item.get("id", i),
                user_id=item.get("user_id"),
                session_id=item.get("session_id"),
                volume_ml=volume,
                alcohol_percentage=percentage,
                consumed_at=_parse_instant(item.get("consumed_at")),
            )
        )
    return drinks


def _bad_request(message: str):
    return jsonify({"error": message}), 400


@app.errorhandler(BadgeEngineError)
def handle_engine_error(exc: BadgeEngineError):
    return _bad_request(str(exc))


@app.errorhandler(PersistenceFailure)
def handle_persistence_failure(exc: PersistenceFailure):
    return jsonify({"error": "Storage unavailable"}), 503


@app.route("/healthz")
def healthz():
    return jsonify({"ok": True})


@app.route("/api/bac/estimate", methods=["POST"])
def api_bac_estimate():
    data = request.get_json() or {}
    profile = _parse_profile(data.get("profile"))
    try:
        drinks = _parse_drinks(data.get("drinks", []))
        at = _parse_instant(data["at"]) if data.get("at") else utcnow()
    except (TypeError, ValueError) as exc:
        return _bad_request(str(exc))

    model = _model()
    bac = estimate_bac(drinks, profile, at, model)
    return jsonify({
        "at": at.isoformat(),
        "bac": bac,
        "description": describe_bac(bac),
        "over_driving_limit": is_over_driving_limit(bac),
        "trend": trend(drinks, profile, at, model=model),
        "hours_until_sober": round(time_to_sober(bac, model), 2),
        "drive_advice": drive_advice(bac, model),
    })


@app.route("/api/bac/series", methods=["POST"])
def api_bac_series():
    data = request.get_json() or {}
    profile = _parse_profile(data.get("profile"))
    try:
        drinks = _parse_drinks(data.get("drinks", []))
        start = _parse_instant(data.get("from"))
        end = _parse_instant(data.get("to"))
    except (TypeError, ValueError) as exc:
        return _bad_request(str(exc))

    model = _model()
    default_step = model.step / timedelta(minutes=1)
    step = timedelta(minutes=_clamp_float(data.get("step_minutes"), default_step, MIN_STEP_MINUTES, MAX_STEP_MINUTES))
    if end > start and (end - start) / step > MAX_SERIES_POINTS:
        return _bad_request(f"Window too long for step; at most {MAX_SERIES_POINTS} points")

    points = [{"t": t.isoformat(), "bac": bac} for t, bac in sample_series(drinks, profile, start, end, step, model)]
    return jsonify({
        "points": points,
        "peak": peak(drinks, profile, start, end, step, model),
        "average": round(average(drinks, profile, start, end, step, model), 4),
    })


@app.route("/api/drinks", methods=["POST"])
def api_drink_add():
    store = _ensure_db()
    data = request.get_json() or {}
    try:
        user_id = int(data.get("user_id"))
        session_id = int(data.get("session_id"))
        if store.fetch_profile(user_id) is None:
            return jsonify({"error": "User not found"}), 404
        if store.fetch_session(session_id) is None:
            return jsonify({"error": "Session not found"}), 404
        consumed_at = _parse_instant(data["consumed_at"]) if data.get("consumed_at") else utcnow()
        drink_id = store.add_drink(
            user_id=user_id,
            session_id=session_id,
            volume_ml=float(data.get("volume_ml", 0)),
            alcohol_percentage=float(data.get("alcohol_percentage", -1)),
            consumed_at=consumed_at,
        )
    except (TypeError, ValueError) as exc:
        return _bad_request(str(exc))

    summary = _orchestrator(store).check_and_award(DRINK_ADDED, user_id, session_id)
    return jsonify({"ok": True, "drink_id": drink_id, "badges": summary.as_dict()})


@app.route("/api/sessions/<int:session_id>/end", methods=["POST"])
def api_session_end(session_id: int):
    store = _ensure_db()
    session = store.fetch_session(session_id)
    if session is None:
        return jsonify({"error": "Session not found"}), 404
    if not session.has_ended(utcnow()):
        return jsonify({"error": "Session has not ended yet"}), 409

    orchestrator = _orchestrator(store)
    results = {}
    for user_id in store.list_participants(session_id):
        results[str(user_id)] = orchestrator.check_and_award(SESSION_ENDED, user_id, session_id).as_dict()
    return jsonify({"ok": True, "participants": results})


@app.route("/api/badges/check", methods=["POST"])
def api_badges_check():
    store = _ensure_db()
    data = request.get_json() or {}
    context = str(data.get("context", "")).strip().lower()
    if context not in TRIGGER_CATEGORIES:
        return _bad_request(f"context must be {DRINK_ADDED} or {SESSION_ENDED}")
    try:
        user_id = int(data.get("user_id"))
        session_id = int(data["session_id"]) if data.get("session_id") is not None else None
    except (TypeError, ValueError):
        return _bad_request("Valid user_id is required")

    summary = _orchestrator(store).check_and_award(context, user_id, session_id)
    return jsonify(summary.as_dict())


@app.route("/api/users/<int:user_id>/badges")
def api_user_badges(user_id: int):
    store = _ensure_db()
    if store.fetch_profile(user_id) is None:
        return jsonify({"error": "User not found"}), 404
    items = [
        {
            "id": ub.id,
            "badge_id": ub.badge_id,
            "session_id": ub.session_id,
            "earned_at": ub.earned_at.isoformat(),
            "metadata": ub.metadata,
        }
        for ub in store.list_user_badges(user_id)
    ]
    return jsonify({"items": items})


@app.route("/api/users/<int:user_id>/badges", methods=["POST"])
def api_user_badges_award(user_id: int):
    if not _is_admin():
        return jsonify({"error": "forbidden"}), 403
    store = _ensure_db()
    if store.fetch_profile(user_id) is None:
        return jsonify({"error": "User not found"}), 404
    data = request.get_json() or {}
    badge = store.get_badge_by_code(str(data.get("badge_code", "")).strip())
    if badge is None:
        return jsonify({"error": "Badge not found"}), 404
    try:
        session_id = int(data["session_id"]) if data.get("session_id") is not None else None
    except (TypeError, ValueError):
        return _bad_request("session_id must be an integer")
    if session_id is not None and store.fetch_session(session_id) is None:
        return jsonify({"error": "Session not found"}), 404
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else None

    result = store.award_manual(user_id=user_id, badge_id=badge.id, session_id=session_id, metadata=metadata)
    status = 201 if result.created else 200
    return jsonify({"ok": True, "created": result.created, "user_badge_id": result.user_badge_id}), status


@app.route("/api/user-badges/<int:user_badge_id>", methods=["DELETE"])
def api_user_badge_revoke(user_badge_id: int):
    if not _is_admin():
        return jsonify({"error": "forbidden"}), 403
    if not _ensure_db().revoke(user_badge_id):
        return jsonify({"error": "User badge not found"}), 404
    return jsonify({"ok": True})


@app.route("/api/users/<int:user_id>/badges/stats")
def api_user_badge_stats(user_id: int):
    store = _ensure_db()
    if store.fetch_profile(user_id) is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify(asdict(store.badge_stats(user_id)))


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if os.environ.get("FLASK_DEBUG", "0") == "1" else logging.INFO)
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "0") == "1")
