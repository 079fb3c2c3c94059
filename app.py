from flask import Flask, jsonify, request
# Imports Flask framework and its utilities

from flask_cors import CORS
# Imports CORS (Cross-Origin Resource Sharing) so a separately hosted frontend can drive the engine

import firebase_admin
from firebase_admin import credentials, firestore

import os
import threading

from dotenv import load_dotenv
from loguru import logger

from stroop_engine import BASE_COLORS, COLORS, EXTRA_COLORS, TIMEOUT_TIERS, UNLOCK_MILESTONES
from stroop_session import CommandError, GameStatus, SessionStateMachine
from stroop_stats import build_report
from stroop_timing import ThreadingTimerService
from training_store import FirestoreTrainingStore, InMemoryTrainingStore, TrainingStoreError

load_dotenv()

app = Flask(__name__)

TOTAL_ROUNDS = int(os.getenv("STROOP_TOTAL_ROUNDS", 30))
COUNTDOWN_MS = int(os.getenv("STROOP_COUNTDOWN_MS", 3000))
FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS", "serviceAccountKey.json")

# Firebase Initialization
# Firestore persistence is used only when a service account key is present;
# otherwise completed sessions are kept in memory for the life of the process
store = InMemoryTrainingStore()
if os.path.exists(FIREBASE_CREDENTIALS):
    try:
        cred = credentials.Certificate(FIREBASE_CREDENTIALS)
        firebase_admin.initialize_app(cred)
        store = FirestoreTrainingStore(firestore.client())
        logger.info("Firebase initialized successfully.")
    except Exception as e:
        logger.error("Error initializing Firebase: {}; falling back to in-memory store", e)
else:
    logger.info("No Firebase credentials at {}; using in-memory training store", FIREBASE_CREDENTIALS)

CORS(app, supports_credentials=True)
# supports_credentials=True lets a browser frontend on another origin send its cookies along

timer_service = ThreadingTimerService()
# One timer service shared by every session; each session arms at most one callback at a time

# Active training sessions stored in memory (keyed by the client's session id)
_active_sessions = {}
_session_users = {}
# Maps session ids to the user whose finished session should be persisted automatically

_saved_sessions = set()
_save_lock = threading.Lock()
# Session ids whose current run has already been written to the store; auto-save runs on timer threads

_ERROR_STATUS = {
    CommandError.INVALID_SELECTION: 400,
    CommandError.INVALID_STATE: 409,
    CommandError.ROUND_ALREADY_RESOLVED: 409,
}
# HTTP status per command error code


def _persist(user_id, rounds, best_streak):
    """Hand rounds to the store; failures are logged, never raised into the session."""
    try:
        store.save_session(user_id, rounds, best_streak)
        return True
    except TrainingStoreError as e:
        logger.warning("Saving session for {} failed: {}", user_id, e)
        return False


def _save_once(session_id, user_id, state):
    """Writes a finished run unless it was already written. Returns (ok, already_saved)."""
    with _save_lock:
        if session_id in _saved_sessions:
            return True, True
        if not _persist(user_id, state.rounds, state.best_streak):
            return False, False
        _saved_sessions.add(session_id)
        return True, False


def _get_session(session_id):
    if session_id not in _active_sessions:
        def on_finished(state, session_id=session_id):
            user_id = _session_users.get(session_id)
            if user_id:
                _save_once(session_id, user_id, state)
                # Finished sessions of known users are saved without waiting for /save

        _active_sessions[session_id] = SessionStateMachine(
            timer=timer_service,
            countdown_ms=COUNTDOWN_MS,
            on_finished=on_finished,
        )
    return _active_sessions[session_id]


def _session_id(data):
    return str(data.get('session_id') or request.args.get('session_id') or 'default')


def _command_response(session_id, result):
    """Turns a CommandResult into a JSON response with the fresh snapshot."""
    session = _active_sessions[session_id]
    if not result.ok:
        logger.warning("Session {} rejected command: {} ({})", session_id, result.error.value, result.message)
        return jsonify({
            "status": "error",
            "error": result.error.value,
            "message": result.message,
            "state": session.snapshot(),
        }), _ERROR_STATUS[result.error]

    body = {"status": "success", "state": session.snapshot()}
    if result.round is not None:
        body["round"] = result.round.to_dict()
    return jsonify(body)


# ── Reference Data ─────────────────────────────────────────

@app.route('/api/stroop/colors', methods=['GET'])
def stroop_colors():
    """Palette, unlock order and speed tiers for the frontend."""
    return jsonify({
        "palette": {name.value: cfg for name, cfg in COLORS.items()},
        "base_colors": [c.value for c in BASE_COLORS],
        "extra_colors": [c.value for c in EXTRA_COLORS],
        "unlock_milestones": list(UNLOCK_MILESTONES),
        "timeout_tiers": [
            {"min_streak": streak, "timeout_ms": cfg.timeout_ms, "speed_level": cfg.speed_level}
            for streak, cfg in TIMEOUT_TIERS
        ],
    })


# ── Session Commands ───────────────────────────────────────

@app.route('/api/stroop/start', methods=['POST'])
def stroop_start():
    """Starts (or restarts after finishing) a training session."""
    data = request.get_json(silent=True) or {}
    # Parses the request body; defaults to empty dict if no JSON is sent

    session_id = _session_id(data)
    try:
        total_rounds = int(data.get('total_rounds', TOTAL_ROUNDS))
    except (TypeError, ValueError):
        return jsonify({"status": "error", "message": "total_rounds must be an integer"}), 400
    if total_rounds < 1:
        return jsonify({"status": "error", "message": "total_rounds must be at least 1"}), 400

    session = _get_session(session_id)
    result = session.start(total_rounds)
    if not result.ok:
        return _command_response(session_id, result)
        # A session still in progress keeps its user and save record

    if data.get('user_id'):
        _session_users[session_id] = str(data['user_id'])
        # Remembers who to save the finished session for
    else:
        _session_users.pop(session_id, None)
        # An anonymous restart must not be saved under the previous user
    _saved_sessions.discard(session_id)

    return _command_response(session_id, result)


@app.route('/api/stroop/answer', methods=['POST'])
def stroop_answer():
    """Submits the player's color choice for the current round."""
    data = request.get_json(silent=True) or {}
    session_id = _session_id(data)
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404

    challenge_id = data.get('challenge_id')
    if not challenge_id:
        return jsonify({
            "status": "error",
            "error": CommandError.INVALID_SELECTION.value,
            "message": "challenge_id is required",
            "state": _active_sessions[session_id].snapshot(),
        }), 400
        # Without the id a click racing the timeout would land on the next round

    result = _active_sessions[session_id].submit_answer(data.get('color'), challenge_id=str(challenge_id))
    return _command_response(session_id, result)


@app.route('/api/stroop/pause', methods=['POST'])
def stroop_pause():
    session_id = _session_id(request.get_json(silent=True) or {})
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404
    return _command_response(session_id, _active_sessions[session_id].pause())


@app.route('/api/stroop/resume', methods=['POST'])
def stroop_resume():
    session_id = _session_id(request.get_json(silent=True) or {})
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404
    return _command_response(session_id, _active_sessions[session_id].resume())


@app.route('/api/stroop/reset', methods=['POST'])
def stroop_reset():
    session_id = _session_id(request.get_json(silent=True) or {})
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404

    response = _command_response(session_id, _active_sessions[session_id].reset())
    del _active_sessions[session_id]
    _session_users.pop(session_id, None)
    _saved_sessions.discard(session_id)
    # Removes the discarded session from memory to free resources
    return response


# ── Session Reads ──────────────────────────────────────────

@app.route('/api/stroop/state', methods=['GET'])
def stroop_state():
    session_id = _session_id({})
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404
    return jsonify({"status": "success", "state": _active_sessions[session_id].snapshot()})


@app.route('/api/stroop/stats', methods=['GET'])
def stroop_stats():
    """Live (or final) statistics for a session."""
    session_id = _session_id({})
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404

    state = _active_sessions[session_id].state
    # A snapshot copy; the report never touches the live session
    return jsonify({"status": "success", **build_report(state.rounds, best_streak=state.best_streak)})


# ── Persistence ────────────────────────────────────────────

@app.route('/api/stroop/save', methods=['POST'])
def stroop_save():
    """Saves a finished session for a user."""
    data = request.get_json(silent=True) or {}
    session_id = _session_id(data)
    user_id = data.get('user_id') or _session_users.get(session_id)
    if not user_id:
        return jsonify({"status": "error", "message": "No user_id provided"}), 400
    if session_id not in _active_sessions:
        return jsonify({"status": "error", "message": "No active session"}), 404

    state = _active_sessions[session_id].state
    if state.status != GameStatus.FINISHED:
        return jsonify({
            "status": "error",
            "error": CommandError.INVALID_STATE.value,
            "message": "Only finished sessions can be saved",
        }), 409

    ok, already_saved = _save_once(session_id, str(user_id), state)
    # Each finished run is written once, whether by auto-save or an earlier /save
    if not ok:
        return jsonify({"status": "error", "message": "Saving failed; session kept in memory"}), 503
    return jsonify({"status": "success", "saved_rounds": len(state.rounds), "already_saved": already_saved})


@app.route('/api/stroop/history/<user_id>', methods=['GET'])
def stroop_history(user_id):
    """Historical rounds and lifetime aggregates for a user."""
    try:
        limit = int(request.args.get('limit', 100))
    except ValueError:
        return jsonify({"status": "error", "message": "limit must be an integer"}), 400

    try:
        rounds = store.load_historical_rounds(user_id, limit=limit)
        lifetime = store.load_user_stats(user_id)
    except TrainingStoreError as e:
        logger.warning("Loading history for {} failed: {}", user_id, e)
        return jsonify({"status": "error", "message": "History unavailable"}), 503

    chronological = list(reversed(rounds))
    # The store returns newest first; charts read oldest first
    return jsonify({
        "status": "success",
        "rounds": [r.to_dict() for r in chronological],
        "lifetime": lifetime,
        **build_report(chronological),
    })


if __name__ == '__main__':
    # Port is set to 5000 by default or via env
    port = int(os.getenv("PORT", 5000))
    # Reads the port number from environment variable; defaults to 5000

    app.run(debug=True, host='0.0.0.0', port=port, use_reloader=False)
    # The reloader would fork a second process with its own, empty session table
