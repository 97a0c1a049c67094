"""
Note and scanner endpoints.

Routes:
- GET /notes: notes summary (?status=available|all)
- GET /notes/<commitment>/withdrawal-inputs: private proof inputs
- POST /notes/<commitment>/spent: mark a note spent after withdrawal
- GET /scanner/status: discovery engine status
- POST /scanner/start, POST /scanner/stop: control the background scan
- POST /scanner/scan: synchronous one-shot scan
"""

from flask import Blueprint, jsonify, request

from api.utils import get_wallet, require_api_key

notes_bp = Blueprint('notes', __name__)


@notes_bp.route("/notes", methods=["GET"])
@require_api_key
def list_notes():
    """
    List notes without secret material.

    Query params:
        status: "available" (default) or "all"
    """
    wallet = get_wallet()
    status = request.args.get("status", "available")
    if status not in ("available", "all"):
        return jsonify({"error": "status must be 'available' or 'all'"}), 400

    notes = wallet.list_available_notes() if status == "available" else wallet.list_all_notes()
    return jsonify({
        "notes": [
            {**note.to_dict(include_secrets=False),
             "display": wallet.note_store.format_note_for_display(note)}
            for note in notes
        ],
        "count": wallet.note_store.get_notes_count(),
    })


@notes_bp.route("/notes/<commitment>/withdrawal-inputs", methods=["GET"])
@require_api_key
def withdrawal_inputs(commitment: str):
    inputs = get_wallet().prepare_withdrawal_proof_inputs(commitment)
    return jsonify(inputs.to_dict())


@notes_bp.route("/notes/<commitment>/spent", methods=["POST"])
@require_api_key
def mark_spent(commitment: str):
    outcome = get_wallet().mark_spent(commitment)
    return jsonify({"commitment": commitment, "outcome": outcome.value})


@notes_bp.route("/scanner/status", methods=["GET"])
def scanner_status():
    return jsonify(get_wallet().engine.get_status())


@notes_bp.route("/scanner/start", methods=["POST"])
@require_api_key
def scanner_start():
    wallet = get_wallet()
    wallet.start_scanning()
    return jsonify(wallet.engine.get_status()), 202


@notes_bp.route("/scanner/stop", methods=["POST"])
@require_api_key
def scanner_stop():
    wallet = get_wallet()
    wallet.stop_scanning()
    return jsonify(wallet.engine.get_status())


@notes_bp.route("/scanner/scan", methods=["POST"])
@require_api_key
def scanner_scan():
    report = get_wallet().scan_once()
    return jsonify(report.to_dict())
