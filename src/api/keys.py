"""
Key and commitment endpoints.

Routes:
- POST /keys: generate and store the identity's key pair (idempotent)
- GET /keys/public: the public key senders address commitments to
- DELETE /keys: purge the key pair
- POST /commitments: create a commitment for a recipient public key
"""

from flask import Blueprint, jsonify

from api.utils import get_json_body, get_wallet, require_api_key

keys_bp = Blueprint('keys', __name__)


@keys_bp.route("/keys", methods=["POST"])
@require_api_key
def generate_keys():
    """
    Generate and store keys.

    Request body (optional):
    {
        "onchain_id": "0x..."
    }
    """
    wallet = get_wallet()
    existed = wallet.key_manager.has_keys()
    result = wallet.generate_and_store_keys(onchain_id=get_json_body().get("onchain_id"))
    return jsonify({**result, "created": not existed}), 200 if existed else 201


@keys_bp.route("/keys/public", methods=["GET"])
def get_public_key():
    public_key = get_wallet().get_public_key()
    if public_key is None:
        return jsonify({"error": "No keys generated"}), 404
    return jsonify({"public_key": public_key})


@keys_bp.route("/keys", methods=["DELETE"])
@require_api_key
def delete_keys():
    deleted = get_wallet().delete_keys()
    return jsonify({"deleted": deleted})


@keys_bp.route("/commitments", methods=["POST"])
def create_commitment():
    """
    Create a stealth commitment for a recipient.

    Request body:
    {
        "recipient_public_key": "0x<64 hex chars>"
    }
    """
    data = get_json_body()
    recipient = data.get("recipient_public_key")
    if not isinstance(recipient, str) or not recipient:
        return jsonify({"error": "Missing required field: recipient_public_key"}), 400

    result = get_wallet().create_commitment(recipient)
    return jsonify(result.to_dict()), 201
