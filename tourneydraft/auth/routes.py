from firebase_admin import auth, firestore
from flask import current_app, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from tourneydraft.core.constants import USERS_COLLECTION

from . import bp


@bp.route("/csrf_token", methods=["GET"])
def csrf_token():
    """Hand the client a CSRF token to send back in the X-CSRFToken header."""
    return jsonify({"csrf_token": generate_csrf()})


@bp.route("/session_login", methods=["POST"])
def session_login():
    """
    Called from the client after a successful Firebase login.
    It receives the ID token, verifies it, and creates a server-side session.
    """
    id_token = (request.get_json(silent=True) or {}).get("idToken")
    if not id_token:
        return jsonify({"status": "error", "message": "Missing idToken."}), 400
    try:
        decoded_token = auth.verify_id_token(id_token)
        uid = decoded_token["uid"]
        db = firestore.client()
        user_doc = db.collection(USERS_COLLECTION).document(uid).get()
        if user_doc.exists:
            session["user_id"] = uid
            return jsonify({"status": "success"})
        else:
            return (
                jsonify({"status": "error", "message": "User not found in Firestore."}),
                404,
            )
    except Exception as e:
        current_app.logger.error(f"Error during session login: {e}")
        return (
            jsonify({"status": "error", "message": "Invalid token or server error."}),
            401,
        )


@bp.route("/logout", methods=["POST"])
def logout():
    """Clear the server-side session and flush the user's draft system."""
    user_id = session.get("user_id")
    if user_id:
        registry = current_app.extensions.get("draft_systems")
        if registry is not None:
            registry.discard(user_id)
    session.clear()
    return jsonify({"status": "success"})
