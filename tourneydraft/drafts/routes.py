"""Routes for the drafts blueprint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from firebase_admin import firestore
from flask import current_app, g, jsonify, request

from tourneydraft.auth.decorators import login_required
from tourneydraft.errors import NotFoundError, ValidationError

from . import bp
from .models import OutcomeKind
from .system import OFFLINE_MESSAGE
from .utils import serialize_draft

if TYPE_CHECKING:
    import uuid

    from .models import SaveOutcome
    from .system import DraftSystem


def get_draft_system() -> DraftSystem:
    """The signed-in user's draft system, created on first use."""
    registry = current_app.extensions["draft_systems"]
    return registry.get(g.user["uid"], db=firestore.client())


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _outcome_response(
    system: DraftSystem, succeeded: bool, outcome: SaveOutcome | None
) -> Any:
    """Render the result of one write. ``outcome`` is None when nothing was saved."""
    payload: dict[str, Any] = {
        "status": "success" if succeeded else "error",
        "outcome": outcome.to_dict() if outcome else None,
        "state": system.status(),
    }
    if succeeded:
        return jsonify(payload)
    if outcome is None:
        payload["message"] = system.error
    elif outcome.kind is OutcomeKind.NETWORK_FAILED:
        payload["message"] = OFFLINE_MESSAGE
    else:
        payload["message"] = outcome.message
    status_code = getattr(outcome.error if outcome else None, "status_code", 500)
    return jsonify(payload), status_code


@bp.route("/", methods=["GET"])
@login_required
def list_drafts() -> Any:
    """List the user's open drafts, newest first.

    ``?resume=true`` runs the resume search, which also caches what it finds.
    """
    system = get_draft_system()
    if request.args.get("resume", "").lower() in ("true", "1", "yes"):
        drafts = system.check_existing()
    else:
        drafts = system.list()
    return jsonify(
        {
            "status": "success",
            "drafts": [serialize_draft(d) for d in drafts],
            "error": system.error,
        }
    )


@bp.route("/", methods=["POST"])
@login_required
def create_draft() -> Any:
    """Start a new draft."""
    data = _json_body()
    document = data.get("document") or {}
    if not isinstance(document, dict):
        raise ValidationError("document must be an object.")

    system = get_draft_system()
    draft_id = system.create(document)
    draft = system.repository.get(draft_id)
    current_app.logger.info(f"Draft {draft_id} created for user {g.user['uid']}")
    return (
        jsonify(
            {
                "status": "success",
                "draft": serialize_draft(draft) if draft else {"id": draft_id},
                "state": system.status(),
            }
        ),
        201,
    )


@bp.route("/<uuid:draft_id>", methods=["GET"])
@login_required
def view_draft(draft_id: uuid.UUID) -> Any:
    """Load a draft and make it the current one."""
    system = get_draft_system()
    draft = system.load(str(draft_id))
    if draft is None:
        raise NotFoundError(system.error or "Draft not found.")
    return jsonify({"status": "success", "draft": serialize_draft(draft)})


@bp.route("/<uuid:draft_id>", methods=["PATCH"])
@login_required
def update_draft(draft_id: uuid.UUID) -> Any:
    """Queue a partial document update.

    Without a checkpoint the edit is debounced and the response is 202; a
    checkpoint commits immediately.
    """
    data = _json_body()
    patch = data.get("patch")
    if not isinstance(patch, dict) or not patch:
        raise ValidationError("patch must be a non-empty object.")
    checkpoint = data.get("checkpoint")
    if checkpoint is not None and not isinstance(checkpoint, str):
        raise ValidationError("checkpoint must be a string.")

    system = get_draft_system()
    outcome = system.update(str(draft_id), patch, checkpoint)
    if outcome is None:
        return jsonify({"status": "success", "queued": True, "state": system.status()}), 202
    return _outcome_response(system, outcome.succeeded, outcome)


@bp.route("/<uuid:draft_id>/save", methods=["POST"])
@login_required
def save_draft(draft_id: uuid.UUID) -> Any:
    """Commit pending edits now."""
    system = get_draft_system()
    succeeded = system.save_now(str(draft_id))
    return _outcome_response(system, succeeded, system.last_outcome)


@bp.route("/<uuid:draft_id>/rename", methods=["POST"])
@login_required
def rename_draft(draft_id: uuid.UUID) -> Any:
    name = _json_body().get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required.")
    system = get_draft_system()
    succeeded = system.rename(str(draft_id), name)
    return _outcome_response(system, succeeded, system.last_outcome)


@bp.route("/<uuid:draft_id>/complete", methods=["POST"])
@login_required
def complete_draft(draft_id: uuid.UUID) -> Any:
    """Mark a draft as turned into a real tournament."""
    tournament_id = _json_body().get("tournament_id")
    if not isinstance(tournament_id, str) or not tournament_id:
        raise ValidationError("tournament_id is required.")
    system = get_draft_system()
    succeeded = system.complete(str(draft_id), tournament_id)
    return _outcome_response(system, succeeded, system.last_outcome)


@bp.route("/<uuid:draft_id>", methods=["DELETE"])
@login_required
def delete_draft(draft_id: uuid.UUID) -> Any:
    system = get_draft_system()
    succeeded = system.delete(str(draft_id))
    return _outcome_response(system, succeeded, system.last_outcome)


@bp.route("/sync", methods=["POST"])
@login_required
def sync_drafts() -> Any:
    """Reconcile the local cache with the remote store."""
    system = get_draft_system()
    if not system.config.uses_remote:
        raise ValidationError(
            "Sync is unavailable while drafts are stored locally only."
        )
    report = system.sync()
    payload = {
        "status": "success" if report.succeeded else "error",
        "report": report.to_dict(),
        "state": system.status(),
    }
    if report.succeeded:
        return jsonify(payload)
    payload["message"] = system.error
    if report.network_failed or not system.is_online:
        return jsonify(payload), 503
    if report.skipped:
        return jsonify(payload), 409
    return jsonify(payload), 502


@bp.route("/status", methods=["GET"])
@login_required
def draft_status() -> Any:
    return jsonify({"status": "success", "state": get_draft_system().status()})


@bp.route("/connectivity", methods=["POST"])
@login_required
def set_connectivity() -> Any:
    """Report the client's connectivity; coming back online triggers a sync."""
    online = _json_body().get("online")
    if not isinstance(online, bool):
        raise ValidationError("online must be true or false.")
    system = get_draft_system()
    changed = system.repository.connectivity.set_online(online)
    return jsonify({"status": "success", "changed": changed, "state": system.status()})
