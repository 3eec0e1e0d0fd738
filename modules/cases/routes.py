"""HTTP routes for maintenance cases."""

from flask import jsonify, request
from flask_login import login_required

from errors import ValidationError
from modules.cases.lifecycle import get_controller
from permissions import current_username, require_role

from . import bp


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body")
    return data


def _requested_usage(data: dict):
    usage = data.get("spare_parts_used")
    if usage is None:
        return None
    if not isinstance(usage, list):
        raise ValidationError("spare_parts_used must be a list", field="spare_parts_used")
    return usage


@bp.route("/")
@login_required
def list_cases():
    cases = get_controller().filter(
        status=request.args.get("status") or None,
        technician_id=request.args.get("technician_id") or None,
        query=request.args.get("q") or None,
    )
    return jsonify(ok=True, cases=[c.as_json() for c in cases])


@bp.route("/<case_id>")
@login_required
def view_case(case_id: str):
    return jsonify(ok=True, case=get_controller().get(case_id).as_json())


@bp.route("/available/<part_id>")
@login_required
def part_availability(part_id: str):
    """Units of a part the staging form may still attach."""
    draft = get_controller().stage(request.args.get("case_id") or None)
    return jsonify(ok=True, part_id=part_id, available=draft.available_for(part_id))


@bp.route("/", methods=["POST"])
@login_required
def create_case():
    data = _payload()
    controller = get_controller()
    draft = controller.stage()
    draft.set_usage(_requested_usage(data) or [])
    result = controller.create(data, draft.usage, created_by=current_username())
    return jsonify(ok=True, **result.as_json()), 201


@bp.route("/<case_id>", methods=["PUT", "PATCH"])
@login_required
def update_case(case_id: str):
    data = _payload()
    controller = get_controller()
    requested = _requested_usage(data)
    usage = None
    if requested is not None:
        draft = controller.stage(case_id)
        usage = draft.set_usage(requested)
    result = controller.update(case_id, data, usage)
    return jsonify(ok=True, **result.as_json())


@bp.route("/<case_id>", methods=["DELETE"])
@require_role("admin", "root")
def delete_case(case_id: str):
    result = get_controller().delete(case_id)
    return jsonify(ok=True, deleted=result.case.id, stock=result.plan.as_json())
