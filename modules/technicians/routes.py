"""HTTP routes for the technician roster."""

from flask import jsonify, request
from flask_login import login_required

from modules.technicians.roster import get_roster
from permissions import require_role

from . import bp


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


@bp.route("/")
@login_required
def list_technicians():
    technicians = get_roster().search(
        request.args.get("q", ""),
        service_center=request.args.get("service_center") or None,
    )
    return jsonify(ok=True, technicians=[t.as_json() for t in technicians])


@bp.route("/<technician_id>")
@login_required
def view_technician(technician_id: str):
    return jsonify(ok=True, technician=get_roster().get(technician_id).as_json())


@bp.route("/", methods=["POST"])
@require_role("admin", "root")
def add_technician():
    technician = get_roster().create(_payload())
    return jsonify(ok=True, technician=technician.as_json()), 201


@bp.route("/<technician_id>", methods=["PUT", "PATCH"])
@require_role("admin", "root")
def edit_technician(technician_id: str):
    technician = get_roster().edit(technician_id, _payload())
    return jsonify(ok=True, technician=technician.as_json())


@bp.route("/<technician_id>", methods=["DELETE"])
@require_role("admin", "root")
def delete_technician(technician_id: str):
    technician = get_roster().delete(technician_id)
    return jsonify(ok=True, deleted=technician.id)
