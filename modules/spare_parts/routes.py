"""HTTP routes for the spare parts catalog."""

from flask import jsonify, request
from flask_login import login_required

from modules.spare_parts.catalog import get_catalog
from permissions import require_role

from . import bp


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


@bp.route("/")
@login_required
def list_parts():
    catalog = get_catalog()
    low_only = request.args.get("low", "").lower() in ("1", "true", "yes")
    parts = catalog.search(request.args.get("q", ""), low_only=low_only)
    return jsonify(ok=True, parts=[p.as_json() for p in parts], summary=catalog.summary())


@bp.route("/summary")
@login_required
def parts_summary():
    catalog = get_catalog()
    return jsonify(
        ok=True,
        summary=catalog.summary(),
        low_stock=[p.as_json() for p in catalog.low_stock()],
    )


@bp.route("/<part_id>")
@login_required
def view_part(part_id: str):
    return jsonify(ok=True, part=get_catalog().get(part_id).as_json())


@bp.route("/", methods=["POST"])
@require_role("admin", "root")
def add_part():
    data = _payload()
    part = get_catalog().create(
        name=data.get("name"),
        unit=data.get("unit"),
        total_stock=data.get("total_stock", 0),
        remaining_stock=data.get("remaining_stock"),
        low_stock_threshold=data.get("low_stock_threshold"),
        description=data.get("description"),
    )
    return jsonify(ok=True, part=part.as_json()), 201


@bp.route("/<part_id>", methods=["PUT", "PATCH"])
@require_role("admin", "root")
def edit_part(part_id: str):
    part = get_catalog().edit(part_id, _payload())
    return jsonify(ok=True, part=part.as_json())


@bp.route("/<part_id>/restock", methods=["POST"])
@require_role("admin", "root")
def restock_part(part_id: str):
    part = get_catalog().restock(part_id, _payload().get("quantity"))
    return jsonify(ok=True, part=part.as_json())


@bp.route("/<part_id>", methods=["DELETE"])
@require_role("root")
def delete_part(part_id: str):
    part = get_catalog().delete(part_id)
    return jsonify(ok=True, deleted=part.id)
