"""
Smart groups JSON API, scoped to one organization per request.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from config.monitoring import SmartGroupsMonitoring
from flask_app.utils.permissions import can_manage_smart_groups, can_view_organization

from .errors import SmartGroupsError
from .service import DEFAULT_RUNS_PAGE_SIZE, MAX_RUNS_PAGE_SIZE, SmartGroupService

smart_groups_blueprint = Blueprint(
    "smart_groups",
    __name__,
    url_prefix="/api/organizations/<int:organization_id>/smart-groups",
)


def _service() -> SmartGroupService:
    return SmartGroupService()


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _ensure_authenticated_api():
    if not current_user.is_authenticated:
        return _json_error("Authentication required.", HTTPStatus.UNAUTHORIZED)
    return None


def _ensure_view_permission(organization_id: int):
    if not can_view_organization(current_user, organization_id):
        return _json_error("You do not have access to this organization.", HTTPStatus.FORBIDDEN)
    return None


def _ensure_manage_permission(organization_id: int):
    if not can_manage_smart_groups(current_user, organization_id):
        return _json_error("Only organization owners and admins can manage smart groups.", HTTPStatus.FORBIDDEN)
    return None


@smart_groups_blueprint.before_request
def _guard_request():
    auth_response = _ensure_authenticated_api()
    if auth_response:
        return auth_response

    organization_id = (request.view_args or {}).get("organization_id")
    if request.method == "GET":
        return _ensure_view_permission(organization_id)
    return _ensure_manage_permission(organization_id)


@smart_groups_blueprint.errorhandler(SmartGroupsError)
def _handle_smart_groups_error(exc: SmartGroupsError):
    current_app.logger.info(
        "Smart groups request rejected",
        extra={
            "smart_groups_error": exc.status_label,
            "smart_groups_message": exc.message,
            "smart_groups_endpoint": request.endpoint,
        },
    )
    return _json_error(exc.message, exc.http_status)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _parse_int_arg(name: str, *, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"'{name}' must be an integer.") from None


def _parse_version(payload: dict) -> int:
    value = payload.get("expected_version")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("'expected_version' must be an integer.")
    return value


def _isoformat(value):
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def _serialize_config(config):
    return {
        "id": config.id,
        "organization_id": config.organization_id,
        "activity_id": config.activity_id,
        "name": config.name,
        "default_criteria": config.default_criteria,
        "created_by_user_id": config.created_by_user_id,
        "created_at": _isoformat(config.created_at),
        "updated_at": _isoformat(config.updated_at),
    }


def _serialize_run(run):
    return {
        "id": run.id,
        "organization_id": run.organization_id,
        "config_id": run.config_id,
        "session_id": run.session_id,
        "scope": run.scope.value,
        "status": run.status.value,
        "version": run.version,
        "criteria_snapshot": run.criteria_snapshot,
        "entry_count": run.entry_count,
        "group_count": run.group_count,
        "excluded_count": run.excluded_count,
        "generated_by_user_id": run.generated_by_user_id,
        "confirmed_by_user_id": run.confirmed_by_user_id,
        "confirmed_at": _isoformat(run.confirmed_at),
        "created_at": _isoformat(run.created_at),
    }


def _serialize_proposal(proposal):
    return {
        "id": proposal.id,
        "run_id": proposal.run_id,
        "group_index": proposal.group_index,
        "group_name": proposal.group_name,
        "member_ids": list(proposal.member_ids or []),
        "modified_member_ids": proposal.modified_member_ids,
        "effective_member_ids": proposal.effective_member_ids,
        "status": proposal.status.value,
        "version": proposal.version,
    }


def _serialize_entry(entry):
    return {
        "person_id": entry.person_id,
        "display_name": entry.display_name,
        "data_snapshot": entry.data_snapshot,
        "excluded": entry.excluded,
    }


def _serialize_details(details):
    payload = _serialize_run(details.run)
    payload["entries"] = [_serialize_entry(entry) for entry in details.entries]
    payload["proposals"] = [_serialize_proposal(proposal) for proposal in details.proposals]
    payload["metrics"] = details.metrics
    return payload


def _serialize_latest(run):
    if run is None:
        return {"run": None}
    payload = _serialize_run(run)
    payload["proposals"] = [_serialize_proposal(proposal) for proposal in run.proposals]
    return {"run": payload}


# ---------------------------------------------------------------------------
# Fields and configs
# ---------------------------------------------------------------------------


@smart_groups_blueprint.get("/fields")
def smart_groups_fields(organization_id: int):
    activity_id = (request.args.get("activity_id") or "").strip()
    if not activity_id:
        return _json_error("'activity_id' is required.", HTTPStatus.BAD_REQUEST)
    session_id = request.args.get("session_id") or None
    fields = _service().get_available_fields(organization_id, activity_id, session_id)
    return jsonify({"fields": [item.as_dict() for item in fields]}), HTTPStatus.OK


@smart_groups_blueprint.get("/configs/by-activity/<activity_id>")
def smart_groups_config_by_activity(organization_id: int, activity_id: str):
    config = _service().get_config_by_activity(organization_id, activity_id)
    return jsonify({"config": _serialize_config(config) if config else None}), HTTPStatus.OK


@smart_groups_blueprint.post("/configs")
def smart_groups_config_create(organization_id: int):
    payload = _json_body()
    config = _service().create_config(
        organization_id,
        payload.get("activity_id"),
        payload.get("name"),
        payload.get("default_criteria"),
        created_by=current_user.id,
    )
    return jsonify({"config": _serialize_config(config)}), HTTPStatus.CREATED


@smart_groups_blueprint.patch("/configs/<int:config_id>")
def smart_groups_config_update(organization_id: int, config_id: int):
    payload = _json_body()
    config = _service().update_config(
        organization_id,
        config_id,
        name=payload.get("name"),
        default_criteria=payload.get("default_criteria"),
        clear_default_criteria="default_criteria" in payload and payload["default_criteria"] is None,
    )
    return jsonify({"config": _serialize_config(config)}), HTTPStatus.OK


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@smart_groups_blueprint.get("/configs/<int:config_id>/runs")
def smart_groups_runs_list(organization_id: int, config_id: int):
    default_limit = current_app.config.get("SMART_GROUPS_RUNS_PAGE_SIZE_DEFAULT", DEFAULT_RUNS_PAGE_SIZE)
    try:
        limit = _parse_int_arg("limit", default=default_limit)
        offset = _parse_int_arg("offset", default=0)
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    page = _service().list_runs(organization_id, config_id, limit=min(limit, MAX_RUNS_PAGE_SIZE), offset=offset)
    return (
        jsonify(
            {
                "runs": [_serialize_run(run) for run in page.runs],
                "total": page.total,
                "limit": page.limit,
                "offset": page.offset,
            }
        ),
        HTTPStatus.OK,
    )


@smart_groups_blueprint.get("/configs/<int:config_id>/runs/latest")
def smart_groups_latest_activity_run(organization_id: int, config_id: int):
    service = _service()
    service.get_config(organization_id, config_id)
    return jsonify(_serialize_latest(service.get_latest_run_by_activity(organization_id, config_id))), HTTPStatus.OK


@smart_groups_blueprint.get("/sessions/<session_id>/runs/latest")
def smart_groups_latest_session_run(organization_id: int, session_id: str):
    run = _service().get_latest_run_by_session(organization_id, session_id)
    return jsonify(_serialize_latest(run)), HTTPStatus.OK


@smart_groups_blueprint.post("/runs")
def smart_groups_generate(organization_id: int):
    payload = _json_body()
    config_id = payload.get("config_id")
    if isinstance(config_id, bool) or not isinstance(config_id, int):
        return _json_error("'config_id' must be an integer.", HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    details = _service().generate_groups(
        organization_id,
        config_id,
        payload.get("scope") or "",
        session_id=payload.get("session_id") or None,
        criteria_override=payload.get("criteria_override"),
        generated_by=current_user.id,
    )
    current_app.logger.info(
        "Smart groups generate request served",
        extra={
            "smart_groups_run_id": details.run.id,
            "smart_groups_response_time_ms": round((time.perf_counter() - start_time) * 1000, 2),
            "user_id": current_user.id,
        },
    )
    return jsonify({"run": _serialize_details(details)}), HTTPStatus.CREATED


@smart_groups_blueprint.get("/runs/<int:run_id>")
def smart_groups_run_detail(organization_id: int, run_id: int):
    details = _service().get_run_details(organization_id, run_id)
    return jsonify({"run": _serialize_details(details)}), HTTPStatus.OK


@smart_groups_blueprint.patch("/proposals/<int:proposal_id>")
def smart_groups_proposal_update(organization_id: int, proposal_id: int):
    payload = _json_body()
    member_ids = payload.get("modified_member_ids")
    if not isinstance(member_ids, list):
        return _json_error("'modified_member_ids' must be a list.", HTTPStatus.BAD_REQUEST)
    try:
        expected_version = _parse_version(payload)
    except ValueError as exc:
        SmartGroupsMonitoring.record_operation(operation="update_proposal", status="invalid_request")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    proposal = _service().update_proposal_members(organization_id, proposal_id, member_ids, expected_version)
    return jsonify({"proposal": _serialize_proposal(proposal)}), HTTPStatus.OK


@smart_groups_blueprint.post("/runs/<int:run_id>/confirm")
def smart_groups_run_confirm(organization_id: int, run_id: int):
    try:
        expected_version = _parse_version(_json_body())
    except ValueError as exc:
        SmartGroupsMonitoring.record_operation(operation="confirm", status="invalid_request")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    run = _service().confirm_run(organization_id, run_id, expected_version, confirmed_by=current_user.id)
    return jsonify({"run": _serialize_run(run)}), HTTPStatus.OK


__all__ = ["smart_groups_blueprint"]
