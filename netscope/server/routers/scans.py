from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from netscope.errors import ErrorCode, NetscopeError
from netscope.server.routers.auth import check_scan_rate_limit, verify_token
from netscope.server.state import ApplicationState, get_state
from netscope.toolkit.nmap_args import (
    ScanRequestConfig,
    apply_profile_defaults,
    build_nmap_args,
    generate_command_preview,
    validate_generated_args,
)
from netscope.toolkit.validation import validate_scan_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scans", tags=["scans"])


class ScanStartRequest(BaseModel):
    target: str = Field(..., min_length=1, max_length=255)
    profile: Literal["quick", "full"]
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Target cannot be empty")
        return v


class ScanBuilderRequest(ScanRequestConfig):
    name: Optional[str] = Field(None, max_length=200)


class CompareRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    scan_a_id: str = Field(..., min_length=1)
    scan_b_id: str = Field(..., min_length=1)


def _builder_config(req: ScanBuilderRequest, default_host_timeout: int) -> ScanRequestConfig:
    overrides = req.model_dump(exclude_unset=True, exclude={"name", "scan_profile"})
    overrides["target"] = req.target
    return apply_profile_defaults(overrides, req.scan_profile, default_host_timeout_seconds=default_host_timeout)


def _checked_args(state: ApplicationState, config: ScanRequestConfig) -> List[str]:
    errors, warnings = validate_scan_config(
        config, allow_public_targets=state.config.scan.allow_public_targets
    )
    if errors:
        target_errors = [e for e in errors if e.field == "target"]
        code = ErrorCode.SCAN_TARGET_INVALID if target_errors else ErrorCode.SCAN_CONFIG_INVALID
        logger.warning(f"Scan rejected: {[e.message for e in errors]}")
        raise NetscopeError(
            code,
            errors[0].message,
            details={"errors": [e.to_dict() for e in errors]},
        )
    for w in warnings:
        logger.info(f"Scan config warning ({w.field}): {w.message}")

    args = build_nmap_args(config)
    if not validate_generated_args(args):
        logger.error(f"Generated nmap arguments failed the safety check: {args}")
        raise NetscopeError(ErrorCode.TOOL_ARGS_REJECTED, "Invalid or unsafe Nmap arguments detected")
    return args


async def _launch(
    state: ApplicationState,
    owner_id: str,
    config: ScanRequestConfig,
    name: Optional[str],
) -> Dict[str, Any]:
    args = _checked_args(state, config)
    scan_id = uuid.uuid4().hex

    await state.db.create_scan_record(
        scan_id,
        owner_id=owner_id,
        target=config.target,
        profile=config.scan_profile,
        name=name,
        config=config.model_dump(by_alias=True),
    )
    state.store.create_session(scan_id, config.target, config.scan_profile, owner_id)
    state.start_scan(scan_id, args, config.host_timeout_seconds)

    logger.info(f"Scan {scan_id} started by {owner_id}: target={config.target} profile={config.scan_profile}")
    return {"scanId": scan_id, "status": "pending", "message": "Scan started successfully"}


@router.post("/start", status_code=202, dependencies=[Depends(check_scan_rate_limit)])
async def start_scan(
    req: ScanStartRequest,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    config = apply_profile_defaults({"target": req.target}, req.profile)
    return await _launch(state, owner_id, config, req.name)


@router.post("/builder/start", status_code=202, dependencies=[Depends(check_scan_rate_limit)])
async def start_custom_scan(
    req: ScanBuilderRequest,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    config = _builder_config(req, state.config.scan.default_host_timeout_seconds)
    return await _launch(state, owner_id, config, req.name)


@router.post("/builder/preview", dependencies=[Depends(verify_token)])
async def preview_custom_scan(
    req: ScanBuilderRequest,
    state: ApplicationState = Depends(get_state),
):
    """Show the command a builder configuration would run, with validation results. Spawns nothing."""
    config = _builder_config(req, state.config.scan.default_host_timeout_seconds)
    errors, warnings = validate_scan_config(
        config, allow_public_targets=state.config.scan.allow_public_targets
    )
    return {
        "command": generate_command_preview(config),
        "valid": not errors,
        "errors": [e.to_dict() for e in errors],
        "warnings": [w.to_dict() for w in warnings],
        "config": config.model_dump(by_alias=True),
    }


@router.get("")
async def scan_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    rows, total = await state.db.list_scans(owner_id, page=page, limit=limit)
    total_pages = (total + limit - 1) // limit
    return {
        "scans": rows,
        "pagination": {
            "currentPage": page,
            "totalPages": total_pages,
            "totalScans": total,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }


@router.get("/sessions")
async def live_sessions(
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    """Scans of the caller still held in memory (running or recently finished)."""
    sessions = sorted(state.store.get_sessions_for_owner(owner_id), key=lambda s: s.created_at, reverse=True)
    return {"sessions": [s.to_dict() for s in sessions]}


@router.post("/compare")
async def compare_scans(
    req: CompareRequest,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    scan_a = await state.db.get_scan_record(req.scan_a_id, owner_id=owner_id)
    scan_b = await state.db.get_scan_record(req.scan_b_id, owner_id=owner_id)
    if scan_a is None or scan_b is None:
        raise NetscopeError(ErrorCode.SCAN_NOT_FOUND, "One or both scans not found")
    return {"comparison": _compare(scan_a, scan_b)}


@router.get("/{scan_id}")
async def get_scan(
    scan_id: str,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    scan = await state.db.get_scan_record(scan_id, owner_id=owner_id)
    if scan is None:
        raise NetscopeError(ErrorCode.SCAN_NOT_FOUND, "Scan not found", details={"scan_id": scan_id})
    scan.pop("owner_id", None)
    snapshot = state.store.get_session(scan_id)
    scan["live"] = snapshot.to_dict() if snapshot is not None else None
    return {"scan": scan}


@router.get("/{scan_id}/hosts/{host_index}")
async def get_host_details(
    scan_id: str,
    host_index: int,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    scan = await state.db.get_scan_record(scan_id, owner_id=owner_id)
    if scan is None:
        raise NetscopeError(ErrorCode.SCAN_NOT_FOUND, "Scan not found", details={"scan_id": scan_id})
    hosts = scan.get("results") or []
    if host_index < 0 or host_index >= len(hosts):
        raise NetscopeError(ErrorCode.SCAN_NOT_FOUND, "Host not found", details={"host_index": host_index})
    return {"host": hosts[host_index]}


@router.post("/{scan_id}/cancel")
async def cancel_scan(
    scan_id: str,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    snapshot = state.store.get_session(scan_id)
    if snapshot is None:
        raise NetscopeError(ErrorCode.SCAN_SESSION_NOT_FOUND, "Scan session not found", details={"scan_id": scan_id})
    if snapshot.owner_id != owner_id:
        raise NetscopeError(ErrorCode.AUTH_PERMISSION_DENIED, "Access denied", details={"scan_id": scan_id})
    cancelled = state.runner.cancel(scan_id)
    return {"scanId": scan_id, "cancelled": cancelled, "status": snapshot.status.value}


def _compare(scan_a: Dict[str, Any], scan_b: Dict[str, Any]) -> Dict[str, Any]:
    summary_a = scan_a.get("summary") or {}
    summary_b = scan_b.get("summary") or {}
    ports_a = _open_ports_by_host(scan_a)
    ports_b = _open_ports_by_host(scan_b)

    changed_hosts = []
    for ip in sorted(set(ports_a) & set(ports_b)):
        opened = sorted(ports_b[ip] - ports_a[ip])
        closed = sorted(ports_a[ip] - ports_b[ip])
        if opened or closed:
            changed_hosts.append({"ip": ip, "openedPorts": opened, "closedPorts": closed})

    def _side(scan: Dict[str, Any], summary: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": scan["id"],
            "name": scan.get("name"),
            "target": scan.get("target"),
            "status": scan.get("status"),
            "hostsUp": summary.get("hostsUp", 0),
            "totalOpenPorts": summary.get("totalOpenPorts", 0),
        }

    return {
        "scanA": _side(scan_a, summary_a),
        "scanB": _side(scan_b, summary_b),
        "differences": {
            "hostsUpDiff": summary_b.get("hostsUp", 0) - summary_a.get("hostsUp", 0),
            "portsDiff": summary_b.get("totalOpenPorts", 0) - summary_a.get("totalOpenPorts", 0),
            "newHosts": sorted(set(ports_b) - set(ports_a)),
            "missingHosts": sorted(set(ports_a) - set(ports_b)),
            "changedHosts": changed_hosts,
        },
    }


def _open_ports_by_host(scan: Dict[str, Any]) -> Dict[str, set]:
    out: Dict[str, set] = {}
    for host in scan.get("results") or []:
        ip = host.get("ip")
        if not ip:
            continue
        out[ip] = {
            f"{p.get('port')}/{p.get('protocol')}"
            for p in host.get("ports") or []
            if p.get("state") == "open"
        }
    return out
