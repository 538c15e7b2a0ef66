"""HTTP server for agent communication."""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from aiohttp import web
from pydantic import BaseModel

from kaspa_aio.agent.engine import ReconciliationEngine
from kaspa_aio.errors import ConcurrencyError, ErrorKind, KaspaAioError, ValidationFailed
from kaspa_aio.models.reconcile import ReconcileResult


logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONCURRENCY: 409,
}


def _serialize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    return value


def _require(args: Dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value in (None, "", []):
        raise ValidationFailed(f"Argument '{key}' is required")
    return value


class AgentServer:
    """Agent HTTP server on a unix socket and, optionally, TCP."""

    def __init__(self, socket_path: Path, host: Optional[str], port: int, engine: ReconciliationEngine):
        self.socket_path = Path(socket_path)
        self.host = host
        self.port = port
        self.engine = engine
        self.catalog = engine.catalog
        self.store = engine.store
        self.lifecycle = engine.lifecycle
        self.files = engine.files
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self._setup_routes()

    def _setup_routes(self):
        self.app.router.add_post('/api/v1/command', self._handle_command)

    async def start(self):
        """Start the server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        if self.socket_path.exists():
            self.socket_path.unlink()
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        site_unix = web.UnixSite(self.runner, str(self.socket_path))
        await site_unix.start()
        os.chmod(self.socket_path, 0o660)
        logger.info(f"Agent listening on unix:{self.socket_path}")

        if self.host:
            site_tcp = web.TCPSite(self.runner, self.host, self.port)
            await site_tcp.start()
            logger.info(f"Agent listening on tcp://{self.host}:{self.port}")

    async def stop(self):
        """Stop the server."""
        if self.runner:
            await self.runner.cleanup()
        if self.socket_path.exists():
            self.socket_path.unlink()
        logger.info("Agent server stopped")

    async def _handle_command(self, request: web.Request) -> web.Response:
        """Dispatch a ``{"command", "args"}`` request."""
        try:
            data = await request.json()
        except ValueError:
            error = ValidationFailed("Request body must be JSON")
            return web.json_response({"success": False, **error.to_dict()}, status=400)

        command = data.get("command")
        args = data.get("args") or {}
        try:
            result = await self._process_command(command, args)
        except KaspaAioError as e:
            logger.warning(f"Command {command} failed: {e}")
            status = STATUS_BY_KIND.get(e.kind, 500)
            return web.json_response({"success": False, **_serialize(e.to_dict())}, status=status)
        except Exception as e:
            logger.error(f"Command error: {e}", exc_info=True)
            return web.json_response(
                {"success": False, "error": str(e), "kind": ErrorKind.ENGINE.value, "remediation": "", "details": {}},
                status=500,
            )

        if isinstance(result, ReconcileResult) and not result.succeeded:
            error = result.error or {}
            return web.json_response(
                {
                    "success": False,
                    "error": error.get("error", f"Reconciliation ended {result.phase.value}"),
                    "kind": error.get("kind", ErrorKind.ENGINE.value),
                    "remediation": error.get("remediation", ""),
                    "details": error.get("details", {}),
                    "data": _serialize(result),
                },
                status=500,
            )
        return web.json_response({"success": True, "data": _serialize(result)})

    async def _process_command(self, command: str, args: Dict[str, Any]) -> Any:
        handlers = {
            "profiles": self._handle_profiles,
            "validate": self._handle_validate,
            "generate": self._handle_generate,
            "reconcile": self._handle_reconcile,
            "add_profile": self._handle_add_profile,
            "remove_profile": self._handle_remove_profile,
            "removal_impact": self._handle_removal_impact,
            "status": self._handle_status,
            "drift": self._handle_drift,
            "start": self._handle_start,
            "stop": self._handle_stop,
            "restart": self._handle_restart,
            "backup_create": self._handle_backup_create,
            "backup_list": self._handle_backup_list,
            "backup_restore": self._handle_backup_restore,
            "backup_diff": self._handle_backup_diff,
            "backup_delete": self._handle_backup_delete,
            "backup_usage": self._handle_backup_usage,
            "rollback": self._handle_rollback,
            "history": self._handle_history,
        }

        handler = handlers.get(command)
        if not handler:
            raise ValidationFailed(f"Unknown command: {command}")

        return await handler(args)

    def _check_idle(self) -> None:
        if self.engine.in_progress:
            raise ConcurrencyError("A reconfiguration is in progress, retry when it finishes")

    def _service_names(self, args: Dict[str, Any]) -> List[str]:
        """Services named directly or through profiles."""
        if args.get("name"):
            name = args["name"]
            if not self.catalog.get_service(name):
                raise ValidationFailed(f"Unknown service: {name}")
            return [name]
        profiles = args.get("profiles")
        if not profiles:
            raise ValidationFailed("Argument 'name' or 'profiles' is required")
        return self.lifecycle.get_container_names_for_profiles(profiles)

    # -- Command handlers --

    async def _handle_profiles(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "profiles": [profile.model_dump(mode="json") for profile in self.catalog.profiles],
            "legacy": {old: list(new) for old, new in self.catalog.legacy_map.items()},
        }

    async def _handle_validate(self, args: Dict[str, Any]) -> Any:
        return self.engine.validate(args.get("profiles") or [])

    async def _handle_generate(self, args: Dict[str, Any]) -> Dict[str, Any]:
        selection = self.engine.validate(args.get("profiles") or [])
        if not selection.valid:
            raise ValidationFailed("Profile selection is invalid", issues=selection.errors)
        generated = self.engine.generator.generate(selection.resolved, args.get("settings") or {})
        return {
            "profiles": generated.profiles,
            "services": generated.services,
            "compose": generated.compose_text,
            "env": generated.env_text,
            "warnings": generated.warnings,
            "generated_secrets": generated.generated_secrets,
        }

    async def _handle_reconcile(self, args: Dict[str, Any]) -> ReconcileResult:
        return await self.engine.reconcile(
            _require(args, "profiles"),
            args.get("settings") or {},
            timeout=args.get("timeout"),
        )

    async def _handle_add_profile(self, args: Dict[str, Any]) -> ReconcileResult:
        return await self.engine.add_profile(
            _require(args, "profile"),
            args.get("settings") or {},
            timeout=args.get("timeout"),
        )

    async def _handle_remove_profile(self, args: Dict[str, Any]) -> ReconcileResult:
        return await self.engine.remove_profile(
            _require(args, "profile"),
            remove_data=bool(args.get("remove_data", False)),
            timeout=args.get("timeout"),
        )

    async def _handle_removal_impact(self, args: Dict[str, Any]) -> Any:
        return await self.engine.removal_impact(_require(args, "profile"))

    async def _handle_status(self, args: Dict[str, Any]) -> Dict[str, Any]:
        state = await self.files.load_state()
        statuses = await self.lifecycle.status_all(state.service_names)
        return {
            "agent": self.engine.status(),
            "installation": {
                "mode": state.mode,
                "profiles": state.selected_profiles,
                "last_modified": state.last_modified,
            },
            "services": {name: status.value for name, status in statuses.items()},
        }

    async def _handle_drift(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"drift": await self.engine.detect_drift()}

    async def _handle_start(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._check_idle()
        names = self._service_names(args)
        await self.lifecycle.apply_phases(names, self.lifecycle.start)
        return {"services": names, "started": True}

    async def _handle_stop(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._check_idle()
        names = self._service_names(args)
        await self.lifecycle.apply_phases(names, self.lifecycle.stop, reverse=True)
        return {"services": names, "stopped": True}

    async def _handle_restart(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._check_idle()
        names = self._service_names(args)
        await self.lifecycle.apply_phases(names, self.lifecycle.restart)
        return {"services": names, "restarted": True}

    async def _handle_backup_create(self, args: Dict[str, Any]) -> Any:
        return await self.engine.create_backup(args.get("reason") or "Manual backup", args.get("metadata") or {})

    async def _handle_backup_list(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"backups": await self.store.list_backups()}

    async def _handle_backup_restore(self, args: Dict[str, Any]) -> Any:
        return await self.engine.restore_backup(
            _require(args, "id"),
            create_backup_before_restore=bool(args.get("create_backup", True)),
        )

    async def _handle_backup_diff(self, args: Dict[str, Any]) -> Any:
        return await self.store.diff(_require(args, "from"), _require(args, "to"))

    async def _handle_backup_delete(self, args: Dict[str, Any]) -> Dict[str, Any]:
        backup_id = _require(args, "id")
        await self.store.delete_backup(backup_id)
        return {"id": backup_id, "deleted": True}

    async def _handle_backup_usage(self, args: Dict[str, Any]) -> Any:
        return await self.store.get_storage_usage()

    async def _handle_rollback(self, args: Dict[str, Any]) -> ReconcileResult:
        return await self.engine.rollback(_require(args, "id"), timeout=args.get("timeout"))

    async def _handle_history(self, args: Dict[str, Any]) -> Dict[str, Any]:
        state = await self.files.load_state()
        limit = args.get("limit")
        history = state.history[-int(limit):] if limit else state.history
        return {"history": history}
