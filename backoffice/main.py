from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid

import uvicorn

from backoffice.api.http_app import build_app
from backoffice.logging_setup import configure_logging
from backoffice.roles import SUPPORTED_ROLES, validate_role
from backoffice.services.bootstrap import RuntimeContainer, build_runtime_container


def _default_port(role: str) -> int:
    if role == "api":
        return 8000
    return 8100


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Loan back-office runtime entrypoint")
    parser.add_argument("--role", required=True, help="Runtime role")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="Validate role and configuration, then exit",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable code reload (dev mode)",
    )
    return parser.parse_args(argv)


def _app_from_container(*, role: str, run_id: str, container: RuntimeContainer) -> object:
    return build_app(
        role=role,
        run_id=run_id,
        worker_loop=container.worker_loop,
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def create_runtime_app() -> object:
    role = validate_role(os.getenv("APP_ROLE", "api"))
    run_id = str(uuid.uuid4())
    configure_logging()
    container = build_runtime_container(role)
    return _app_from_container(role=role.name, run_id=run_id, container=container)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        role = validate_role(args.role)
    except ValueError as exc:
        supported = ", ".join(SUPPORTED_ROLES)
        sys.stderr.write(f"ERROR: {exc}\n")
        sys.stderr.write(f"Try one of: {supported}\n")
        return 2

    configure_logging()
    run_id = str(uuid.uuid4())
    logger = logging.getLogger("runtime")

    logger.info(
        "runtime initialized",
        extra={"role": role.name, "service": role.name, "run_id": run_id},
    )

    try:
        container = build_runtime_container(role)
    except ValueError as exc:
        sys.stderr.write(f"ERROR: {exc}\n")
        return 2

    if args.dry_run_startup:
        logger.info(
            "dry-run startup complete",
            extra={"role": role.name, "service": role.name, "run_id": run_id},
        )
        return 0

    port = args.port if args.port is not None else _default_port(role.name)
    if args.reload:
        os.environ["APP_ROLE"] = role.name
        uvicorn.run(
            "backoffice.main:create_runtime_app",
            host=args.host,
            port=port,
            log_level="warning",
            reload=True,
            factory=True,
        )
    else:
        app = _app_from_container(role=role.name, run_id=run_id, container=container)
        uvicorn.run(app, host=args.host, port=port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
