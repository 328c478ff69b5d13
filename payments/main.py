"""FastAPI application entry point."""
from __future__ import annotations

import logging
import os
import pwd
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from .api import close_payment_client, router
from .scheduler import shutdown_scheduler, start_scheduler
from .services import init_db
from .settings import settings
from .timeutil import now_local

log_file_path = settings.log_dir / f"{settings.log_leader}.{now_local():%Y-%m-%d}.log"
if not log_file_path.parent.exists():
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file_path),
    ],
    force=True,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing application lifespan")
    try:
        logger.info("Initializing database")
        init_db()
        logger.warning(
            "Membership end dates are written as 31 December of the membership year; "
            "entitlement checks use 31 March"
        )
        start_scheduler()
        logger.info("Lifespan startup complete")
        yield
        logger.info("Lifespan shutdown initiated")
    except Exception:
        logger.exception("Lifespan encountered an error")
        raise
    finally:
        shutdown_scheduler()
        await close_payment_client()
        logger.info("Lifespan cleanup completed")


app = FastAPI(title=settings.organisation_name, lifespan=lifespan)
app.include_router(router)


def _read_tls_material() -> tuple[Path, Path] | None:
    if settings.http:
        return None
    if settings.tls_certificate_file is None or settings.tls_certificate_key_file is None:
        raise SystemExit("tls_certificate_file and tls_certificate_key_file are required unless http is set")
    for path in (settings.tls_certificate_file, settings.tls_certificate_key_file):
        if not path.is_file():
            raise SystemExit(f"cannot read TLS file {path}")
    return settings.tls_certificate_file, settings.tls_certificate_key_file


def _drop_privileges() -> None:
    if not settings.run_user or os.getuid() != 0:
        return
    try:
        entry = pwd.getpwnam(settings.run_user)
    except KeyError as exc:
        raise SystemExit(f"unknown run_user {settings.run_user!r}") from exc
    os.setgid(entry.pw_gid)
    os.setuid(entry.pw_uid)
    logger.info("Running as %s", settings.run_user)


def main() -> None:
    """Run the ASGI server."""
    logger.info(
        "Logger configured: path=%s level=%s", log_file_path.resolve(), logging.getLevelName(logger.getEffectiveLevel())
    )
    tls = _read_tls_material()
    ssl_options: dict[str, str] = {}
    if tls is not None:
        certificate, key = tls
        ssl_options = {"ssl_certfile": str(certificate), "ssl_keyfile": str(key)}
    logger.info(
        "Server configuration: host=%s port=%s scheme=%s",
        settings.host,
        settings.port,
        settings.scheme,
    )
    config = uvicorn.Config(
        "payments.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
        **ssl_options,
    )
    server = uvicorn.Server(config)
    # TLS material is read here, before privileges are dropped
    config.load()
    _drop_privileges()
    server.run()


if __name__ == "__main__":
    main()
