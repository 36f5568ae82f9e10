from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from invoice_engine.admin_api import create_admin_app
from invoice_engine.config import Settings, load_dotenv
from invoice_engine.logger import configure_logging
from invoice_engine.orchestrator import build_runtime


def build_app() -> FastAPI:
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    runtime = build_runtime(settings)
    return create_admin_app(
        runtime.registry,
        runtime.orchestrator,
        usage_log=runtime.usage_log,
        failure_log=runtime.failure_log,
        metrics=runtime.metrics,
        on_shutdown=runtime.close,
    )


def main() -> None:
    uvicorn.run("invoice_engine.admin_main:build_app", factory=True, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
