"""Entry point for a worker consuming the webhook queues.

``python -m infrastructure.tasks.worker -B`` also embeds the beat scheduler
(retry sweep and processed-event purge) for single-node setups.
"""
from __future__ import annotations

import sys
from typing import Optional, Sequence

from .config.celery import celery_app

WORKER_QUEUES = ("high", "default", "low")


def main(argv: Optional[Sequence[str]] = None) -> None:
    extra = list(sys.argv[1:] if argv is None else argv)
    celery_app.worker_main(
        argv=[
            "worker",
            "--loglevel=INFO",
            "--hostname=payments@%h",
            f"--queues={','.join(WORKER_QUEUES)}",
            *extra,
        ]
    )


if __name__ == "__main__":
    main()
