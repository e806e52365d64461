import logging
import os

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def init_logging(level: str = "INFO"):
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # The SDK clients log every request at INFO.
    for noisy in ("httpx", "httpcore", "openai", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def init_sentry():
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return  # Sentry is optional; skip silently if not configured

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,   # low overhead
        send_default_pii=False,   # client names and emails stay out of Sentry
        environment=os.environ.get("ENV", "production"),
    )
