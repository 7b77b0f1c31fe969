"""
Run the stock API under uvicorn.

Workshop terminals talk to one server on the local network, usually behind a
reverse proxy that terminates TLS. Everything is configured from the
environment so the same entry point serves dev laptops and the shop server.
"""

import logging
import os
from typing import Any, Dict

import uvicorn

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _tls_options() -> Dict[str, str]:
    mapping = {
        "SSL_CERTFILE": "ssl_certfile",
        "SSL_KEYFILE": "ssl_keyfile",
        "SSL_CA_CERTS": "ssl_ca_certs",
        "SSL_KEYFILE_PASSWORD": "ssl_keyfile_password",
    }
    return {option: os.environ[env] for env, option in mapping.items() if os.getenv(env)}


def build_config() -> Dict[str, Any]:
    reload_enabled = _flag("RELOAD")
    config: Dict[str, Any] = {
        "host": os.getenv("HOST", "0.0.0.0"),
        "port": int(os.getenv("PORT", "8000")),
        "reload": reload_enabled,
        "log_level": os.getenv("LOG_LEVEL", "info"),
        "access_log": _flag("ACCESS_LOG", default=True),
        "proxy_headers": True,
        "forwarded_allow_ips": os.getenv("FORWARDED_ALLOW_IPS", "*"),
    }
    # uvicorn ignores workers when reloading.
    if not reload_enabled:
        config["workers"] = max(1, int(os.getenv("WORKERS", "1")))
    config.update(_tls_options())
    return config


def main() -> None:
    config = build_config()
    logging.basicConfig(level=config["log_level"].upper())
    logger.info(
        "Starting stock API",
        extra={"host": config["host"], "port": config["port"], "tls": "ssl_certfile" in config},
    )
    uvicorn.run("shopdb.main:app", **config)


if __name__ == "__main__":
    main()
