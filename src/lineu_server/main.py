import argparse
import logging
from typing import Optional, Sequence

from lineu_core.config.settings import Settings


def serve(settings: Settings) -> None:
    import uvicorn

    from lineu_server.app import create_app

    log_level = settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format=settings.log_format,
    )

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        reload=False,
        timeout_keep_alive=30,
        log_level=log_level.lower(),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="lineu-server")
    parser.add_argument("--host", "-H", default=None, help="Server host")
    parser.add_argument("--port", "-p", type=int, default=None, help="Server port")
    parser.add_argument("--log-level", "-l", default=None, help="Logging level")

    args = parser.parse_args(argv)
    overrides = {key: value for key, value in vars(args).items() if value is not None}
    serve(Settings(**overrides))


if __name__ == "__main__":
    main()
