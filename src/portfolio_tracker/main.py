import logging

import uvicorn

from . import settings


def main() -> None:
	logging.basicConfig(
		level=settings.get_log_level(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)

	host = settings.get_host()
	port = settings.get_port()
	reload = settings.get_reload()

	uvicorn.run(
		"portfolio_tracker.api:app",
		host=host,
		port=port,
		reload=reload,
	)


if __name__ == "__main__":
	main()
