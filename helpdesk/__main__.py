# helpdesk/__main__.py
import uvicorn

from helpdesk.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("helpdesk.main:app", host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
