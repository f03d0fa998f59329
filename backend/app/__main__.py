# backend/app/__main__.py
import uvicorn

from .config import Settings
from .main import create_app


def main() -> None:
    settings = Settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.APP_PORT)


if __name__ == "__main__":
    main()
